import json
from pathlib import Path

from typer.testing import CliRunner

from crayon import __version__
from crayon.cli import app
from crayon.settings import ColorTable

runner = CliRunner()


def test_root_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "run" in result.stdout
    assert "colorize" in result.stdout
    assert "settings" in result.stdout


def test_version() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_settings_set_writes_file(tmp_path: Path) -> None:
    result = runner.invoke(
        app, ["settings", "set", "--no-auto", "--color", "json=#000000", "--color", "status4xx="]
    )

    assert result.exit_code == 0
    data = json.loads((tmp_path / "settings.json").read_text())
    assert data["auto_mode"] is False
    assert data["colors"]["json"] == "#000000"
    assert data["colors"]["status4xx"] == ""
    assert data["colors"]["xml"] == ColorTable().xml


def test_settings_set_rejects_unknown_slot(tmp_path: Path) -> None:
    result = runner.invoke(app, ["settings", "set", "--color", "purple=#800080"])

    assert result.exit_code == 1
    assert not (tmp_path / "settings.json").exists()


def test_settings_show_json_and_reset(tmp_path: Path) -> None:
    runner.invoke(app, ["settings", "set", "--no-auto"])

    result = runner.invoke(app, ["settings", "show", "--json"])
    assert result.exit_code == 0
    assert json.loads(result.stdout)["auto_mode"] is False

    result = runner.invoke(app, ["settings", "reset"])
    assert result.exit_code == 0
    data = json.loads((tmp_path / "settings.json").read_text())
    assert data["auto_mode"] is True


def test_classify_preview() -> None:
    result = runner.invoke(app, ["classify", "200", "-t", "application/json"])
    assert result.exit_code == 0
    assert ColorTable().json in result.stdout

    result = runner.invoke(app, ["classify", "200", "-t", "image/svg+xml"])
    assert "clear" in result.stdout

    result = runner.invoke(app, ["classify", "101"])
    assert "no change" in result.stdout


def test_config_masks_token(monkeypatch) -> None:
    monkeypatch.setenv("CRAYON_CAIDO_TOKEN", "very-secret")
    result = runner.invoke(app, ["config"])
    assert result.exit_code == 0
    assert "very-secret" not in result.stdout
    assert "***" in result.stdout
