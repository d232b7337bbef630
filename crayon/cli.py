from __future__ import annotations

import json
import logging
from dataclasses import asdict

import typer
from rich import print
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .caido_client import CaidoClient
from .classify import normalize_content_type, pick_color
from .config import get_config_path, load_config
from .daemon import build_engine, build_settings_cache, run_daemon
from .settings import COLOR_SLOTS, DEFAULT_SETTINGS

app = typer.Typer(help="crayon: color Caido history by status and content type")
settings_app = typer.Typer(help="Show or change color settings")
app.add_typer(settings_app, name="settings")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _parse_color_assignments(assignments: list[str]) -> dict[str, str]:
    colors: dict[str, str] = {}
    for assignment in assignments:
        slot, sep, value = assignment.partition("=")
        slot = slot.strip()
        if not sep or slot not in COLOR_SLOTS:
            print(f"[red]Invalid color assignment {assignment!r}; use SLOT=VALUE[/red]")
            print(f"Slots: {', '.join(COLOR_SLOTS)}")
            raise typer.Exit(code=1)
        colors[slot] = value.strip()
    return colors


def _print_settings(settings_dict: dict) -> None:
    table = Table(title="crayon settings")
    table.add_column("Slot")
    table.add_column("Color")
    for slot, color in settings_dict["colors"].items():
        table.add_row(slot, color or "[dim](clear)[/dim]")
    print(f"auto mode: {'on' if settings_dict['auto_mode'] else 'off'}")
    print(table)


@app.command()
def run(
    caido_url: str = typer.Option(None, help="Caido base URL"),
    token: str = typer.Option(None, help="Caido API token"),
    host: str = typer.Option(None, help="Host to bind the crayon API"),
    port: int = typer.Option(None, help="Port to bind the crayon API"),
    interval_ms: int = typer.Option(None, help="Poll interval in milliseconds"),
    no_api: bool = typer.Option(False, "--no-api", help="Do not start the HTTP API"),
) -> None:
    """Run the auto-color daemon until interrupted."""
    config = load_config()
    if caido_url:
        config.caido_url = caido_url
    if token:
        config.caido_token = token
    if host:
        config.api_host = host
    if port is not None:
        config.api_port = port
    if interval_ms is not None:
        config.poll_interval_ms = interval_ms
    if no_api:
        config.api_enabled = False
    _configure_logging(config.log_level)
    try:
        run_daemon(config)
    except KeyboardInterrupt:
        print("[yellow]crayon stopped[/yellow]")


@app.command()
def colorize(
    ids: list[str] = typer.Argument(..., help="Request ids to color"),
    caido_url: str = typer.Option(None, help="Caido base URL"),
    token: str = typer.Option(None, help="Caido API token"),
) -> None:
    """Color the given requests now, ignoring auto mode."""
    config = load_config()
    _configure_logging(config.log_level)
    settings = build_settings_cache(config)
    with CaidoClient(
        caido_url or config.caido_url,
        token=token or config.caido_token,
        timeout_s=config.request_timeout_s,
    ) as client:
        engine = build_engine(config, client, settings)
        outcomes = engine.apply_colors(ids)
    table = Table(title="crayon colorize")
    table.add_column("Request")
    table.add_column("Result")
    table.add_column("Color")
    for outcome in outcomes:
        result = {
            "colored": "[green]colored[/green]",
            "skipped": "[dim]skipped[/dim]",
            "failed": f"[red]failed[/red] {outcome.error or ''}",
        }[outcome.status]
        color = "" if outcome.color is None else outcome.color or "(clear)"
        table.add_row(outcome.exchange_id, result, color)
    print(table)
    if any(outcome.status == "failed" for outcome in outcomes):
        raise typer.Exit(code=1)


@app.command()
def classify(
    status: int = typer.Argument(..., help="Response status code"),
    content_type: list[str] = typer.Option(
        None, "--content-type", "-t", help="Content-Type header value (repeatable)"
    ),
) -> None:
    """Preview the color a response would get with the current settings."""
    settings = build_settings_cache(load_config()).get()
    color = pick_color(status, normalize_content_type(content_type or None), settings.colors)
    if color is None:
        print("[dim]no change[/dim]")
    elif color == "":
        print("clear")
    else:
        print(color)


@settings_app.command("show")
def settings_show(
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
) -> None:
    """Show the effective settings."""
    settings = build_settings_cache(load_config()).get()
    if as_json:
        print(json.dumps(settings.to_dict(), indent=2))
        return
    _print_settings(settings.to_dict())


@settings_app.command("set")
def settings_set(
    auto: bool = typer.Option(None, "--auto/--no-auto", help="Enable or disable auto mode"),
    color: list[str] = typer.Option(
        None, "--color", "-c", help="SLOT=VALUE; empty VALUE clears (repeatable)"
    ),
) -> None:
    """Save settings. Slots not given fall back to their defaults."""
    cache = build_settings_cache(load_config())
    current = cache.get()
    payload = {
        "auto_mode": current.auto_mode if auto is None else auto,
        "colors": _parse_color_assignments(color or []),
    }
    _print_settings(cache.set(payload).to_dict())


@settings_app.command("reset")
def settings_reset() -> None:
    """Restore the built-in defaults."""
    cache = build_settings_cache(load_config())
    _print_settings(cache.set(DEFAULT_SETTINGS).to_dict())


@app.command("config")
def config_show() -> None:
    """Show the effective runtime configuration."""
    config = load_config()
    data = asdict(config)
    if data.get("caido_token"):
        data["caido_token"] = "***"
    print(f"config file: {get_config_path()}")
    print(json.dumps(data, indent=2))


def main() -> None:
    app()


@app.command("version")
def version() -> None:
    """Print version."""

    print(__version__)
