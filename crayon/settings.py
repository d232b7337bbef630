from __future__ import annotations

import json
import logging
import os
import threading
import warnings
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path("~/.config/crayon/settings.json").expanduser()


@dataclass(frozen=True, slots=True)
class ColorTable:
    json: str = "#157a37"
    xml: str = "#0b4ea8"
    html: str = "#1f7aa8"
    status5xx: str = "#a32f2a"
    status4xx: str = "#a06008"
    status3xx: str = "#8a7a06"


COLOR_SLOTS = tuple(f.name for f in fields(ColorTable))


@dataclass(frozen=True, slots=True)
class CrayonSettings:
    auto_mode: bool = True
    colors: ColorTable = field(default_factory=ColorTable)

    def to_dict(self) -> dict[str, Any]:
        return {"auto_mode": self.auto_mode, "colors": asdict(self.colors)}


DEFAULT_SETTINGS = CrayonSettings()


def _coerce_auto_mode(value: object) -> bool:
    if value is None:
        return DEFAULT_SETTINGS.auto_mode
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "off", "no"}:
            return False
    warnings.warn(f"Invalid bool for auto_mode: {value!r}", RuntimeWarning, stacklevel=3)
    return DEFAULT_SETTINGS.auto_mode


def normalize_colors(raw: object) -> ColorTable:
    """Merge a partial color mapping over the built-in defaults."""
    if raw is None:
        return ColorTable()
    if isinstance(raw, ColorTable):
        return raw
    if not isinstance(raw, dict):
        warnings.warn(f"Invalid colors mapping: {raw!r}", RuntimeWarning, stacklevel=3)
        return ColorTable()
    values: dict[str, str] = {}
    for slot in COLOR_SLOTS:
        value = raw.get(slot)
        if value is None:
            continue
        if not isinstance(value, str):
            warnings.warn(f"Invalid color for {slot}: {value!r}", RuntimeWarning, stacklevel=3)
            continue
        values[slot] = value.strip()
    return ColorTable(**values)


def normalize_settings(raw: object) -> CrayonSettings:
    if raw is None:
        return DEFAULT_SETTINGS
    if isinstance(raw, CrayonSettings):
        return raw
    if not isinstance(raw, dict):
        raise ValueError("settings must be an object")
    auto_mode = raw.get("auto_mode", raw.get("autoMode"))
    return CrayonSettings(
        auto_mode=_coerce_auto_mode(auto_mode),
        colors=normalize_colors(raw.get("colors")),
    )


def get_settings_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("CRAYON_SETTINGS", DEFAULT_SETTINGS_PATH))
    return candidate.expanduser()


class SettingsStore:
    """Durable settings as a JSON file."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = get_settings_path(path)

    def load(self) -> CrayonSettings:
        if not self.path.exists():
            return DEFAULT_SETTINGS
        raw = self.path.read_text()
        if not raw.strip():
            return DEFAULT_SETTINGS
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError("invalid settings json") from exc
        if not isinstance(data, dict):
            raise ValueError("settings must be an object")
        return normalize_settings(data)

    def save(self, settings: CrayonSettings) -> Path:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(settings.to_dict(), ensure_ascii=False, indent=2) + "\n")
        tmp_path.replace(self.path)
        return self.path


class SettingsCache:
    """Read-through cache shared by the loop, push notifications and the API.

    The cached value is the source of truth for the rest of the process; a
    failed save is logged and does not roll the cache back.
    """

    def __init__(self, store: SettingsStore) -> None:
        self.store = store
        self._lock = threading.Lock()
        self._cached: CrayonSettings | None = None

    def get(self) -> CrayonSettings:
        with self._lock:
            if self._cached is not None:
                return self._cached
            try:
                self._cached = self.store.load()
            except (OSError, ValueError) as exc:
                logger.warning(
                    "settings load failed; using defaults",
                    extra={"path": str(self.store.path)},
                    exc_info=exc,
                )
                return DEFAULT_SETTINGS
            return self._cached

    def set(self, raw: object) -> CrayonSettings:
        settings = normalize_settings(raw)
        with self._lock:
            self._cached = settings
        try:
            self.store.save(settings)
        except OSError as exc:
            logger.error(
                "settings save failed",
                extra={"path": str(self.store.path)},
                exc_info=exc,
            )
        return settings
