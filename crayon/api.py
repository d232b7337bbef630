from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .engine import AutoColorEngine
from .exchanges import ColorOutcome
from .settings import DEFAULT_SETTINGS, CrayonSettings, SettingsCache

logger = logging.getLogger(__name__)


@dataclass
class ManualColorReport:
    outcomes: list[ColorOutcome] = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    def to_dict(self) -> dict[str, int]:
        return {
            "requested": len(self.outcomes),
            "colored": self.count("colored"),
            "skipped": self.count("skipped"),
            "failed": self.count("failed"),
        }


class CrayonAPI:
    """Operations exposed to the settings UI and the selection command."""

    def __init__(self, engine: AutoColorEngine, settings: SettingsCache) -> None:
        self.engine = engine
        self.settings = settings

    def apply_crayon_colors(self, ids: object) -> ManualColorReport:
        if not isinstance(ids, list) or not ids:
            return ManualColorReport()
        return ManualColorReport(outcomes=self.engine.apply_colors(ids))

    def get_settings(self) -> CrayonSettings:
        try:
            return self.settings.get()
        except Exception as exc:
            logger.exception("settings read failed", exc_info=exc)
            return DEFAULT_SETTINGS

    def set_settings(self, raw: object) -> CrayonSettings:
        return self.settings.set(raw)
