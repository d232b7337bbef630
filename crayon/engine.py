from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from .classify import pick_color_for_response
from .exchanges import ColorOutcome, ColorWriter, ExchangeResponse, ExchangeSource
from .pending import PendingTracker
from .settings import ColorTable, SettingsCache

logger = logging.getLogger(__name__)

AUTO_COLOR_POLL_INTERVAL_MS = 1500
AUTO_COLOR_BATCH_SIZE = 200
MAX_PENDING_CHECKS_PER_TICK = 50


class ColorizeError(RuntimeError):
    pass


@dataclass
class TickReport:
    cursor_ready: bool = False
    auto_mode: bool = False
    pending_expired: int = 0
    pending_checked: int = 0
    discovered: int = 0
    tracked: int = 0
    outcomes: list[ColorOutcome] = field(default_factory=list)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _response_ready(response: ExchangeResponse | None) -> bool:
    return response is not None and response.status_code is not None


def _unique_ids(ids: Iterable[object]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for value in ids:
        if not isinstance(value, str):
            continue
        exchange_id = value.strip()
        if not exchange_id or exchange_id in seen:
            continue
        seen.add(exchange_id)
        unique.append(exchange_id)
    return unique


def _log_outcome(outcome: ColorOutcome, origin: str) -> None:
    if outcome.status == "failed":
        logger.error(
            "failed to color exchange %s",
            outcome.exchange_id,
            extra={"exchange_id": outcome.exchange_id, "origin": origin, "error": outcome.error},
        )
        return
    if outcome.status == "skipped":
        return
    message = "%s color %s -> %s"
    level = logging.INFO if origin == "manual" else logging.DEBUG
    logger.log(level, message, origin, outcome.exchange_id, outcome.color or "clear")


class AutoColorEngine:
    """Reconciles the proxy's request history with the configured color rules.

    One instance owns the cursor, the pending tracker and the tick guard. The
    loop thread, push notifications and manual requests all go through it;
    state is only touched under `_lock` and network calls happen outside it.
    """

    def __init__(
        self,
        source: ExchangeSource,
        writer: ColorWriter,
        settings: SettingsCache,
        *,
        tracker: PendingTracker | None = None,
        batch_size: int = AUTO_COLOR_BATCH_SIZE,
        pending_checks_per_tick: int = MAX_PENDING_CHECKS_PER_TICK,
        poll_interval_ms: int = AUTO_COLOR_POLL_INTERVAL_MS,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.source = source
        self.writer = writer
        self.settings = settings
        self.batch_size = max(1, batch_size)
        self.pending_checks_per_tick = max(0, pending_checks_per_tick)
        self.poll_interval_ms = poll_interval_ms
        self._tracker = tracker if tracker is not None else PendingTracker()
        self._clock = clock or _now_ms
        self._lock = threading.Lock()
        self._initialized = False
        self._cursor: str | None = None
        self._ticking = False
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    @property
    def cursor(self) -> str | None:
        with self._lock:
            return self._cursor

    @property
    def cursor_ready(self) -> bool:
        with self._lock:
            return self._initialized

    def pending_ids(self) -> list[str]:
        with self._lock:
            return self._tracker.ids()

    def status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "cursor_ready": self._initialized,
                "cursor": self._cursor,
                "pending": len(self._tracker),
                "ticking": self._ticking,
                "running": self._thread is not None and self._thread.is_alive(),
            }

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                # Includes a loop still winding down after a timed-out stop().
                return
            self._stop.clear()
            self._thread = threading.Thread(target=self._run, name="crayon-auto-color", daemon=True)
            thread = self._thread
        thread.start()

    def stop(self, timeout_s: float | None = 5.0) -> None:
        self._stop.set()
        with self._lock:
            thread = self._thread
        if thread is None:
            return
        if thread is not threading.current_thread():
            thread.join(timeout_s)
            if thread.is_alive():
                logger.warning(
                    "auto-color loop did not stop in time", extra={"timeout_s": timeout_s}
                )
                return
        with self._lock:
            if self._thread is thread:
                self._thread = None

    def _run(self) -> None:
        interval_s = max(100, self.poll_interval_ms) / 1000.0
        self.tick()
        while not self._stop.wait(interval_s):
            self.tick()

    def tick(self) -> TickReport | None:
        with self._lock:
            if self._ticking:
                logger.debug("auto-color tick skipped; previous tick still running")
                return None
            self._ticking = True
        try:
            return self._run_tick()
        except Exception as exc:
            logger.exception("auto-color poll failed", exc_info=exc)
            return None
        finally:
            with self._lock:
                self._ticking = False

    def _run_tick(self) -> TickReport:
        report = TickReport()
        if not self._ensure_cursor():
            return report
        report.cursor_ready = True
        settings = self.settings.get()
        report.auto_mode = settings.auto_mode
        if settings.auto_mode:
            self._sweep_pending(settings.colors, report)
        else:
            with self._lock:
                self._tracker.clear()
        self._discover(settings.auto_mode, settings.colors, report)
        return report

    def _ensure_cursor(self) -> bool:
        with self._lock:
            if self._initialized:
                return True
        try:
            page = self.source.query(last=1)
        except Exception as exc:
            # Normal while the proxy is still starting up; retried next tick.
            logger.debug("auto-color cursor not ready", exc_info=exc)
            return False
        with self._lock:
            self._cursor = page.end_cursor if page.items else None
            self._initialized = True
            cursor = self._cursor
        logger.info("auto-color cursor initialized", extra={"cursor": cursor})
        return True

    def _sweep_pending(self, colors: ColorTable, report: TickReport) -> None:
        with self._lock:
            if not len(self._tracker):
                return
            report.pending_expired = self._tracker.prune(self._clock())
            batch = self._tracker.drain_batch(self.pending_checks_per_tick)
        for exchange_id in batch:
            report.pending_checked += 1
            try:
                exchange = self.source.get_exchange(exchange_id)
            except Exception as exc:
                logger.warning(
                    "pending exchange lookup failed",
                    extra={"exchange_id": exchange_id},
                    exc_info=exc,
                )
                with self._lock:
                    self._tracker.defer(exchange_id)
                continue
            if exchange is None:
                with self._lock:
                    self._tracker.discard(exchange_id)
                continue
            if not _response_ready(exchange.response):
                with self._lock:
                    self._tracker.defer(exchange_id)
                continue
            with self._lock:
                if not self._tracker.discard(exchange_id):
                    # A push notification already handled it.
                    continue
            report.outcomes.append(self._color(exchange_id, exchange.response, colors, "pending"))

    def _discover(self, auto_mode: bool, colors: ColorTable, report: TickReport) -> None:
        with self._lock:
            cursor = self._cursor
        try:
            if cursor:
                page = self.source.query(after=cursor, first=self.batch_size)
            else:
                page = self.source.query(first=self.batch_size)
        except Exception as exc:
            logger.warning("auto-color page fetch failed", extra={"cursor": cursor}, exc_info=exc)
            return
        if not page.items:
            return
        with self._lock:
            if page.end_cursor:
                self._cursor = page.end_cursor
        report.discovered = len(page.items)
        if not auto_mode:
            return
        now = self._clock()
        for exchange in page.items:
            if not _response_ready(exchange.response):
                with self._lock:
                    if self._tracker.track(exchange.id, now):
                        report.tracked += 1
                continue
            report.outcomes.append(self._color(exchange.id, exchange.response, colors, "auto"))

    def on_response(
        self, exchange_id: str, response: ExchangeResponse | None
    ) -> ColorOutcome | None:
        """Handle a response-completed notification from the proxy."""
        if not exchange_id:
            return None
        try:
            settings = self.settings.get()
            if not settings.auto_mode:
                return None
            if not _response_ready(response):
                return ColorOutcome(exchange_id, "skipped")
            with self._lock:
                self._tracker.discard(exchange_id)
            return self._color(exchange_id, response, settings.colors, "push")
        except Exception as exc:
            logger.exception(
                "failed to auto-color exchange %s",
                exchange_id,
                extra={"exchange_id": exchange_id},
                exc_info=exc,
            )
            return None

    def apply_colors(self, ids: Iterable[object]) -> list[ColorOutcome]:
        """Color the given exchanges now, regardless of auto mode."""
        unique = _unique_ids(ids)
        if not unique:
            return []
        try:
            settings = self.settings.get()
        except Exception as exc:
            raise ColorizeError("settings unavailable") from exc
        outcomes: list[ColorOutcome] = []
        for exchange_id in unique:
            try:
                exchange = self.source.get_exchange(exchange_id)
            except Exception as exc:
                outcome = ColorOutcome(
                    exchange_id, "failed", error=str(exc) or exc.__class__.__name__
                )
                _log_outcome(outcome, "manual")
                outcomes.append(outcome)
                continue
            response = exchange.response if exchange is not None else None
            outcomes.append(self._color(exchange_id, response, settings.colors, "manual"))
        return outcomes

    def _color(
        self,
        exchange_id: str,
        response: ExchangeResponse | None,
        colors: ColorTable,
        origin: str,
    ) -> ColorOutcome:
        color = pick_color_for_response(response, colors)
        if color is None:
            return ColorOutcome(exchange_id, "skipped")
        try:
            errors = self.writer.update_color(exchange_id, color)
        except Exception as exc:
            outcome = ColorOutcome(
                exchange_id, "failed", color, str(exc) or exc.__class__.__name__
            )
        else:
            if errors:
                outcome = ColorOutcome(exchange_id, "failed", color, ", ".join(errors))
            else:
                outcome = ColorOutcome(exchange_id, "colored", color)
        _log_outcome(outcome, origin)
        return outcome
