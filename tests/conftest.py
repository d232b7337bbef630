from __future__ import annotations

from pathlib import Path

import pytest

from crayon.engine import AutoColorEngine
from crayon.exchanges import Exchange, ExchangePage, ExchangeResponse
from crayon.pending import PendingTracker
from crayon.settings import SettingsCache, SettingsStore


@pytest.fixture(autouse=True)
def _isolate_crayon_paths(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CRAYON_CONFIG", str(tmp_path / "config.json"))
    monkeypatch.setenv("CRAYON_SETTINGS", str(tmp_path / "settings.json"))
    for name in (
        "CRAYON_CAIDO_URL",
        "CRAYON_CAIDO_TOKEN",
        "CRAYON_POLL_INTERVAL_MS",
        "CRAYON_BATCH_SIZE",
        "CRAYON_API_PORT",
    ):
        monkeypatch.delenv(name, raising=False)


class FakeSource:
    """In-memory request history; cursor `cN` points at index N."""

    def __init__(self) -> None:
        self.exchanges: list[Exchange] = []
        self.fail_queries = 0
        self.fail_lookups: set[str] = set()
        self.queries: list[dict[str, object]] = []
        self.lookups: list[str] = []

    def add(
        self,
        exchange_id: str,
        status: int | None = None,
        content_type: tuple[str, ...] = (),
        *,
        pending: bool = False,
    ) -> None:
        response = None if pending else ExchangeResponse(status, content_type)
        self.exchanges.append(Exchange(exchange_id, response))

    def respond(self, exchange_id: str, status: int, content_type: tuple[str, ...] = ()) -> None:
        for index, exchange in enumerate(self.exchanges):
            if exchange.id == exchange_id:
                self.exchanges[index] = Exchange(
                    exchange_id, ExchangeResponse(status, content_type)
                )
                return
        raise KeyError(exchange_id)

    def query(
        self,
        *,
        after: str | None = None,
        first: int | None = None,
        last: int | None = None,
    ) -> ExchangePage:
        self.queries.append({"after": after, "first": first, "last": last})
        if self.fail_queries:
            self.fail_queries -= 1
            raise RuntimeError("source not ready")
        if last is not None:
            start = max(0, len(self.exchanges) - last)
            stop = len(self.exchanges)
        else:
            start = 0 if after is None else int(after[1:]) + 1
            stop = len(self.exchanges) if first is None else start + first
        items = self.exchanges[start:stop]
        end_cursor = f"c{start + len(items) - 1}" if items else None
        return ExchangePage(items=list(items), end_cursor=end_cursor)

    def get_exchange(self, exchange_id: str) -> Exchange | None:
        self.lookups.append(exchange_id)
        if exchange_id in self.fail_lookups:
            raise RuntimeError("lookup failed")
        for exchange in self.exchanges:
            if exchange.id == exchange_id:
                return exchange
        return None


class FakeWriter:
    def __init__(self) -> None:
        self.writes: list[tuple[str, str]] = []
        self.errors: dict[str, list[str]] = {}
        self.raise_for: set[str] = set()

    def update_color(self, exchange_id: str, color: str) -> list[str]:
        if exchange_id in self.raise_for:
            raise RuntimeError("write exploded")
        self.writes.append((exchange_id, color))
        return list(self.errors.get(exchange_id, []))

    def colors_by_id(self) -> dict[str, str]:
        return dict(self.writes)


class FakeClock:
    def __init__(self, now_ms: int = 1_700_000_000_000) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def writer() -> FakeWriter:
    return FakeWriter()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings_cache(tmp_path: Path) -> SettingsCache:
    return SettingsCache(SettingsStore(tmp_path / "settings.json"))


@pytest.fixture
def engine(
    source: FakeSource,
    writer: FakeWriter,
    settings_cache: SettingsCache,
    clock: FakeClock,
) -> AutoColorEngine:
    return AutoColorEngine(
        source,
        writer,
        settings_cache,
        tracker=PendingTracker(max_size=1000, ttl_ms=10 * 60 * 1000),
        clock=clock,
    )
