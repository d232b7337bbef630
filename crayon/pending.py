from __future__ import annotations

import time

MAX_PENDING = 1000
PENDING_TTL_MS = 10 * 60 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


class PendingTracker:
    """Bounded, expiring set of exchange ids still waiting for a response.

    Entries keep insertion order; the front entry is the first evicted when
    the tracker is full. Not thread-safe: the engine guards it with its lock.
    """

    def __init__(self, *, max_size: int = MAX_PENDING, ttl_ms: int = PENDING_TTL_MS) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self.ttl_ms = ttl_ms
        self._seen_at: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._seen_at)

    def __contains__(self, exchange_id: object) -> bool:
        return exchange_id in self._seen_at

    def ids(self) -> list[str]:
        return list(self._seen_at)

    def seen_at(self, exchange_id: str) -> int | None:
        return self._seen_at.get(exchange_id)

    def track(self, exchange_id: str, now_ms: int | None = None) -> bool:
        if not exchange_id:
            return False
        if exchange_id in self._seen_at:
            # Keep the first-seen timestamp.
            return False
        if len(self._seen_at) >= self.max_size:
            oldest = next(iter(self._seen_at))
            del self._seen_at[oldest]
        self._seen_at[exchange_id] = _now_ms() if now_ms is None else now_ms
        return True

    def prune(self, now_ms: int | None = None) -> int:
        now = _now_ms() if now_ms is None else now_ms
        expired = [
            exchange_id
            for exchange_id, seen_at in self._seen_at.items()
            if now - seen_at > self.ttl_ms
        ]
        for exchange_id in expired:
            del self._seen_at[exchange_id]
        return len(expired)

    def drain_batch(self, limit: int) -> list[str]:
        if limit <= 0:
            return []
        batch: list[str] = []
        for exchange_id in self._seen_at:
            if len(batch) >= limit:
                break
            batch.append(exchange_id)
        return batch

    def defer(self, exchange_id: str) -> None:
        seen_at = self._seen_at.pop(exchange_id, None)
        if seen_at is None:
            return
        self._seen_at[exchange_id] = seen_at

    def discard(self, exchange_id: str) -> bool:
        return self._seen_at.pop(exchange_id, None) is not None

    def clear(self) -> None:
        self._seen_at.clear()
