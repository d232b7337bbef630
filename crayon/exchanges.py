from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Protocol


@dataclass(frozen=True, slots=True)
class ExchangeResponse:
    status_code: int | None
    content_type: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Exchange:
    id: str
    response: ExchangeResponse | None = None


@dataclass(frozen=True, slots=True)
class ExchangePage:
    items: list[Exchange] = field(default_factory=list)
    end_cursor: str | None = None


class ExchangeSource(Protocol):
    """Ordered, paginated feed of exchanges plus point lookup by id."""

    def query(
        self,
        *,
        after: str | None = None,
        first: int | None = None,
        last: int | None = None,
    ) -> ExchangePage: ...

    def get_exchange(self, exchange_id: str) -> Exchange | None: ...


class ColorWriter(Protocol):
    def update_color(self, exchange_id: str, color: str) -> list[str]:
        """Write a color tag; returns error messages (empty on success)."""
        ...


OutcomeStatus = Literal["colored", "skipped", "failed"]


@dataclass(frozen=True, slots=True)
class ColorOutcome:
    exchange_id: str
    status: OutcomeStatus
    color: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status != "failed"
