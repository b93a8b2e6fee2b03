"""Query and subscription interface to the sensor/prediction data store.

Callers build a Query the way they would chain a REST query builder:

    Query("predictions").gte("timestamp", start).order("timestamp", descending=True).limit(5)

and hand it to any DataStore implementation.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Literal, Protocol

ChangeEvent = Literal["INSERT", "UPDATE", "DELETE"]
RowCallback = Callable[[dict[str, Any]], object]


class StoreError(Exception):
    """The store was unreachable or rejected the query."""


@dataclass(frozen=True)
class Filter:
    column: str
    op: Literal["gte", "lte"]
    value: Any


@dataclass(frozen=True)
class Query:
    """An immutable SELECT description: columns, range filters, ordering and limit."""

    table: str
    columns: tuple[str, ...] = ("*",)
    filters: tuple[Filter, ...] = field(default_factory=tuple)
    order_by: str | None = None
    descending: bool = False
    row_limit: int | None = None

    def select(self, *columns: str) -> Query:
        return replace(self, columns=columns or ("*",))

    def gte(self, column: str, value: Any) -> Query:
        return replace(self, filters=self.filters + (Filter(column, "gte", value),))

    def lte(self, column: str, value: Any) -> Query:
        return replace(self, filters=self.filters + (Filter(column, "lte", value),))

    def order(self, column: str, descending: bool = False) -> Query:
        return replace(self, order_by=column, descending=descending)

    def limit(self, n: int) -> Query:
        if n < 1:
            raise ValueError(f"limit must be >= 1, got {n}")
        return replace(self, row_limit=n)


class Subscription(Protocol):
    def unsubscribe(self) -> None:
        """Stop delivering change events. Safe to call more than once."""
        ...


class DataStore(Protocol):
    """Narrow read/subscribe interface the pipeline depends on."""

    def select(self, query: Query) -> list[dict[str, Any]]:
        """Run the query and return rows as dicts. Raises StoreError on failure."""
        ...

    def subscribe(self, table: str, event: ChangeEvent, callback: RowCallback) -> Subscription:
        """Deliver each new row for ``event`` on ``table`` to ``callback``."""
        ...

    def close(self) -> None:
        ...
