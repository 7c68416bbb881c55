"""Collaborator contracts for multi-factor synthesis.

The engine only depends on the protocols below. Securities are opaque
hashable tokens; the concrete ``Security`` dataclass is provided for
convenience. ``FrameMarketData`` and ``FrameFactor`` adapt long-format polars
frames to the protocols and are what research notebooks and tests use.

Classes:
    Security: Market-qualified instrument identifier.
    DateRangeQuery: Half-open date range [start, end).
    MarketDataSource: Protocol for trading calendars and close prices.
    RawFactor: Protocol for an already-computed per-security factor.
    FrameMarketData: MarketDataSource backed by a [security, date, close] frame.
    FrameFactor: RawFactor backed by a [security, date, value] frame.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable
from dataclasses import dataclass
from datetime import date
from typing import Protocol, runtime_checkable

import polars as pl

logger = logging.getLogger(__name__)

SecurityKey = Hashable


@dataclass(frozen=True, order=True)
class Security:
    """Tradable instrument identifier, e.g. Security("SH", "600000")."""

    market: str
    code: str

    def __str__(self) -> str:
        return f"{self.market}{self.code}"


@dataclass(frozen=True)
class DateRangeQuery:
    """Date range query with inclusive start and exclusive end.

    Either bound may be None for an open range.
    """

    start: date | None = None
    end: date | None = None

    def __post_init__(self) -> None:
        if self.start is not None and self.end is not None and self.start >= self.end:
            raise ValueError(f"Query start {self.start} must be before end {self.end}")

    def contains(self, d: date) -> bool:
        if self.start is not None and d < self.start:
            return False
        if self.end is not None and d >= self.end:
            return False
        return True

    def filter_expr(self, column: str = "date") -> pl.Expr:
        """Polars predicate equivalent to ``contains`` for a date column."""
        expr = pl.lit(True)
        if self.start is not None:
            expr = expr & (pl.col(column) >= self.start)
        if self.end is not None:
            expr = expr & (pl.col(column) < self.end)
        return expr


@runtime_checkable
class MarketDataSource(Protocol):
    """Source of native trading calendars and close prices."""

    def trading_dates(self, security: SecurityKey, query: DateRangeQuery) -> list[date]:
        """Native trading dates of ``security`` within ``query``."""
        ...

    def closes(self, security: SecurityKey, query: DateRangeQuery) -> pl.DataFrame:
        """Close prices as DataFrame [date, close] within ``query``."""
        ...


@runtime_checkable
class RawFactor(Protocol):
    """An already-computed factor that can be evaluated per security."""

    @property
    def name(self) -> str:
        """Factor identifier."""
        ...

    def evaluate(self, security: SecurityKey, query: DateRangeQuery) -> pl.DataFrame:
        """Native factor series as DataFrame [date, value] within ``query``."""
        ...


def _security_column(security: SecurityKey) -> str:
    return str(security)


class FrameMarketData:
    """MarketDataSource over a long-format frame [security, date, close].

    The ``security`` column holds ``str(security)`` for each instrument.
    """

    REQUIRED_COLUMNS = frozenset({"security", "date", "close"})

    def __init__(self, prices: pl.DataFrame) -> None:
        missing = self.REQUIRED_COLUMNS - set(prices.columns)
        if missing:
            raise ValueError(f"Price frame missing required columns: {sorted(missing)}")
        self._prices = prices.select(
            pl.col("security").cast(pl.Utf8),
            pl.col("date").cast(pl.Date),
            pl.col("close").cast(pl.Float64),
        ).sort(["security", "date"])

    def _rows(self, security: SecurityKey, query: DateRangeQuery) -> pl.DataFrame:
        return self._prices.filter(
            (pl.col("security") == _security_column(security)) & query.filter_expr()
        )

    def trading_dates(self, security: SecurityKey, query: DateRangeQuery) -> list[date]:
        return self._rows(security, query).get_column("date").unique().sort().to_list()

    def closes(self, security: SecurityKey, query: DateRangeQuery) -> pl.DataFrame:
        return self._rows(security, query).select(["date", "close"])


class FrameFactor:
    """RawFactor over a long-format frame [security, date, value]."""

    REQUIRED_COLUMNS = frozenset({"security", "date", "value"})

    def __init__(self, name: str, values: pl.DataFrame) -> None:
        missing = self.REQUIRED_COLUMNS - set(values.columns)
        if missing:
            raise ValueError(f"Factor '{name}' frame missing required columns: {sorted(missing)}")
        self._name = name
        self._values = values.select(
            pl.col("security").cast(pl.Utf8),
            pl.col("date").cast(pl.Date),
            pl.col("value").cast(pl.Float64),
        )

    @property
    def name(self) -> str:
        return self._name

    def evaluate(self, security: SecurityKey, query: DateRangeQuery) -> pl.DataFrame:
        return self._values.filter(
            (pl.col("security") == _security_column(security)) & query.filter_expr()
        ).select(["date", "value"])

    def __repr__(self) -> str:
        return f"FrameFactor(name={self._name!r}, rows={self._values.height})"
