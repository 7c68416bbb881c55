"""Human-readable rendering of cross-sections."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date

import polars as pl

from libs.multifactor.cross_section import CrossSection
from libs.multifactor.protocols import SecurityKey

MISSING_TEXT = "null"


def format_value(value: float | None, precision: int = 6) -> str:
    if value is None:
        return MISSING_TEXT
    return f"{value:.{precision}f}"


def format_pair(pair: tuple[SecurityKey, float | None], precision: int = 6) -> str:
    """Render one (security, value) pair, e.g. ``(SH600000, 0.812300)``."""
    security, value = pair
    return f"({security}, {format_value(value, precision)})"


def format_cross(cross: CrossSection, precision: int = 6) -> str:
    """Render one ranking as a bracketed list of pairs."""
    return "[" + ", ".join(format_pair(p, precision) for p in cross) + "]"


def cross_sections_to_frame(
    dates: Sequence[date], cross_sections: Sequence[CrossSection]
) -> pl.DataFrame:
    """Flatten rankings into a long DataFrame [date, rank, security, value].

    ``rank`` starts at 1 for the highest value.
    """
    rows = [
        {"date": d, "rank": rank, "security": str(security), "value": value}
        for d, cross in zip(dates, cross_sections, strict=True)
        for rank, (security, value) in enumerate(cross, start=1)
    ]
    return pl.DataFrame(
        rows,
        schema={"date": pl.Date, "rank": pl.Int64, "security": pl.Utf8, "value": pl.Float64},
    )


def format_all_cross(
    dates: Sequence[date], cross_sections: Sequence[CrossSection], precision: int = 6
) -> str:
    """Render all rankings as a table: one row per date, one column per rank."""
    lines = []
    for d, cross in zip(dates, cross_sections, strict=True):
        cells = "  ".join(format_pair(p, precision) for p in cross)
        lines.append(f"{d.isoformat()}  {cells}")
    return "\n".join(lines)
