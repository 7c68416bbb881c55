"""Cross-sectional indexing of a computed composite factor.

Ranking contract:
    - Sorted by composite value, descending.
    - Equal values keep universe order (stable sort).
    - Missing values (null or NaN) are placed last, also in universe order.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date

import polars as pl

from libs.multifactor.protocols import SecurityKey

CrossSection = list[tuple[SecurityKey, float | None]]


@dataclass
class CrossSectionIndex:
    """Lookup structures built once from the composite factor.

    Attributes:
        security_index: security -> slot in the composite factor list
        date_index: date -> slot in ``cross_sections``
        cross_sections: per-date rankings in reference-axis order
    """

    security_index: dict[SecurityKey, int]
    date_index: dict[date, int]
    cross_sections: list[CrossSection]


def _is_missing(value: float | None) -> bool:
    return value is None or math.isnan(value)


def _rank_key(item: tuple[SecurityKey, float | None]) -> tuple[bool, float]:
    value = item[1]
    if _is_missing(value):
        return (True, 0.0)
    return (False, -value)  # type: ignore[operator]


def rank_cross_section(
    securities: Sequence[SecurityKey], values: Sequence[float | None]
) -> CrossSection:
    """Rank one date's (security, value) pairs per the ranking contract.

    NaN values are reported as None.
    """
    pairs = [
        (security, None if _is_missing(value) else value)
        for security, value in zip(securities, values, strict=True)
    ]
    return sorted(pairs, key=_rank_key)


def build_cross_sections(
    securities: Sequence[SecurityKey],
    factors: Sequence[pl.Series],
    dates: Sequence[date],
) -> CrossSectionIndex:
    """Build security index, date index and per-date rankings.

    Args:
        securities: Universe in configured order
        factors: Composite series, one per security, each ``len(dates)`` long
        dates: Reference date axis

    Returns:
        CrossSectionIndex with every security and every date indexed exactly once
    """
    security_index = {security: i for i, security in enumerate(securities)}

    columns = [factor.to_list() for factor in factors]
    date_index: dict[date, int] = {}
    cross_sections: list[CrossSection] = []
    for i, d in enumerate(dates):
        date_index[d] = i
        cross_sections.append(rank_cross_section(securities, [col[i] for col in columns]))

    return CrossSectionIndex(
        security_index=security_index,
        date_index=date_index,
        cross_sections=cross_sections,
    )
