"""Calendar resolution and factor alignment.

Everything the engine computes lives on one reference date axis: the native
trading dates of a reference security inside the query range. Raw factors and
close prices for every security are projected onto that axis here, so that
strategies, indexing and IC code can work positionally.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date
from enum import Enum

import polars as pl

from libs.multifactor.protocols import DateRangeQuery, MarketDataSource, RawFactor, SecurityKey

logger = logging.getLogger(__name__)

AlignedFactorSet = list[list[pl.Series]]


class FillPolicy(str, Enum):
    """How a reference date without a native value is filled."""

    MISSING = "missing"  # Leave as null
    FORWARD_FILL = "forward_fill"  # Carry the last observed value in range forward


def resolve_calendar(
    market_data: MarketDataSource,
    reference: SecurityKey,
    query: DateRangeQuery,
) -> list[date]:
    """Derive the reference date axis.

    Returns the reference security's native trading dates that fall inside
    ``query``, strictly increasing with duplicates removed. An empty result is
    returned as-is; the caller decides how to report it.
    """
    native = market_data.trading_dates(reference, query)
    return sorted({d for d in native if query.contains(d)})


def align_series(
    native: pl.DataFrame,
    dates: Sequence[date],
    value_col: str = "value",
    fill_policy: FillPolicy = FillPolicy.MISSING,
    name: str = "",
) -> pl.Series:
    """Project a native [date, value_col] series onto ``dates``.

    Duplicate native dates keep the last row. NaN is treated as missing.

    Args:
        native: Native observations
        dates: Strictly increasing reference axis
        value_col: Column holding the values
        fill_policy: MISSING leaves gaps null; FORWARD_FILL uses the latest
            native observation on or before each reference date
        name: Name of the returned series

    Returns:
        Float64 series of length ``len(dates)``
    """
    axis = pl.DataFrame({"date": list(dates)}, schema={"date": pl.Date}).sort("date")

    if native.height == 0:
        return pl.Series(name, [None] * len(dates), dtype=pl.Float64)

    observed = (
        native.select(
            pl.col("date").cast(pl.Date),
            pl.col(value_col).cast(pl.Float64).fill_nan(None).alias("value"),
        )
        .unique(subset="date", keep="last", maintain_order=True)
        .sort("date")
    )

    if fill_policy == FillPolicy.FORWARD_FILL:
        joined = axis.join_asof(
            observed.drop_nulls("value"), on="date", strategy="backward"
        )
    else:
        joined = axis.join(observed, on="date", how="left").sort("date")

    return joined.get_column("value").alias(name)


def align_factors(
    factors: Sequence[RawFactor],
    securities: Sequence[SecurityKey],
    dates: Sequence[date],
    query: DateRangeQuery,
    fill_policy: FillPolicy = FillPolicy.MISSING,
) -> AlignedFactorSet:
    """Align every (factor, security) pair onto the reference axis.

    Returns:
        Nested list shaped [num_factors][num_securities], each series of
        length ``len(dates)``. Series are named by ``str(security)``.
    """
    aligned: AlignedFactorSet = []

    for factor in factors:
        per_security: list[pl.Series] = []
        empty: list[str] = []
        for security in securities:
            native = factor.evaluate(security, query)
            series = align_series(native, dates, fill_policy=fill_policy, name=str(security))
            if series.null_count() == series.len():
                empty.append(str(security))
            per_security.append(series)

        if empty:
            logger.warning(
                "Factor has no aligned values for some securities",
                extra={
                    "factor": factor.name,
                    "n_empty": len(empty),
                    "n_securities": len(securities),
                    "examples": empty[:5],
                },
            )
        aligned.append(per_security)

    return aligned


def align_closes(
    market_data: MarketDataSource,
    securities: Sequence[SecurityKey],
    dates: Sequence[date],
    query: DateRangeQuery,
    fill_policy: FillPolicy = FillPolicy.MISSING,
) -> list[pl.Series]:
    """Close prices for each security projected onto the reference axis."""
    return [
        align_series(
            market_data.closes(security, query),
            dates,
            value_col="close",
            fill_policy=fill_policy,
            name=str(security),
        )
        for security in securities
    ]
