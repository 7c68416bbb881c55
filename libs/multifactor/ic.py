"""
Forward returns, Information Coefficient and rolling ICIR.

All inputs and outputs are positional on the reference date axis: one
pl.Series per security (for factors and returns) or one pl.Series over dates
(for IC/ICIR). Undefined values are nulls; NaN produced by arithmetic is
normalized to null so that downstream code only needs one missing marker.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

import polars as pl

logger = logging.getLogger(__name__)

ICMethod = Literal["rank", "pearson"]

# Fewer comparable securities than this on a date gives an undefined IC
MIN_CROSS_SECTION = 2


@dataclass
class ICSummary:
    """Aggregate statistics of an IC series."""

    mean_ic: float
    std_ic: float
    icir: float
    n_periods: int


def compute_forward_returns(closes: Sequence[pl.Series], ndays: int) -> list[pl.Series]:
    """Compute ``ndays``-ahead simple returns for each security.

    return[t] = close[t + ndays] / close[t] - 1, positional on the reference
    axis. The last ``ndays`` entries, and any entry whose start or end close
    is missing or non-positive, are null.

    Args:
        closes: Aligned close series, one per security
        ndays: Horizon in reference trading dates (>= 1)

    Returns:
        Return series in the same order and with the same names as ``closes``
    """
    if ndays < 1:
        raise ValueError(f"Forward return horizon must be >= 1, got {ndays}")

    returns: list[pl.Series] = []
    for close in closes:
        future = pl.col("close").shift(-ndays)
        ret = (
            pl.DataFrame({"close": close.cast(pl.Float64)})
            .select(
                pl.when((pl.col("close") > 0) & (future > 0))
                .then(future / pl.col("close") - 1.0)
                .otherwise(None)
                .alias("ret")
            )
            .get_column("ret")
            .alias(close.name)
        )
        returns.append(ret)
    return returns


def _ic_expr(method: ICMethod) -> pl.Expr:
    if method == "pearson":
        return pl.corr("factor", "ret")
    if method == "rank":
        # Spearman = Pearson of ranks
        return pl.corr(
            pl.col("factor").rank(method="average"),
            pl.col("ret").rank(method="average"),
        )
    raise ValueError(f"Unknown IC method: {method}")


def compute_ic_series(
    factors: Sequence[pl.Series],
    returns: Sequence[pl.Series],
    method: ICMethod = "rank",
) -> pl.Series:
    """Compute the per-date cross-sectional IC.

    For each date, correlates factor values with forward returns across all
    securities where both are defined.

    Args:
        factors: Factor series, one per security
        returns: Forward return series, one per security (same order)
        method: 'rank' (Spearman) or 'pearson'

    Returns:
        Float64 series named "ic" with one value per date. Dates with fewer
        than two comparable securities, or no dispersion, are null.
    """
    if len(factors) != len(returns):
        raise ValueError(
            f"Factor and return counts differ: {len(factors)} vs {len(returns)}"
        )

    n_dates = factors[0].len() if factors else 0
    expr = _ic_expr(method)

    if n_dates == 0:
        return pl.Series("ic", [], dtype=pl.Float64)

    all_dates = pl.DataFrame({"date_idx": range(n_dates)}, schema={"date_idx": pl.Int64})

    long = pl.concat(
        [
            pl.DataFrame(
                {
                    "date_idx": pl.int_range(0, n_dates, eager=True, dtype=pl.Int64),
                    "factor": factor.cast(pl.Float64),
                    "ret": ret.cast(pl.Float64),
                }
            )
            for factor, ret in zip(factors, returns, strict=True)
        ]
    )

    per_date = (
        long.with_columns(pl.col("factor").fill_nan(None), pl.col("ret").fill_nan(None))
        .drop_nulls(["factor", "ret"])
        .group_by("date_idx")
        .agg(expr.alias("ic"), pl.len().alias("n"))
    )

    return (
        all_dates.join(per_date, on="date_idx", how="left")
        .sort("date_idx")
        .select(
            pl.when(pl.col("n") >= MIN_CROSS_SECTION)
            .then(pl.col("ic"))
            .otherwise(None)
            .fill_nan(None)
            .alias("ic")
        )
        .get_column("ic")
    )


def compute_icir_series(ic: pl.Series, ir_n: int) -> pl.Series:
    """Rolling ICIR: trailing mean(IC) / sample std(IC) over ``ir_n`` dates.

    The first ``ir_n - 1`` entries are null, as is any entry whose window
    contains an undefined IC or has zero dispersion.

    Args:
        ic: Per-date IC series
        ir_n: Rolling window length (>= 2, sample std needs two points)

    Returns:
        Float64 series named "icir" with the same length as ``ic``
    """
    if ir_n < 2:
        raise ValueError(f"ICIR window must be >= 2, got {ir_n}")

    frame = pl.DataFrame({"ic": ic.cast(pl.Float64).fill_nan(None)})
    return frame.select(
        pl.when(pl.col("ic").rolling_std(window_size=ir_n) > 0)
        .then(
            pl.col("ic").rolling_mean(window_size=ir_n)
            / pl.col("ic").rolling_std(window_size=ir_n)
        )
        .otherwise(None)
        .fill_nan(None)
        .alias("icir")
    ).get_column("icir")


def summarize_ic(ic: pl.Series) -> ICSummary:
    """Mean, sample std and ICIR of the defined entries of an IC series.

    Uses sample standard deviation (n-1 denominator). ICIR is NaN when fewer
    than two defined values exist or the std is zero.
    """
    valid = ic.cast(pl.Float64).fill_nan(None).drop_nulls()
    n = valid.len()
    if n == 0:
        return ICSummary(mean_ic=float("nan"), std_ic=float("nan"), icir=float("nan"), n_periods=0)

    mean_raw = valid.mean()
    std_raw = valid.std() if n >= 2 else None
    mean_ic = float(mean_raw) if isinstance(mean_raw, int | float) else float("nan")
    std_ic = float(std_raw) if isinstance(std_raw, int | float) else float("nan")

    if std_ic == 0 or math.isnan(std_ic):
        icir = float("nan")
    else:
        icir = mean_ic / std_ic

    return ICSummary(mean_ic=mean_ic, std_ic=std_ic, icir=icir, n_periods=n)
