"""Shared fixtures for multi-factor tests.

The ``scenario`` fixtures model a 3-security universe {X, Y, Z}, two raw
factors F1/F2 and a reference security R over 5 trading dates. On the third
date Z has no factor values, so the equal-weight composite there is
X=0.8, Y=0.5, Z=undefined.
"""

from datetime import date, timedelta

import numpy as np
import polars as pl
import pytest

from libs.multifactor import (
    DateRangeQuery,
    EqualWeightStrategy,
    FrameFactor,
    FrameMarketData,
    MultiFactor,
    Security,
)

X = Security("SH", "600001")
Y = Security("SH", "600002")
Z = Security("SH", "600003")
R = Security("SH", "000001")

SCENARIO_DATES = [
    date(2024, 1, 2),
    date(2024, 1, 3),
    date(2024, 1, 4),
    date(2024, 1, 5),
    date(2024, 1, 8),
]
# One extra trading date after the query end, to check range filtering
OUTSIDE_DATE = date(2024, 1, 9)

F1_VALUES = {
    X: [0.1, 0.2, 0.8, 0.3, 0.5],
    Y: [0.2, 0.1, 0.4, 0.6, 0.1],
    Z: [0.3, 0.3, None, 0.2, 0.4],
}
F2_VALUES = {
    X: [0.3, 0.2, 0.8, 0.1, 0.3],
    Y: [0.0, 0.3, 0.6, 0.2, 0.5],
    Z: [0.1, 0.5, None, 0.4, 0.2],
}
CLOSES = {
    X: [10.0, 11.0, 12.0, 11.0, 12.0, 13.0],
    Y: [20.0, 20.0, 21.0, 22.0, 21.0, 21.0],
    Z: [30.0, 29.0, 30.0, 31.0, 30.0, 29.0],
    R: [100.0, 101.0, 102.0, 103.0, 104.0, 105.0],
}


def factor_frame(values: dict[Security, list[float | None]], dates: list[date]) -> pl.DataFrame:
    """Long [security, date, value] frame; None entries are omitted rows."""
    rows = [
        {"security": str(security), "date": d, "value": v}
        for security, series in values.items()
        for d, v in zip(dates, series, strict=True)
        if v is not None
    ]
    return pl.DataFrame(
        rows, schema={"security": pl.Utf8, "date": pl.Date, "value": pl.Float64}
    )


def price_frame(closes: dict[Security, list[float]], dates: list[date]) -> pl.DataFrame:
    rows = [
        {"security": str(security), "date": d, "close": c}
        for security, series in closes.items()
        for d, c in zip(dates, series, strict=True)
    ]
    return pl.DataFrame(
        rows, schema={"security": pl.Utf8, "date": pl.Date, "close": pl.Float64}
    )


@pytest.fixture()
def scenario_query() -> DateRangeQuery:
    return DateRangeQuery(start=SCENARIO_DATES[0], end=OUTSIDE_DATE)


@pytest.fixture()
def scenario_market_data() -> FrameMarketData:
    return FrameMarketData(price_frame(CLOSES, [*SCENARIO_DATES, OUTSIDE_DATE]))


@pytest.fixture()
def scenario_factors() -> list[FrameFactor]:
    return [
        FrameFactor("F1", factor_frame(F1_VALUES, SCENARIO_DATES)),
        FrameFactor("F2", factor_frame(F2_VALUES, SCENARIO_DATES)),
    ]


@pytest.fixture()
def make_scenario(scenario_factors, scenario_market_data, scenario_query):
    """Factory for scenario MultiFactor instances with a chosen strategy."""

    def _make(strategy=None, **kwargs) -> MultiFactor:
        return MultiFactor(
            factors=scenario_factors,
            securities=[X, Y, Z],
            reference=R,
            query=kwargs.pop("query", scenario_query),
            market_data=scenario_market_data,
            strategy=strategy or EqualWeightStrategy(),
            name=kwargs.pop("name", "scenario"),
            ic_n=kwargs.pop("ic_n", 1),
            **kwargs,
        )

    return _make


@pytest.fixture()
def random_universe():
    """Larger synthetic universe: 8 securities, 40 daily dates, 3 factors.

    Returns (securities, reference, query, market_data, factors, dates).
    """
    rng = np.random.default_rng(42)
    n_sec, n_dates = 8, 40
    dates = [date(2023, 1, 1) + timedelta(days=i) for i in range(n_dates)]
    securities = [Security("SZ", f"{i:06d}") for i in range(1, n_sec + 1)]
    reference = Security("SZ", "399001")

    closes = {
        s: list(100.0 * np.cumprod(1.0 + rng.normal(0.0, 0.02, n_dates)))
        for s in [*securities, reference]
    }
    factors = [
        FrameFactor(
            f"factor_{k}",
            factor_frame({s: list(rng.normal(0.0, 1.0, n_dates)) for s in securities}, dates),
        )
        for k in range(3)
    ]
    query = DateRangeQuery(start=dates[0], end=dates[-1] + timedelta(days=1))
    return securities, reference, query, FrameMarketData(price_frame(closes, dates)), factors, dates
