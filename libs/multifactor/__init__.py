"""
Multi-Factor Synthesis
======================

Combines several already-computed factors into one composite factor per
security on a single reference calendar, and evaluates the composite with
cross-sectional IC and rolling ICIR.

Key Components:
- MultiFactor: Lazy, thread-safe, compute-once engine
- SynthesisStrategy: Pluggable combination (equal, fixed, IC, ICIR weighted)
- FrameMarketData / FrameFactor: polars-backed collaborator adapters

Example Usage:

    from datetime import date
    from libs.multifactor import (
        DateRangeQuery,
        FrameFactor,
        FrameMarketData,
        ICWeightedStrategy,
        MultiFactor,
        Security,
    )

    mf = MultiFactor(
        factors=[FrameFactor("momentum", mom_df), FrameFactor("value", val_df)],
        securities=[Security("SH", "600000"), Security("SZ", "000001")],
        reference=Security("SH", "000001"),
        query=DateRangeQuery(date(2023, 1, 1), date(2024, 1, 1)),
        market_data=FrameMarketData(prices_df),
        strategy=ICWeightedStrategy(rolling_n=60),
        ic_n=5,
    )

    print(mf.get_cross(date(2023, 6, 30))[:10])
    print(mf.get_ic().mean())
    print(mf.get_icir(20).tail())

Metric Definitions:
- IC: per-date cross-sectional correlation of composite and forward returns
  (Spearman by default, Pearson optional)
- ICIR: rolling mean(IC) / std(IC) over a trailing window

Missing Values:
- Undefined values (missing alignment, tail forward returns, IC windows that
  are not full) are nulls, never zero. Rankings put them last.
"""

from libs.multifactor.alignment import FillPolicy
from libs.multifactor.cross_section import CrossSection
from libs.multifactor.engine import ComputeState, MultiFactor
from libs.multifactor.exceptions import (
    ConfigurationError,
    EmptyUniverseError,
    MultiFactorError,
    NotFoundError,
    SchemaVersionError,
)
from libs.multifactor.formatting import (
    cross_sections_to_frame,
    format_all_cross,
    format_cross,
    format_pair,
)
from libs.multifactor.ic import ICSummary, summarize_ic
from libs.multifactor.protocols import (
    DateRangeQuery,
    FrameFactor,
    FrameMarketData,
    MarketDataSource,
    RawFactor,
    Security,
)
from libs.multifactor.strategies import (
    EqualWeightStrategy,
    FixedWeightStrategy,
    ICIRWeightedStrategy,
    ICWeightedStrategy,
    SynthesisContext,
    SynthesisStrategy,
    WeightingMethod,
    make_strategy,
)

__all__ = [
    # Engine
    "MultiFactor",
    "ComputeState",
    "FillPolicy",
    "CrossSection",
    # Strategies
    "SynthesisStrategy",
    "SynthesisContext",
    "WeightingMethod",
    "EqualWeightStrategy",
    "FixedWeightStrategy",
    "ICWeightedStrategy",
    "ICIRWeightedStrategy",
    "make_strategy",
    # Collaborators
    "Security",
    "DateRangeQuery",
    "MarketDataSource",
    "RawFactor",
    "FrameMarketData",
    "FrameFactor",
    # Statistics
    "ICSummary",
    "summarize_ic",
    # Formatting
    "format_pair",
    "format_cross",
    "format_all_cross",
    "cross_sections_to_frame",
    # Exceptions
    "MultiFactorError",
    "ConfigurationError",
    "EmptyUniverseError",
    "NotFoundError",
    "SchemaVersionError",
]
