"""MultiFactor - lazily computed composite factor with IC/ICIR evaluation.

A MultiFactor is configured once with input factors, a universe, a reference
security, a date-range query and a synthesis strategy. The first accessor call
runs the whole pipeline exactly once:

    calendar -> alignment -> synthesis -> cross-section indexing

and caches the results for the lifetime of the instance. Forward returns, IC
and ICIR are then computed lazily and memoized per distinct argument.

Example:
    mf = MultiFactor(
        factors=[momentum, value],
        securities=universe,
        reference=Security("SH", "000001"),
        query=DateRangeQuery(date(2023, 1, 1), date(2024, 1, 1)),
        market_data=FrameMarketData(prices),
        strategy=ICIRWeightedStrategy(rolling_n=60),
        ic_n=5,
    )
    top = mf.get_cross(date(2023, 6, 30))[:10]
    icir = mf.get_icir(20)

Thread safety:
    One re-entrant lock per instance guards the state machine and all caches.
    The thread that triggers computation holds the lock for the full
    pipeline; concurrent callers block until it finishes. A failed pipeline
    leaves the instance permanently FAILED and every accessor re-raises the
    original exception.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any

import polars as pl

from config.settings import get_settings
from libs.multifactor.alignment import FillPolicy, align_closes, align_factors, resolve_calendar
from libs.multifactor.cross_section import CrossSection, CrossSectionIndex, build_cross_sections
from libs.multifactor.exceptions import (
    ConfigurationError,
    EmptyUniverseError,
    NotFoundError,
    SchemaVersionError,
)
from libs.multifactor.ic import (
    ICMethod,
    compute_forward_returns,
    compute_ic_series,
    compute_icir_series,
    summarize_ic,
)
from libs.multifactor.protocols import DateRangeQuery, MarketDataSource, RawFactor, SecurityKey
from libs.multifactor.strategies import (
    EqualWeightStrategy,
    SynthesisContext,
    SynthesisStrategy,
)

logger = logging.getLogger(__name__)

# Version of the persisted configuration layout (see __getstate__)
SCHEMA_VERSION = 1


class ComputeState(str, Enum):
    """Lifecycle of a MultiFactor's derived data."""

    UNCOMPUTED = "uncomputed"
    COMPUTING = "computing"
    COMPUTED = "computed"
    FAILED = "failed"


@dataclass
class _PipelineResult:
    dates: list[date]
    factors: list[pl.Series]
    index: CrossSectionIndex
    closes: list[pl.Series] | None
    returns: dict[int, list[pl.Series]]


class MultiFactor:
    """Composite factor synthesized from several input factors.

    Configuration (factors, universe, reference security, query, market data,
    strategy, IC parameters) is fixed at construction; only ``name`` may be
    changed afterwards. Derived data is never copied by ``clone`` and never
    persisted by pickling.
    """

    def __init__(
        self,
        factors: Sequence[RawFactor],
        securities: Sequence[SecurityKey],
        reference: SecurityKey,
        query: DateRangeQuery,
        market_data: MarketDataSource,
        strategy: SynthesisStrategy | None = None,
        name: str = "MultiFactor",
        ic_n: int | None = None,
        ic_method: ICMethod | None = None,
        fill_policy: FillPolicy | str | None = None,
    ) -> None:
        """Initialize multi-factor.

        Args:
            factors: Input factors to combine
            securities: Universe; order defines composite and tie-break order
            reference: Security whose trading calendar defines the date axis
            query: Date range to compute over
            market_data: Source of trading calendars and close prices
            strategy: Synthesis strategy (equal weight if None)
            name: Label, no effect on computation
            ic_n: Default forward-return horizon for IC (settings default if None)
            ic_method: 'rank' or 'pearson' (settings default if None)
            fill_policy: Alignment policy (settings default if None)

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        settings = get_settings()

        self._name = name
        self._factors = list(factors)
        self._securities = list(securities)
        self._reference = reference
        self._query = query
        self._market_data = market_data
        self._strategy = strategy if strategy is not None else EqualWeightStrategy()
        self._ic_n = ic_n if ic_n is not None else settings.default_ic_n
        self._ic_method: ICMethod = ic_method or settings.ic_method
        try:
            self._fill_policy = FillPolicy(fill_policy or settings.fill_policy)
        except ValueError as e:
            raise ConfigurationError(f"Unknown fill policy: {fill_policy}") from e

        self._validate_config()
        self._reset_derived()

    # =========================================================================
    # Configuration
    # =========================================================================

    def _validate_config(self) -> None:
        if not self._factors:
            raise ConfigurationError("Input factor list is empty")
        if not self._securities:
            raise ConfigurationError("Security universe is empty")
        if len(set(self._securities)) != len(self._securities):
            raise ConfigurationError("Security universe contains duplicates")
        if self._ic_n < 1:
            raise ConfigurationError(f"ic_n must be >= 1, got {self._ic_n}")
        if self._ic_method not in ("rank", "pearson"):
            raise ConfigurationError(f"Unknown IC method: {self._ic_method}")
        self._strategy.validate(len(self._factors))

    def _reset_derived(self) -> None:
        self._lock = threading.RLock()
        self._state = ComputeState.UNCOMPUTED
        self._error: BaseException | None = None

        self._dates: list[date] = []
        self._all_factors: list[pl.Series] = []
        self._index: CrossSectionIndex | None = None
        self._closes: list[pl.Series] | None = None
        self._returns: dict[int, list[pl.Series]] = {}
        self._ic: dict[int, pl.Series] = {}
        self._icir: dict[tuple[int, int], pl.Series] = {}

    @property
    def name(self) -> str:
        return self._name

    @name.setter
    def name(self, value: str) -> None:
        self._name = value

    @property
    def state(self) -> ComputeState:
        with self._lock:
            return self._state

    @property
    def strategy(self) -> SynthesisStrategy:
        return self._strategy

    @property
    def securities(self) -> list[SecurityKey]:
        return list(self._securities)

    @property
    def factors(self) -> list[RawFactor]:
        return list(self._factors)

    @property
    def ic_n(self) -> int:
        return self._ic_n

    def get_query(self) -> DateRangeQuery:
        """Configured date-range query. Never triggers computation."""
        return self._query

    def clone(self) -> MultiFactor:
        """Return an uncomputed sibling with the same configuration.

        The strategy is recreated through its own factory, so the clone
        shares no mutable state with this instance.
        """
        return MultiFactor(
            factors=self._factors,
            securities=self._securities,
            reference=self._reference,
            query=self._query,
            market_data=self._market_data,
            strategy=self._strategy.create(),
            name=self._name,
            ic_n=self._ic_n,
            ic_method=self._ic_method,
            fill_policy=self._fill_policy,
        )

    # =========================================================================
    # Pipeline
    # =========================================================================

    def _ensure_computed(self) -> CrossSectionIndex:
        """Advance the state machine to COMPUTED. Caller must hold the lock.

        Returns:
            The cross-section index of the committed pipeline result
        """
        if self._index is not None:
            return self._index
        if self._error is not None:
            raise self._error
        if self._state == ComputeState.COMPUTING:
            # Only reachable by re-entry from the computing thread (e.g. a strategy
            # calling back into the engine); other threads block on the lock.
            raise ConfigurationError(
                f"MultiFactor '{self._name}' accessed while its own pipeline is running"
            )

        self._state = ComputeState.COMPUTING
        start = time.perf_counter()
        logger.info(
            "Multi-factor pipeline started",
            extra={
                "factor_name": self._name,
                "strategy": type(self._strategy).__name__,
                "n_factors": len(self._factors),
                "n_securities": len(self._securities),
            },
        )

        try:
            result = self._run_pipeline()
        except BaseException as e:
            # Interrupts included; the instance must never stay COMPUTING
            self._state = ComputeState.FAILED
            self._error = e
            logger.error(
                "Multi-factor pipeline failed",
                extra={
                    "factor_name": self._name,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            raise

        self._dates = result.dates
        self._all_factors = result.factors
        self._index = result.index
        self._closes = result.closes
        self._returns = result.returns
        self._state = ComputeState.COMPUTED

        logger.info(
            "Multi-factor pipeline completed",
            extra={
                "factor_name": self._name,
                "n_dates": len(result.dates),
                "n_securities": len(self._securities),
                "duration_seconds": round(time.perf_counter() - start, 3),
            },
        )
        return result.index

    def _run_pipeline(self) -> _PipelineResult:
        """Run calendar -> alignment -> synthesis -> indexing without touching self state."""
        dates = resolve_calendar(self._market_data, self._reference, self._query)
        if not dates:
            raise EmptyUniverseError(
                f"Reference security {self._reference} has no trading dates in {self._query}"
            )

        aligned = align_factors(
            self._factors, self._securities, dates, self._query, self._fill_policy
        )

        closes: list[pl.Series] | None = None
        returns: dict[int, list[pl.Series]] = {}

        def forward_returns(ndays: int) -> list[pl.Series]:
            nonlocal closes
            if ndays not in returns:
                if closes is None:
                    closes = align_closes(
                        self._market_data, self._securities, dates, self._query, self._fill_policy
                    )
                returns[ndays] = compute_forward_returns(closes, ndays)
            return returns[ndays]

        context = SynthesisContext(
            dates=list(dates),
            securities=list(self._securities),
            ic_n=self._ic_n,
            ic_method=self._ic_method,
            forward_returns=forward_returns,
        )
        composite = self._strategy.synthesize(aligned, context)
        self._check_composite(composite, len(dates))

        index = build_cross_sections(self._securities, composite, dates)
        return _PipelineResult(
            dates=dates, factors=list(composite), index=index, closes=closes, returns=returns
        )

    def _check_composite(self, composite: Sequence[pl.Series], n_dates: int) -> None:
        if len(composite) != len(self._securities):
            raise ConfigurationError(
                f"Strategy {type(self._strategy).__name__} returned {len(composite)} "
                f"composite factors for {len(self._securities)} securities"
            )
        for security, series in zip(self._securities, composite, strict=True):
            if series.len() != n_dates:
                raise ConfigurationError(
                    f"Composite factor for {security} has {series.len()} values, "
                    f"expected {n_dates}"
                )

    def _forward_returns(self, ndays: int) -> list[pl.Series]:
        """Memoized forward returns. Caller must hold the lock and have computed."""
        if ndays not in self._returns:
            if self._closes is None:
                self._closes = align_closes(
                    self._market_data,
                    self._securities,
                    self._dates,
                    self._query,
                    self._fill_policy,
                )
            logger.debug(
                "Computing forward returns",
                extra={"factor_name": self._name, "ndays": ndays},
            )
            self._returns[ndays] = compute_forward_returns(self._closes, ndays)
        return self._returns[ndays]

    def _resolve_horizon(self, ndays: int) -> int:
        if ndays < 0:
            raise ValueError(f"Horizon must be >= 0, got {ndays}")
        return ndays if ndays > 0 else self._ic_n

    # =========================================================================
    # Accessors
    # =========================================================================

    def get_datetime_list(self) -> list[date]:
        """Reference date axis the composite factor is aligned to."""
        with self._lock:
            self._ensure_computed()
            return list(self._dates)

    def get_factor(self, security: SecurityKey) -> pl.Series:
        """Composite factor series of one security.

        Raises:
            NotFoundError: If the security is not in the configured universe
        """
        with self._lock:
            index = self._ensure_computed()
            pos = index.security_index.get(security)
            if pos is None:
                raise NotFoundError(f"Security {security} is not in the universe of '{self._name}'")
            return self._all_factors[pos].clone()

    def get_all_factors(self) -> list[pl.Series]:
        """Composite factor series of all securities, in universe order."""
        with self._lock:
            self._ensure_computed()
            return [series.clone() for series in self._all_factors]

    def get_cross(self, d: date) -> CrossSection:
        """(security, value) pairs on one date, sorted descending, missing last.

        Raises:
            NotFoundError: If the date is not on the reference axis
        """
        with self._lock:
            index = self._ensure_computed()
            pos = index.date_index.get(d)
            if pos is None:
                raise NotFoundError(f"Date {d} is not on the reference axis of '{self._name}'")
            return list(index.cross_sections[pos])

    def get_all_cross(self) -> list[CrossSection]:
        """Rankings for every date on the reference axis, in date order."""
        with self._lock:
            index = self._ensure_computed()
            return [list(cross) for cross in index.cross_sections]

    def get_forward_returns(self, ndays: int = 0) -> list[pl.Series]:
        """Forward returns per security over ``ndays`` (0 = configured ic_n)."""
        horizon = self._resolve_horizon(ndays)
        with self._lock:
            self._ensure_computed()
            return [series.clone() for series in self._forward_returns(horizon)]

    def get_ic(self, ndays: int = 0) -> pl.Series:
        """Per-date IC of the composite against ``ndays`` forward returns.

        Args:
            ndays: Forward-return horizon; 0 means the configured ic_n

        Returns:
            IC series aligned with get_datetime_list(); undefined dates are null
        """
        horizon = self._resolve_horizon(ndays)
        with self._lock:
            self._ensure_computed()
            if horizon not in self._ic:
                ic = compute_ic_series(
                    self._all_factors, self._forward_returns(horizon), self._ic_method
                )
                summary = summarize_ic(ic)
                logger.debug(
                    "IC computed",
                    extra={
                        "factor_name": self._name,
                        "ndays": horizon,
                        "method": self._ic_method,
                        "mean_ic": summary.mean_ic,
                        "icir": summary.icir,
                        "n_periods": summary.n_periods,
                    },
                )
                self._ic[horizon] = ic
            return self._ic[horizon].clone()

    def get_icir(self, ir_n: int, ic_n: int = 0) -> pl.Series:
        """Rolling ICIR of the composite.

        Args:
            ir_n: Rolling window (dates) for mean/std of IC, >= 2
            ic_n: IC horizon; 0 means the configured ic_n

        Returns:
            ICIR series aligned with get_datetime_list(); the first ir_n - 1
            entries are null
        """
        horizon = self._resolve_horizon(ic_n)
        key = (ir_n, horizon)
        with self._lock:
            self._ensure_computed()
            if key not in self._icir:
                self._icir[key] = compute_icir_series(self.get_ic(horizon), ir_n)
            return self._icir[key].clone()

    # =========================================================================
    # Persistence
    # =========================================================================

    def __getstate__(self) -> dict[str, Any]:
        """Configuration only; derived data is rebuilt lazily after loading."""
        return {
            "schema_version": SCHEMA_VERSION,
            "name": self._name,
            "factors": self._factors,
            "securities": self._securities,
            "reference": self._reference,
            "query": self._query,
            "market_data": self._market_data,
            "strategy": self._strategy,
            "ic_n": self._ic_n,
            "ic_method": self._ic_method,
            "fill_policy": self._fill_policy.value,
        }

    def __setstate__(self, state: dict[str, Any]) -> None:
        version = state.get("schema_version")
        if version != SCHEMA_VERSION:
            raise SchemaVersionError(
                f"Unsupported MultiFactor schema version {version}, expected {SCHEMA_VERSION}"
            )
        self._name = state["name"]
        self._factors = list(state["factors"])
        self._securities = list(state["securities"])
        self._reference = state["reference"]
        self._query = state["query"]
        self._market_data = state["market_data"]
        self._strategy = state["strategy"]
        self._ic_n = state["ic_n"]
        self._ic_method = state["ic_method"]
        self._fill_policy = FillPolicy(state["fill_policy"])
        self._reset_derived()

    def __repr__(self) -> str:
        return (
            f"MultiFactor(name={self._name!r}, strategy={self._strategy!r}, "
            f"n_factors={len(self._factors)}, n_securities={len(self._securities)}, "
            f"ic_n={self._ic_n}, state={self._state.value})"
        )
