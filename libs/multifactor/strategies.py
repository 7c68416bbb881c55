"""Synthesis strategies - combine aligned input factors into one composite.

A strategy receives every input factor already aligned on the reference
date axis, shaped [num_factors][num_securities], and returns one composite
series per security. The engine never inspects the concrete strategy; it
only calls ``synthesize`` and checks the shape of the result, and calls
``create`` when cloning.

Weighting methods:
    EQUAL: mean of the defined factor values
    FIXED: caller-supplied weight per factor
    IC: trailing mean of each factor's own IC
    ICIR: trailing mean(IC) / std(IC) of each factor

IC/ICIR weights at date t only use IC values whose forward returns are fully
realized by t (IC dates <= t - ic_n), so the composite carries no lookahead.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date
from enum import Enum

import numpy as np
import polars as pl

from config.settings import get_settings
from libs.multifactor.alignment import AlignedFactorSet
from libs.multifactor.exceptions import ConfigurationError
from libs.multifactor.ic import ICMethod, compute_ic_series
from libs.multifactor.protocols import SecurityKey

logger = logging.getLogger(__name__)


class WeightingMethod(str, Enum):
    """Weighting methods for factor synthesis."""

    EQUAL = "equal"  # Simple average (1/n for each defined factor)
    FIXED = "fixed"  # User-supplied constant weights
    IC = "ic"  # Weight by trailing mean IC
    ICIR = "icir"  # Weight by trailing IR (mean IC / std IC)


@dataclass
class SynthesisContext:
    """Read-only view of the engine state a strategy may use.

    Attributes:
        dates: Reference date axis
        securities: Universe, in configured order
        ic_n: Forward-return horizon used for IC weighting
        ic_method: 'rank' or 'pearson'
        forward_returns: Returns aligned per security for a given horizon
    """

    dates: list[date]
    securities: list[SecurityKey]
    ic_n: int
    ic_method: ICMethod
    forward_returns: Callable[[int], list[pl.Series]]


# =============================================================================
# Array helpers
# =============================================================================


def _to_array(aligned: AlignedFactorSet) -> np.ndarray:
    """Stack aligned factors into a float array [factors, securities, dates], NaN = missing."""
    return np.array(
        [[s.cast(pl.Float64).fill_null(np.nan).to_numpy() for s in per_sec] for per_sec in aligned],
        dtype=np.float64,
    )


def _to_series(values: np.ndarray, names: Sequence[str]) -> list[pl.Series]:
    """Convert a [securities, dates] array back to null-marked series."""
    return [
        pl.Series(name, row, dtype=pl.Float64).fill_nan(None)
        for name, row in zip(names, values, strict=True)
    ]


def _zscore(x: np.ndarray) -> np.ndarray:
    """Cross-sectional z-score per factor and date (axis 1 = securities).

    Dates with zero dispersion map every defined value to 0.
    """
    valid = ~np.isnan(x)
    count = valid.sum(axis=1, keepdims=True)
    total = np.where(valid, x, 0.0).sum(axis=1, keepdims=True)
    mean = np.divide(total, count, out=np.full(total.shape, np.nan), where=count > 0)
    dev = np.where(valid, x - mean, 0.0)
    var = np.divide(
        (dev**2).sum(axis=1, keepdims=True),
        count - 1,
        out=np.full(total.shape, np.nan),
        where=count > 1,
    )
    std = np.sqrt(var)
    z = np.divide(dev, std, out=np.zeros(x.shape), where=std > 0)
    return np.where(valid, z, np.nan)


def _weighted_combine(
    x: np.ndarray, weights: np.ndarray, signed: bool, fallback_to_mean: bool = True
) -> np.ndarray:
    """Combine factors with per-date weights.

    composite[s, t] = sum_f w[f, t] * x[f, s, t] / sum_f |w[f, t]| over the
    factors defined for (s, t); NaN if none are defined.

    Args:
        x: Factor values [factors, securities, dates]
        weights: Weights [factors, dates]
        signed: Whether negative weights are meaningful (else clamped to 0)
        fallback_to_mean: When the defined factors carry zero total weight,
            use their plain mean instead of NaN
    """
    w = weights if signed else np.clip(weights, 0.0, None)
    w = np.nan_to_num(w, nan=0.0)[:, None, :]
    valid = ~np.isnan(x)
    xv = np.where(valid, x, 0.0)

    numer = (w * xv).sum(axis=0)
    denom = (np.abs(w) * valid).sum(axis=0)
    count = valid.sum(axis=0)
    plain_mean = np.divide(
        xv.sum(axis=0), count, out=np.full(count.shape, np.nan), where=count > 0
    )
    weighted = np.divide(numer, denom, out=np.full(count.shape, np.nan), where=denom > 0)
    if not fallback_to_mean:
        return weighted
    return np.where(denom > 0, weighted, plain_mean)


# =============================================================================
# Strategy base
# =============================================================================


class SynthesisStrategy(ABC):
    """Base class for factor synthesis strategies.

    Subclasses implement ``_combine`` and ``create``. ``create`` is the clone
    factory: it must return a new, independent strategy of the same concrete
    type with the same parameters.
    """

    method: WeightingMethod

    def __init__(self, normalize: bool = False) -> None:
        """Initialize strategy.

        Args:
            normalize: Cross-sectionally z-score each factor per date before combining
        """
        self.normalize = normalize

    @abstractmethod
    def create(self) -> SynthesisStrategy:
        """Return a fresh strategy of the same type and parameters."""
        ...

    @abstractmethod
    def _combine(self, x: np.ndarray, context: SynthesisContext) -> np.ndarray:
        """Combine [factors, securities, dates] into [securities, dates]."""
        ...

    def validate(self, n_factors: int) -> None:
        """Check parameters against the configured factor count.

        Raises:
            ConfigurationError: If the strategy cannot handle ``n_factors``
        """
        if n_factors < 1:
            raise ConfigurationError("At least one input factor required")

    def synthesize(
        self, aligned: AlignedFactorSet, context: SynthesisContext
    ) -> list[pl.Series]:
        """Produce one composite series per security.

        Args:
            aligned: Input factors aligned on the reference axis
            context: Calendar, universe and forward-return access

        Returns:
            Composite series in universe order, named by security
        """
        names = [str(s) for s in context.securities]
        if not aligned or not aligned[0]:
            return []

        x = _to_array(aligned)
        if self.normalize:
            x = _zscore(x)

        composite = self._combine(x, context)
        return _to_series(composite, names)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(normalize={self.normalize})"


class EqualWeightStrategy(SynthesisStrategy):
    """Mean of the defined input factor values per (security, date)."""

    method = WeightingMethod.EQUAL

    def create(self) -> EqualWeightStrategy:
        return EqualWeightStrategy(normalize=self.normalize)

    def _combine(self, x: np.ndarray, context: SynthesisContext) -> np.ndarray:
        weights = np.ones((x.shape[0], x.shape[2]))
        return _weighted_combine(x, weights, signed=False)


class FixedWeightStrategy(SynthesisStrategy):
    """Constant caller-supplied weight per input factor.

    Weights may be negative (to flip a factor). The composite divides by the
    sum of absolute weights of the factors defined at each point; where only
    zero-weighted factors are defined the composite is missing.
    """

    method = WeightingMethod.FIXED

    def __init__(self, weights: Sequence[float], normalize: bool = False) -> None:
        super().__init__(normalize=normalize)
        if not weights:
            raise ConfigurationError("Fixed weights must not be empty")
        if all(w == 0 for w in weights):
            raise ConfigurationError("Fixed weights must not all be zero")
        self.weights = [float(w) for w in weights]

    def create(self) -> FixedWeightStrategy:
        return FixedWeightStrategy(list(self.weights), normalize=self.normalize)

    def validate(self, n_factors: int) -> None:
        super().validate(n_factors)
        if len(self.weights) != n_factors:
            raise ConfigurationError(
                f"Fixed weights count ({len(self.weights)}) does not match "
                f"number of factors ({n_factors})"
            )

    def _combine(self, x: np.ndarray, context: SynthesisContext) -> np.ndarray:
        weights = np.repeat(np.asarray(self.weights)[:, None], x.shape[2], axis=1)
        return _weighted_combine(x, weights, signed=True, fallback_to_mean=False)

    def __repr__(self) -> str:
        return f"FixedWeightStrategy(weights={self.weights}, normalize={self.normalize})"


class _RollingICStrategy(SynthesisStrategy):
    """Shared machinery for weights derived from each factor's trailing IC.

    Per date, negative scores are clamped to zero and the remaining weights
    normalized; dates where no factor has a positive score fall back to equal
    weighting.
    """

    MIN_OBSERVATIONS = 1

    def __init__(self, rolling_n: int | None = None, normalize: bool = False) -> None:
        super().__init__(normalize=normalize)
        self.rolling_n = rolling_n if rolling_n is not None else get_settings().ic_rolling_n
        if self.rolling_n < 2:
            raise ConfigurationError(f"rolling_n must be >= 2, got {self.rolling_n}")

    @abstractmethod
    def _score(self, window: np.ndarray) -> float:
        """Score a window of defined IC values."""
        ...

    def _factor_ic(self, x: np.ndarray, context: SynthesisContext) -> np.ndarray:
        """IC series per factor, as array [factors, dates]."""
        returns = context.forward_returns(context.ic_n)
        ics = []
        for f in range(x.shape[0]):
            factor_series = [pl.Series(row).fill_nan(None) for row in x[f]]
            ic = compute_ic_series(factor_series, returns, context.ic_method)
            ics.append(ic.fill_null(np.nan).to_numpy())
        return np.array(ics, dtype=np.float64)

    def _rolling_weights(self, ic: np.ndarray, ic_n: int) -> np.ndarray:
        """Lagged rolling scores per factor and date; NaN where unavailable."""
        n_factors, n_dates = ic.shape
        weights = np.full((n_factors, n_dates), np.nan)
        for t in range(n_dates):
            end = t - ic_n  # Latest IC date whose forward return is realized at t
            if end < 0:
                continue
            start = max(0, end - self.rolling_n + 1)
            for f in range(n_factors):
                window = ic[f, start : end + 1]
                window = window[~np.isnan(window)]
                if window.size >= self.MIN_OBSERVATIONS:
                    weights[f, t] = self._score(window)
        return weights

    def _combine(self, x: np.ndarray, context: SynthesisContext) -> np.ndarray:
        ic = self._factor_ic(x, context)
        scores = np.clip(np.nan_to_num(self._rolling_weights(ic, context.ic_n), nan=0.0), 0.0, None)

        # Equal weighting where no factor has a positive trailing score
        no_signal = scores.sum(axis=0) == 0
        scores[:, no_signal] = 1.0

        n_fallback = int(no_signal.sum())
        if n_fallback:
            logger.debug(
                "Rolling IC weights fell back to equal weighting",
                extra={"strategy": type(self).__name__, "n_dates": n_fallback},
            )
        return _weighted_combine(x, scores, signed=False)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(rolling_n={self.rolling_n}, normalize={self.normalize})"


class ICWeightedStrategy(_RollingICStrategy):
    """Weight each factor by the trailing mean of its own IC."""

    method = WeightingMethod.IC

    def create(self) -> ICWeightedStrategy:
        return ICWeightedStrategy(rolling_n=self.rolling_n, normalize=self.normalize)

    def _score(self, window: np.ndarray) -> float:
        return float(window.mean())


class ICIRWeightedStrategy(_RollingICStrategy):
    """Weight each factor by the trailing IR of its own IC (mean / sample std)."""

    method = WeightingMethod.ICIR
    MIN_OBSERVATIONS = 2

    def create(self) -> ICIRWeightedStrategy:
        return ICIRWeightedStrategy(rolling_n=self.rolling_n, normalize=self.normalize)

    def _score(self, window: np.ndarray) -> float:
        std = float(window.std(ddof=1))
        if std == 0 or np.isnan(std):
            return 0.0
        return float(window.mean()) / std


def make_strategy(
    method: WeightingMethod | str,
    *,
    weights: Sequence[float] | None = None,
    rolling_n: int | None = None,
    normalize: bool = False,
) -> SynthesisStrategy:
    """Build a strategy from a weighting method name.

    Raises:
        ConfigurationError: If the method is unknown or FIXED lacks weights
    """
    try:
        method = WeightingMethod(method)
    except ValueError as e:
        raise ConfigurationError(f"Unknown weighting method: {method}") from e

    if method == WeightingMethod.EQUAL:
        return EqualWeightStrategy(normalize=normalize)
    elif method == WeightingMethod.FIXED:
        if weights is None:
            raise ConfigurationError("Weights required for fixed weighting")
        return FixedWeightStrategy(weights, normalize=normalize)
    elif method == WeightingMethod.IC:
        return ICWeightedStrategy(rolling_n=rolling_n, normalize=normalize)
    else:
        return ICIRWeightedStrategy(rolling_n=rolling_n, normalize=normalize)
