"""Tests for synthesis strategies."""

from datetime import date, timedelta

import numpy as np
import polars as pl
import pytest

from libs.multifactor.exceptions import ConfigurationError
from libs.multifactor.protocols import Security
from libs.multifactor.strategies import (
    EqualWeightStrategy,
    FixedWeightStrategy,
    ICIRWeightedStrategy,
    ICWeightedStrategy,
    SynthesisContext,
    WeightingMethod,
    make_strategy,
)


def _aligned(values):
    """[factors][securities][dates] lists -> aligned series."""
    return [
        [pl.Series(f"S{s}", row, dtype=pl.Float64) for s, row in enumerate(per_sec)]
        for per_sec in values
    ]


def _context(n_sec, n_dates, returns=None, ic_n=1):
    securities = [Security("SH", f"60000{i}") for i in range(n_sec)]
    dates = [date(2024, 1, 1) + timedelta(days=i) for i in range(n_dates)]
    calls = []

    def forward_returns(ndays):
        calls.append(ndays)
        return returns

    ctx = SynthesisContext(
        dates=dates,
        securities=securities,
        ic_n=ic_n,
        ic_method="rank",
        forward_returns=forward_returns,
    )
    return ctx, calls


class TestEqualWeight:
    def test_mean_of_defined_values(self):
        aligned = _aligned([[[1.0, None, None]], [[3.0, 5.0, None]]])
        ctx, _ = _context(1, 3)

        result = EqualWeightStrategy().synthesize(aligned, ctx)

        assert len(result) == 1
        assert result[0].to_list() == [2.0, 5.0, None]
        assert result[0].name == "SH600000"

    def test_does_not_request_returns(self):
        ctx, calls = _context(2, 2)
        EqualWeightStrategy().synthesize(_aligned([[[1.0, 2.0], [3.0, 4.0]]]), ctx)
        assert calls == []

    def test_normalize_centres_each_date(self):
        rng = np.random.default_rng(7)
        values = rng.normal(size=(3, 5, 4)).tolist()
        ctx, _ = _context(5, 4)

        result = EqualWeightStrategy(normalize=True).synthesize(_aligned(values), ctx)
        matrix = np.array([s.to_list() for s in result])

        np.testing.assert_allclose(matrix.mean(axis=0), 0.0, atol=1e-12)

    def test_create_is_independent_copy(self):
        original = EqualWeightStrategy(normalize=True)
        copy = original.create()

        assert copy is not original
        assert isinstance(copy, EqualWeightStrategy)
        assert copy.normalize is True


class TestFixedWeight:
    def test_signed_weights(self):
        aligned = _aligned([[[2.0]], [[1.0]]])
        ctx, _ = _context(1, 1)

        result = FixedWeightStrategy([1.0, -1.0]).synthesize(aligned, ctx)

        assert result[0].to_list() == pytest.approx([0.5])

    def test_renormalizes_over_defined_factors(self):
        aligned = _aligned([[[2.0, 2.0]], [[4.0, None]]])
        ctx, _ = _context(1, 2)

        result = FixedWeightStrategy([1.0, 3.0]).synthesize(aligned, ctx)

        assert result[0].to_list() == pytest.approx([(2.0 + 12.0) / 4.0, 2.0])

    def test_zero_weight_factor_alone_is_missing(self):
        aligned = _aligned([[[None, 2.0]], [[5.0, 4.0]]])
        ctx, _ = _context(1, 2)

        result = FixedWeightStrategy([1.0, 0.0]).synthesize(aligned, ctx)

        assert result[0].to_list() == [None, 2.0]

    def test_validate_count_mismatch(self):
        with pytest.raises(ConfigurationError, match="does not match"):
            FixedWeightStrategy([0.5, 0.5]).validate(3)

    @pytest.mark.parametrize("weights", [[], [0.0, 0.0]])
    def test_rejects_degenerate_weights(self, weights):
        with pytest.raises(ConfigurationError):
            FixedWeightStrategy(weights)

    def test_create_copies_weights(self):
        original = FixedWeightStrategy([0.7, 0.3])
        copy = original.create()
        copy.weights[0] = 0.0

        assert original.weights == [0.7, 0.3]


class TestRollingICStrategies:
    @pytest.fixture()
    def opposed_factors(self):
        """Factor A equals forward returns; factor B is its negation."""
        rng = np.random.default_rng(3)
        n_sec, n_dates = 5, 8
        rets = rng.normal(0.0, 0.02, size=(n_sec, n_dates))
        rets[:, -1] = np.nan  # Last date has no realized forward return
        a = np.where(np.isnan(rets), rng.normal(size=rets.shape), rets)
        returns = [pl.Series(row).fill_nan(None) for row in rets]
        aligned = _aligned([a.tolist(), (-a).tolist()])
        return aligned, returns, a

    def test_ic_weighted_picks_predictive_factor(self, opposed_factors):
        aligned, returns, a = opposed_factors
        ctx, calls = _context(5, 8, returns=returns, ic_n=1)

        result = ICWeightedStrategy(rolling_n=3).synthesize(aligned, ctx)
        matrix = np.array([s.to_list() for s in result], dtype=float)

        assert calls == [1]
        # No realized IC yet on the first date: equal weights cancel out
        np.testing.assert_allclose(matrix[:, 0], 0.0, atol=1e-12)
        np.testing.assert_allclose(matrix[:, 1:], a[:, 1:])

    def test_icir_needs_two_observations(self, opposed_factors):
        aligned, returns, _ = opposed_factors
        ctx, _ = _context(5, 8, returns=returns, ic_n=1)

        result = ICIRWeightedStrategy(rolling_n=4).synthesize(aligned, ctx)
        matrix = np.array([s.to_list() for s in result], dtype=float)

        # Dates 0 and 1 have fewer than two realized ICs: equal weights cancel out
        np.testing.assert_allclose(matrix[:, :2], 0.0, atol=1e-12)

    def test_icir_score(self):
        strategy = ICIRWeightedStrategy(rolling_n=4)

        assert strategy._score(np.array([0.1, 0.1])) == 0.0
        assert strategy._score(np.array([0.1, 0.3])) == pytest.approx(0.2 / np.sqrt(0.02))

    def test_rolling_n_defaults_from_settings(self, monkeypatch):
        monkeypatch.setenv("MULTIFACTOR_IC_ROLLING_N", "30")
        assert ICWeightedStrategy().rolling_n == 30

    def test_rejects_short_window(self):
        with pytest.raises(ConfigurationError):
            ICIRWeightedStrategy(rolling_n=1)

    def test_create_preserves_params(self):
        original = ICIRWeightedStrategy(rolling_n=20, normalize=True)
        copy = original.create()

        assert type(copy) is ICIRWeightedStrategy
        assert (copy.rolling_n, copy.normalize) == (20, True)
        assert copy is not original


class TestMakeStrategy:
    @pytest.mark.parametrize(
        ("method", "expected"),
        [
            ("equal", EqualWeightStrategy),
            (WeightingMethod.IC, ICWeightedStrategy),
            ("icir", ICIRWeightedStrategy),
        ],
    )
    def test_builds_expected_type(self, method, expected):
        assert type(make_strategy(method, rolling_n=10)) is expected

    def test_fixed_requires_weights(self):
        with pytest.raises(ConfigurationError, match="Weights required"):
            make_strategy("fixed")

        strategy = make_strategy("fixed", weights=[1.0, 2.0], normalize=True)
        assert isinstance(strategy, FixedWeightStrategy)
        assert strategy.normalize is True

    def test_unknown_method(self):
        with pytest.raises(ConfigurationError, match="Unknown weighting method"):
            make_strategy("momentum")
