"""Property-based tests using Hypothesis for model invariants.

Covers invariants that must hold for any admissible input rather than for
one hand-picked example: non-negative synthetic fields, order-independent
annual sums, monotone return levels and strictly positive Tweedie means.
"""

import warnings

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from hypothesis.extra.numpy import arrays
import numpy as np
import pandas as pd

from tweedie_evt.comparison import aggregate_annual, interpret_annual_change
from tweedie_evt.extreme_value import GPDFit, gpd_return_level
from tweedie_evt.glm_engine import INTERCEPT, GLMResult
from tweedie_evt.synthetic_exposure import compute_synthetic_exposure
from tweedie_evt.tweedie import unit_deviance

positive_amounts = st.floats(min_value=1.0, max_value=1e9, allow_nan=False, allow_infinity=False)


class TestSyntheticProperties:
    """Property tests for synthetic exposure."""

    @given(
        losses=st.lists(positive_amounts, min_size=1, max_size=30),
        ppe=st.floats(min_value=1.0, max_value=1e5),
        spc=st.floats(min_value=1.0, max_value=1e5),
    )
    @settings(max_examples=50, suppress_health_check=[HealthCheck.too_slow])
    def test_fields_well_defined(self, losses, ppe, spc):
        """Test exposure > 0, counts >= 0 and severity either finite or inf on zero counts."""
        data = pd.DataFrame({"loss": losses, "premium": losses})
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            synth = compute_synthetic_exposure(data, ppe, spc)
        assert (synth["exposure"] > 0).all()
        assert (synth["claim_count"] >= 0).all()
        positive = synth["claim_count"] > 0
        assert np.isfinite(synth.loc[positive, "implied_severity"]).all()
        assert np.isinf(synth.loc[~positive, "implied_severity"]).all()
        assert synth.attrs["n_zero_claims"] == int((~positive).sum())


class TestAggregationProperties:
    """Property tests for annual aggregation."""

    @given(
        n=st.integers(min_value=1, max_value=40),
        seed=st.integers(min_value=0, max_value=2**32 - 1),
    )
    @settings(max_examples=30, deadline=None)
    def test_order_independent(self, n, seed):
        """Test that shuffling records leaves annual totals unchanged."""
        rng = np.random.default_rng(seed)
        data = pd.DataFrame(
            {"accident_year": rng.integers(1990, 1995, size=n), "loss": rng.uniform(1, 1e6, size=n)}
        )
        fitted = rng.uniform(1, 1e6, size=n)
        perm = rng.permutation(n)
        a = aggregate_annual(data, fitted)
        b = aggregate_annual(data.iloc[perm], fitted[perm])
        assert a["accident_year"].tolist() == b["accident_year"].tolist()
        assert a["n_companies"].tolist() == b["n_companies"].tolist()
        assert np.allclose(a["actual_total_loss"], b["actual_total_loss"], rtol=1e-12)
        assert np.allclose(a["fitted_total_loss"], b["fitted_total_loss"], rtol=1e-12)
        assert a["n_companies"].sum() == n


class TestReturnLevelProperties:
    """Property tests for GPD return levels."""

    @given(
        shape=st.floats(min_value=-0.9, max_value=1.5, allow_nan=False),
        scale=st.floats(min_value=1e-3, max_value=1e7),
        rate=st.floats(min_value=0.01, max_value=0.5),
        periods=arrays(
            dtype=np.float64,
            shape=st.integers(2, 10),
            elements=st.floats(min_value=1.5, max_value=1e4),
            unique=True,
        ),
    )
    @settings(max_examples=100)
    def test_monotone_in_period(self, shape, scale, rate, periods):
        """Test that return levels strictly increase with the return period."""
        n_obs = 1000
        fit = GPDFit(
            threshold=0.0,
            threshold_percentile=1 - rate,
            scale=scale,
            shape=shape,
            std_errors={},
            n_exceedances=max(1, int(rate * n_obs)),
            n_obs=n_obs,
            status="ok",
            neg_log_likelihood=0.0,
        )
        periods = np.sort(periods)
        levels = gpd_return_level(fit, periods)
        assert np.all(np.isfinite(levels))
        assert np.all(np.diff(levels) >= 0)
        spread = np.diff(periods) / periods[:-1]
        distinct = spread > 1e-3
        assert np.all(np.diff(levels)[distinct] > 0)


class TestTweedieProperties:
    """Property tests for Tweedie quantities."""

    @given(
        y=arrays(np.float64, st.integers(1, 20), elements=st.floats(0.0, 1e6)),
        mu=st.floats(min_value=1e-3, max_value=1e6),
        p=st.floats(min_value=1.01, max_value=1.99),
    )
    @settings(max_examples=100)
    def test_unit_deviance_non_negative(self, y, mu, p):
        """Test that the unit deviance is never negative."""
        dev = unit_deviance(y, np.full_like(y, mu), p)
        assert np.all(dev >= 0)
        assert np.all(np.isfinite(dev))

    @given(
        beta=arrays(np.float64, 3, elements=st.floats(-2.0, 2.0)),
        x=arrays(np.float64, (5, 2), elements=st.floats(-5.0, 5.0)),
    )
    @settings(max_examples=50)
    def test_predictions_strictly_positive(self, beta, x):
        """Test that log-link means are positive for any finite covariates."""
        fit = GLMResult(
            family="tweedie",
            var_power=1.5,
            coef_names=(INTERCEPT, "accident_year", "log_premium"),
            coefficients=dict(zip((INTERCEPT, "accident_year", "log_premium"), beta.tolist())),
            std_errors={},
            p_values={},
            dispersion=1.0,
            deviance=0.0,
            null_deviance=1.0,
            aic=0.0,
            log_likelihood=0.0,
            n_obs=5,
            df_resid=2.0,
            iterations=1,
            converged=True,
            fitted_values=np.ones(5),
            deviance_residuals=np.zeros(5),
        )
        covariates = pd.DataFrame(x, columns=["accident_year", "log_premium"])
        assert np.all(fit.predict(covariates) > 0)

    @given(b=st.floats(min_value=-1.0, max_value=1.0, allow_nan=False))
    def test_annual_change_sign(self, b):
        """Test that the percentage change has the sign of the coefficient."""
        change = interpret_annual_change(b)
        assert np.sign(change.pct_change) == np.sign(b)
