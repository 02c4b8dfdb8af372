"""Tests for the Tweedie power profile, fit and cross-validation."""

from unittest.mock import patch

import numpy as np
import pandas as pd
import pytest

from tweedie_evt._warnings import FitQualityWarning
from tweedie_evt.config import TweedieConfig
from tweedie_evt.exceptions import ConvergenceFailure, NumericDomainError
from tweedie_evt.glm_engine import INTERCEPT, GLMResult
from tweedie_evt.tweedie import (
    assign_folds,
    cross_validate_tweedie,
    fit_tweedie,
    interpret_power,
    profile_power,
    saddlepoint_loglik,
    tweedie_covariates,
    unit_deviance,
)


class TestLikelihood:
    """Test deviance and saddlepoint likelihood helpers."""

    def test_unit_deviance_zero_at_mean(self):
        """Test that the deviance vanishes when y equals mu."""
        y = np.array([1.0, 10.0, 1e6])
        assert np.allclose(unit_deviance(y, y, 1.5), 0.0, atol=1e-6)

    def test_unit_deviance_at_zero_response(self):
        """Test the y = 0 deviance 2 mu^(2-p) / (2-p)."""
        assert unit_deviance(np.array([0.0]), np.array([4.0]), 1.5)[0] == pytest.approx(8.0)

    def test_saddlepoint_zero_mass(self):
        """Test that a zero observation contributes log P(Y=0)."""
        mu, p, phi = 2.0, 1.4, 0.7
        expected = -(mu ** (2 - p)) / (phi * (2 - p))
        assert saddlepoint_loglik(np.array([0.0]), np.array([mu]), p, phi) == pytest.approx(expected)

    def test_covariates_reject_zero_premium(self):
        """Test that log(0) premium raises."""
        data = pd.DataFrame({"accident_year": [1990, 1991], "premium": [1.0, 0.0]})
        with pytest.raises(NumericDomainError, match="premium"):
            tweedie_covariates(data)


class TestProfilePower:
    """Test the power-parameter profile."""

    def test_profile_shape(self, loss_data):
        """Test the curve, optimum and interval on a coarse grid."""
        profile = profile_power(loss_data, TweedieConfig(p_values=[1.2, 1.4, 1.6, 1.8]))
        assert profile.p_values.tolist() == [1.2, 1.4, 1.6, 1.8]
        assert profile.p_optimal in profile.p_values
        assert profile.ci[0] <= profile.p_optimal <= profile.ci[1]
        assert profile.log_likelihood.max() == profile.max_log_likelihood
        assert profile.n_failed == 0
        assert not profile.flat
        frame = profile.to_frame()
        assert list(frame.columns) == ["p", "log_likelihood", "dispersion"]

    def test_fine_optimum_inside_coarse_interval(self, loss_data):
        """Test that the fine-grid optimum lies in the coarse-grid interval."""
        coarse = profile_power(loss_data, TweedieConfig(p_start=1.1, p_stop=1.9, p_step=0.2))
        fine = profile_power(loss_data, TweedieConfig(p_start=1.1, p_stop=1.9, p_step=0.05))
        assert len(coarse.p_values) == 5
        assert len(fine.p_values) == 17
        assert coarse.ci[0] <= fine.p_optimal <= coarse.ci[1]

    def test_explicit_grid_argument(self, loss_data):
        """Test that an explicit grid overrides the config."""
        profile = profile_power(loss_data, p_values=[1.5, 1.3])
        assert profile.p_values.tolist() == [1.3, 1.5]

    def test_grid_out_of_range(self, loss_data):
        """Test that grid values outside (1, 2) are rejected."""
        with pytest.raises(ValueError, match=r"\(1, 2\)"):
            profile_power(loss_data, p_values=[1.5, 2.0])

    def test_failed_points_are_nan(self, loss_data):
        """Test that a failing grid point is recorded as NaN."""
        from tweedie_evt import tweedie as tweedie_module

        real_fit = tweedie_module.fit_glm

        def flaky(*args, **kwargs):
            if kwargs.get("var_power") == 1.4:
                raise ConvergenceFailure("forced", iterations=1, model="tweedie")
            return real_fit(*args, **kwargs)

        with patch.object(tweedie_module, "fit_glm", side_effect=flaky):
            profile = profile_power(loss_data, p_values=[1.2, 1.4, 1.6])
        assert np.isnan(profile.log_likelihood[1])
        assert profile.n_failed == 1
        assert profile.p_optimal != 1.4

    def test_all_points_fail(self, loss_data):
        """Test that failure at every grid point raises."""
        with patch(
            "tweedie_evt.tweedie.fit_glm",
            side_effect=ConvergenceFailure("forced", iterations=1, model="tweedie"),
        ):
            with pytest.raises(ConvergenceFailure, match="every grid point"):
                profile_power(loss_data, p_values=[1.3, 1.5])

    def test_proportional_losses_profile(self, proportional_data):
        """Test that every grid point fits when loss = 2 x premium."""
        profile = profile_power(proportional_data, p_values=[1.3, 1.5, 1.7])
        assert profile.n_failed == 0
        assert profile.p_optimal in (1.3, 1.5, 1.7)

    def test_refit_is_idempotent(self, loss_data):
        """Test that profiling twice gives identical curves."""
        config = TweedieConfig(p_values=[1.3, 1.5, 1.7])
        first = profile_power(loss_data, config)
        second = profile_power(loss_data, config)
        assert np.array_equal(first.log_likelihood, second.log_likelihood)
        assert first.p_optimal == second.p_optimal


class TestFitTweedie:
    """Test the Tweedie GLM at a fixed power."""

    def test_fit(self, loss_data):
        """Test outputs of a regular fit."""
        fit = fit_tweedie(loss_data, 1.6)
        assert fit.power == 1.6
        assert fit.fit_ok
        assert fit.interpretation == "balanced"
        assert np.all(fit.model.fitted_values > 0)
        assert 0.0 <= fit.pseudo_r2 <= 1.0
        assert fit.model.dispersion == pytest.approx(fit.model.deviance / fit.model.df_resid)
        assert fit.model.coefficients["log_premium"] == pytest.approx(1.0, abs=0.1)
        assert {"loss_fitted", "residual"} <= set(fit.data.columns)
        assert fit.annual["n_companies"].sum() == len(loss_data)

    def test_predict_positive(self, loss_data):
        """Test that predictions for new records are strictly positive."""
        fit = fit_tweedie(loss_data, 1.5)
        new = pd.DataFrame({"accident_year": [1980, 2030], "premium": [1.0, 1e9]})
        assert np.all(fit.predict(new) > 0)

    def test_proportional_losses_fit_exactly(self, proportional_data):
        """Test a near-perfect fit when loss = 2 x premium."""
        fit = fit_tweedie(proportional_data, 1.5)
        coefs = fit.model.coefficients
        assert coefs["log_premium"] == pytest.approx(1.0, abs=1e-4)
        assert coefs["accident_year"] == pytest.approx(0.0, abs=1e-5)
        implied = coefs[INTERCEPT] + coefs["accident_year"] * proportional_data["accident_year"].mean()
        assert implied == pytest.approx(np.log(2.0), abs=1e-3)
        assert fit.model.converged and fit.fit_ok
        assert fit.model.deviance <= 1e-3 * fit.model.null_deviance
        assert fit.pseudo_r2 == pytest.approx(1.0, abs=1e-3)

    @pytest.mark.parametrize("p", [1.0, 2.0, 0.8, 2.2])
    def test_invalid_power(self, loss_data, p):
        """Test that p outside (1, 2) raises ValueError."""
        with pytest.raises(ValueError):
            fit_tweedie(loss_data, p)

    def test_out_of_range_r2_flagged(self, loss_data):
        """Test that a pseudo-R2 outside [0, 1] warns and sets fit_ok False."""
        with patch.object(GLMResult, "pseudo_r2", property(lambda self: -0.2)):
            with pytest.warns(FitQualityWarning, match="outside"):
                fit = fit_tweedie(loss_data, 1.5)
        assert not fit.fit_ok

    @pytest.mark.parametrize(
        "p,reading",
        [(1.1, "frequency-dominated"), (1.29, "frequency-dominated"), (1.3, "balanced"),
         (1.7, "balanced"), (1.71, "severity-dominated"), (1.9, "severity-dominated")],
    )
    def test_interpret_power(self, p, reading):
        """Test the frequency/severity reading of p."""
        assert interpret_power(p) == reading


class TestCrossValidation:
    """Test year-stratified cross-validation."""

    def test_fold_assignment_balanced(self):
        """Test that each year is spread evenly over folds."""
        years = np.repeat(np.arange(1990, 1995), 20)
        folds = assign_folds(years, 10, seed=1)
        for year in np.unique(years):
            counts = np.bincount(folds[years == year], minlength=10)
            assert counts.tolist() == [2] * 10

    def test_fold_assignment_seeded(self):
        """Test that the seed alone determines the folds."""
        years = np.repeat(np.arange(1990, 1995), 7)
        assert np.array_equal(assign_folds(years, 5, 3), assign_folds(years, 5, 3))
        assert not np.array_equal(assign_folds(years, 5, 3), assign_folds(years, 5, 4))

    def test_cross_validate(self, loss_data):
        """Test held-out predictions cover every record."""
        cv = cross_validate_tweedie(loss_data, 1.6, n_folds=5, seed=42)
        assert cv.fold_mape.shape == (5,)
        assert np.all(np.isfinite(cv.fold_mape))
        assert cv.mean_mape == pytest.approx(np.mean(cv.fold_mape))
        assert np.all(np.isfinite(cv.predictions))
        assert cv.annual["n_companies"].sum() == len(loss_data)

    def test_too_few_records(self, loss_data):
        """Test that more folds than records is rejected."""
        with pytest.raises(ValueError, match="folds"):
            cross_validate_tweedie(loss_data.head(3), 1.5, n_folds=5)
