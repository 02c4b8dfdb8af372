"""Tests for JSON persistence of fits."""

import json

import numpy as np
import pytest

from tweedie_evt.extreme_value import GEVFit, GPDFit
from tweedie_evt.glm_engine import GLMResult
from tweedie_evt.serialization import fit_from_dict, fit_to_dict, load_fit, save_fit
from tweedie_evt.tweedie import fit_tweedie


@pytest.fixture
def tweedie_fit(loss_data):
    """Tweedie fit at p = 1.55."""
    return fit_tweedie(loss_data, 1.55)


class TestSaveLoad:
    """Test round trips through files."""

    def test_tweedie_round_trip(self, tweedie_fit, tmp_path):
        """Test exact coefficients, errors, dispersion and power."""
        path = save_fit(tweedie_fit, tmp_path / "fits" / "tweedie.json")
        loaded = load_fit(path)
        assert isinstance(loaded, GLMResult)
        original = tweedie_fit.model
        assert loaded.coefficients == original.coefficients
        assert loaded.std_errors == original.std_errors
        assert loaded.dispersion == original.dispersion
        assert loaded.var_power == 1.55
        assert loaded.coef_names == original.coef_names
        assert np.array_equal(loaded.fitted_values, original.fitted_values)

    def test_gev_round_trip(self, tmp_path):
        """Test a GEV fit including NaN standard errors."""
        fit = GEVFit(
            location=1.234567890123e6,
            scale=0.1 + 0.2,
            shape=-1 / 3,
            std_errors={"location": float("nan"), "scale": 1.5, "shape": 0.01},
            converged=True,
            iterations=42,
            n_obs=10,
            neg_log_likelihood=123.456,
        )
        loaded = load_fit(save_fit(fit, tmp_path / "gev.json"))
        assert isinstance(loaded, GEVFit)
        assert loaded.location == fit.location
        assert loaded.scale == fit.scale
        assert loaded.shape == fit.shape
        assert np.isnan(loaded.std_errors["location"])

    def test_gpd_round_trip(self, tmp_path):
        """Test a degraded GPD fit."""
        fit = GPDFit(
            threshold=5e5, threshold_percentile=0.85, scale=1e5 / 3, shape=0.3,
            std_errors={"scale": float("nan"), "shape": float("nan")},
            n_exceedances=30, n_obs=200, status="degraded", neg_log_likelihood=10.0,
        )
        loaded = load_fit(save_fit(fit, tmp_path / "gpd.json"))
        assert loaded.status == "degraded"
        assert loaded.scale == fit.scale
        assert loaded.exceedance_rate == fit.exceedance_rate

    def test_document_is_json(self, tweedie_fit, tmp_path):
        """Test the written document layout."""
        path = save_fit(tweedie_fit, tmp_path / "tweedie.json")
        document = json.loads(path.read_text(encoding="utf-8"))
        assert document["format_version"] == 1
        assert document["kind"] == "glm"
        assert document["fit"]["family"] == "tweedie"


class TestDocuments:
    """Test document validation."""

    def test_unsupported_object(self):
        """Test that arbitrary objects cannot be serialized."""
        with pytest.raises(TypeError):
            fit_to_dict({"not": "a fit"})

    def test_unknown_version(self, tweedie_fit):
        """Test that a future format version is rejected."""
        document = fit_to_dict(tweedie_fit)
        document["format_version"] = 99
        with pytest.raises(ValueError, match="version"):
            fit_from_dict(document)

    def test_unknown_kind(self, tweedie_fit):
        """Test that an unknown kind is rejected."""
        document = fit_to_dict(tweedie_fit)
        document["kind"] = "lognormal"
        with pytest.raises(ValueError, match="kind"):
            fit_from_dict(document)
