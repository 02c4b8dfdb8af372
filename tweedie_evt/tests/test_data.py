"""Tests for the dataset provider."""

import numpy as np
import pandas as pd
import pytest

from tweedie_evt._warnings import DataQualityWarning
from tweedie_evt.config import DataConfig
from tweedie_evt.data import (
    REQUIRED_COLUMNS,
    load_schedule_p,
    prepare_schedule_p,
    require_columns,
    validate_model_data,
)
from tweedie_evt.exceptions import DataQualityError


class TestPrepareScheduleP:
    """Test raw Schedule P filtering."""

    def test_keeps_fully_developed_lag(self, raw_schedule_p):
        """Test that only lag-10 rows survive, renamed to canonical columns."""
        with pytest.warns(DataQualityWarning, match="1 rows dropped"):
            data = prepare_schedule_p(raw_schedule_p)
        assert set(REQUIRED_COLUMNS) <= set(data.columns)
        assert "company_name" in data.columns
        # 9 lag-10 rows, minus one zero loss and one missing premium
        assert len(data) == 7

    def test_sorted_and_typed(self, raw_schedule_p):
        """Test ordering by year then company and numeric dtypes."""
        with pytest.warns(DataQualityWarning):
            data = prepare_schedule_p(raw_schedule_p)
        assert data["accident_year"].is_monotonic_increasing
        assert data["loss"].dtype == float
        assert (data["loss"] > 0).all() and (data["premium"] > 0).all()

    def test_custom_lag(self, raw_schedule_p):
        """Test a different development lag."""
        data = prepare_schedule_p(raw_schedule_p, DataConfig(development_lag=5))
        assert len(data) == 9

    def test_missing_raw_column(self, raw_schedule_p):
        """Test that a missing raw column is reported."""
        with pytest.raises(DataQualityError, match="IncurLoss_B"):
            prepare_schedule_p(raw_schedule_p.drop(columns="IncurLoss_B"))

    def test_nothing_left(self, raw_schedule_p):
        """Test that an empty result raises."""
        with pytest.raises(DataQualityError, match="No observations"):
            prepare_schedule_p(raw_schedule_p, DataConfig(development_lag=7))

    def test_load_from_csv(self, raw_schedule_p, tmp_path):
        """Test loading from a CSV path."""
        path = tmp_path / "ppauto.csv"
        raw_schedule_p.to_csv(path, index=False)
        with pytest.warns(DataQualityWarning):
            data = load_schedule_p(str(path))
        assert len(data) == 7


class TestValidateModelData:
    """Test pre-fit validation."""

    def test_valid_summary(self, loss_data):
        """Test the summary of a clean dataset."""
        summary = validate_model_data(loss_data)
        assert summary.n_obs == 200
        assert summary.n_companies == 20
        assert summary.n_years == 10
        assert summary.year_range == (1988, 1997)
        assert summary.n_extreme_loss_ratio == 0

    def test_missing_columns(self, loss_data):
        """Test that missing columns are reported by name."""
        with pytest.raises(DataQualityError, match="premium"):
            validate_model_data(loss_data.drop(columns="premium"))

    def test_empty(self, loss_data):
        """Test that an empty table is rejected."""
        with pytest.raises(DataQualityError, match="empty"):
            validate_model_data(loss_data.iloc[0:0])

    def test_collects_all_issues(self, loss_data):
        """Test that every problem is reported together with counts."""
        bad = loss_data.copy()
        bad.loc[0:1, "loss"] = -1.0
        bad.loc[2, "premium"] = 0.0
        bad.loc[3, "accident_year"] = np.nan
        with pytest.raises(DataQualityError) as exc_info:
            validate_model_data(bad)
        issues = exc_info.value.issues
        assert "2 rows have non-positive loss" in issues
        assert "1 rows have non-positive premium" in issues
        assert "1 rows have missing accident_year" in issues
        assert "3 critical issues" in str(exc_info.value)

    def test_infinite_loss(self, loss_data):
        """Test that infinite losses are rejected."""
        bad = loss_data.copy()
        bad.loc[5, "loss"] = np.inf
        with pytest.raises(DataQualityError, match="infinite loss"):
            validate_model_data(bad)

    def test_extreme_loss_ratio_warns(self, loss_data):
        """Test that loss ratios above the limit warn but pass."""
        data = loss_data.copy()
        data.loc[0, "loss"] = data.loc[0, "premium"] * 20
        with pytest.warns(DataQualityWarning, match="loss ratio"):
            summary = validate_model_data(data)
        assert summary.n_extreme_loss_ratio == 1


class TestRequireColumns:
    """Test the column guard."""

    def test_passes(self):
        """Test that present columns pass."""
        require_columns(pd.DataFrame({"a": [1], "b": [2]}), ["a", "b"])

    def test_fails(self):
        """Test that absent columns raise."""
        with pytest.raises(DataQualityError, match=r"\['c'\]"):
            require_columns(pd.DataFrame({"a": [1]}), ["a", "c"])
