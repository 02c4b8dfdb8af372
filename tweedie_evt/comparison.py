"""Annual aggregation and comparison of competing loss models.

Per-record fitted losses from each model are summed within accident year
and compared against actual totals. The number of companies behind every
year is always reported so that thin years can be weighted or filtered
downstream; nothing here drops or down-weights them.
"""

from dataclasses import dataclass
import logging
from typing import Dict, Optional, Sequence, Tuple
import warnings

import numpy as np
import pandas as pd

from ._warnings import FitQualityWarning
from .exceptions import DataQualityError

logger = logging.getLogger(__name__)

ANNUAL_COLUMNS = ("accident_year", "n_companies", "actual_total_loss", "fitted_total_loss", "pct_error")


def pct_error(fitted, actual):
    """Percentage error ``(fitted - actual) / actual * 100``.

    Division by a zero actual yields ``inf`` (or NaN for 0/0), as in plain
    floating point arithmetic.
    """
    fitted = np.asarray(fitted, dtype=float)
    actual = np.asarray(actual, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        return (fitted - actual) / actual * 100.0


def aggregate_annual(
    data: pd.DataFrame,
    fitted: Sequence[float],
    *,
    extra: Optional[Dict[str, Tuple[str, str]]] = None,
) -> pd.DataFrame:
    """Sum actual and fitted losses within accident year.

    Args:
        data: Observation table with ``accident_year`` and ``loss``.
        fitted: Fitted loss per record, aligned with ``data`` rows.
        extra: Additional named aggregations ``name -> (column, func)``
            evaluated on columns of ``data``.

    Returns:
        One row per year with ``n_companies``, ``actual_total_loss``,
        ``fitted_total_loss``, ``pct_error`` and any extra columns, sorted
        by year.

    Raises:
        ValueError: If ``fitted`` is not aligned with ``data``.
    """
    fitted = np.asarray(fitted, dtype=float)
    if len(fitted) != len(data):
        raise ValueError(f"fitted has {len(fitted)} values but data has {len(data)} rows")

    frame = data.reset_index(drop=True).copy()
    frame["_fitted"] = fitted

    aggregations = {
        "n_companies": ("loss", "size"),
        "actual_total_loss": ("loss", "sum"),
        "fitted_total_loss": ("_fitted", "sum"),
    }
    if extra:
        aggregations.update(extra)

    annual = frame.groupby("accident_year", sort=True).agg(**aggregations).reset_index()
    annual["n_companies"] = annual["n_companies"].astype(int)
    annual["pct_error"] = pct_error(annual["fitted_total_loss"], annual["actual_total_loss"])
    ordered = list(ANNUAL_COLUMNS) + [c for c in annual.columns if c not in ANNUAL_COLUMNS]
    return annual[ordered]


@dataclass(frozen=True)
class PredictionMetrics:
    """Error metrics of predicted versus actual totals, in percent."""

    mae_pct: float
    median_ae_pct: float
    max_ae_pct: float
    bias: float
    bias_pct: float
    n_outside_tolerance: int
    tolerance_pct: float


def prediction_metrics(
    actual: Sequence[float],
    predicted: Sequence[float],
    tolerance_pct: float = 10.0,
    bias_limit_pct: float = 5.0,
) -> PredictionMetrics:
    """Compute error metrics and flag poor predictions.

    Args:
        actual: Actual totals.
        predicted: Predicted totals, same length.
        tolerance_pct: Absolute percentage error above which a point is
            counted as outside tolerance.
        bias_limit_pct: Absolute aggregate bias above which the predictions
            are flagged as biased.

    Returns:
        :class:`PredictionMetrics`.

    Raises:
        DataQualityError: If the inputs have different lengths or are empty.
    """
    actual = np.asarray(actual, dtype=float)
    predicted = np.asarray(predicted, dtype=float)
    if len(actual) != len(predicted):
        raise DataQualityError(
            [f"actual and predicted have different lengths ({len(actual)} vs {len(predicted)})"]
        )
    if len(actual) == 0:
        raise DataQualityError(["no values to compare"])

    abs_err = np.abs(pct_error(predicted, actual))
    diff = predicted - actual
    bias_pct = float(diff.sum() / actual.sum() * 100.0)
    n_outside = int((abs_err > tolerance_pct).sum())

    if n_outside:
        warnings.warn(
            f"{n_outside} of {len(actual)} predictions outside ±{tolerance_pct:g}% tolerance",
            FitQualityWarning,
            stacklevel=2,
        )
    if abs(bias_pct) > bias_limit_pct:
        warnings.warn(
            f"Systematic prediction bias of {bias_pct:+.2f}% exceeds ±{bias_limit_pct:g}%",
            FitQualityWarning,
            stacklevel=2,
        )

    return PredictionMetrics(
        mae_pct=float(np.mean(abs_err)),
        median_ae_pct=float(np.median(abs_err)),
        max_ae_pct=float(np.max(abs_err)),
        bias=float(np.mean(diff)),
        bias_pct=bias_pct,
        n_outside_tolerance=n_outside,
        tolerance_pct=tolerance_pct,
    )


@dataclass(frozen=True)
class ModelComparison:
    """Per-year comparison of the CP-Gamma and Tweedie forecasts."""

    table: pd.DataFrame
    mae_cp: float
    mae_tw: float
    mean_diff_cp_tw: float

    @property
    def preferred(self) -> str:
        """Model with the lower mean absolute annual error."""
        return "tweedie" if self.mae_tw < self.mae_cp else "cp_gamma"


def compare_models(cp_annual: pd.DataFrame, tw_annual: pd.DataFrame) -> ModelComparison:
    """Join the annual tables of both models and summarise their errors.

    Args:
        cp_annual: Annual table of the CP-Gamma model.
        tw_annual: Annual table of the Tweedie model.

    Returns:
        :class:`ModelComparison` whose table has ``accident_year``,
        ``n_companies``, ``actual``, ``fitted_cp``, ``fitted_tw``,
        ``error_cp``, ``error_tw`` and ``diff_cp_tw`` (CP relative to
        Tweedie, in percent).
    """
    table = cp_annual[["accident_year", "n_companies", "actual_total_loss", "fitted_total_loss"]]
    table = table.rename(columns={"actual_total_loss": "actual", "fitted_total_loss": "fitted_cp"})
    table = table.merge(
        tw_annual[["accident_year", "fitted_total_loss"]].rename(
            columns={"fitted_total_loss": "fitted_tw"}
        ),
        on="accident_year",
        how="left",
    )
    table["error_cp"] = pct_error(table["fitted_cp"], table["actual"])
    table["error_tw"] = pct_error(table["fitted_tw"], table["actual"])
    table["diff_cp_tw"] = pct_error(table["fitted_cp"], table["fitted_tw"])

    comparison = ModelComparison(
        table=table,
        mae_cp=float(np.mean(np.abs(table["error_cp"]))),
        mae_tw=float(np.mean(np.abs(table["error_tw"]))),
        mean_diff_cp_tw=float(np.mean(table["diff_cp_tw"])),
    )
    logger.info(
        "Mean absolute annual error: CP-Gamma %.2f%%, Tweedie %.2f%%",
        comparison.mae_cp,
        comparison.mae_tw,
    )
    return comparison


@dataclass(frozen=True)
class AnnualChange:
    """Reading of a log-link year coefficient as a yearly percentage change."""

    coefficient: float
    pct_change: float
    direction: str


def interpret_annual_change(coefficient: float) -> AnnualChange:
    """Translate a log-link year coefficient into a yearly percentage change.

    Args:
        coefficient: Year coefficient ``b`` on the log scale.

    Returns:
        :class:`AnnualChange` with ``(exp(b) - 1) * 100`` and a direction of
        ``"increasing"``, ``"decreasing"`` or ``"flat"``.
    """
    pct = float(np.expm1(coefficient) * 100.0)
    if coefficient > 0:
        direction = "increasing"
    elif coefficient < 0:
        direction = "decreasing"
    else:
        direction = "flat"
    return AnnualChange(coefficient=float(coefficient), pct_change=pct, direction=direction)
