"""End-to-end comparative loss analysis.

``run_analysis()`` validates the observation table, then fits the
synthetic-exposure CP-Gamma decomposition, the profiled Tweedie GLM and the
two extreme value models, and compares the annual forecasts.

Failure policy:
    - :class:`~tweedie_evt.exceptions.DataQualityError` from validation
      aborts the run before any fit.
    - A CP-Gamma :class:`~tweedie_evt.exceptions.ConvergenceFailure` is
      stored on the results as ``cp_gamma_error``; the run continues without
      the model comparison.
    - A Tweedie failure propagates; no aggregation is performed.
    - GEV and GPD failures are stored per fit in ``evt_errors``; the
      return-level table carries NaN for the failed fit.

Examples:
    Run on the default Schedule P extract::

        from tweedie_evt import run_analysis

        results = run_analysis()
        print(results.to_dataframe())

    On an in-memory table with a coarser power grid::

        config = AnalysisConfig().override({"tweedie.p_step": 0.1})
        results = run_analysis(data, config=config)
"""

from dataclasses import dataclass, field
import logging
from typing import Any, Dict, Optional

import pandas as pd

from .comparison import ModelComparison, PredictionMetrics, compare_models, prediction_metrics
from .config import AnalysisConfig
from .data import DatasetSummary, load_schedule_p, validate_model_data
from .diagnostics import check_evt_fits, check_glm_fit
from .exceptions import ConvergenceFailure, DataQualityError, LossModelError
from .extreme_value import GEVFit, GPDFit, annual_maxima, fit_gev, fit_gpd, return_level_table
from .serialization import save_fit
from .synthetic_exposure import CPGammaResult, fit_cp_gamma
from .tweedie import (
    CrossValidationResult,
    TweedieFit,
    TweedieProfile,
    cross_validate_tweedie,
    fit_tweedie,
    profile_power,
)

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResults:
    """Container for ``run_analysis()`` output.

    Attributes:
        config: Configuration used.
        summary: Summary of the validated dataset.
        tweedie_profile: Power-parameter profile.
        tweedie: Tweedie fit at the optimal power.
        cp_gamma: CP-Gamma decomposition, ``None`` if it failed.
        cp_gamma_error: Failure of the CP-Gamma decomposition, if any.
        comparison: Annual comparison of both models, ``None`` without
            a CP-Gamma fit.
        metrics: Prediction metrics of annual totals per model.
        cross_validation: Cross-validation of the Tweedie model, when
            requested.
        annual_maxima: Largest loss per accident year.
        gev: GEV fit, ``None`` if it failed.
        gpd: GPD fit, ``None`` if it failed.
        evt_errors: Failures of the extreme value fits, keyed by ``"gev"``
            or ``"gpd"``.
        return_levels: Return-level table of both EVT fits.
        issues: Fit-quality findings, keyed by model.
    """

    config: AnalysisConfig
    summary: DatasetSummary
    tweedie_profile: TweedieProfile
    tweedie: TweedieFit
    cp_gamma: Optional[CPGammaResult] = None
    cp_gamma_error: Optional[ConvergenceFailure] = None
    comparison: Optional[ModelComparison] = None
    metrics: Dict[str, PredictionMetrics] = field(default_factory=dict)
    cross_validation: Optional[CrossValidationResult] = None
    annual_maxima: Optional[pd.Series] = field(default=None, repr=False)
    gev: Optional[GEVFit] = None
    gpd: Optional[GPDFit] = None
    evt_errors: Dict[str, LossModelError] = field(default_factory=dict)
    return_levels: Optional[pd.DataFrame] = field(default=None, repr=False)
    issues: Dict[str, list] = field(default_factory=dict)

    def to_dataframe(self) -> pd.DataFrame:
        """Annual results table.

        Returns:
            The model comparison table when both models fitted, otherwise
            the Tweedie annual table.
        """
        if self.comparison is not None:
            return self.comparison.table.copy()
        return self.tweedie.annual.copy()

    def summary_dict(self) -> Dict[str, Any]:
        """Headline numbers of the analysis as a flat dictionary."""
        out: Dict[str, Any] = {
            "n_obs": self.summary.n_obs,
            "n_companies": self.summary.n_companies,
            "p_optimal": self.tweedie_profile.p_optimal,
            "p_ci_lower": self.tweedie_profile.ci[0],
            "p_ci_upper": self.tweedie_profile.ci[1],
            "tweedie_dispersion": self.tweedie.model.dispersion,
            "tweedie_pseudo_r2": self.tweedie.pseudo_r2,
            "cp_gamma_failed": self.cp_gamma_error is not None,
        }
        if self.comparison is not None:
            out["mae_cp"] = self.comparison.mae_cp
            out["mae_tw"] = self.comparison.mae_tw
        if self.gev is not None:
            out["gev_shape"] = self.gev.shape
        if self.gpd is not None:
            out["gpd_shape"] = self.gpd.shape
            out["gpd_status"] = self.gpd.status
        return out


def _annual_metrics(annual: pd.DataFrame) -> PredictionMetrics:
    return prediction_metrics(annual["actual_total_loss"], annual["fitted_total_loss"])


def run_analysis(
    data: Optional[pd.DataFrame] = None, config: Optional[AnalysisConfig] = None
) -> AnalysisResults:
    """Run the complete comparative analysis.

    Args:
        data: Canonical observation table; loaded from ``config.data`` when
            omitted.
        config: Analysis configuration; defaults to :class:`AnalysisConfig`.

    Returns:
        :class:`AnalysisResults`.

    Raises:
        DataQualityError: If the data fails validation.
        NumericDomainError: If a value leaves a model's domain.
        ConvergenceFailure: If the Tweedie profile or fit fails.
    """
    config = config or AnalysisConfig()
    if data is None:
        data = load_schedule_p(config.data.source, config.data)

    summary = validate_model_data(data, config.data.max_loss_ratio)
    logger.info(
        "Analysing %d observations: %d companies, accident years %d-%d",
        summary.n_obs,
        summary.n_companies,
        *summary.year_range,
    )
    issues: Dict[str, list] = {}

    cp_gamma: Optional[CPGammaResult] = None
    cp_error: Optional[ConvergenceFailure] = None
    try:
        cp_gamma = fit_cp_gamma(data, config.synthetic)
    except ConvergenceFailure as e:
        logger.warning("CP-Gamma decomposition failed: %s", e)
        cp_error = e
    else:
        issues["frequency"] = check_glm_fit(cp_gamma.frequency, label="frequency")[1]
        issues["severity"] = check_glm_fit(cp_gamma.severity, label="severity")[1]

    profile = profile_power(data, config.tweedie)
    tweedie = fit_tweedie(data, profile.p_optimal, config.tweedie.glm)
    issues["tweedie"] = check_glm_fit(tweedie.model, label="tweedie")[1]

    cv = None
    if config.tweedie.cross_validate:
        cv = cross_validate_tweedie(
            data, profile.p_optimal, config.tweedie.cv_folds, config.tweedie.seed, config.tweedie.glm
        )

    metrics = {"tweedie": _annual_metrics(tweedie.annual)}
    comparison = None
    if cp_gamma is not None:
        metrics["cp_gamma"] = _annual_metrics(cp_gamma.annual)
        comparison = compare_models(cp_gamma.annual, tweedie.annual)

    maxima = annual_maxima(data)
    gev: Optional[GEVFit] = None
    gpd: Optional[GPDFit] = None
    evt_errors: Dict[str, LossModelError] = {}
    try:
        gev = fit_gev(maxima.to_numpy(), config.evt)
    except (ConvergenceFailure, DataQualityError) as e:
        logger.warning("GEV fit failed: %s", e)
        evt_errors["gev"] = e
    try:
        gpd = fit_gpd(data["loss"].to_numpy(), config.evt)
    except (ConvergenceFailure, DataQualityError) as e:
        logger.warning("GPD fit failed: %s", e)
        evt_errors["gpd"] = e
    issues["evt"] = check_evt_fits(gev, gpd)[1]
    levels = return_level_table(gev, gpd, config.evt.return_periods)

    results = AnalysisResults(
        config=config,
        summary=summary,
        tweedie_profile=profile,
        tweedie=tweedie,
        cp_gamma=cp_gamma,
        cp_gamma_error=cp_error,
        comparison=comparison,
        metrics=metrics,
        cross_validation=cv,
        annual_maxima=maxima,
        gev=gev,
        gpd=gpd,
        evt_errors=evt_errors,
        return_levels=levels,
        issues=issues,
    )

    if config.output.save_fits:
        _save_fits(results)
    return results


def _save_fits(results: AnalysisResults) -> None:
    out = results.config.output.output_path
    save_fit(results.tweedie, out / "tweedie.json")
    if results.cp_gamma is not None:
        save_fit(results.cp_gamma.frequency, out / "frequency.json")
        save_fit(results.cp_gamma.severity, out / "severity.json")
    if results.gev is not None:
        save_fit(results.gev, out / "gev.json")
    if results.gpd is not None:
        save_fit(results.gpd, out / "gpd.json")
