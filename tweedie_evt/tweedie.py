"""Direct Tweedie GLM on aggregate losses.

The Tweedie family with power ``1 < p < 2`` is the compound Poisson-Gamma
distribution, so it models aggregate losses directly without synthetic
exposure. The power ``p`` is chosen by profile likelihood over a grid:
every candidate is an independent fit, and the curve is returned alongside
the maximiser so that flat or multimodal profiles can be detected.

Model::

    log E[loss] = b0 + b1 * accident_year + b2 * log(premium)
    Var[loss]   = phi * mu ** p

Examples:
    Profile the power and fit at the optimum::

        from tweedie_evt.tweedie import fit_tweedie, profile_power

        profile = profile_power(data)
        fit = fit_tweedie(data, profile.p_optimal)
        print(fit.model.coefficients, fit.interpretation)
"""

from dataclasses import dataclass, field
import logging
from typing import List, Optional, Tuple
import warnings

import numpy as np
import pandas as pd
from scipy import stats

from ._warnings import FitQualityWarning
from .comparison import aggregate_annual, pct_error
from .config.modeling import GLMConfig, TweedieConfig
from .data import require_columns
from .exceptions import ConvergenceFailure, NumericDomainError
from .glm_engine import GLMResult, fit_glm

logger = logging.getLogger(__name__)

COVARIATES = ("accident_year", "log_premium")
FLAT_TOLERANCE = 1e-8


def tweedie_covariates(data: pd.DataFrame) -> pd.DataFrame:
    """Build the ``accident_year`` and ``log_premium`` covariates.

    Raises:
        NumericDomainError: If any premium is not strictly positive.
    """
    require_columns(data, ("accident_year", "premium"))
    premium = data["premium"].to_numpy(dtype=float)
    n_bad = int((~(premium > 0)).sum())
    if n_bad:
        raise NumericDomainError(f"log(premium) undefined: {n_bad} non-positive premium value(s)")
    return pd.DataFrame(
        {"accident_year": data["accident_year"].to_numpy(dtype=float), "log_premium": np.log(premium)},
        index=data.index,
    )


def unit_deviance(y: np.ndarray, mu: np.ndarray, p: float) -> np.ndarray:
    """Tweedie unit deviance ``d(y, mu)`` for ``1 < p < 2``."""
    y = np.asarray(y, dtype=float)
    mu = np.asarray(mu, dtype=float)
    y_term = np.where(y > 0, np.power(y, 2 - p) / ((1 - p) * (2 - p)), 0.0)
    dev = 2.0 * (y_term - y * np.power(mu, 1 - p) / (1 - p) + np.power(mu, 2 - p) / (2 - p))
    return np.maximum(dev, 0.0)


def saddlepoint_loglik(y: np.ndarray, mu: np.ndarray, p: float, phi: float) -> float:
    """Saddlepoint (extended quasi-) log-likelihood of a Tweedie fit.

    Positive observations use ``-0.5 * log(2 pi phi y^p) - d / (2 phi)``;
    zeros use the exact point mass ``-d / (2 phi)``.

    Args:
        y: Observed responses (non-negative).
        mu: Fitted means (positive).
        p: Variance power.
        phi: Dispersion.

    Returns:
        Total log-likelihood.
    """
    y = np.asarray(y, dtype=float)
    dev = unit_deviance(y, mu, p)
    positive = y > 0
    log_norm = np.zeros_like(y)
    log_norm[positive] = -0.5 * np.log(2.0 * np.pi * phi * np.power(y[positive], p))
    return float(np.sum(log_norm - dev / (2.0 * phi)))


def deviance_dispersion(fit: GLMResult) -> float:
    """Dispersion ``D / (n - k)``, floored at the smallest positive float."""
    if fit.df_resid <= 0:
        return float("nan")
    return max(fit.deviance / fit.df_resid, np.finfo(float).tiny)


def _local_maxima(values: np.ndarray) -> int:
    finite = values[np.isfinite(values)]
    if len(finite) < 2:
        return len(finite)
    count = 0
    for i, v in enumerate(finite):
        left = finite[i - 1] if i > 0 else -np.inf
        right = finite[i + 1] if i < len(finite) - 1 else -np.inf
        if v > left and v >= right:
            count += 1
    return count


@dataclass(frozen=True)
class TweedieProfile:
    """Profile log-likelihood of the Tweedie power parameter.

    Attributes:
        p_values: Candidate powers, increasing.
        log_likelihood: Profile log-likelihood per candidate (NaN where the
            fit failed).
        dispersion: Dispersion estimate per candidate.
        p_optimal: First global maximiser.
        ci: Likelihood-ratio interval ``(lower, upper)`` at grid resolution.
        confidence: Interval level.
        multimodal: Whether the curve has more than one local maximum.
        flat: Whether the curve's range is below ``1e-8``.
        n_failed: Number of candidates whose fit failed.
    """

    p_values: np.ndarray = field(repr=False)
    log_likelihood: np.ndarray = field(repr=False)
    dispersion: np.ndarray = field(repr=False)
    p_optimal: float
    ci: Tuple[float, float]
    confidence: float
    multimodal: bool
    flat: bool
    n_failed: int

    @property
    def max_log_likelihood(self) -> float:
        return float(np.nanmax(self.log_likelihood))

    def to_frame(self) -> pd.DataFrame:
        """Profile curve as a DataFrame ``(p, log_likelihood, dispersion)``."""
        return pd.DataFrame(
            {"p": self.p_values, "log_likelihood": self.log_likelihood, "dispersion": self.dispersion}
        )


def profile_power(
    data: pd.DataFrame,
    config: Optional[TweedieConfig] = None,
    p_values: Optional[List[float]] = None,
) -> TweedieProfile:
    """Choose the Tweedie power by profile likelihood over a grid.

    Each candidate is fitted independently; phi is estimated as
    ``D / (n - k)`` and the saddlepoint log-likelihood is evaluated at it.

    Args:
        data: Observation table with ``loss``, ``premium``, ``accident_year``.
        config: Grid, interval level and IRLS settings.
        p_values: Explicit grid overriding ``config``.

    Returns:
        :class:`TweedieProfile`.

    Raises:
        ValueError: If a grid value lies outside (1, 2).
        ConvergenceFailure: If the fit fails at every grid point.
    """
    config = config or TweedieConfig()
    grid = np.asarray(p_values if p_values is not None else config.grid(), dtype=float)
    if len(grid) == 0:
        raise ValueError("power grid is empty")
    bad = grid[~((grid > 1.0) & (grid < 2.0))]
    if len(bad):
        raise ValueError(f"Power values must lie strictly in (1, 2), got {bad.tolist()}")
    grid = np.sort(grid)

    y = data["loss"].to_numpy(dtype=float)
    X = tweedie_covariates(data)

    curve = np.full(len(grid), np.nan)
    phis = np.full(len(grid), np.nan)
    for i, p in enumerate(grid):
        try:
            fit = fit_glm(y, X, "tweedie", var_power=float(p), config=config.glm, label=f"tweedie p={p:.4g}")
        except ConvergenceFailure as e:
            logger.warning("Profile fit failed at p=%.4g: %s", p, e)
            continue
        phis[i] = deviance_dispersion(fit)
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            curve[i] = saddlepoint_loglik(y, fit.fitted_values, float(p), phis[i])
        logger.debug("p=%.4g phi=%.6g loglik=%.6g", p, phis[i], curve[i])

    n_failed = int(np.isnan(curve).sum())
    if n_failed == len(grid):
        raise ConvergenceFailure(
            "Tweedie profile failed at every grid point",
            iterations=len(grid),
            model="tweedie_profile",
        )

    best = int(np.nanargmax(curve))
    cutoff = curve[best] - stats.chi2.ppf(config.confidence, df=1) / 2.0

    lower = best
    while lower > 0 and curve[lower] >= cutoff:
        lower -= 1
    upper = best
    while upper < len(grid) - 1 and curve[upper] >= cutoff:
        upper += 1

    multimodal = _local_maxima(curve) > 1
    flat = bool(np.nanmax(curve) - np.nanmin(curve) < FLAT_TOLERANCE)
    if multimodal:
        logger.warning("Power profile has more than one local maximum")
    if flat:
        logger.warning("Power profile is flat; p is not identified by the data")

    profile = TweedieProfile(
        p_values=grid,
        log_likelihood=curve,
        dispersion=phis,
        p_optimal=float(grid[best]),
        ci=(float(grid[lower]), float(grid[upper])),
        confidence=config.confidence,
        multimodal=bool(multimodal),
        flat=flat,
        n_failed=n_failed,
    )
    logger.info(
        "Optimal power p=%.3f, %.0f%% interval [%.3f, %.3f]",
        profile.p_optimal,
        100 * profile.confidence,
        profile.ci[0],
        profile.ci[1],
    )
    return profile


def interpret_power(p: float) -> str:
    """Read the power parameter as a frequency/severity balance.

    Returns:
        ``"frequency-dominated"`` below 1.3, ``"severity-dominated"`` above
        1.7, ``"balanced"`` otherwise.
    """
    if p < 1.3:
        return "frequency-dominated"
    if p > 1.7:
        return "severity-dominated"
    return "balanced"


@dataclass(frozen=True)
class TweedieFit:
    """Tweedie GLM at a fixed power.

    Attributes:
        model: Underlying :class:`GLMResult` (dispersion ``D / (n - k)``).
        power: Variance power used.
        fit_ok: ``False`` when the pseudo-R2 falls outside [0, 1].
        interpretation: :func:`interpret_power` reading of ``power``.
        data: Input table with ``loss_fitted`` and ``residual`` columns.
        annual: Annual aggregate table.
    """

    model: GLMResult
    power: float
    fit_ok: bool
    interpretation: str
    data: pd.DataFrame = field(repr=False)
    annual: pd.DataFrame = field(repr=False)

    @property
    def pseudo_r2(self) -> float:
        return self.model.pseudo_r2

    def predict(self, data: pd.DataFrame) -> np.ndarray:
        """Expected loss for new records; strictly positive."""
        return self.model.predict(tweedie_covariates(data))


def fit_tweedie(
    data: pd.DataFrame, p: float, config: Optional[GLMConfig] = None
) -> TweedieFit:
    """Fit ``loss ~ accident_year + log(premium)`` with Tweedie power ``p``.

    Args:
        data: Observation table.
        p: Variance power, strictly inside (1, 2).
        config: IRLS settings.

    Returns:
        :class:`TweedieFit`.

    Raises:
        ValueError: If ``p`` is outside (1, 2).
        ConvergenceFailure: If IRLS does not converge.
    """
    if not 1.0 < p < 2.0:
        raise ValueError(f"Tweedie power must lie strictly in (1, 2), got {p}")

    model = fit_glm(
        data["loss"].to_numpy(dtype=float),
        tweedie_covariates(data),
        "tweedie",
        var_power=float(p),
        config=config,
        label="tweedie",
    )

    r2 = model.pseudo_r2
    fit_ok = bool(np.isfinite(r2) and 0.0 <= r2 <= 1.0)
    if not fit_ok:
        warnings.warn(
            f"Tweedie pseudo-R2 {r2:.4g} outside [0, 1]; inspect the fit",
            FitQualityWarning,
            stacklevel=2,
        )

    fitted = data.copy()
    fitted["loss_fitted"] = model.fitted_values
    fitted["residual"] = model.deviance_residuals
    annual = aggregate_annual(fitted, model.fitted_values)

    logger.info(
        "Tweedie fit p=%.3f (%s): phi=%.4g, premium elasticity=%.3f",
        p,
        interpret_power(p),
        model.dispersion,
        model.coefficients["log_premium"],
    )
    return TweedieFit(
        model=model,
        power=float(p),
        fit_ok=fit_ok,
        interpretation=interpret_power(p),
        data=fitted,
        annual=annual,
    )


def assign_folds(years: np.ndarray, n_folds: int, seed: int) -> np.ndarray:
    """Assign records to folds, balanced within each accident year.

    Records of each year are shuffled and dealt round-robin, starting at a
    year-specific offset so that small years do not all land in fold 0.

    Args:
        years: Accident year per record.
        n_folds: Number of folds.
        seed: Seed for :func:`numpy.random.default_rng`.

    Returns:
        Fold index per record, in ``[0, n_folds)``.
    """
    rng = np.random.default_rng(seed)
    years = np.asarray(years)
    folds = np.empty(len(years), dtype=int)
    offset = 0
    for year in np.unique(years):
        idx = np.flatnonzero(years == year)
        idx = rng.permutation(idx)
        folds[idx] = (offset + np.arange(len(idx))) % n_folds
        offset = (offset + len(idx)) % n_folds
    return folds


@dataclass(frozen=True)
class CrossValidationResult:
    """Held-out accuracy of the Tweedie model at a fixed power.

    Attributes:
        power: Variance power used for every fold.
        fold_mape: Mean absolute percentage error of held-out annual totals,
            per fold (NaN where the fold fit failed).
        mean_mape: Mean of ``fold_mape`` over successful folds.
        annual: Annual totals of the out-of-fold predictions.
        predictions: Out-of-fold prediction per record.
    """

    power: float
    fold_mape: np.ndarray = field(repr=False)
    mean_mape: float
    annual: pd.DataFrame = field(repr=False)
    predictions: np.ndarray = field(repr=False)


def cross_validate_tweedie(
    data: pd.DataFrame,
    p: float,
    n_folds: int = 10,
    seed: int = 42,
    config: Optional[GLMConfig] = None,
) -> CrossValidationResult:
    """K-fold cross-validation of the Tweedie model, stratified by year.

    Args:
        data: Observation table.
        p: Variance power.
        n_folds: Number of folds.
        seed: Seed for fold assignment.
        config: IRLS settings.

    Returns:
        :class:`CrossValidationResult`.

    Raises:
        ValueError: If there are fewer records than folds.
    """
    if n_folds < 2:
        raise ValueError(f"n_folds must be at least 2, got {n_folds}")
    if len(data) < n_folds:
        raise ValueError(f"{len(data)} records cannot be split into {n_folds} folds")

    data = data.reset_index(drop=True)
    folds = assign_folds(data["accident_year"].to_numpy(), n_folds, seed)
    predictions = np.full(len(data), np.nan)
    fold_mape = np.full(n_folds, np.nan)

    for k in range(n_folds):
        held_out = folds == k
        try:
            fit = fit_tweedie(data.loc[~held_out], p, config)
        except ConvergenceFailure as e:
            logger.warning("Cross-validation fold %d failed: %s", k, e)
            continue
        test = data.loc[held_out]
        predictions[held_out] = fit.predict(test)
        totals = pd.DataFrame(
            {"year": test["accident_year"], "actual": test["loss"], "fitted": predictions[held_out]}
        ).groupby("year")[["actual", "fitted"]].sum()
        fold_mape[k] = float(np.mean(np.abs(pct_error(totals["fitted"], totals["actual"]))))
        logger.debug("Fold %d: %d held out, MAPE %.3f%%", k, int(held_out.sum()), fold_mape[k])

    covered = np.isfinite(predictions)
    annual = aggregate_annual(data.loc[covered], predictions[covered])
    mean_mape = float(np.nanmean(fold_mape)) if np.any(np.isfinite(fold_mape)) else float("nan")
    logger.info("Tweedie %d-fold cross-validation at p=%.3f: MAPE %.3f%%", n_folds, p, mean_mape)
    return CrossValidationResult(
        power=float(p),
        fold_mape=fold_mape,
        mean_mape=mean_mape,
        annual=annual,
        predictions=predictions,
    )
