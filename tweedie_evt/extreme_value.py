"""Extreme value characterisation of the loss tail.

Two complementary views of the tail:

- **Block maxima**: a Generalized Extreme Value (GEV) distribution fitted
  to the largest loss of each accident year.
- **Peaks over threshold**: a Generalized Pareto Distribution (GPD) fitted
  to the excesses of losses above a high percentile.

According to the Fisher-Tippett-Gnedenko and Pickands-Balkema-de Haan
theorems both limits share the same shape parameter ``xi``:

- ``xi < 0``: bounded tail (Weibull domain)
- ``xi = 0``: exponential tail (Gumbel domain)
- ``xi > 0``: Pareto-type heavy tail (Frechet domain)

Shapes use the climatology sign convention (positive is heavy). scipy's
``genextreme`` uses the opposite sign, ``c = -xi``; ``genpareto`` uses
``c = xi``.

Both fits are maximum likelihood on standardised data with the scale
optimised on the log scale. Standard errors come from the inverse numerical
Hessian of the negative log-likelihood in natural parameters.
"""

from dataclasses import dataclass
import logging
from typing import Callable, Dict, Optional, Sequence, Union
import warnings

import numpy as np
import pandas as pd
from scipy import stats
from scipy.optimize import minimize
from statsmodels.tools.numdiff import approx_hess

from ._warnings import FitQualityWarning
from .config.modeling import EVTConfig
from .data import require_columns
from .exceptions import ConvergenceFailure, DataQualityError, InsufficientExceedancesError

logger = logging.getLogger(__name__)

EULER_GAMMA = 0.5772156649015329
MIN_BLOCK_MAXIMA = 3
# GEV likelihood is unbounded for shape < -1
GEV_SHAPE_FLOOR = -1.0
GEV_BOUNDARY_BAND = 1e-3


def annual_maxima(data: pd.DataFrame, value_col: str = "loss") -> pd.Series:
    """Largest value per accident year.

    Args:
        data: Observation table with ``accident_year`` and ``value_col``.
        value_col: Column to take maxima of.

    Returns:
        Series of maxima indexed by accident year, sorted by year.
    """
    require_columns(data, ("accident_year", value_col))
    maxima = data.groupby("accident_year", sort=True)[value_col].max()
    maxima.name = f"max_{value_col}"
    return maxima.astype(float)


def _standard_errors(
    nll: Callable[[np.ndarray], float], theta: np.ndarray, names: Sequence[str]
) -> Optional[Dict[str, float]]:
    """Standard errors from the inverse Hessian, or None if not positive definite."""
    with np.errstate(all="ignore"):
        hess = approx_hess(theta, nll)
    if not np.all(np.isfinite(hess)):
        return None
    try:
        np.linalg.cholesky(hess)
    except np.linalg.LinAlgError:
        return None
    cov = np.linalg.inv(hess)
    var = np.diag(cov)
    if not np.all(np.isfinite(var)) or np.any(var <= 0):
        return None
    return {name: float(np.sqrt(v)) for name, v in zip(names, var)}


# --------------------------------------------------------------------------
# GEV
# --------------------------------------------------------------------------


def interpret_gev_shape(shape: float, band: float = 0.05) -> str:
    """Tail type of a GEV shape: ``"gumbel"``, ``"frechet"`` or ``"weibull"``."""
    if abs(shape) < band:
        return "gumbel"
    return "frechet" if shape > 0 else "weibull"


@dataclass(frozen=True)
class GEVFit:
    """Maximum likelihood GEV fit to block maxima.

    Attributes:
        location: Location ``mu``.
        scale: Scale ``sigma`` (positive).
        shape: Shape ``xi`` (positive is heavy-tailed).
        std_errors: Parameter -> standard error (NaN when the Hessian is not
            positive definite).
        converged: ``False`` when the shape ended on its lower bound -1.
        iterations: Optimizer iterations.
        n_obs: Number of maxima.
        neg_log_likelihood: Negative log-likelihood at the estimate.
        gumbel_band: ``|shape|`` below which the tail reads as Gumbel.
    """

    location: float
    scale: float
    shape: float
    std_errors: Dict[str, float]
    converged: bool
    iterations: int
    n_obs: int
    neg_log_likelihood: float
    gumbel_band: float = 0.05

    @property
    def tail_type(self) -> str:
        return interpret_gev_shape(self.shape, self.gumbel_band)

    @property
    def upper_endpoint(self) -> float:
        """Finite upper endpoint ``mu - sigma / xi`` for ``xi < 0``, else ``inf``."""
        if self.shape < 0:
            return self.location - self.scale / self.shape
        return float("inf")

    def return_level(self, period: Union[float, Sequence[float]]) -> Union[float, np.ndarray]:
        return gev_return_level(self, period)


def _gev_nll(x: np.ndarray) -> Callable[[np.ndarray], float]:
    def nll(theta: np.ndarray) -> float:
        loc, log_scale, shape = theta
        if shape <= GEV_SHAPE_FLOOR:
            return np.inf
        with np.errstate(all="ignore"):
            value = -np.sum(stats.genextreme.logpdf(x, c=-shape, loc=loc, scale=np.exp(log_scale)))
        return float(value) if np.isfinite(value) else np.inf

    return nll


def fit_gev(maxima: Sequence[float], config: Optional[EVTConfig] = None) -> GEVFit:
    """Fit a GEV distribution to block maxima by maximum likelihood.

    Starting values come from Gumbel moments with a small positive shape.
    The shape is kept above -1. An estimate that ends on that bound is
    returned with ``converged=False`` and NaN standard errors.

    Args:
        maxima: One maximum per block (year).
        config: Optimizer budget and interpretation band.

    Returns:
        :class:`GEVFit`.

    Raises:
        DataQualityError: If fewer than 3 finite maxima are given.
        ConvergenceFailure: If the optimizer fails.
    """
    config = config or EVTConfig()
    x = np.asarray(maxima, dtype=float)
    if not np.all(np.isfinite(x)):
        raise DataQualityError([f"{int((~np.isfinite(x)).sum())} non-finite block maxima"])
    if len(x) < MIN_BLOCK_MAXIMA:
        raise DataQualityError(
            [f"GEV needs at least {MIN_BLOCK_MAXIMA} block maxima, got {len(x)}"]
        )

    center = float(np.mean(x))
    spread = float(np.std(x, ddof=1))
    if not spread > 0:
        raise DataQualityError(["block maxima are all identical"])
    z = (x - center) / spread

    scale0 = np.sqrt(6.0) / np.pi
    theta0 = np.array([-EULER_GAMMA * scale0, np.log(scale0), 0.1])
    result = minimize(
        _gev_nll(z),
        theta0,
        method="Nelder-Mead",
        options={"maxiter": config.max_iter, "maxfev": 2 * config.max_iter, "xatol": 1e-8, "fatol": 1e-10},
    )
    loc = center + spread * result.x[0]
    scale = spread * float(np.exp(result.x[1]))
    shape = float(result.x[2])
    if not result.success or not np.all(np.isfinite(result.x)):
        raise ConvergenceFailure(
            f"GEV optimizer failed: {result.message}",
            last_estimate={"location": loc, "scale": scale, "shape": shape},
            iterations=int(result.nit),
            model="gev",
        )

    def nll_natural(theta: np.ndarray) -> float:
        if theta[1] <= 0:
            return np.inf
        return _gev_nll(x)(np.array([theta[0], np.log(theta[1]), theta[2]]))

    theta_hat = np.array([loc, scale, shape])
    names = ("location", "scale", "shape")
    at_boundary = shape <= GEV_SHAPE_FLOOR + GEV_BOUNDARY_BAND
    std_errors = None if at_boundary else _standard_errors(nll_natural, theta_hat, names)
    if at_boundary:
        logger.warning("GEV shape %.4f at the lower bound %g; fit not converged", shape, GEV_SHAPE_FLOOR)
        warnings.warn(
            f"GEV shape {shape:.4f} reached the bound {GEV_SHAPE_FLOOR:g} where the "
            "likelihood is unbounded; the fit is not converged",
            FitQualityWarning,
            stacklevel=2,
        )
    elif std_errors is None:
        logger.warning("GEV Hessian is not positive definite; standard errors unavailable")
    if std_errors is None:
        std_errors = {name: float("nan") for name in names}

    fit = GEVFit(
        location=float(loc),
        scale=scale,
        shape=shape,
        std_errors=std_errors,
        converged=not at_boundary,
        iterations=int(result.nit),
        n_obs=len(x),
        neg_log_likelihood=nll_natural(theta_hat),
        gumbel_band=config.gumbel_band,
    )
    logger.info(
        "GEV fit on %d maxima: location=%.4g, scale=%.4g, shape=%.4f (%s)",
        fit.n_obs,
        fit.location,
        fit.scale,
        fit.shape,
        fit.tail_type,
    )
    return fit


def _check_periods(period) -> np.ndarray:
    periods = np.asarray(period, dtype=float)
    if np.any(~(periods > 1)):
        raise ValueError(f"Return periods must exceed 1, got {periods.tolist()}")
    return periods


def gev_return_level(fit: GEVFit, period: Union[float, Sequence[float]]) -> Union[float, np.ndarray]:
    """Level exceeded on average once every ``period`` blocks.

    Args:
        fit: GEV fit.
        period: Return period(s), each greater than 1.

    Returns:
        GEV quantile at ``1 - 1/period``.

    Raises:
        ValueError: If a period is not greater than 1.
    """
    periods = _check_periods(period)
    levels = stats.genextreme.ppf(1.0 - 1.0 / periods, c=-fit.shape, loc=fit.location, scale=fit.scale)
    return float(levels) if levels.ndim == 0 else levels


# --------------------------------------------------------------------------
# GPD
# --------------------------------------------------------------------------


def interpret_gpd_shape(shape: float, band: float = 0.05) -> str:
    """Tail reading of a GPD shape.

    Returns:
        ``"exponential"``, ``"heavy_finite_variance"``,
        ``"heavy_infinite_variance"`` or ``"bounded"``.
    """
    if abs(shape) < band:
        return "exponential"
    if shape > 0:
        return "heavy_finite_variance" if shape < 0.5 else "heavy_infinite_variance"
    return "bounded"


@dataclass(frozen=True)
class GPDFit:
    """Maximum likelihood GPD fit to threshold exceedances.

    Attributes:
        threshold: Threshold ``u``.
        threshold_percentile: Percentile that produced ``u``.
        scale: Scale ``sigma`` (positive).
        shape: Shape ``xi``.
        std_errors: Parameter -> standard error (NaN when degraded).
        n_exceedances: Observations strictly above ``u``.
        n_obs: Observations in the full series.
        status: ``"ok"`` or ``"degraded"`` (fallback fit without standard
            errors).
        neg_log_likelihood: Negative log-likelihood at the estimate.
        shape_tolerance: ``|shape|`` below which the exponential limit is
            used for return levels.
        gumbel_band: ``|shape|`` below which the tail reads as exponential.
    """

    threshold: float
    threshold_percentile: float
    scale: float
    shape: float
    std_errors: Dict[str, float]
    n_exceedances: int
    n_obs: int
    status: str
    neg_log_likelihood: float
    shape_tolerance: float = 1e-6
    gumbel_band: float = 0.05

    @property
    def exceedance_rate(self) -> float:
        """Fraction ``zeta`` of observations above the threshold."""
        return self.n_exceedances / self.n_obs

    @property
    def tail_type(self) -> str:
        return interpret_gpd_shape(self.shape, self.gumbel_band)

    def return_level(self, period: Union[float, Sequence[float]]) -> Union[float, np.ndarray]:
        return gpd_return_level(self, period)


def _gpd_nll(y: np.ndarray) -> Callable[[np.ndarray], float]:
    def nll(theta: np.ndarray) -> float:
        log_scale, shape = theta
        with np.errstate(all="ignore"):
            value = -np.sum(stats.genpareto.logpdf(y, c=shape, loc=0.0, scale=np.exp(log_scale)))
        return float(value) if np.isfinite(value) else np.inf

    return nll


def gpd_threshold(losses: Sequence[float], percentile: float) -> float:
    """Linearly interpolated sample quantile (Hyndman-Fan type 7)."""
    return float(np.quantile(np.asarray(losses, dtype=float), percentile))


def fit_gpd(losses: Sequence[float], config: Optional[EVTConfig] = None) -> GPDFit:
    """Fit a GPD to the excesses over a percentile threshold.

    The full fit (quasi-Newton with standard errors) is tried first. If it
    fails or its standard errors are not finite, a derivative-free fit
    without standard errors is tried and the result is marked
    ``"degraded"``.

    Args:
        losses: Full loss series.
        config: Threshold percentile, minimum exceedances, optimizer budget.

    Returns:
        :class:`GPDFit`.

    Raises:
        DataQualityError: If any loss is NaN or infinite.
        InsufficientExceedancesError: If fewer than ``min_exceedances``
            observations (at least one) exceed the threshold.
        ConvergenceFailure: If the fallback fit fails as well.
    """
    config = config or EVTConfig()
    x = np.asarray(losses, dtype=float)
    n_nonfinite = int((~np.isfinite(x)).sum())
    if n_nonfinite:
        raise DataQualityError([f"{n_nonfinite} non-finite losses in the GPD series"])
    threshold = gpd_threshold(x, config.threshold_percentile)
    excess = x[x > threshold] - threshold
    n_exc = len(excess)
    required = max(config.min_exceedances, 1)
    if n_exc < required:
        raise InsufficientExceedancesError(threshold, n_exc, required)

    logger.info(
        "GPD threshold %.4g (%.1f%% percentile): %d exceedances of %d",
        threshold,
        100 * config.threshold_percentile,
        n_exc,
        len(x),
    )

    unit = float(np.mean(excess))
    y = excess / unit
    nll_scaled = _gpd_nll(y)
    theta0 = np.array([0.0, 0.1])

    def nll_natural(theta: np.ndarray) -> float:
        if theta[0] <= 0:
            return np.inf
        return _gpd_nll(excess)(np.array([np.log(theta[0]), theta[1]]))

    names = ("scale", "shape")
    status = "ok"
    std_errors = None
    with np.errstate(all="ignore"):
        result = minimize(nll_scaled, theta0, method="BFGS", options={"maxiter": config.max_iter})
    # status 2: precision loss at a stationary point, common at the optimum
    if result.status in (0, 2) and np.isfinite(result.fun) and np.all(np.isfinite(result.x)):
        theta_hat = np.array([unit * np.exp(result.x[0]), result.x[1]])
        std_errors = _standard_errors(nll_natural, theta_hat, names)
        if std_errors is None:
            logger.warning("GPD standard errors are not finite; retrying without them")
    else:
        logger.warning("GPD fit with standard errors failed: %s", result.message)

    if std_errors is None:
        result = minimize(
            nll_scaled,
            theta0,
            method="Nelder-Mead",
            options={"maxiter": config.max_iter, "xatol": 1e-8, "fatol": 1e-10},
        )
        theta_hat = np.array([unit * np.exp(result.x[0]), result.x[1]])
        if not result.success or not np.all(np.isfinite(theta_hat)):
            raise ConvergenceFailure(
                f"GPD fit failed with and without standard errors: {result.message}",
                last_estimate=dict(zip(names, theta_hat)),
                iterations=int(result.nit),
                model="gpd",
            )
        status = "degraded"
        std_errors = {name: float("nan") for name in names}
        warnings.warn(
            "GPD fitted without standard errors (degraded fit)",
            FitQualityWarning,
            stacklevel=2,
        )

    fit = GPDFit(
        threshold=threshold,
        threshold_percentile=config.threshold_percentile,
        scale=float(theta_hat[0]),
        shape=float(theta_hat[1]),
        std_errors=std_errors,
        n_exceedances=n_exc,
        n_obs=len(x),
        status=status,
        neg_log_likelihood=nll_natural(theta_hat),
        shape_tolerance=config.shape_tolerance,
        gumbel_band=config.gumbel_band,
    )
    logger.info(
        "GPD fit (%s): scale=%.4g, shape=%.4f (%s)", fit.status, fit.scale, fit.shape, fit.tail_type
    )
    return fit


def gpd_return_level(fit: GPDFit, period: Union[float, Sequence[float]]) -> Union[float, np.ndarray]:
    """Level exceeded on average once every ``period`` observations' worth of time.

    With ``zeta`` the exceedance rate::

        u + sigma * log(T * zeta)                    if |xi| < tolerance
        u + sigma / xi * ((T * zeta) ** xi - 1)      otherwise

    Args:
        fit: GPD fit.
        period: Return period(s), each greater than 1.

    Returns:
        Return level(s), strictly increasing in ``period``.

    Raises:
        ValueError: If a period is not greater than 1.
    """
    periods = _check_periods(period)
    m = periods * fit.exceedance_rate
    if abs(fit.shape) < fit.shape_tolerance:
        levels = fit.threshold + fit.scale * np.log(m)
    else:
        levels = fit.threshold + fit.scale / fit.shape * (np.power(m, fit.shape) - 1.0)
    return float(levels) if np.ndim(levels) == 0 else levels


def return_level_table(
    gev: Optional[GEVFit], gpd: Optional[GPDFit], periods: Sequence[float] = (10, 20, 50, 100)
) -> pd.DataFrame:
    """Return levels of both fits side by side.

    A missing fit yields a NaN column.

    Returns:
        DataFrame ``(return_period, gev_return_level, gpd_return_level)``.
    """
    periods = _check_periods(list(periods))
    nan = np.full(len(periods), np.nan)
    return pd.DataFrame(
        {
            "return_period": periods,
            "gev_return_level": gev_return_level(gev, periods) if gev is not None else nan,
            "gpd_return_level": gpd_return_level(gpd, periods) if gpd is not None else nan,
        }
    )
