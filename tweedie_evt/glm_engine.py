"""Single GLM engine shared by the frequency, severity and Tweedie models.

Poisson, Gamma and Tweedie regressions are three configurations of one
iteratively reweighted least squares (IRLS) fit, delegated to
:mod:`statsmodels`. Every fit goes through the same input checks, the same
convergence handling and produces the same immutable :class:`GLMResult`.

All families use the log link, so fitted means are ``exp(X @ beta + offset)``
and are strictly positive for any finite covariates.

IRLS stops when the deviance change falls below ``tol`` (absolute or
relative). A fit that exhausts its budget is still accepted when its last
two coefficient vectors agree within ``tol``, which happens on exact fits
where the deviance is rounding noise.

Dispersion conventions:
    - ``poisson``: fixed at 1.
    - ``gamma``: Pearson chi-square / residual df (method of moments).
    - ``tweedie``: deviance / residual df. The power-parameter profile uses
      the same estimator, so the dispersion reported by a fit matches the
      one its likelihood was evaluated at.
"""

from dataclasses import dataclass, field
import logging
from typing import Any, Dict, Optional, Tuple
import warnings

import numpy as np
import pandas as pd
import statsmodels.api as sm
from statsmodels.genmod.families import Gamma, Poisson, Tweedie
from statsmodels.genmod.families.links import Log

from .config.modeling import GLMConfig
from .exceptions import ConvergenceFailure, InvalidResponseError, NumericDomainError

logger = logging.getLogger(__name__)

INTERCEPT = "(Intercept)"
FAMILIES = ("poisson", "gamma", "tweedie")

_SCALE_METHOD = {"poisson": None, "gamma": "X2", "tweedie": "dev"}


def make_family(family: str, var_power: Optional[float] = None) -> sm.families.Family:
    """Build a statsmodels family with log link.

    Args:
        family: One of ``"poisson"``, ``"gamma"``, ``"tweedie"``.
        var_power: Tweedie variance power, required for ``"tweedie"`` and
            strictly inside (1, 2).

    Returns:
        Configured statsmodels family.

    Raises:
        ValueError: If the family is unknown or the power is invalid.
    """
    if family == "poisson":
        return Poisson(link=Log())
    if family == "gamma":
        return Gamma(link=Log())
    if family == "tweedie":
        if var_power is None or not 1.0 < var_power < 2.0:
            raise ValueError(
                f"Tweedie power must lie strictly in (1, 2), got {var_power}"
            )
        # eql=True: saddlepoint (extended quasi-) likelihood, defined for all y >= 0
        return Tweedie(link=Log(), var_power=var_power, eql=True)
    raise ValueError(f"Unknown family '{family}'. Must be one of {FAMILIES}")


def design_matrix(covariates: pd.DataFrame) -> pd.DataFrame:
    """Prepend an intercept column to the covariates.

    Args:
        covariates: Numeric covariate columns.

    Returns:
        Design matrix with ``(Intercept)`` as first column.

    Raises:
        NumericDomainError: If any covariate is missing or non-finite.
    """
    X = covariates.astype(float)
    values = X.to_numpy()
    if not np.all(np.isfinite(values)):
        bad = [c for c in X.columns if not np.all(np.isfinite(X[c].to_numpy()))]
        raise NumericDomainError(f"Non-finite covariate values in {bad}")
    X = X.copy()
    X.insert(0, INTERCEPT, 1.0)
    return X


def _check_response(y: np.ndarray, family: str) -> None:
    """Reject responses outside the family's support before optimisation.

    Raises:
        InvalidResponseError: Listing how many values are invalid.
    """
    n_nonfinite = int((~np.isfinite(y)).sum())
    if n_nonfinite:
        raise InvalidResponseError(
            f"{family} response has {n_nonfinite} non-finite value(s) (NaN or Inf)",
            n_invalid=n_nonfinite,
        )
    if family == "gamma":
        n_bad = int((y <= 0).sum())
        if n_bad:
            raise InvalidResponseError(
                f"gamma response must be strictly positive; {n_bad} value(s) <= 0",
                n_invalid=n_bad,
            )
    else:
        n_bad = int((y < 0).sum())
        if n_bad:
            raise InvalidResponseError(
                f"{family} response must be non-negative; {n_bad} negative value(s)",
                n_invalid=n_bad,
            )


@dataclass(frozen=True)
class GLMResult:
    """Immutable result of one GLM fit.

    Attributes:
        family: ``"poisson"``, ``"gamma"`` or ``"tweedie"``.
        var_power: Tweedie power parameter, ``None`` for other families.
        coef_names: Coefficient names in design-matrix order.
        coefficients: Name -> estimate.
        std_errors: Name -> Wald standard error.
        p_values: Name -> Wald p-value.
        dispersion: Dispersion estimate (see module docstring).
        deviance: Residual deviance.
        null_deviance: Deviance of the intercept(+offset)-only model.
        aic: Akaike information criterion as reported by statsmodels.
        log_likelihood: Log-likelihood at the estimate.
        n_obs: Number of observations.
        df_resid: Residual degrees of freedom.
        iterations: IRLS iterations used.
        converged: Whether IRLS met its tolerance.
        fitted_values: Fitted means, one per observation.
        deviance_residuals: Signed deviance residuals.
    """

    family: str
    var_power: Optional[float]
    coef_names: Tuple[str, ...]
    coefficients: Dict[str, float]
    std_errors: Dict[str, float]
    p_values: Dict[str, float]
    dispersion: float
    deviance: float
    null_deviance: float
    aic: float
    log_likelihood: float
    n_obs: int
    df_resid: float
    iterations: int
    converged: bool
    fitted_values: np.ndarray = field(repr=False)
    deviance_residuals: np.ndarray = field(repr=False)

    @property
    def pseudo_r2(self) -> float:
        """1 - deviance / null deviance (NaN when the null deviance is 0)."""
        if self.null_deviance <= 0:
            return float("nan")
        return 1.0 - self.deviance / self.null_deviance

    @property
    def params(self) -> np.ndarray:
        """Coefficient vector in design-matrix order."""
        return np.array([self.coefficients[name] for name in self.coef_names])

    def predict(self, covariates: pd.DataFrame, offset: Optional[np.ndarray] = None) -> np.ndarray:
        """Evaluate the fitted mean for new covariates.

        Args:
            covariates: Columns named like the non-intercept coefficients.
            offset: Optional offset on the linear-predictor scale.

        Returns:
            Predicted means, strictly positive.
        """
        X = design_matrix(covariates[list(self.coef_names[1:])])
        eta = X.to_numpy() @ self.params
        if offset is not None:
            eta = eta + np.asarray(offset, dtype=float)
        return np.exp(eta)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to plain Python types (floats are kept exactly)."""
        return {
            "family": self.family,
            "var_power": self.var_power,
            "coef_names": list(self.coef_names),
            "coefficients": dict(self.coefficients),
            "std_errors": dict(self.std_errors),
            "p_values": dict(self.p_values),
            "dispersion": self.dispersion,
            "deviance": self.deviance,
            "null_deviance": self.null_deviance,
            "aic": self.aic,
            "log_likelihood": self.log_likelihood,
            "n_obs": self.n_obs,
            "df_resid": self.df_resid,
            "iterations": self.iterations,
            "converged": self.converged,
            "fitted_values": self.fitted_values.tolist(),
            "deviance_residuals": self.deviance_residuals.tolist(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GLMResult":
        """Rebuild a result produced by :meth:`to_dict`."""
        return cls(
            family=data["family"],
            var_power=data["var_power"],
            coef_names=tuple(data["coef_names"]),
            coefficients={k: float(v) for k, v in data["coefficients"].items()},
            std_errors={k: float(v) for k, v in data["std_errors"].items()},
            p_values={k: float(v) for k, v in data["p_values"].items()},
            dispersion=float(data["dispersion"]),
            deviance=float(data["deviance"]),
            null_deviance=float(data["null_deviance"]),
            aic=float(data["aic"]),
            log_likelihood=float(data["log_likelihood"]),
            n_obs=int(data["n_obs"]),
            df_resid=float(data["df_resid"]),
            iterations=int(data["iterations"]),
            converged=bool(data["converged"]),
            fitted_values=_frozen(data["fitted_values"]),
            deviance_residuals=_frozen(data["deviance_residuals"]),
        )


def _frozen(values) -> np.ndarray:
    arr = np.array(values, dtype=float)
    arr.setflags(write=False)
    return arr


def _coefficients_settled(history: Dict[str, Any], tol: float) -> bool:
    """Whether the last two IRLS coefficient vectors agree within ``tol``.

    On an exact fit the deviance is zero up to rounding and can keep jumping
    between iterations while the coefficients no longer change.
    """
    params = history.get("params", [])
    if len(params) < 2 or params[-1] is None or params[-2] is None:
        return False
    previous = np.asarray(params[-2], dtype=float)
    last = np.asarray(params[-1], dtype=float)
    if previous.shape != last.shape or not np.all(np.isfinite(last)):
        return False
    return bool(np.allclose(previous, last, rtol=tol, atol=tol))


def fit_glm(
    response: np.ndarray,
    covariates: pd.DataFrame,
    family: str,
    *,
    var_power: Optional[float] = None,
    offset: Optional[np.ndarray] = None,
    config: Optional[GLMConfig] = None,
    label: str = "",
) -> GLMResult:
    """Fit a log-link GLM by IRLS.

    Args:
        response: Response vector.
        covariates: Covariate columns (intercept is added here).
        family: ``"poisson"``, ``"gamma"`` or ``"tweedie"``.
        var_power: Tweedie variance power.
        offset: Offset on the linear-predictor scale, e.g. ``log(exposure)``.
        config: Iteration budget; defaults to :class:`GLMConfig`.
        label: Model label used in logs and errors.

    Returns:
        Immutable :class:`GLMResult`.

    Raises:
        InvalidResponseError: If the response leaves the family's support.
        NumericDomainError: If covariates or offset are not finite.
        ConvergenceFailure: If IRLS does not converge or yields non-finite
            coefficients.
    """
    config = config or GLMConfig()
    label = label or family
    fam = make_family(family, var_power)

    y = np.asarray(response, dtype=float)
    _check_response(y, family)
    X = design_matrix(covariates)
    if len(X) != len(y):
        raise ValueError(f"response has {len(y)} rows but covariates have {len(X)}")

    if offset is not None:
        offset = np.asarray(offset, dtype=float)
        if not np.all(np.isfinite(offset)):
            raise NumericDomainError(f"{label}: offset contains non-finite values")

    model = sm.GLM(y, X, family=fam, offset=offset)
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        result = model.fit(
            maxiter=config.max_iter,
            tol=config.tol,
            rtol=config.tol,
            scale=_SCALE_METHOD[family],
            use_t=family != "poisson",
        )
    for w in caught:
        logger.debug("%s: statsmodels warning: %s", label, w.message)

    iterations = int(result.fit_history.get("iteration", 0))
    params = pd.Series(result.params, index=X.columns)
    converged = bool(getattr(result, "converged", True))
    if not converged and _coefficients_settled(result.fit_history, config.tol):
        logger.info(
            "%s: deviance still moving at rounding level but coefficients settled "
            "after %d iterations; accepting the fit",
            label,
            iterations,
        )
        converged = True
    if not converged or not np.all(np.isfinite(params.to_numpy())):
        raise ConvergenceFailure(
            f"{label} GLM did not converge",
            last_estimate=params.to_dict(),
            iterations=iterations,
            model=label,
        )

    with np.errstate(divide="ignore", invalid="ignore"):
        bse = pd.Series(result.bse, index=X.columns)
        pvalues = pd.Series(result.pvalues, index=X.columns)
        llf = float(result.llf)
        aic = float(result.aic)

    fit = GLMResult(
        family=family,
        var_power=var_power if family == "tweedie" else None,
        coef_names=tuple(X.columns),
        coefficients={k: float(v) for k, v in params.items()},
        std_errors={k: float(v) for k, v in bse.items()},
        p_values={k: float(v) for k, v in pvalues.items()},
        dispersion=float(result.scale),
        deviance=float(result.deviance),
        null_deviance=float(result.null_deviance),
        aic=aic,
        log_likelihood=llf,
        n_obs=int(result.nobs),
        df_resid=float(result.df_resid),
        iterations=iterations,
        converged=converged,
        fitted_values=_frozen(result.mu),
        deviance_residuals=_frozen(result.resid_deviance),
    )
    logger.info(
        "%s GLM converged in %d iterations: deviance=%.4g, pseudo-R2=%.4f, dispersion=%.4g",
        label,
        iterations,
        fit.deviance,
        fit.pseudo_r2,
        fit.dispersion,
    )
    return fit
