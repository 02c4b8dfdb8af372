"""Fit-quality checks for GLM and extreme value fits.

Checks never raise: each finding is returned as a message and emitted as a
:class:`~tweedie_evt._warnings.FitQualityWarning`, so batch runs can filter
or collect them with the ``warnings`` module.
"""

import logging
from typing import List, Optional, Tuple
import warnings

import numpy as np

from ._warnings import FitQualityWarning
from .extreme_value import GEVFit, GPDFit
from .glm_engine import INTERCEPT, GLMResult

logger = logging.getLogger(__name__)


def _emit(issues: List[str], label: str) -> None:
    for issue in issues:
        logger.warning("%s: %s", label, issue)
        warnings.warn(f"{label}: {issue}", FitQualityWarning, stacklevel=3)


def check_glm_fit(
    fit: GLMResult,
    alpha: float = 0.05,
    min_pseudo_r2: float = 0.01,
    label: str = "",
) -> Tuple[bool, List[str]]:
    """Check a GLM fit for weak explanatory power and insignificant terms.

    Args:
        fit: GLM result.
        alpha: Significance level for Wald p-values.
        min_pseudo_r2: Pseudo-R2 below which the fit is flagged.
        label: Model label for messages.

    Returns:
        Tuple of (passes_all_checks, list_of_issues)
    """
    label = label or fit.family
    issues = []

    r2 = fit.pseudo_r2
    if not np.isfinite(r2) or r2 < 0 or r2 > 1:
        issues.append(f"pseudo-R2 {r2:.4g} outside [0, 1]")
    elif r2 < min_pseudo_r2:
        issues.append(f"pseudo-R2 {r2:.4f} below {min_pseudo_r2:g}")

    for name in fit.coef_names:
        if name == INTERCEPT:
            continue
        p_value = fit.p_values[name]
        if np.isfinite(p_value) and p_value > alpha:
            issues.append(f"coefficient '{name}' not significant (p={p_value:.3g})")

    if not np.isfinite(fit.dispersion):
        issues.append("dispersion is not finite")

    _emit(issues, label)
    return len(issues) == 0, issues


def check_evt_fits(
    gev: Optional[GEVFit] = None, gpd: Optional[GPDFit] = None
) -> Tuple[bool, List[str]]:
    """Check extreme value fits for missing uncertainty and inconsistent tails.

    Flags a non-converged GEV, a degraded GPD, missing GEV standard errors,
    and GEV and GPD shapes that point to different tail domains.

    Returns:
        Tuple of (passes_all_checks, list_of_issues)
    """
    issues = []
    if gev is not None and not gev.converged:
        issues.append(f"GEV fit not converged (shape {gev.shape:.3f} on its lower bound)")
    if gev is not None and not all(np.isfinite(v) for v in gev.std_errors.values()):
        issues.append("GEV standard errors unavailable (Hessian not positive definite)")
    if gpd is not None and gpd.status == "degraded":
        issues.append("GPD fitted without standard errors")
    if gev is not None and gpd is not None:
        if np.sign(gev.shape) != np.sign(gpd.shape) and min(abs(gev.shape), abs(gpd.shape)) >= gev.gumbel_band:
            issues.append(
                f"GEV shape {gev.shape:.3f} and GPD shape {gpd.shape:.3f} disagree on the tail domain"
            )

    _emit(issues, "EVT")
    return len(issues) == 0, issues
