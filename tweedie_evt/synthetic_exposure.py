"""Compound Poisson-Gamma decomposition on synthetic exposure.

Aggregate loss data carries no exposure or claim counts, so both are
synthesized from two assumed constants::

    exposure      = premium / premium_per_exposure
    claim_count   = round(loss / severity_per_claim)

A Poisson frequency GLM (offset ``log(exposure)``) and a Gamma severity GLM
are then fitted on the synthetic fields and recombined per record. Because
the frequency fit already includes exposure through its offset, multiplying
the recombined pure premium by exposure again scales every forecast by the
exposure. The decomposition is kept as a demonstration of that failure mode
and is compared against the direct Tweedie model downstream.

Examples:
    Fit the decomposition with the default assumptions::

        from tweedie_evt.synthetic_exposure import fit_cp_gamma

        result = fit_cp_gamma(data)
        print(result.annual[["accident_year", "pct_error"]])
"""

from dataclasses import dataclass, field
import logging
from typing import Dict, Optional
import warnings

import numpy as np
import pandas as pd

from ._warnings import DataQualityWarning
from .comparison import AnnualChange, aggregate_annual, interpret_annual_change
from .config.modeling import GLMConfig, SyntheticExposureConfig
from .data import require_columns
from .exceptions import ConvergenceFailure, NumericDomainError
from .glm_engine import GLMResult, fit_glm

logger = logging.getLogger(__name__)

SYNTHETIC_COLUMNS = (
    "exposure",
    "claim_count",
    "implied_frequency",
    "implied_severity",
    "implied_pure_premium",
)


def compute_synthetic_exposure(
    data: pd.DataFrame,
    premium_per_exposure: float = 1000.0,
    severity_per_claim: float = 5000.0,
) -> pd.DataFrame:
    """Derive synthetic exposure, claim counts and implied ratios.

    Args:
        data: Observation table with ``loss`` and ``premium``.
        premium_per_exposure: Assumed premium per exposure unit.
        severity_per_claim: Assumed average cost per claim.

    Returns:
        Copy of ``data`` with the synthetic columns appended. Rows whose
        rounded claim count is 0 get ``implied_severity = inf``; their count
        is stored in ``attrs["n_zero_claims"]``.

    Raises:
        NumericDomainError: If either constant is not strictly positive.
    """
    if not premium_per_exposure > 0 or not severity_per_claim > 0:
        raise NumericDomainError(
            "premium_per_exposure and severity_per_claim must be strictly positive, got "
            f"{premium_per_exposure} and {severity_per_claim}"
        )
    require_columns(data, ("loss", "premium"))

    synth = data.copy()
    loss = synth["loss"].to_numpy(dtype=float)
    premium = synth["premium"].to_numpy(dtype=float)

    exposure = premium / premium_per_exposure
    # np.round rounds half to even
    claim_count = np.round(loss / severity_per_claim).astype(np.int64)

    with np.errstate(divide="ignore", invalid="ignore"):
        implied_severity = np.where(claim_count > 0, loss / claim_count, np.inf)
        synth["exposure"] = exposure
        synth["claim_count"] = claim_count
        synth["implied_frequency"] = claim_count / exposure
        synth["implied_severity"] = implied_severity
        synth["implied_pure_premium"] = loss / exposure

    n_zero = int((claim_count == 0).sum())
    synth.attrs["n_zero_claims"] = n_zero
    if n_zero:
        logger.warning("%d records have zero synthetic claims (loss < %g / 2)", n_zero, severity_per_claim)
        warnings.warn(
            f"{n_zero} records have zero synthetic claims; their implied severity is infinite",
            DataQualityWarning,
            stacklevel=2,
        )

    logger.info(
        "Synthetic exposure: mean %.1f units, mean %.1f claims, %d zero-claim records",
        float(np.mean(exposure)) if len(exposure) else float("nan"),
        float(np.mean(claim_count)) if len(claim_count) else float("nan"),
        n_zero,
    )
    return synth


def fit_frequency_model(synth: pd.DataFrame, config: Optional[GLMConfig] = None) -> GLMResult:
    """Fit ``log E[claim_count] = b0 + b1 * year + log(exposure)`` (Poisson).

    Args:
        synth: Output of :func:`compute_synthetic_exposure`.
        config: IRLS settings.

    Returns:
        Frequency :class:`GLMResult`; fitted values are expected claim
        counts (exposure included).

    Raises:
        NumericDomainError: If any exposure is not strictly positive.
        ConvergenceFailure: If the counts are degenerate (all zero or all
            equal) or IRLS does not converge.
    """
    require_columns(synth, ("accident_year", "exposure", "claim_count"))
    exposure = synth["exposure"].to_numpy(dtype=float)
    n_bad = int((~(exposure > 0)).sum())
    if n_bad:
        raise NumericDomainError(
            f"log(exposure) undefined: {n_bad} record(s) with non-positive or missing exposure"
        )

    counts = synth["claim_count"].to_numpy(dtype=float)
    if len(counts) == 0:
        raise ConvergenceFailure("frequency response is empty", iterations=0, model="frequency")
    if np.all(counts == 0):
        raise ConvergenceFailure(
            "frequency response is degenerate: all claim counts are zero",
            iterations=0,
            model="frequency",
        )
    if np.all(counts == counts[0]):
        raise ConvergenceFailure(
            f"frequency response is degenerate: all claim counts equal {counts[0]:g}",
            iterations=0,
            model="frequency",
        )

    return fit_glm(
        counts,
        synth[["accident_year"]],
        "poisson",
        offset=np.log(exposure),
        config=config,
        label="frequency",
    )


def fit_severity_model(synth: pd.DataFrame, config: Optional[GLMConfig] = None) -> GLMResult:
    """Fit ``log E[implied_severity] = b0 + b1 * year`` (Gamma).

    Args:
        synth: Records to fit; every ``implied_severity`` must be finite and
            strictly positive.
        config: IRLS settings.

    Returns:
        Severity :class:`GLMResult`.

    Raises:
        InvalidResponseError: If any response is 0, negative, Inf or NaN.
        ConvergenceFailure: If IRLS does not converge.
    """
    require_columns(synth, ("accident_year", "implied_severity"))
    return fit_glm(
        synth["implied_severity"].to_numpy(dtype=float),
        synth[["accident_year"]],
        "gamma",
        config=config,
        label="severity",
    )


def _finite_mean(values: pd.Series) -> float:
    finite = values[np.isfinite(values)]
    return float(finite.mean()) if len(finite) else float("nan")


@dataclass(frozen=True)
class CPGammaResult:
    """Outcome of the synthetic-exposure CP-Gamma decomposition.

    Attributes:
        data: Synthetic table with ``freq_fitted``, ``sev_fitted``,
            ``pure_premium_fitted`` and ``loss_fitted`` per record.
        frequency: Poisson frequency fit.
        severity: Gamma severity fit.
        annual: Annual aggregate table.
        assumptions: The two synthetic constants.
        n_zero_claims: Records with zero synthetic claims.
        n_excluded_from_severity: Records left out of the severity fit.
        frequency_trend: Annual change implied by the frequency year effect.
        severity_trend: Annual change implied by the severity year effect.
    """

    data: pd.DataFrame = field(repr=False)
    frequency: GLMResult
    severity: GLMResult
    annual: pd.DataFrame = field(repr=False)
    assumptions: Dict[str, float]
    n_zero_claims: int
    n_excluded_from_severity: int
    frequency_trend: AnnualChange
    severity_trend: AnnualChange


def fit_cp_gamma(
    data: pd.DataFrame, config: Optional[SyntheticExposureConfig] = None
) -> CPGammaResult:
    """Run the full synthetic-exposure CP-Gamma decomposition.

    Args:
        data: Canonical observation table.
        config: Synthetic constants and IRLS settings.

    Returns:
        :class:`CPGammaResult`.

    Raises:
        NumericDomainError: On invalid constants or exposure.
        ConvergenceFailure: If either GLM fails to converge.
    """
    config = config or SyntheticExposureConfig()
    synth = compute_synthetic_exposure(data, config.premium_per_exposure, config.severity_per_claim)
    n_zero = synth.attrs["n_zero_claims"]

    frequency = fit_frequency_model(synth, config.glm)

    severity_mask = np.isfinite(synth["implied_severity"].to_numpy()) & (
        synth["implied_severity"].to_numpy() > 0
    )
    n_excluded = int((~severity_mask).sum())
    if n_excluded:
        logger.info("Excluding %d zero-claim records from the severity fit", n_excluded)
    severity = fit_severity_model(synth.loc[severity_mask], config.glm)

    synth = synth.copy()
    synth["freq_fitted"] = frequency.fitted_values
    synth["sev_fitted"] = severity.predict(synth[["accident_year"]])
    synth["pure_premium_fitted"] = synth["freq_fitted"] * synth["sev_fitted"]
    synth["loss_fitted"] = synth["pure_premium_fitted"] * synth["exposure"]

    annual = aggregate_annual(
        synth,
        synth["loss_fitted"].to_numpy(),
        extra={
            "avg_frequency": ("implied_frequency", "mean"),
            "avg_severity": ("implied_severity", _finite_mean),
            "avg_pure_premium": ("implied_pure_premium", "mean"),
            "total_exposure": ("exposure", "sum"),
        },
    )

    frequency_trend = interpret_annual_change(frequency.coefficients["accident_year"])
    severity_trend = interpret_annual_change(severity.coefficients["accident_year"])
    logger.info(
        "CP-Gamma trends: frequency %+.2f%%/yr, severity %+.2f%%/yr",
        frequency_trend.pct_change,
        severity_trend.pct_change,
    )

    return CPGammaResult(
        data=synth,
        frequency=frequency,
        severity=severity,
        annual=annual,
        assumptions={
            "premium_per_exposure": config.premium_per_exposure,
            "severity_per_claim": config.severity_per_claim,
        },
        n_zero_claims=n_zero,
        n_excluded_from_severity=n_excluded,
        frequency_trend=frequency_trend,
        severity_trend=severity_trend,
    )
