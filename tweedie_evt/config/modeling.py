"""Model configuration: GLM engine, synthetic exposure, Tweedie and EVT.

Each fit in the package is a pure function of (data, one of these
configs). Constants such as the synthetic premium per exposure unit are
demonstration knobs, never estimated.
"""

from typing import List, Optional
import warnings

import numpy as np
from pydantic import BaseModel, Field, field_validator, model_validator

from .._warnings import ConfigurationWarning


class GLMConfig(BaseModel):
    """Iteration budget for the IRLS engine."""

    max_iter: int = Field(default=100, ge=1, description="Maximum IRLS iterations")
    tol: float = Field(default=1e-8, gt=0, description="Relative deviance convergence tolerance")


class SyntheticExposureConfig(BaseModel):
    """Assumptions used to synthesize exposure and claim counts from premium."""

    premium_per_exposure: float = Field(
        default=1000.0, gt=0, description="Assumed average premium per car-year"
    )
    severity_per_claim: float = Field(
        default=5000.0, gt=0, description="Assumed average severity per claim"
    )
    glm: GLMConfig = Field(default_factory=GLMConfig)


class TweedieConfig(BaseModel):
    """Power-parameter grid and fitting options for the Tweedie model.

    The grid is either ``p_values`` when given, or the arithmetic sequence
    ``p_start, p_start + p_step, ..., p_stop``. All values must lie strictly
    inside (1, 2).
    """

    p_start: float = Field(default=1.1, gt=1, lt=2, description="First grid value")
    p_stop: float = Field(default=1.9, gt=1, lt=2, description="Last grid value")
    p_step: float = Field(default=0.05, gt=0, lt=1, description="Grid step")
    p_values: Optional[List[float]] = Field(
        default=None, description="Explicit grid, overrides start/stop/step"
    )
    confidence: float = Field(
        default=0.95, gt=0, lt=1, description="Likelihood-ratio interval level"
    )
    cross_validate: bool = Field(
        default=False, description="Run k-fold cross-validation at the optimal power"
    )
    cv_folds: int = Field(default=10, ge=2, description="Cross-validation folds")
    seed: int = Field(default=42, description="Seed for cross-validation fold assignment")
    glm: GLMConfig = Field(default_factory=GLMConfig)

    @field_validator("p_values")
    @classmethod
    def validate_p_values(cls, v: Optional[List[float]]) -> Optional[List[float]]:
        """Validate an explicit power grid.

        Args:
            v: Grid values.

        Returns:
            Sorted, de-duplicated grid.

        Raises:
            ValueError: If the grid is empty or leaves (1, 2).
        """
        if v is None:
            return v
        if len(v) == 0:
            raise ValueError("p_values must not be empty")
        bad = [p for p in v if not 1.0 < p < 2.0]
        if bad:
            raise ValueError(f"Power values must lie strictly in (1, 2), got {bad}")
        return sorted(set(float(p) for p in v))

    @model_validator(mode="after")
    def validate_range(self):
        """Ensure the grid bounds are ordered and the grid is usable.

        Returns:
            Validated config.

        Raises:
            ValueError: If ``p_start`` exceeds ``p_stop``.
        """
        if self.p_start > self.p_stop:
            raise ValueError(f"p_start ({self.p_start}) must not exceed p_stop ({self.p_stop})")
        if len(self.grid()) < 3:
            warnings.warn(
                "Power grid has fewer than 3 points; the likelihood interval "
                "will be bounded by the grid ends",
                ConfigurationWarning,
                stacklevel=2,
            )
        return self

    def grid(self) -> np.ndarray:
        """Return the candidate power values in increasing order.

        Returns:
            Array of power values.
        """
        if self.p_values is not None:
            return np.asarray(self.p_values, dtype=float)
        n = int(np.floor((self.p_stop - self.p_start) / self.p_step + 1e-9)) + 1
        return np.round(self.p_start + self.p_step * np.arange(n), 10)


class EVTConfig(BaseModel):
    """Extreme value settings: GPD threshold, return periods, tolerances."""

    threshold_percentile: float = Field(
        default=0.85, gt=0, le=1, description="Quantile of the loss series used as GPD threshold"
    )
    return_periods: List[float] = Field(
        default_factory=lambda: [10.0, 20.0, 50.0, 100.0],
        description="Return periods in years",
    )
    min_exceedances: int = Field(
        default=3, ge=1, description="Minimum exceedances required for a GPD fit"
    )
    shape_tolerance: float = Field(
        default=1e-6, gt=0, description="|shape| below which the exponential GPD limit is used"
    )
    gumbel_band: float = Field(
        default=0.05, gt=0, description="|shape| below which a tail is read as exponential/Gumbel"
    )
    max_iter: int = Field(default=5000, ge=10, description="Optimizer iteration budget")

    @field_validator("return_periods")
    @classmethod
    def validate_return_periods(cls, v: List[float]) -> List[float]:
        """Validate return periods.

        Args:
            v: Return periods.

        Returns:
            Sorted return periods.

        Raises:
            ValueError: If any period is not greater than 1.
        """
        if not v:
            raise ValueError("return_periods must not be empty")
        if any(t <= 1 for t in v):
            raise ValueError(f"Return periods must exceed 1 year, got {v}")
        return sorted(float(t) for t in v)
