"""Dataset provider for company-year aggregate loss observations.

This module turns a raw CAS Schedule P extract into the canonical
observation table consumed by every model, and validates that table before
any fit begins:

- ``company_id``: company (group) identifier
- ``accident_year``: integer accident year
- ``loss``: incurred loss at the fully-developed lag, strictly positive
- ``premium``: earned premium, strictly positive

Rows are never dropped silently: every filter logs how many rows it removed.
"""

from dataclasses import dataclass
import logging
from typing import Optional, Sequence, Tuple
import warnings

import numpy as np
import pandas as pd

from ._warnings import DataQualityWarning
from .config.data import DataConfig
from .exceptions import DataQualityError

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: Tuple[str, ...] = ("company_id", "accident_year", "loss", "premium")


@dataclass(frozen=True)
class DatasetSummary:
    """Descriptive summary of a validated observation table."""

    n_obs: int
    n_companies: int
    n_years: int
    year_range: Tuple[int, int]
    loss_ratio_mean: float
    n_extreme_loss_ratio: int


def require_columns(df: pd.DataFrame, cols: Sequence[str]) -> None:
    """Raise :class:`DataQualityError` if any of ``cols`` is missing.

    Args:
        df: Table to check.
        cols: Required column names.

    Raises:
        DataQualityError: Listing the missing columns.
    """
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise DataQualityError([f"Missing required columns: {missing}"])


def prepare_schedule_p(raw: pd.DataFrame, config: Optional[DataConfig] = None) -> pd.DataFrame:
    """Filter a raw Schedule P table down to modelable observations.

    Keeps the fully-developed lag only, maps raw columns to canonical names,
    then removes rows with missing critical fields and rows with
    non-positive loss or premium.

    Args:
        raw: Raw Schedule P table (one row per company, accident year and lag).
        config: Dataset configuration; defaults to :class:`DataConfig`.

    Returns:
        Canonical observation table sorted by accident year and company.

    Raises:
        DataQualityError: If raw columns are missing or nothing survives
            the filters.
    """
    config = config or DataConfig()
    require_columns(raw, list(config.column_map.keys()) + ["DevelopmentLag"])

    n_raw = len(raw)
    developed = raw.loc[raw["DevelopmentLag"] == config.development_lag]
    logger.info(
        "Kept %d of %d rows at development lag %d", len(developed), n_raw, config.development_lag
    )

    data = developed.rename(columns=config.column_map)[list(config.column_map.values())].copy()

    na_mask = data[list(REQUIRED_COLUMNS)].isna().any(axis=1)
    n_na = int(na_mask.sum())
    if n_na:
        logger.warning("Dropping %d rows with missing critical fields", n_na)
        warnings.warn(
            f"{n_na} rows dropped for missing loss, premium, year or company",
            DataQualityWarning,
            stacklevel=2,
        )
        data = data.loc[~na_mask]

    positive = (data["loss"] > 0) & (data["premium"] > 0)
    n_nonpositive = int((~positive).sum())
    if n_nonpositive:
        logger.info("Dropping %d rows with non-positive loss or premium", n_nonpositive)
        data = data.loc[positive]

    if data.empty:
        raise DataQualityError(["No observations left after filtering"])

    data = data.astype({"accident_year": int, "loss": float, "premium": float})
    return data.sort_values(["accident_year", "company_id"]).reset_index(drop=True)


def load_schedule_p(
    source: Optional[str] = None, config: Optional[DataConfig] = None
) -> pd.DataFrame:
    """Load a Schedule P CSV from a path or URL and prepare it.

    Args:
        source: CSV path or URL; defaults to ``config.source``.
        config: Dataset configuration.

    Returns:
        Canonical observation table.
    """
    config = config or DataConfig()
    source = source or config.source
    logger.info("Loading Schedule P data from %s", source)
    raw = pd.read_csv(source)
    return prepare_schedule_p(raw, config)


def validate_model_data(data: pd.DataFrame, max_loss_ratio: float = 10.0) -> DatasetSummary:
    """Validate an observation table before any model is fitted.

    Args:
        data: Canonical observation table.
        max_loss_ratio: Loss ratio above which a row is flagged.

    Returns:
        Summary of the validated table.

    Raises:
        DataQualityError: On missing columns, an empty table, missing
            values in critical fields, or non-positive loss/premium. All
            issues found are reported together with their counts.
    """
    require_columns(data, REQUIRED_COLUMNS)

    if len(data) == 0:
        raise DataQualityError(["Dataset is empty (0 rows)"])

    issues = []
    for col in REQUIRED_COLUMNS:
        n_null = int(data[col].isna().sum())
        if n_null:
            issues.append(f"{n_null} rows have missing {col}")

    for col in ("loss", "premium"):
        values = pd.to_numeric(data[col], errors="coerce")
        n_bad = int((values <= 0).sum())
        if n_bad:
            issues.append(f"{n_bad} rows have non-positive {col}")
        n_inf = int(np.isinf(values).sum())
        if n_inf:
            issues.append(f"{n_inf} rows have infinite {col}")

    if issues:
        raise DataQualityError(issues)

    loss_ratio = data["loss"].to_numpy(dtype=float) / data["premium"].to_numpy(dtype=float)
    n_extreme = int((loss_ratio > max_loss_ratio).sum())
    if n_extreme:
        warnings.warn(
            f"{n_extreme} rows have loss ratio > {max_loss_ratio:g}",
            DataQualityWarning,
            stacklevel=2,
        )

    years = data["accident_year"].astype(int)
    return DatasetSummary(
        n_obs=len(data),
        n_companies=int(data["company_id"].nunique()),
        n_years=int(years.nunique()),
        year_range=(int(years.min()), int(years.max())),
        loss_ratio_mean=float(np.mean(loss_ratio)),
        n_extreme_loss_ratio=n_extreme,
    )
