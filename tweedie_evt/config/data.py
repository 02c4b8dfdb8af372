"""Dataset provider configuration.

Describes where the Schedule P extract lives and how raw columns map onto
the canonical observation fields used by every model.
"""

from typing import Dict

from pydantic import BaseModel, Field, field_validator

SCHEDULE_P_URL = "https://www.casact.org/sites/default/files/2021-04/ppauto_pos.csv"


class DataConfig(BaseModel):
    """Configuration for loading and filtering the loss dataset."""

    source: str = Field(default=SCHEDULE_P_URL, description="CSV path or URL")
    development_lag: int = Field(
        default=10, ge=1, description="Development lag treated as fully developed"
    )
    column_map: Dict[str, str] = Field(
        default_factory=lambda: {
            "GRCODE": "company_id",
            "GRNAME": "company_name",
            "AccidentYear": "accident_year",
            "IncurLoss_B": "loss",
            "EarnedPremDIR_B": "premium",
        },
        description="Raw column name -> canonical column name",
    )
    max_loss_ratio: float = Field(
        default=10.0, gt=0, description="Loss ratio above which rows are flagged"
    )

    @field_validator("column_map")
    @classmethod
    def validate_column_map(cls, v: Dict[str, str]) -> Dict[str, str]:
        """Ensure every required canonical column has a source column.

        Args:
            v: Mapping to validate.

        Returns:
            Validated mapping.

        Raises:
            ValueError: If a required canonical column is not mapped.
        """
        required = {"company_id", "accident_year", "loss", "premium"}
        missing = required - set(v.values())
        if missing:
            raise ValueError(f"column_map does not provide: {sorted(missing)}")
        return v
