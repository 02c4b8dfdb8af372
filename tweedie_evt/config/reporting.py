"""Output and logging configuration.

Controls where fitted models and tables are written and how the
``tweedie_evt`` logger is set up.
"""

from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field


class OutputConfig(BaseModel):
    """Output configuration for saved fits and tables."""

    output_directory: str = Field(default="results", description="Directory for saving results")
    save_fits: bool = Field(default=False, description="Persist fitted models as JSON")

    @property
    def output_path(self) -> Path:
        """Get output directory as Path object.

        Returns:
            Path object for the output directory.
        """
        return Path(self.output_directory)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Controls logging behavior including level, output destinations,
    and message formatting.
    """

    enabled: bool = Field(default=True, description="Enable logging")
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    log_file: Optional[str] = Field(
        default=None, description="Log file path (None=no file logging)"
    )
    console_output: bool = Field(default=True, description="Log to console")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format",
    )
