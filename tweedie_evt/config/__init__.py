"""Configuration management using Pydantic v2 models.

Sub-modules:
    core: Master ``AnalysisConfig`` composing all sections.
    data: Dataset source and column mapping.
    modeling: GLM iteration budget, synthetic exposure assumptions, Tweedie
        power grid and extreme value settings.
    reporting: Output directory and logging.

Examples:
    Defaults reproduce the reference analysis::

        from tweedie_evt.config import AnalysisConfig

        config = AnalysisConfig()
        config.setup_logging()

    Coarser power grid::

        config = AnalysisConfig().override({"tweedie.p_step": 0.2})
"""

from .core import AnalysisConfig
from .data import SCHEDULE_P_URL, DataConfig
from .modeling import EVTConfig, GLMConfig, SyntheticExposureConfig, TweedieConfig
from .reporting import LoggingConfig, OutputConfig

__all__ = [
    "AnalysisConfig",
    "DataConfig",
    "EVTConfig",
    "GLMConfig",
    "LoggingConfig",
    "OutputConfig",
    "SCHEDULE_P_URL",
    "SyntheticExposureConfig",
    "TweedieConfig",
]
