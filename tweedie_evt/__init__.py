"""Tweedie and extreme value models for aggregate insurance losses"""

from ._version import __version__

# Lazy imports keep ``import tweedie_evt`` cheap; statsmodels and scipy are
# loaded only when a model is accessed

__all__ = [
    "__version__",
    "AnalysisConfig",
    "AnalysisResults",
    "ConvergenceFailure",
    "DataQualityError",
    "GEVFit",
    "GLMResult",
    "GPDFit",
    "InsufficientExceedancesError",
    "NumericDomainError",
    "TweedieFit",
    "fit_cp_gamma",
    "fit_gev",
    "fit_glm",
    "fit_gpd",
    "fit_tweedie",
    "load_fit",
    "profile_power",
    "run_analysis",
    "save_fit",
]


def __getattr__(name):
    """Lazy import modules on first attribute access."""
    if name == "AnalysisConfig":
        from .config import AnalysisConfig

        return AnalysisConfig
    elif name == "AnalysisResults" or name == "run_analysis":
        from .pipeline import AnalysisResults, run_analysis

        return locals()[name]
    elif name in (
        "ConvergenceFailure",
        "DataQualityError",
        "InsufficientExceedancesError",
        "NumericDomainError",
    ):
        from . import exceptions

        return getattr(exceptions, name)
    elif name == "GLMResult" or name == "fit_glm":
        from .glm_engine import GLMResult, fit_glm

        return locals()[name]
    elif name == "fit_cp_gamma":
        from .synthetic_exposure import fit_cp_gamma

        return fit_cp_gamma
    elif name in ("TweedieFit", "fit_tweedie", "profile_power"):
        from .tweedie import TweedieFit, fit_tweedie, profile_power

        return locals()[name]
    elif name in ("GEVFit", "GPDFit", "fit_gev", "fit_gpd"):
        from .extreme_value import GEVFit, GPDFit, fit_gev, fit_gpd

        return locals()[name]
    elif name == "save_fit" or name == "load_fit":
        from .serialization import load_fit, save_fit

        return locals()[name]
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
