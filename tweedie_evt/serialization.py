"""JSON persistence of fitted models.

Fits are written as a small JSON document::

    {"format_version": 1, "kind": "glm" | "gev" | "gpd", "fit": {...}}

Python's ``json`` module writes floats with ``repr`` so coefficients,
standard errors, dispersion and power parameter read back bit-for-bit.
"""

from dataclasses import asdict
import json
import logging
from pathlib import Path
from typing import Any, Dict, Union

from .extreme_value import GEVFit, GPDFit
from .glm_engine import GLMResult
from .tweedie import TweedieFit

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1

Fit = Union[GLMResult, GEVFit, GPDFit]


def fit_to_dict(fit: Union[Fit, TweedieFit]) -> Dict[str, Any]:
    """Wrap a fit in a versioned, JSON-compatible document.

    A :class:`~tweedie_evt.tweedie.TweedieFit` is stored as its underlying
    GLM result.

    Raises:
        TypeError: If ``fit`` is not a supported fit type.
    """
    if isinstance(fit, TweedieFit):
        fit = fit.model
    if isinstance(fit, GLMResult):
        kind, payload = "glm", fit.to_dict()
    elif isinstance(fit, GEVFit):
        kind, payload = "gev", asdict(fit)
    elif isinstance(fit, GPDFit):
        kind, payload = "gpd", asdict(fit)
    else:
        raise TypeError(f"Cannot serialize object of type {type(fit).__name__}")
    return {"format_version": FORMAT_VERSION, "kind": kind, "fit": payload}


def fit_from_dict(document: Dict[str, Any]) -> Fit:
    """Rebuild a fit from :func:`fit_to_dict` output.

    Raises:
        ValueError: On an unknown format version or kind.
    """
    version = document.get("format_version")
    if version != FORMAT_VERSION:
        raise ValueError(f"Unsupported fit format version: {version}")
    kind = document.get("kind")
    payload = document["fit"]
    if kind == "glm":
        return GLMResult.from_dict(payload)
    if kind == "gev":
        return GEVFit(**payload)
    if kind == "gpd":
        return GPDFit(**payload)
    raise ValueError(f"Unknown fit kind: {kind}")


def save_fit(fit: Union[Fit, TweedieFit], path: Union[str, Path]) -> Path:
    """Write a fit to a JSON file, creating parent directories.

    Args:
        fit: GLM, Tweedie, GEV or GPD fit.
        path: Destination file.

    Returns:
        The path written.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(fit_to_dict(fit), f, indent=2)
    logger.info("Saved %s fit to %s", type(fit).__name__, path)
    return path


def load_fit(path: Union[str, Path]) -> Fit:
    """Read a fit written by :func:`save_fit`.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the document is not a recognised fit.
    """
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        document = json.load(f)
    return fit_from_dict(document)
