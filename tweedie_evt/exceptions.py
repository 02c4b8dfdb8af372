"""Exception taxonomy for loss model fitting.

Every exception raised deliberately by this package derives from
:class:`LossModelError`, so callers can separate modeling failures from
programming errors with a single ``except`` clause.

Propagation:
    :class:`DataQualityError` and :class:`NumericDomainError` abort the
    specific fit that detected them. :class:`ConvergenceFailure` always
    carries the optimizer's last estimate so it can be inspected rather
    than discarded.
"""

from typing import Any, Dict, List, Optional


class LossModelError(Exception):
    """Base class for all tweedie_evt errors."""


class DataQualityError(LossModelError):
    """Raised when input data fails validation before any fit begins.

    Attributes:
        issues: List of specific data problems found, each with a count.

    Examples:
        Catching and inspecting issues::

            try:
                validate_model_data(df)
            except DataQualityError as e:
                for issue in e.issues:
                    print(f"  - {issue}")
    """

    def __init__(self, issues: List[str]) -> None:
        if isinstance(issues, str):
            issues = [issues]
        self.issues = list(issues)
        bullet_list = "\n".join(f"  - {issue}" for issue in self.issues)
        super().__init__(
            f"Data has {len(self.issues)} critical "
            f"{'issue' if len(self.issues) == 1 else 'issues'}:\n{bullet_list}"
        )


class InsufficientExceedancesError(DataQualityError):
    """Raised when a peaks-over-threshold fit has too few exceedances.

    Attributes:
        threshold: The threshold that was applied.
        n_exceedances: Number of observations strictly above it.
        required: Minimum number of exceedances needed for the fit.
    """

    def __init__(self, threshold: float, n_exceedances: int, required: int) -> None:
        self.threshold = threshold
        self.n_exceedances = n_exceedances
        self.required = required
        super().__init__(
            [
                f"insufficient exceedances: {n_exceedances} observation(s) above "
                f"threshold {threshold:,.2f}, at least {required} required"
            ]
        )


class NumericDomainError(LossModelError, ValueError):
    """Raised when a value would leave the domain of a numeric operation.

    Examples include taking the log of a non-positive exposure or feeding an
    infinite response into an optimizer.
    """


class InvalidResponseError(NumericDomainError):
    """Raised when a GLM response is outside its family's support.

    Attributes:
        n_invalid: Number of offending response values.
    """

    def __init__(self, message: str, n_invalid: int = 0) -> None:
        self.n_invalid = n_invalid
        super().__init__(message)


class ConvergenceFailure(LossModelError):
    """Raised when an optimizer fails to converge within its budget.

    Attributes:
        last_estimate: Parameter estimate at the final iteration, keyed by
            parameter name.
        iterations: Number of iterations performed.
        model: Label of the model that failed.
    """

    def __init__(
        self,
        message: str,
        last_estimate: Optional[Dict[str, Any]] = None,
        iterations: Optional[int] = None,
        model: str = "",
    ) -> None:
        self.last_estimate = dict(last_estimate or {})
        self.iterations = iterations
        self.model = model
        detail = []
        if model:
            detail.append(f"model={model}")
        if iterations is not None:
            detail.append(f"iterations={iterations}")
        if self.last_estimate:
            params = ", ".join(f"{k}={v:.6g}" for k, v in self.last_estimate.items())
            detail.append(f"last estimate: {params}")
        suffix = f" ({'; '.join(detail)})" if detail else ""
        super().__init__(f"{message}{suffix}")
