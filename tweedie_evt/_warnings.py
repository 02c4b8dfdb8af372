"""Custom warning classes for the tweedie_evt package.

These warning classes allow callers to programmatically filter, suppress,
or capture non-fatal findings using Python's standard ``warnings`` module.
None of them halt an analysis.

Example:
    Silence fit-quality notes in a batch run::

        import warnings
        from tweedie_evt._warnings import FitQualityWarning

        warnings.filterwarnings("ignore", category=FitQualityWarning)

    Capture data-quality observations while fitting the synthetic model::

        with warnings.catch_warnings(record=True) as w:
            warnings.simplefilter("always", DataQualityWarning)
            result = fit_cp_gamma(data)
            issues = [x for x in w if issubclass(x.category, DataQualityWarning)]
"""


class TweedieEvtWarning(UserWarning):
    """Base class for all tweedie_evt warnings."""


class ConfigurationWarning(TweedieEvtWarning):
    """Unusual but accepted configuration values.

    Raised during config validation, e.g. when a power grid is too coarse to
    resolve the optimum meaningfully.
    """


class DataQualityWarning(TweedieEvtWarning):
    """Data anomalies that do not block a fit.

    Raised for zero synthetic claim counts, extreme loss ratios and rows
    dropped by the dataset provider.
    """


class FitQualityWarning(TweedieEvtWarning):
    """A fit succeeded but its diagnostics are poor.

    Raised for pseudo-R² near zero or outside [0, 1], coefficients whose
    Wald p-value exceeds 0.05, systematic prediction bias above 5%, and GPD
    fits that only converged without standard errors.
    """
