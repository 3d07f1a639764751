"""
Error and warning types for the theophylline spline analysis.

Fatal conditions are exceptions and abort the pipeline. Advisory conditions
are warnings: they are emitted through the `warnings` module and also kept on
the result object they concern, so downstream stages still run.
"""


class ConfigurationError(ValueError):
    """Malformed formula or prior, invalid knot, or bad sampler settings."""


class UnknownCoefficientError(ConfigurationError):
    """A coefficient was requested that the fitted model does not have."""


class DatasetUnavailableError(RuntimeError):
    """The observation table could not be loaded or fails its schema."""


class FitBudgetExceededError(RuntimeError):
    """Sampling did not finish within the configured wall-clock ceiling."""


class AlignmentError(RuntimeError):
    """Fitted values do not line up row-for-row with the observations."""


class SamplerWarning(UserWarning):
    """Divergent transitions, high R-hat or low effective sample size."""


class SmoothingWarning(UserWarning):
    """A LOESS neighbourhood held too few points and the span was widened."""
