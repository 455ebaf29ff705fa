'''seq_forecast/errors.py

Exception types raised by the windowing, scaling, model and training code.'''


class SeqForecastError(Exception):
    """Base class for all package-specific errors."""


class DegenerateScaleError(SeqForecastError, ValueError):
    """A feature has zero (or non-finite) scale, so normalizing it would divide by zero."""


class InsufficientDataError(SeqForecastError, ValueError):
    """The series is too short for the requested window sizes."""


class ShapeMismatchError(SeqForecastError, ValueError):
    """A tensor reaching the model (or the reconstructor) has an unexpected shape."""


class NonFiniteLossError(SeqForecastError, RuntimeError):
    """NaN/Inf appeared in the loss during training or evaluation."""
