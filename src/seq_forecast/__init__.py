'''seq_forecast/__init__.py

Sliding-window LSTM forecasting: windowed datasets, an LSTM + MLP-head
forecaster, a one-cycle / early-stopping training loop, and reconstruction
of de-normalized multi-step forecasts on the original timeline.'''

from .errors import (
    DegenerateScaleError,
    InsufficientDataError,
    NonFiniteLossError,
    SeqForecastError,
    ShapeMismatchError,
)

__version__ = "0.1.0"

__all__ = [
    "DegenerateScaleError",
    "InsufficientDataError",
    "NonFiniteLossError",
    "SeqForecastError",
    "ShapeMismatchError",
]
