'''seq_forecast/utils/__init__.py

Scaling, windowed-forecast reconstruction, splitting, evaluation and
reproducibility helpers.'''

from .scaling import ScalingStats, SeriesScaler, compute_scaling_stats
from .reconstruct import overlay_forecasts, predictions_to_frame, reconstruct_forecast
from .seeding import derive_seed, set_global_seed

__all__ = [
    "ScalingStats",
    "SeriesScaler",
    "compute_scaling_stats",
    "overlay_forecasts",
    "predictions_to_frame",
    "reconstruct_forecast",
    "derive_seed",
    "set_global_seed",
]
