'''seq_forecast/pipeline/__init__.py

Expose the dataset, model, trainer and pipeline classes at the package level
so users can import directly from seq_forecast.pipeline.'''

from .dataset import WindowedSequenceDataset, make_batch_loader
from .model import SequenceForecaster
from .schedules import (
    ConstantSchedule,
    GeometricSweep,
    NeverStop,
    OneCycleSchedule,
    PatienceStopping,
)
from .trainer import FitResult, LRFinderResult, SequenceTrainer, Termination, TrainingState
from .lstm import (
    DataConfig,
    LSTMPipeline,
    LSTMRunConfig,
    ModelConfig,
    TrainConfig,
    WindowConfig,
)

# Define what should be available when using `from seq_forecast.pipeline import *`
__all__ = [
    "WindowedSequenceDataset",
    "make_batch_loader",
    "SequenceForecaster",
    "ConstantSchedule",
    "GeometricSweep",
    "NeverStop",
    "OneCycleSchedule",
    "PatienceStopping",
    "FitResult",
    "LRFinderResult",
    "SequenceTrainer",
    "Termination",
    "TrainingState",
    "DataConfig",
    "LSTMPipeline",
    "LSTMRunConfig",
    "ModelConfig",
    "TrainConfig",
    "WindowConfig",
]
