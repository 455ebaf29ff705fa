import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd
import torch
from torch.utils.data import DataLoader

from ..utils.datasplit import split_series
from ..utils.evaluation import errors_by_step, forecast_errors
from ..utils.reconstruct import predictions_to_frame, reconstruct_forecast
from ..utils.scaling import ScalingStats, SeriesScaler, as_2d_array
from ..utils.seeding import derive_seed, set_global_seed
from ..utils.yaml import safe_dump_yaml
from .dataset import WindowedSequenceDataset, count_windows, make_batch_loader
from .model import SequenceForecaster
from .schedules import ConstantSchedule, OneCycleSchedule, make_stopping_policy
from .trainer import FitResult, LRFinderResult, SequenceTrainer

SeriesLike = Union[np.ndarray, pd.Series, pd.DataFrame]


# ─────────────────────────────────────────────────────────────────────────────
# Config classes (split into window/data/model/train + top-level)
# ─────────────────────────────────────────────────────────────────────────────

class _FromDictMixin:
    @classmethod
    def from_dict(cls, d: Mapping[str, Any]):
        known = {f.name for f in fields(cls)}
        unknown = set(d) - known
        if unknown:
            raise ValueError(f"Unknown {cls.__name__} keys: {sorted(unknown)}; allowed: {sorted(known)}")
        return cls(**dict(d))

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class WindowConfig(_FromDictMixin):
    """
    Sliding-window geometry.

    Attributes
    ----------
    n_timesteps : int, default=24
        Input window length.
    n_forecast : int, default=1
        Forecast horizon produced at once by the model (1 = next-step model).
    sample_fraction : float, default=1.0
        Fraction in (0, 1] of the training windows to keep (sampled without
        replacement, reproducible for a fixed seed). Validation/test always use every window.
    target_col : int, default=0
        Column of the series to forecast (input windows use every column).
    """
    n_timesteps: int = 24
    n_forecast: int = 1
    sample_fraction: float = 1.0
    target_col: int = 0

    def __post_init__(self):
        if not isinstance(self.n_timesteps, int) or self.n_timesteps < 1:
            raise ValueError(f"n_timesteps must be a positive int, got {self.n_timesteps!r}")
        if not isinstance(self.n_forecast, int) or self.n_forecast < 1:
            raise ValueError(f"n_forecast must be a positive int, got {self.n_forecast!r}")
        if not (0.0 < self.sample_fraction <= 1.0):
            raise ValueError(f"sample_fraction must be in (0, 1], got {self.sample_fraction}")
        if not isinstance(self.target_col, int) or self.target_col < 0:
            raise ValueError(f"target_col must be a non-negative int, got {self.target_col!r}")


@dataclass
class DataConfig(_FromDictMixin):
    """
    Split, normalization and data loader options.

    Attributes
    ----------
    batch_size : int, default=64
        Mini-batch size for all loaders.
    train_frac : float, default=0.7
        Leading fraction of the series used for training (and for the scaling statistics).
    val_frac : float, default=0.15
        Following fraction used for validation; the remainder is the test split.
    scaling : {"zscore", "minmax"}, default="zscore"
        Normalization policy, fitted on the training split only.
    num_workers : int, default=0
        Number of DataLoader worker processes.
    shuffle_train : bool, default=True
        Whether to shuffle windows in the training loader.
    pin_memory : Optional[bool], default=None
        If None, auto-enable when CUDA is available; otherwise passed to DataLoader.
    """
    batch_size: int = 64
    train_frac: float = 0.7
    val_frac: float = 0.15
    scaling: str = "zscore"
    num_workers: int = 0
    shuffle_train: bool = True
    pin_memory: Optional[bool] = None      # None => auto on CUDA

    def __post_init__(self):
        if not isinstance(self.batch_size, int) or self.batch_size < 1:
            raise ValueError(f"batch_size must be a positive int, got {self.batch_size!r}")
        if not (0.0 < self.train_frac <= 1.0):
            raise ValueError(f"train_frac must be in (0, 1], got {self.train_frac}")
        if not (0.0 <= self.val_frac < 1.0) or self.train_frac + self.val_frac > 1.0:
            raise ValueError(f"val_frac must be in [0, 1) with train_frac + val_frac <= 1, got {self.val_frac}")
        if self.scaling not in ("zscore", "minmax"):
            raise ValueError(f"scaling must be 'zscore' or 'minmax', got {self.scaling!r}")
        if not isinstance(self.num_workers, int) or self.num_workers < 0:
            raise ValueError(f"num_workers must be a non-negative int, got {self.num_workers!r}")


@dataclass
class ModelConfig(_FromDictMixin):
    """
    Architecture hyperparameters for the SequenceForecaster.

    Attributes
    ----------
    hidden_size : int, default=64
        Number of hidden units per LSTM layer.
    linear_size : Optional[int], default=None
        Hidden width of the MLP head; None uses `hidden_size` for multi-step models
        and a plain linear head for next-step models.
    num_layers : int, default=1
        Stacked LSTM layers.
    dropout : float, default=0.0
        Dropout after the encoder and inside the MLP head.
    rec_dropout : float, default=0.0
        Dropout between stacked LSTM layers (needs num_layers > 1).
    """
    hidden_size: int = 64
    linear_size: Optional[int] = None
    num_layers: int = 1
    dropout: float = 0.0
    rec_dropout: float = 0.0

    def __post_init__(self):
        if not isinstance(self.hidden_size, int) or self.hidden_size < 1:
            raise ValueError(f"hidden_size must be a positive int, got {self.hidden_size!r}")
        if self.linear_size is not None and (not isinstance(self.linear_size, int) or self.linear_size < 1):
            raise ValueError(f"linear_size must be a positive int or None, got {self.linear_size!r}")
        if not isinstance(self.num_layers, int) or self.num_layers < 1:
            raise ValueError(f"num_layers must be a positive int, got {self.num_layers!r}")
        if not (0.0 <= self.dropout < 1.0 and 0.0 <= self.rec_dropout < 1.0):
            raise ValueError("dropout and rec_dropout must be in [0, 1).")


@dataclass
class TrainConfig(_FromDictMixin):
    """
    Training loop hyperparameters and schedules.

    Attributes
    ----------
    start_lr, peak_lr, end_lr : float
        One-cycle learning rates (start of warmup, peak, end of annealing).
        With `use_one_cycle=False` a constant `peak_lr` is used.
    pct_start : float, default=0.3
        Fraction of the optimizer steps spent warming up.
    max_epochs : int, default=20
        Maximum number of epochs.
    patience : int, default=5
        Early-stopping patience (in epochs). 0 disables ES.
    grad_clip_max_norm : Optional[float], default=10.0
        Max L2 norm for gradient clipping (None disables clipping).
    weight_decay : float, default=0.0
        AdamW weight decay (0 → Adam).
    use_one_cycle : bool, default=True
        Per-batch one-cycle schedule vs. constant learning rate.
    """
    start_lr: float = 1e-4
    peak_lr: float = 1e-3
    end_lr: float = 1e-5
    pct_start: float = 0.3
    max_epochs: int = 20
    patience: int = 5
    grad_clip_max_norm: Optional[float] = 10.0
    weight_decay: float = 0.0
    use_one_cycle: bool = True

    def __post_init__(self):
        if min(self.start_lr, self.peak_lr, self.end_lr) <= 0:
            raise ValueError("start_lr, peak_lr and end_lr must be positive.")
        if self.use_one_cycle and not (self.start_lr <= self.peak_lr and self.end_lr <= self.peak_lr):
            raise ValueError("peak_lr must be >= start_lr and >= end_lr.")
        if not (0.0 < self.pct_start < 1.0):
            raise ValueError(f"pct_start must be in (0, 1), got {self.pct_start}")
        if not isinstance(self.max_epochs, int) or self.max_epochs < 1:
            raise ValueError(f"max_epochs must be a positive int, got {self.max_epochs!r}")
        if not isinstance(self.patience, int) or self.patience < 0:
            raise ValueError(f"patience must be a non-negative int, got {self.patience!r}")
        if self.grad_clip_max_norm is not None and self.grad_clip_max_norm <= 0:
            raise ValueError("grad_clip_max_norm must be positive or None.")
        if self.weight_decay < 0:
            raise ValueError("weight_decay must be non-negative.")


@dataclass
class LSTMRunConfig:
    """
    End-to-end configuration bundle for the LSTM pipeline.

    Attributes
    ----------
    window : WindowConfig
        Input/forecast window geometry and training-window sub-sampling.
    data : DataConfig
        Splits, scaling policy and DataLoader parameters.
    model : ModelConfig
        Architecture.
    train : TrainConfig
        Optimizer/schedule/ES/regularization settings.
    seed : Optional[int]
        Global seed for reproducibility (window sampling, shuffling, weight init).
    """
    window: WindowConfig = field(default_factory=WindowConfig)
    data: DataConfig = field(default_factory=DataConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    train: TrainConfig = field(default_factory=TrainConfig)
    seed: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "window": self.window.to_dict(),
            "data": self.data.to_dict(),
            "model": self.model.to_dict(),
            "train": self.train.to_dict(),
            "seed": self.seed,
        }

    @classmethod
    def from_dict(cls, cfg_dict: Mapping[str, Any]) -> "LSTMRunConfig":
        """
        Build an LSTMRunConfig from a generic (e.g. YAML-loaded) dict; missing sections use defaults.
        """
        unknown = set(cfg_dict) - {"window", "data", "model", "train", "seed"}
        if unknown:
            raise ValueError(f"Unknown LSTMRunConfig sections: {sorted(unknown)}")
        return cls(
            window=WindowConfig.from_dict(cfg_dict.get("window", {})),
            data=DataConfig.from_dict(cfg_dict.get("data", {})),
            model=ModelConfig.from_dict(cfg_dict.get("model", {})),
            train=TrainConfig.from_dict(cfg_dict.get("train", {})),
            seed=cfg_dict.get("seed", None),
        )


# ─────────────────────────────────────────────────────────────────────────────
# Full Pipeline Class
# ─────────────────────────────────────────────────────────────────────────────

_SPLITS = ("train", "val", "test")


class LSTMPipeline:
    def __init__(
            self,
            series: SeriesLike,
            config: LSTMRunConfig,
            logger: Optional[logging.Logger] = None,
            device: Optional[torch.device] = None,
        ):
        """
        Assumptions:
        - `series` is a single (possibly multivariate) series of shape (T,) or (T, F).
        - A pandas index, if any, is the time key and must be strictly increasing.
        - Column `config.window.target_col` is the forecast target.
        """
        self.config = config
        self._logger = logger or logging.getLogger(__name__)
        if device is not None and isinstance(device, torch.device):
            self.device = device
            lines_to_log = [f"[pipe init] using provided device: {self.device.type}"]
        else:
            if device is not None: # -> device was provided but not a torch.device
                self._logger.warning(f"device argument must be torch.device or None; got {type(device)}. Auto-selecting device.")
            self.device = torch.device("cuda" if torch.cuda.is_available() else "cpu")
            lines_to_log = [f"[pipe init] auto-selected device: {self.device.type}"]

        # --- Set seeds if requested ---
        if self.config.seed is not None:
            lines_to_log.append(f"setting random seed: {self.config.seed}")
            set_global_seed(self.config.seed)

        # --- Check coherence of params ---
        if isinstance(series, (pd.Series, pd.DataFrame)):
            index = series.index
            if not (index.is_monotonic_increasing and index.is_unique):
                raise ValueError("The series index must be strictly increasing (sorted, no duplicates).")
            columns = [series.name] if isinstance(series, pd.Series) else list(series.columns)
        else:
            index = None
        values = as_2d_array(series)
        if index is None:
            index = pd.RangeIndex(len(values))
            columns = list(range(values.shape[1]))
        if not np.isfinite(values).all():
            raise ValueError("The series contains NaN/Inf values; clean or impute them first.")

        target_col = self.config.window.target_col
        if target_col >= values.shape[1]:
            raise ValueError(f"target_col={target_col} out of range for a series with {values.shape[1]} column(s).")

        self._frame = pd.DataFrame(values, index=index)
        self._columns = columns
        self._scaler = SeriesScaler(self.config.data.scaling)

        # internal attributes initialized during data preparation / loading
        self._slices: Dict[str, pd.DataFrame] = {}
        self._datasets: Dict[str, WindowedSequenceDataset] = {}
        self._bounds: Dict[str, Tuple[int, int]] = {}
        self._scaling_stats: Optional[ScalingStats] = None

        # internal attributes initialized during fit
        self._model: Optional[SequenceForecaster] = None
        self._trainer: Optional[SequenceTrainer] = None
        self._fit_result: Optional[FitResult] = None
        self._history_df: Optional[pd.DataFrame] = None

        lines_to_log.append(f"series: T={len(values)}, F={values.shape[1]}, target={columns[target_col]!r}")
        self._logger.info("; ".join(lines_to_log) + '.')

    # ------------------------------
    # Data Preparation
    # ------------------------------

    def _seed_for(self, tag: str) -> Optional[int]:
        return derive_seed(self.config.seed, tag) if self.config.seed is not None else None

    def _dataset_for(self, split: str, normed: np.ndarray) -> Optional[WindowedSequenceDataset]:
        w = self.config.window
        n = count_windows(len(normed), w.n_timesteps, w.n_forecast)
        if split != "train" and n < 1:
            self._logger.warning(f"[loaders] {split} split too short for one window "
                                 f"({len(normed)} rows incl. history); skipping it.")
            return None
        return WindowedSequenceDataset(
            normed, w.n_timesteps, w.n_forecast,
            sample_fraction=w.sample_fraction if split == "train" else 1.0,
            seed=self._seed_for("sampling") if split == "train" else None,
            target_col=w.target_col,
        )

    def _loader_for(self, split: str, *, shuffle: bool) -> DataLoader:
        ds = self._datasets.get(split)
        if ds is None:
            raise ValueError(f"No '{split}' dataset available; call make_loaders() first "
                             f"(and check the split fractions).")
        d = self.config.data
        return make_batch_loader(
            ds, batch_size=d.batch_size, shuffle=shuffle, seed=self._seed_for(f"{split}_loader"),
            num_workers=d.num_workers, pin_memory=d.pin_memory,
        )

    def make_loaders(self) -> Tuple[DataLoader, Optional[DataLoader]]:
        """
        Split the series, fit the scaling statistics on the training split, and
        build the train / val loaders (the test dataset is kept for `predict`).

        Returns
        -------
        (train_loader, val_loader)
            `val_loader` is None when `data.val_frac == 0` or the validation split is too short.
        """
        w, d = self.config.window, self.config.data
        splits = split_series(self._frame, d.train_frac, d.val_frac, history=w.n_timesteps)
        self._bounds = dict(splits.bounds)

        self._scaling_stats = self._scaler.fit(splits.train)
        self._logger.info(f"[scaler] {d.scaling} statistics from train rows {splits.bounds['train']}: "
                          f"location={np.round(self._scaling_stats.location, 4).tolist()}, "
                          f"scale={np.round(self._scaling_stats.scale, 4).tolist()}")

        self._slices, self._datasets = {}, {}
        for name, part in zip(_SPLITS, (splits.train, splits.val, splits.test)):
            if part is None:
                continue
            normed = self._scaler.apply(part, self._scaling_stats)
            ds = self._dataset_for(name, normed)
            if ds is not None:
                self._slices[name] = part
                self._datasets[name] = ds

        train_loader = self._loader_for("train", shuffle=d.shuffle_train)
        val_loader = self._loader_for("val", shuffle=False) if "val" in self._datasets else None

        parts = [f"n_timesteps={w.n_timesteps}, n_forecast={w.n_forecast}"]
        for name, ds in self._datasets.items():
            parts.append(f"{name}(n={len(ds)}/{ds.n_valid}, rows={self._bounds[name]})")
        self._logger.info("[loaders] loaders built: " + " | ".join(parts)
                          + f" | bs={d.batch_size}, scaling={d.scaling}, sample_fraction={w.sample_fraction}")
        return train_loader, val_loader

    @property
    def scaling_stats(self) -> Optional[ScalingStats]:
        return self._scaling_stats

    def dataset(self, split: str = "val") -> WindowedSequenceDataset:
        if split not in self._datasets:
            raise ValueError(f"No '{split}' dataset available; call make_loaders() first "
                             f"(available: {sorted(self._datasets)}).")
        return self._datasets[split]

    # ------------------------------
    # Model & Training
    # ------------------------------

    def _build_model(self, *, silent: bool = False) -> SequenceForecaster:
        w, m = self.config.window, self.config.model
        model = SequenceForecaster(
            input_size=self._frame.shape[1],
            hidden_size=m.hidden_size,
            num_layers=m.num_layers,
            output_size=w.n_forecast,
            linear_size=m.linear_size,
            dropout=m.dropout,
            rec_dropout=m.rec_dropout,
            n_timesteps=w.n_timesteps,
        )
        if not silent:
            self._logger.info(f"[model] {model.describe()}")
        return model.to(self.device)

    def _build_schedule(self, steps_per_epoch: int):
        t = self.config.train
        if not t.use_one_cycle:
            return ConstantSchedule(t.peak_lr)
        if t.max_epochs * steps_per_epoch < 3:
            self._logger.warning(f"[lr] only {t.max_epochs * steps_per_epoch} optimizer step(s) planned; "
                                 f"using a constant lr={t.peak_lr:.3e} instead of one-cycle.")
            return ConstantSchedule(t.peak_lr)
        return OneCycleSchedule.for_training(
            start_lr=t.start_lr, peak_lr=t.peak_lr, end_lr=t.end_lr,
            epochs=t.max_epochs, steps_per_epoch=steps_per_epoch, pct_start=t.pct_start,
        )

    def _new_trainer(self, model: SequenceForecaster) -> SequenceTrainer:
        t = self.config.train
        return SequenceTrainer(
            model, self.device,
            grad_clip_max_norm=t.grad_clip_max_norm,
            weight_decay=t.weight_decay,
            logger=self._logger,
        )

    def fit(
            self,
            train_loader: Optional[DataLoader] = None,
            val_loader: Optional[DataLoader] = None,
        ) -> FitResult:
        """
        Train a fresh model under the current configuration.

        Loaders are built with `make_loaders` when `train_loader` is None.
        Stores: trainer, training history, best model weights, fit result.
        """
        if train_loader is None:
            train_loader, val_loader = self.make_loaders()

        if self.config.seed is not None:
            torch.manual_seed(derive_seed(self.config.seed, "model_init"))
        self._model = self._build_model()
        trainer = self._new_trainer(self._model)

        schedule = self._build_schedule(steps_per_epoch=len(train_loader))
        stopping = make_stopping_policy(self.config.train.patience)
        result = trainer.fit(
            train_loader, val_loader,
            max_epochs=self.config.train.max_epochs,
            schedule=schedule,
            stopping=stopping,
            restore_best=True,
        )

        # Store diagnostics
        self._trainer = trainer
        self._model = trainer.model
        self._fit_result = result
        self._history_df = result.history

        best_txt = f"{result.best_val_loss:.5f}" if np.isfinite(result.best_val_loss) else "n/a"
        which = "val" if val_loader is not None else "train"
        self._logger.info(f"[train] Training finished ({result.termination.value}). "
                          f"Best {which} loss (normalized): {best_txt}. Best epoch: {result.best_epoch}. "
                          f"Epochs run: {result.epochs_run}.")
        return result

    def find_lr(self, *, verbose: bool = False, **kwargs) -> LRFinderResult:
        """
        Run the LR finder on a freshly initialized model over the training loader.

        The sweep leaves no trace: the probe model is discarded. Keyword
        arguments are forwarded to `SequenceTrainer.find_lr`.
        """
        if "train" not in self._datasets:
            self.make_loaders()
        train_loader = self._loader_for("train", shuffle=self.config.data.shuffle_train)
        probe = self._build_model(silent=True)
        result = self._new_trainer(probe).find_lr(train_loader, verbose=verbose, **kwargs)
        self._logger.info(f"[lr] LR finder suggests peak_lr ≈ {result.suggested_lr}")
        return result

    @property
    def training_history(self) -> Optional[pd.DataFrame]:
        return self._history_df

    @property
    def fit_result(self) -> Optional[FitResult]:
        return self._fit_result

    @property
    def n_params(self) -> Optional[int]:
        return self._model.n_params if self._model is not None else None

    # ------------------------------
    # Inference
    # ------------------------------

    def _check_fitted(self) -> None:
        if self._trainer is None or self._model is None:
            raise RuntimeError("Model not trained. Call .fit(...) first.")

    def predict(self, split: str = "val") -> np.ndarray:
        """
        Prediction buffer for every window of `split`, in window order.

        Returns
        -------
        np.ndarray
            Shape (n_windows, n_forecast), normalized scale.
        """
        self._check_fitted()
        return self._trainer.predict(self._loader_for(split, shuffle=False))

    def reconstruct(self, cur: int, split: str = "val", name: Optional[str] = "LSTM") -> pd.Series:
        """
        De-normalized forecast of the window starting at offset `cur` of `split`,
        aligned onto that split's timeline (history rows included); NaN elsewhere.
        """
        ds = self.dataset(split)
        part = self._slices[split]
        return reconstruct_forecast(
            self.predict(split), cur,
            n_timesteps=ds.n_timesteps,
            n_forecast=ds.n_forecast,
            series_length=len(part),
            selected_indices=ds.starts,
            scale_stats=self._scaling_stats,
            target_col=ds.target_col,
            index=part.index,
            name=name,
        )

    def forecast_frame(self, split: str = "val", alias: str = "LSTM") -> pd.DataFrame:
        """
        Long table ['cutoff', 'ds', 'step', alias, 'y'] of every forecast in `split`,
        on the original scale, with the actual target value `y`.
        """
        ds = self.dataset(split)
        part = self._slices[split]
        df = predictions_to_frame(
            self.predict(split), ds.starts,
            n_timesteps=ds.n_timesteps,
            n_forecast=ds.n_forecast,
            index=part.index,
            scale_stats=self._scaling_stats,
            target_col=ds.target_col,
            alias=alias,
        )
        actual = part.iloc[:, ds.target_col]
        df["y"] = actual.reindex(pd.Index(df["ds"])).to_numpy()
        return df

    def evaluate_forecasts(self, split: str = "val", alias: str = "LSTM") -> Dict[str, Any]:
        """
        Error metrics of every forecast of `split` on the original scale.

        Returns
        -------
        dict
            {"overall": {me, mae, rmse, mape, n}, "by_step": DataFrame of per-step MAE/RMSE}.
        """
        df = self.forecast_frame(split, alias=alias)
        return {
            "overall": forecast_errors(df["y"], df[alias]),
            "by_step": errors_by_step(df, [alias]),
        }

    # ------------------------------
    # Reporting
    # ------------------------------

    def summary(self) -> dict:
        out: Dict[str, Any] = {
            "config": self.config.to_dict(),
            "n_params": self.n_params,
            "splits": {k: list(v) for k, v in self._bounds.items()},
            "scaling_stats": self._scaling_stats.to_dict() if self._scaling_stats is not None else None,
        }
        if self._fit_result is not None:
            out["fit"] = self._fit_result.to_dict()
            out["history"] = self._history_df
        return out

    def save_summary(self, path: Union[str, Path]) -> Path:
        """Write config, scaling statistics, fit outcome and history to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            safe_dump_yaml(self.summary(), f)
        self._logger.info(f"[pipe] summary saved to {path}")
        return path
