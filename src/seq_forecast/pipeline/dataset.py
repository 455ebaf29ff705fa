import logging
from typing import Optional, Tuple

import numpy as np
import torch
from torch.utils.data import DataLoader, Dataset

from ..errors import InsufficientDataError
from ..utils.scaling import ArrayLike, as_2d_array
from ..utils.seeding import make_generator, make_worker_init_fn

_LOGGER = logging.getLogger(__name__)
_LOGGER.addHandler(logging.NullHandler())


def count_windows(series_length: int, n_timesteps: int, n_forecast: int) -> int:
    """Number of (input, target) windows that fit in a series of `series_length` steps."""
    return series_length - n_timesteps - n_forecast + 1


# ─────────────────────────────────────────────────────────────────────────────
# Dataset
# ─────────────────────────────────────────────────────────────────────────────

class WindowedSequenceDataset(Dataset):
    """
    Sliding-window dataset for direct multi-horizon forecasting.

    Each item is a pair:
      - input_window  : (n_timesteps, F)   rows [s, s + n_timesteps)
      - target_window : (n_forecast,)      rows [s + n_timesteps, s + n_timesteps + n_forecast)
                                           of column `target_col`
                        (n_forecast, F)    if `target_col` is None

    Windows are 0-based and half-open: the target starts exactly where the
    input ends. The series must already be normalized with training-split stats.

    Sub-sampling
    ------------
    With `sample_fraction < 1`, `round(n * sample_fraction)` starting offsets are
    drawn without replacement from all `n` valid offsets and then sorted, so the
    iteration order is temporal and the selection is reproducible for a fixed `seed`.
    """
    def __init__(
        self,
        series: ArrayLike,
        n_timesteps: int,
        n_forecast: int = 1,
        *,
        sample_fraction: float = 1.0,
        seed: Optional[int] = None,
        target_col: Optional[int] = 0,
    ):
        """
        Parameters
        ----------
        series : np.ndarray | pd.Series | pd.DataFrame
            Normalized series, shape (T,) or (T, F).
        n_timesteps : int
            Input window length.
        n_forecast : int, default=1
            Target window length (1 for next-step models).
        sample_fraction : float, default=1.0
            Fraction in (0, 1] of valid windows to keep.
        seed : int, optional
            Seed for the window sub-sampling.
        target_col : int | None, default=0
            Feature forecast by the model. None keeps every feature in the target.
        """
        if not isinstance(n_timesteps, (int, np.integer)) or n_timesteps < 1:
            raise ValueError(f"n_timesteps must be a positive integer, got {n_timesteps!r}.")
        if not isinstance(n_forecast, (int, np.integer)) or n_forecast < 1:
            raise ValueError(f"n_forecast must be a positive integer, got {n_forecast!r}.")
        if not (0.0 < sample_fraction <= 1.0):
            raise ValueError(f"sample_fraction must be in (0, 1], got {sample_fraction}.")

        data = as_2d_array(series).astype(np.float32)
        self.data = data
        self.n_timesteps = int(n_timesteps)
        self.n_forecast = int(n_forecast)
        self.sample_fraction = float(sample_fraction)
        self.seed = seed
        self.n_features = data.shape[1]

        if target_col is not None and not 0 <= target_col < self.n_features:
            raise ValueError(f"target_col {target_col} out of range for {self.n_features} feature(s).")
        self.target_col = target_col

        n = count_windows(len(data), self.n_timesteps, self.n_forecast)
        if n < 1:
            raise InsufficientDataError(
                f"Series of length {len(data)} is too short for n_timesteps={self.n_timesteps} "
                f"+ n_forecast={self.n_forecast} (needs at least {self.n_timesteps + self.n_forecast} rows)."
            )
        self.n_valid = n

        if self.sample_fraction < 1.0:
            k = int(round(n * self.sample_fraction))
            if k < 1:
                raise InsufficientDataError(
                    f"sample_fraction={self.sample_fraction} keeps no window out of {n} valid ones."
                )
            rng = np.random.default_rng(seed)
            self.starts = np.sort(rng.choice(n, size=k, replace=False)).astype(np.int64)
            _LOGGER.debug(f"[dataset] sub-sampled {k}/{n} windows (fraction={self.sample_fraction}, seed={seed})")
        else:
            self.starts = np.arange(n, dtype=np.int64)

    def __repr__(self) -> str:
        return (f"WindowedSequenceDataset(n={len(self)}/{self.n_valid}, n_timesteps={self.n_timesteps}, "
                f"n_forecast={self.n_forecast}, n_features={self.n_features}, target_col={self.target_col})")

    def __len__(self) -> int:
        return len(self.starts)

    def window_bounds(self, idx: int) -> Tuple[int, int, int]:
        """Return (start, input_end, target_end) for item `idx` (half-open bounds)."""
        s = int(self.starts[idx])
        e = s + self.n_timesteps
        return s, e, e + self.n_forecast

    def __getitem__(self, idx: int) -> Tuple[torch.Tensor, torch.Tensor]:
        s, e, k = self.window_bounds(idx)
        x = self.data[s:e]
        y = self.data[e:k] if self.target_col is None else self.data[e:k, self.target_col]
        return torch.from_numpy(x), torch.from_numpy(np.ascontiguousarray(y))


# ─────────────────────────────────────────────────────────────────────────────
# Batching
# ─────────────────────────────────────────────────────────────────────────────

def make_batch_loader(
    dataset: Dataset,
    *,
    batch_size: int,
    shuffle: bool,
    seed: Optional[int] = None,
    num_workers: int = 0,
    pin_memory: Optional[bool] = None,
) -> DataLoader:
    """
    Build a DataLoader over `dataset`.

    - shuffle=True: a fresh permutation every pass, reproducible when `seed` is given.
    - shuffle=False: dataset order.
    The last batch of a pass is kept even if shorter than `batch_size`.
    """
    if not isinstance(batch_size, int) or batch_size < 1:
        raise ValueError(f"batch_size must be a positive integer, got {batch_size!r}.")
    if pin_memory is None:
        pin_memory = torch.cuda.is_available()

    loader_generator = make_generator(seed)
    worker_init_fn = make_worker_init_fn(int(seed)) if seed is not None else None

    return DataLoader(
        dataset,
        batch_size=batch_size,
        shuffle=shuffle,
        drop_last=False,
        num_workers=num_workers,
        pin_memory=pin_memory,
        worker_init_fn=worker_init_fn,
        generator=loader_generator,
    )
