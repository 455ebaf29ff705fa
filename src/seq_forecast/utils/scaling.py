import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import Literal, Optional, Union
import logging

from ..errors import DegenerateScaleError

_LOGGER = logging.getLogger(__name__)
_LOGGER.addHandler(logging.NullHandler())

ArrayLike = Union[np.ndarray, pd.Series, pd.DataFrame]
ScalingPolicy = Literal["zscore", "minmax"]


# -------------------------------------------------------------------------------
# NORMALIZATION STATISTICS (computed on the training split only)
# -------------------------------------------------------------------------------

@dataclass(frozen=True)
class ScalingStats:
    """
    Normalization statistics computed once on the training split.

    Attributes
    ----------
    policy : {"zscore","minmax"}
        Policy the statistics were computed with.
    location : np.ndarray
        Value subtracted from each feature (shape: [F], float64).
        Mean for "zscore", per-column minimum for "minmax".
    scale : np.ndarray
        Value each centered feature is divided by (shape: [F], float64).
        Standard deviation for "zscore", per-column (max - min) for "minmax".
    """
    policy: str
    location: np.ndarray
    scale: np.ndarray

    def __post_init__(self):
        # read-only copies; the stats never change after fitting
        for name in ("location", "scale"):
            arr = np.array(getattr(self, name), dtype=np.float64)
            arr.flags.writeable = False
            object.__setattr__(self, name, arr)

    @property
    def n_features(self) -> int:
        return int(self.location.shape[0])

    def to_dict(self) -> dict:
        return {
            "policy": self.policy,
            "location": self.location.tolist(),
            "scale": self.scale.tolist(),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ScalingStats":
        return cls(
            policy=d["policy"],
            location=np.asarray(d["location"], dtype=np.float64),
            scale=np.asarray(d["scale"], dtype=np.float64),
        )


def as_2d_array(series: ArrayLike) -> np.ndarray:
    """
    Return `series` as a float64 array of shape (T, F). A 1-D input becomes (T, 1).
    """
    if isinstance(series, (pd.Series, pd.DataFrame)):
        arr = series.to_numpy(dtype=np.float64)
    else:
        arr = np.asarray(series, dtype=np.float64)
    if arr.ndim == 1:
        arr = arr.reshape(-1, 1)
    if arr.ndim != 2:
        raise ValueError(f"Expected a 1-D or 2-D series, got shape {arr.shape}.")
    return arr


def compute_scaling_stats(policy: ScalingPolicy, train: ArrayLike) -> ScalingStats:
    """
    Compute normalization statistics from the *training* split.

    Parameters
    ----------
    policy : {"zscore","minmax"}
        - "zscore": a single mean and (population) std computed over the whole
          flattened training split, repeated for every feature column.
        - "minmax": min and (max - min) computed independently for each column.
    train : np.ndarray | pd.Series | pd.DataFrame
        Training split, shape (T,) or (T, F).

    Returns
    -------
    ScalingStats
        Immutable statistics; never recompute them from validation/test data.
    """
    arr = as_2d_array(train)
    if arr.size == 0:
        raise ValueError("Cannot compute scaling statistics on an empty training split.")
    if not np.isfinite(arr).all():
        raise ValueError("Training split contains NaN/Inf; clean it before computing scaling statistics.")

    n_features = arr.shape[1]
    if policy == "zscore":
        loc = np.full(n_features, float(arr.mean()), dtype=np.float64)
        scale = np.full(n_features, float(arr.std(ddof=0)), dtype=np.float64)
    elif policy == "minmax":
        loc = arr.min(axis=0).astype(np.float64)
        scale = (arr.max(axis=0) - loc).astype(np.float64)
    else:
        raise ValueError(f"Unknown scaling policy '{policy}'. Supported values are: 'zscore', 'minmax'.")

    return ScalingStats(policy=policy, location=loc, scale=scale)


def _check_features(arr: np.ndarray, stats: ScalingStats) -> None:
    if arr.shape[1] != stats.n_features:
        raise ValueError(
            f"Series has {arr.shape[1]} feature column(s) but the scaling statistics "
            f"were computed on {stats.n_features}."
        )


# -------------------------------------------------------------------------------
# SCALER
# -------------------------------------------------------------------------------

@dataclass(frozen=True)
class SeriesScaler:
    """
    Stateless scaler: statistics live in the returned `ScalingStats`, not on the scaler.

    Usage
    -----
    >>> scaler = SeriesScaler("zscore")
    >>> stats = scaler.fit(train)
    >>> train_n = scaler.apply(train, stats)
    >>> test_n = scaler.apply(test, stats)   # same stats, no leakage
    >>> y = scaler.invert(y_hat, stats, column=0)
    """
    policy: ScalingPolicy = "zscore"

    def __post_init__(self):
        if self.policy not in ("zscore", "minmax"):
            raise ValueError(f"Unknown scaling policy '{self.policy}'. Supported values are: 'zscore', 'minmax'.")

    def fit(self, train: ArrayLike) -> ScalingStats:
        stats = compute_scaling_stats(self.policy, train)
        _LOGGER.debug(f"[scaler] fitted {self.policy}: location={stats.location}, scale={stats.scale}")
        return stats

    def apply(self, series: ArrayLike, stats: ScalingStats) -> np.ndarray:
        """
        Normalize `series` with precomputed `stats`.

        Returns
        -------
        np.ndarray
            Normalized values with the same shape as the input.

        Raises
        ------
        DegenerateScaleError
            If any feature has zero or non-finite scale (e.g., a constant training series).
        """
        bad = np.flatnonzero(~np.isfinite(stats.scale) | (stats.scale == 0.0))
        if bad.size:
            raise DegenerateScaleError(
                f"Cannot apply {stats.policy} scaling: feature column(s) {bad.tolist()} have "
                f"scale {stats.scale[bad].tolist()} (constant training data?)."
            )
        orig_shape = np.shape(series)
        arr = as_2d_array(series)
        _check_features(arr, stats)
        out = (arr - stats.location[None, :]) / stats.scale[None, :]
        return out.reshape(orig_shape)

    def invert(self, values: ArrayLike, stats: ScalingStats, column: Optional[int] = None) -> np.ndarray:
        """
        Exact inverse of `apply`.

        Parameters
        ----------
        values : array-like
            Normalized values. If `column` is None the last axis must hold all
            features (or the input is 1-D with a single feature).
        stats : ScalingStats
        column : int | None, default None
            Treat every value as belonging to feature `column` (useful for
            target-only predictions of shape (N, n_forecast)).
        """
        arr = np.asarray(values, dtype=np.float64)
        if column is not None:
            if not 0 <= column < stats.n_features:
                raise IndexError(f"column {column} out of range for {stats.n_features} feature(s).")
            return arr * stats.scale[column] + stats.location[column]
        orig_shape = arr.shape
        arr2 = as_2d_array(arr)
        _check_features(arr2, stats)
        out = arr2 * stats.scale[None, :] + stats.location[None, :]
        return out.reshape(orig_shape)
