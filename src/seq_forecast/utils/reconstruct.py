import logging
from typing import Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from ..errors import InsufficientDataError, ShapeMismatchError
from .scaling import ScalingStats, SeriesScaler

_LOGGER = logging.getLogger(__name__)
_LOGGER.addHandler(logging.NullHandler())


# -------------------------------------------------------------------------------
# HELPERS
# -------------------------------------------------------------------------------

def _as_prediction_matrix(predictions, n_forecast: int) -> np.ndarray:
    arr = np.asarray(predictions, dtype=np.float64)
    if arr.ndim == 1 and n_forecast == 1:
        arr = arr.reshape(-1, 1)
    if arr.ndim != 2 or arr.shape[1] != n_forecast:
        raise ShapeMismatchError(
            f"predictions must have shape (n_windows, n_forecast={n_forecast}), got {arr.shape}."
        )
    return arr


def _row_for_offset(cur: int, n_rows: int, selected_indices: Optional[Sequence[int]]) -> int:
    """Map a window starting offset to its row in the prediction buffer."""
    if selected_indices is None:
        if not 0 <= cur < n_rows:
            raise KeyError(f"No prediction for offset {cur}: buffer holds offsets [0, {n_rows}).")
        return cur
    sel = np.asarray(selected_indices, dtype=np.int64)
    if len(sel) != n_rows:
        raise ShapeMismatchError(
            f"selected_indices has {len(sel)} entries but predictions have {n_rows} rows."
        )
    pos = int(np.searchsorted(sel, cur))
    if pos >= len(sel) or sel[pos] != cur:
        raise KeyError(f"Offset {cur} was not selected by the window sub-sampling.")
    return pos


def _denormalize(values: np.ndarray, scale_stats: Optional[ScalingStats], target_col: int) -> np.ndarray:
    if scale_stats is None:
        return values
    return SeriesScaler(scale_stats.policy).invert(values, scale_stats, column=target_col)


# -------------------------------------------------------------------------------
# RECONSTRUCTION ONTO THE ORIGINAL TIMELINE
# -------------------------------------------------------------------------------

def reconstruct_forecast(
    predictions,
    cur: int,
    *,
    n_timesteps: int,
    n_forecast: int,
    series_length: int,
    selected_indices: Optional[Sequence[int]] = None,
    scale_stats: Optional[ScalingStats] = None,
    target_col: int = 0,
    index: Optional[pd.Index] = None,
    name: Optional[str] = None,
) -> pd.Series:
    """
    Place the forecast of the window starting at offset `cur` on the series timeline.

    The returned series has `series_length` entries, all NaN ("absent") except
    positions [cur + n_timesteps, cur + n_timesteps + n_forecast), which hold
    the predicted values (de-normalized when `scale_stats` is given).

    Parameters
    ----------
    predictions : array-like
        Prediction buffer of shape (n_windows, n_forecast), normalized scale.
    cur : int
        Starting offset of the input window whose forecast to place.
    n_timesteps, n_forecast : int
        Window geometry used to build the predictions.
    series_length : int
        Length of the timeline the forecast is aligned to.
    selected_indices : sequence of int, optional
        Sorted starting offsets of the rows of `predictions` (the dataset's `starts`).
        Defaults to row i <-> offset i.
    scale_stats : ScalingStats, optional
        Training statistics; when None the values are returned as predicted.
    target_col : int, default 0
        Feature the predictions belong to.
    index : pd.Index, optional
        Index for the returned series (length `series_length`); defaults to a RangeIndex.
    name : str, optional
        Name of the returned series.

    Raises
    ------
    KeyError
        If no prediction exists for `cur`.
    ShapeMismatchError
        If `predictions` is not (n_windows, n_forecast).
    InsufficientDataError
        If the forecast span does not fit inside `series_length`.
    """
    if cur < 0:
        raise ValueError(f"cur must be non-negative, got {cur}.")
    preds = _as_prediction_matrix(predictions, n_forecast)
    start = cur + n_timesteps
    end = start + n_forecast
    if end > series_length:
        raise InsufficientDataError(
            f"Forecast span [{start}, {end}) does not fit in a series of length {series_length}."
        )
    if index is not None and len(index) != series_length:
        raise ShapeMismatchError(f"index has length {len(index)}, expected {series_length}.")

    row = _row_for_offset(cur, len(preds), selected_indices)
    out = np.full(series_length, np.nan, dtype=np.float64)
    out[start:end] = _denormalize(preds[row], scale_stats, target_col)
    return pd.Series(out, index=index, name=name)


def overlay_forecasts(
    forecasts: Mapping[str, pd.Series],
    actual: Optional[pd.Series] = None,
    actual_name: str = "y",
) -> pd.DataFrame:
    """
    Combine several aligned forecasts (and optionally the actual series) into one frame.

    Each forecast keeps its own column; overlapping spans are never summed or averaged.
    """
    if not forecasts and actual is None:
        raise ValueError("Nothing to overlay: provide at least one forecast or the actual series.")
    cols = {}
    if actual is not None:
        cols[actual_name] = actual
    for label, s in forecasts.items():
        if label in cols:
            raise ValueError(f"Duplicate column name '{label}'.")
        cols[label] = s
    lengths = {len(s) for s in cols.values()}
    if len(lengths) > 1:
        raise ShapeMismatchError(f"All series must share the same length, got {sorted(lengths)}.")
    return pd.concat(cols, axis=1)


def predictions_to_frame(
    predictions,
    starts: Sequence[int],
    *,
    n_timesteps: int,
    n_forecast: int,
    index: Optional[pd.Index] = None,
    scale_stats: Optional[ScalingStats] = None,
    target_col: int = 0,
    alias: str = "LSTM",
) -> pd.DataFrame:
    """
    Long table of every window's forecast.

    Returns
    -------
    pd.DataFrame
        Columns ['cutoff', 'ds', 'step', alias], sorted by (cutoff, ds). `cutoff` is the
        last timestamp of the input window, `step` the 1-based horizon step.
    """
    preds = _as_prediction_matrix(predictions, n_forecast)
    starts = np.asarray(starts, dtype=np.int64)
    if len(starts) != len(preds):
        raise ShapeMismatchError(f"starts has {len(starts)} entries but predictions have {len(preds)} rows.")
    if len(preds) == 0:
        return pd.DataFrame(columns=["cutoff", "ds", "step", alias])

    values = _denormalize(preds, scale_stats, target_col)
    steps = np.arange(n_forecast)
    cutoff_pos = np.repeat(starts + n_timesteps - 1, n_forecast)
    ds_pos = (starts[:, None] + n_timesteps + steps[None, :]).ravel()
    if index is not None and ds_pos.max() >= len(index):
        raise InsufficientDataError(
            f"Forecast positions reach {int(ds_pos.max())} but the index has length {len(index)}."
        )
    idx = index if index is not None else pd.RangeIndex(int(ds_pos.max()) + 1)

    df = pd.DataFrame({
        "cutoff": np.asarray(idx[cutoff_pos]),
        "ds": np.asarray(idx[ds_pos]),
        "step": np.tile(steps + 1, len(starts)),
        alias: values.ravel(),
    })
    df.sort_values(["cutoff", "ds"], inplace=True, kind="mergesort")
    df.reset_index(drop=True, inplace=True)
    return df
