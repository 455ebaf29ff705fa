from typing import NamedTuple, Optional, Union

import numpy as np
import pandas as pd
import logging
_LOGGER = logging.getLogger(__name__)
_LOGGER.addHandler(logging.NullHandler())

SeriesLike = Union[np.ndarray, pd.Series, pd.DataFrame]


class SeriesSplit(NamedTuple):
    """Chronological splits. `val`/`test` start with `history` rows of input context (or are None)."""
    train: SeriesLike
    val: Optional[SeriesLike]
    test: Optional[SeriesLike]
    bounds: dict


# -------------------------------------------------------------------------------
# FOR TRAIN / VALIDATION / TEST SPLIT
# -------------------------------------------------------------------------------

def _take(series: SeriesLike, start: int, end: int) -> SeriesLike:
    if isinstance(series, (pd.Series, pd.DataFrame)):
        return series.iloc[start:end]
    return series[start:end]


def split_series(
    series:     SeriesLike,
    train_frac: float,
    val_frac:   float = 0.0,
    history:    int = 0,   # rows of context prepended to val/test
    verbose:    bool = False,
) -> SeriesSplit:
    """
    Split `series` chronologically into train / validation / test.

    Rows [0, n_train) are training data, the next `n_val` rows validation and
    the rest test. Validation and test slices are prefixed with the `history`
    rows preceding them, so that the first window of each split has its full
    input context while every *target* stays inside its own split.

    `bounds` maps each split name to the half-open (start, end) row range of
    its *targets* in the original series.
    """
    n = len(series)
    if not (0.0 < train_frac <= 1.0):
        raise ValueError(f"train_frac must be in (0, 1], got {train_frac}.")
    if not (0.0 <= val_frac < 1.0) or train_frac + val_frac > 1.0:
        raise ValueError(f"val_frac must be in [0, 1) with train_frac + val_frac <= 1, got {val_frac}.")
    if history < 0:
        raise ValueError(f"history must be non-negative, got {history}.")

    n_train = int(round(n * train_frac))
    n_val = int(round(n * val_frac))
    n_val = min(n_val, n - n_train)
    if n_train < 1:
        raise ValueError(f"Series of length {n} leaves no training rows for train_frac={train_frac}.")

    bounds = {"train": (0, n_train)}
    train = _take(series, 0, n_train)
    val = test = None

    if n_val > 0:
        bounds["val"] = (n_train, n_train + n_val)
        val = _take(series, max(0, n_train - history), n_train + n_val)
    end_val = n_train + n_val
    if end_val < n:
        bounds["test"] = (end_val, n)
        test = _take(series, max(0, end_val - history), n)

    if verbose:
        _LOGGER.info("Generating train/val/test splits...")
        _LOGGER.info("TRAIN %s | VAL %s | TEST %s (history=%d)",
                     bounds["train"], bounds.get("val"), bounds.get("test"), history)
    return SeriesSplit(train=train, val=val, test=test, bounds=bounds)
