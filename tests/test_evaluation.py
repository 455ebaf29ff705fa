import numpy as np
import pandas as pd
import pytest

from seq_forecast.utils.datasplit import split_series
from seq_forecast.utils.evaluation import errors_by_step, forecast_errors


def test_forecast_errors_skip_absent_positions():
    actual = np.array([1.0, 2.0, 4.0, 5.0])
    forecast = np.array([np.nan, 3.0, 2.0, np.nan])
    out = forecast_errors(actual, forecast)
    assert out["n"] == 2
    assert out["me"] == pytest.approx(0.5)
    assert out["mae"] == pytest.approx(1.5)
    assert out["rmse"] == pytest.approx(np.sqrt(2.5))
    assert out["mape"] == pytest.approx(50.0)


def test_forecast_errors_need_overlap():
    with pytest.raises(ValueError):
        forecast_errors([1.0, 2.0], [np.nan, np.nan])


def test_errors_by_step():
    df = pd.DataFrame({
        "step": [1, 2, 1, 2],
        "y":    [1.0, 1.0, 1.0, 1.0],
        "m":    [2.0, 4.0, 0.0, 1.0],
    })
    out = errors_by_step(df, ["m"])
    assert list(out.columns) == ["step", "metric", "m"]
    mae_1 = out[(out.step == 1) & (out.metric == "mae")]["m"].item()
    rmse_2 = out[(out.step == 2) & (out.metric == "rmse")]["m"].item()
    assert mae_1 == pytest.approx(1.0)
    assert rmse_2 == pytest.approx(np.sqrt(4.5))


def test_split_series_prefixes_history():
    s = pd.Series(np.arange(100.0))
    parts = split_series(s, train_frac=0.6, val_frac=0.2, history=5)
    assert len(parts.train) == 60
    assert parts.bounds == {"train": (0, 60), "val": (60, 80), "test": (80, 100)}
    assert parts.val.iloc[0] == 55.0 and parts.val.iloc[-1] == 79.0
    assert parts.test.iloc[0] == 75.0 and len(parts.test) == 25


def test_split_series_without_val_or_test():
    arr = np.arange(10.0)
    parts = split_series(arr, train_frac=1.0)
    assert parts.val is None and parts.test is None
    with pytest.raises(ValueError):
        split_series(arr, train_frac=0.8, val_frac=0.5)
