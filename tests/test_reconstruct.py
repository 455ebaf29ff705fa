import numpy as np
import pandas as pd
import pytest

from seq_forecast.errors import InsufficientDataError, ShapeMismatchError
from seq_forecast.utils.reconstruct import overlay_forecasts, predictions_to_frame, reconstruct_forecast
from seq_forecast.utils.scaling import SeriesScaler


def _buffer(n_rows, n_forecast):
    return np.arange(n_rows * n_forecast, dtype=float).reshape(n_rows, n_forecast)


def test_placement_with_absent_markers():
    preds = np.zeros((16, 2))
    preds[5] = [100.0, 101.0]
    out = reconstruct_forecast(preds, 5, n_timesteps=3, n_forecast=2, series_length=20)
    assert len(out) == 20
    assert out.iloc[:8].isna().all()
    assert out.iloc[8] == 100.0
    assert out.iloc[9] == 101.0
    assert out.iloc[10:].isna().all()


def test_denormalizes_with_training_stats():
    train = np.column_stack([np.arange(10.0), 50 + 2 * np.arange(10.0)])
    scaler = SeriesScaler("minmax")
    stats = scaler.fit(train)
    normed_target = scaler.apply(train, stats)[:, 1]
    preds = np.array([[normed_target[4], normed_target[5]]])
    out = reconstruct_forecast(preds, 0, n_timesteps=4, n_forecast=2, series_length=10,
                               scale_stats=stats, target_col=1)
    np.testing.assert_allclose(out.iloc[4:6].to_numpy(), [58.0, 60.0])


def test_selected_indices_map_offsets_to_rows():
    preds = _buffer(3, 2)
    out = reconstruct_forecast(preds, 7, n_timesteps=2, n_forecast=2, series_length=20,
                               selected_indices=[1, 7, 12])
    assert out.iloc[9:11].tolist() == [2.0, 3.0]
    with pytest.raises(KeyError):
        reconstruct_forecast(preds, 8, n_timesteps=2, n_forecast=2, series_length=20,
                             selected_indices=[1, 7, 12])


def test_offset_without_prediction():
    with pytest.raises(KeyError):
        reconstruct_forecast(_buffer(4, 1), 4, n_timesteps=2, n_forecast=1, series_length=10)


def test_wrong_buffer_shape():
    with pytest.raises(ShapeMismatchError):
        reconstruct_forecast(_buffer(4, 3), 0, n_timesteps=2, n_forecast=2, series_length=10)


def test_span_past_series_end():
    with pytest.raises(InsufficientDataError):
        reconstruct_forecast(_buffer(10, 2), 7, n_timesteps=2, n_forecast=2, series_length=10)


def test_uses_given_index_and_name():
    idx = pd.date_range("2024-01-01", periods=8, freq="D")
    out = reconstruct_forecast(_buffer(5, 1), 1, n_timesteps=3, n_forecast=1, series_length=8,
                               index=idx, name="LSTM")
    assert out.name == "LSTM"
    assert out.index.equals(idx)
    assert out.loc["2024-01-05"] == 1.0


def test_overlay_keeps_each_forecast_separate():
    a = reconstruct_forecast(np.ones((6, 2)), 0, n_timesteps=3, n_forecast=2, series_length=10)
    b = reconstruct_forecast(2 * np.ones((6, 2)), 1, n_timesteps=3, n_forecast=2, series_length=10)
    actual = pd.Series(np.arange(10.0))
    df = overlay_forecasts({"cur0": a, "cur1": b}, actual=actual)
    assert list(df.columns) == ["y", "cur0", "cur1"]
    # position 4 is covered by both forecasts, values are not combined
    assert df.loc[4, "cur0"] == 1.0
    assert df.loc[4, "cur1"] == 2.0
    assert np.isnan(df.loc[5, "cur0"])


def test_overlay_length_mismatch():
    with pytest.raises(ShapeMismatchError):
        overlay_forecasts({"a": pd.Series(np.zeros(3)), "b": pd.Series(np.zeros(4))})


def test_predictions_to_frame_long_layout():
    idx = pd.date_range("2024-01-01", periods=10, freq="h")
    df = predictions_to_frame(_buffer(2, 2), [0, 5], n_timesteps=3, n_forecast=2, index=idx, alias="m")
    assert list(df.columns) == ["cutoff", "ds", "step", "m"]
    assert len(df) == 4
    assert df["step"].tolist() == [1, 2, 1, 2]
    assert df["cutoff"].iloc[0] == idx[2]
    assert df["ds"].tolist() == [idx[3], idx[4], idx[8], idx[9]]
    assert df["m"].tolist() == [0.0, 1.0, 2.0, 3.0]
