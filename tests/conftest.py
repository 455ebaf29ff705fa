import logging

import numpy as np
import pandas as pd
import pytest
import torch


@pytest.fixture(autouse=True)
def _seed():
    np.random.seed(0)
    torch.manual_seed(0)


@pytest.fixture
def logger():
    return logging.getLogger("seq_forecast.tests")


@pytest.fixture
def sine_series():
    t = np.arange(300, dtype=np.float64)
    return pd.Series(
        10.0 + np.sin(t / 8.0) + 0.1 * np.cos(t / 3.0),
        index=pd.date_range("2024-01-01", periods=len(t), freq="h"),
        name="y",
    )


@pytest.fixture
def two_feature_frame(sine_series):
    return pd.DataFrame({
        "y": sine_series.to_numpy(),
        "x": np.linspace(0.0, 1.0, len(sine_series)),
    }, index=sine_series.index)
