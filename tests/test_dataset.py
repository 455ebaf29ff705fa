import numpy as np
import pytest
import torch

from seq_forecast.errors import InsufficientDataError
from seq_forecast.pipeline.dataset import WindowedSequenceDataset, count_windows, make_batch_loader


@pytest.fixture
def one_to_ten():
    return np.arange(1.0, 11.0)


def test_window_count_and_contents(one_to_ten):
    ds = WindowedSequenceDataset(one_to_ten, n_timesteps=3, n_forecast=2)
    assert len(ds) == 6 == count_windows(10, 3, 2)

    x0, y0 = ds[0]
    assert x0.shape == (3, 1)
    assert x0[:, 0].tolist() == [1.0, 2.0, 3.0]
    assert y0.tolist() == [4.0, 5.0]

    x5, y5 = ds[5]
    assert x5[:, 0].tolist() == [6.0, 7.0, 8.0]
    assert y5.tolist() == [9.0, 10.0]
    assert x5.dtype == torch.float32


def test_window_bounds_are_half_open(one_to_ten):
    ds = WindowedSequenceDataset(one_to_ten, n_timesteps=3, n_forecast=2)
    assert ds.window_bounds(2) == (2, 5, 7)


def test_multivariate_target_column():
    data = np.column_stack([np.arange(10.0), 100 + np.arange(10.0)])
    ds = WindowedSequenceDataset(data, n_timesteps=4, n_forecast=1, target_col=1)
    x, y = ds[0]
    assert x.shape == (4, 2)
    assert y.tolist() == [104.0]

    ds_all = WindowedSequenceDataset(data, n_timesteps=4, n_forecast=2, target_col=None)
    _, y_all = ds_all[0]
    assert y_all.shape == (2, 2)


def test_sub_sampling_size_order_and_determinism():
    series = np.arange(200.0)
    ds = WindowedSequenceDataset(series, 10, 5, sample_fraction=0.25, seed=7)
    n = count_windows(200, 10, 5)
    assert len(ds) == round(n * 0.25)
    assert np.all(np.diff(ds.starts) > 0)
    assert ds.starts.min() >= 0 and ds.starts.max() < n

    again = WindowedSequenceDataset(series, 10, 5, sample_fraction=0.25, seed=7)
    np.testing.assert_array_equal(ds.starts, again.starts)


def test_sampled_item_matches_its_offset():
    series = np.arange(50.0)
    ds = WindowedSequenceDataset(series, 5, 2, sample_fraction=0.5, seed=3)
    s = int(ds.starts[4])
    x, y = ds[4]
    assert x[0, 0].item() == series[s]
    assert y.tolist() == series[s + 5:s + 7].tolist()


def test_series_too_short(one_to_ten):
    with pytest.raises(InsufficientDataError, match="length 10"):
        WindowedSequenceDataset(one_to_ten, n_timesteps=8, n_forecast=3)


def test_fraction_selecting_nothing(one_to_ten):
    with pytest.raises(InsufficientDataError):
        WindowedSequenceDataset(one_to_ten, 3, 2, sample_fraction=0.01, seed=0)


@pytest.mark.parametrize("kwargs", [
    dict(n_timesteps=0, n_forecast=1),
    dict(n_timesteps=3, n_forecast=0),
    dict(n_timesteps=3, n_forecast=1, sample_fraction=0.0),
    dict(n_timesteps=3, n_forecast=1, sample_fraction=1.5),
])
def test_invalid_arguments(one_to_ten, kwargs):
    with pytest.raises(ValueError):
        WindowedSequenceDataset(one_to_ten, **kwargs)


def test_last_batch_is_short():
    ds = WindowedSequenceDataset(np.arange(30.0), 3, 2)   # 26 windows
    loader = make_batch_loader(ds, batch_size=8, shuffle=False)
    sizes = [x.shape[0] for x, _ in loader]
    assert sizes == [8, 8, 8, 2]


def test_sequential_loader_keeps_dataset_order():
    ds = WindowedSequenceDataset(np.arange(30.0), 3, 1)
    loader = make_batch_loader(ds, batch_size=4, shuffle=False)
    firsts = torch.cat([x[:, 0, 0] for x, _ in loader]).tolist()
    assert firsts == [float(s) for s in ds.starts]


def test_shuffle_is_reproducible_with_seed():
    ds = WindowedSequenceDataset(np.arange(60.0), 3, 1)

    def order(loader):
        return torch.cat([x[:, 0, 0] for x, _ in loader]).tolist()

    a = make_batch_loader(ds, batch_size=5, shuffle=True, seed=11)
    b = make_batch_loader(ds, batch_size=5, shuffle=True, seed=11)
    first_a, first_b = order(a), order(b)
    assert first_a == first_b
    assert sorted(first_a) == [float(s) for s in ds.starts]
    assert order(a) != first_a     # new permutation on the next pass
