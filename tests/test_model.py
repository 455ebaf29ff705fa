import pytest
import torch
import torch.nn as nn

from seq_forecast.errors import ShapeMismatchError
from seq_forecast.pipeline.model import SequenceForecaster


def test_next_step_model_uses_linear_head():
    model = SequenceForecaster(input_size=1, hidden_size=8)
    assert model.head_kind == "linear"
    assert isinstance(model.head, nn.Linear)
    out = model(torch.randn(5, 12, 1))
    assert out.shape == (5, 1)


def test_multi_step_model_uses_mlp_head():
    model = SequenceForecaster(input_size=3, hidden_size=16, num_layers=2, output_size=4,
                               dropout=0.1, rec_dropout=0.2)
    assert model.head_kind == "mlp"
    assert model.linear_size == 16
    assert model.encoder.dropout == pytest.approx(0.2)
    assert model(torch.randn(2, 10, 3)).shape == (2, 4)


def test_explicit_linear_size():
    model = SequenceForecaster(input_size=1, hidden_size=8, output_size=3, linear_size=5)
    assert model.head[0].out_features == 5
    assert model.head[-1].out_features == 3


def test_wrong_feature_count_is_rejected():
    model = SequenceForecaster(input_size=2, hidden_size=4)
    with pytest.raises(ShapeMismatchError, match="feature count"):
        model(torch.randn(3, 6, 1))


def test_wrong_rank_and_window_length():
    model = SequenceForecaster(input_size=1, hidden_size=4, n_timesteps=6)
    with pytest.raises(ShapeMismatchError):
        model(torch.randn(6, 1))
    with pytest.raises(ShapeMismatchError, match="window length"):
        model(torch.randn(2, 7, 1))


@pytest.mark.parametrize("kwargs", [
    dict(input_size=0, hidden_size=4),
    dict(input_size=1, hidden_size=4, dropout=1.0),
    dict(input_size=1, hidden_size=4, linear_size=0),
])
def test_invalid_hyperparameters(kwargs):
    with pytest.raises(ValueError):
        SequenceForecaster(**kwargs)


def test_freeze_disables_gradients():
    model = SequenceForecaster(input_size=1, hidden_size=4)
    assert not model.is_frozen
    model.freeze()
    assert model.is_frozen
    assert not model.training
    assert model.n_params > 0


def test_eval_is_deterministic_with_dropout():
    model = SequenceForecaster(input_size=1, hidden_size=8, output_size=2, dropout=0.5).eval()
    x = torch.randn(4, 5, 1)
    with torch.no_grad():
        torch.testing.assert_close(model(x), model(x))
