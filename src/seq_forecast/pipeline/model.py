from typing import Optional

import torch
import torch.nn as nn

from ..errors import ShapeMismatchError


# ─────────────────────────────────────────────────────────────────────────────
# Model
# ─────────────────────────────────────────────────────────────────────────────

class SequenceForecaster(nn.Module):
    """
    LSTM encoder + feed-forward head producing all `output_size` horizons at once.

    Architecture
    ------------
    - LSTM(input_size -> hidden_size, num_layers), inter-layer dropout `rec_dropout`
    - last layer's hidden state at the last time step
    - Dropout(dropout)
    - head:
        - "linear": Linear(H, output_size)                       (output_size=1, no linear_size)
        - "mlp":    Linear(H, linear_size) → ReLU → Dropout → Linear(linear_size, output_size)

    Forecasting is direct multi-horizon: no predictions are fed back as inputs.
    """
    def __init__(
            self,
            *,
            input_size: int,
            hidden_size: int,
            num_layers: int = 1,
            output_size: int = 1,
            linear_size: Optional[int] = None,
            dropout: float = 0.0,
            rec_dropout: float = 0.0,
            n_timesteps: Optional[int] = None,
        ):
        """
        Parameters
        ----------
        input_size : int
            Number of features per time step.
        hidden_size : int
            LSTM hidden units per layer.
        num_layers : int, default=1
            Stacked LSTM layers.
        output_size : int, default=1
            1 for next-step models, `n_forecast` for multi-step models.
        linear_size : int | None, default=None
            Hidden width of the MLP head. Defaults to `hidden_size` when
            `output_size > 1`; with `output_size == 1` and None, a linear head is used.
        dropout : float, default=0.0
            Dropout after the encoder and inside the MLP head.
        rec_dropout : float, default=0.0
            Dropout between stacked LSTM layers (ignored when num_layers == 1).
        n_timesteps : int | None, default=None
            Expected window length; when set, inputs of any other length are rejected.
        """
        super().__init__()
        for name, val in (("input_size", input_size), ("hidden_size", hidden_size),
                          ("num_layers", num_layers), ("output_size", output_size)):
            if not isinstance(val, int) or val < 1:
                raise ValueError(f"{name} must be a positive integer, got {val!r}.")
        if linear_size is not None and (not isinstance(linear_size, int) or linear_size < 1):
            raise ValueError(f"linear_size must be a positive integer or None, got {linear_size!r}.")
        if not (0.0 <= dropout < 1.0 and 0.0 <= rec_dropout < 1.0):
            raise ValueError("dropout and rec_dropout must be in [0, 1).")

        self.input_size = input_size
        self.hidden_size = hidden_size
        self.num_layers = num_layers
        self.output_size = output_size
        self.n_timesteps = n_timesteps

        inter_drop = rec_dropout if num_layers > 1 else 0.0  # LSTM between-layer dropout
        self.encoder = nn.LSTM(input_size, hidden_size, num_layers, batch_first=True, dropout=inter_drop)
        self.dropout = nn.Dropout(dropout) if dropout > 0 else nn.Identity()

        if output_size > 1 and linear_size is None:
            linear_size = hidden_size
        self.linear_size = linear_size

        if linear_size is not None:
            self.head_kind = "mlp"
            self.head = nn.Sequential(
                nn.Linear(hidden_size, linear_size),
                nn.ReLU(),
                nn.Dropout(dropout) if dropout > 0 else nn.Identity(),
                nn.Linear(linear_size, output_size),
            )
        else:
            self.head_kind = "linear"
            self.head = nn.Linear(hidden_size, output_size)

    def check_input_shape(self, x: torch.Tensor) -> None:
        """
        Validate a (B, T, F) input batch.

        Raises
        ------
        ShapeMismatchError
            On wrong rank, feature count, or window length.
        """
        if x.dim() != 3:
            raise ShapeMismatchError(
                f"Expected input of shape (batch, n_timesteps, {self.input_size}), got {tuple(x.shape)}."
            )
        if x.shape[2] != self.input_size:
            raise ShapeMismatchError(
                f"input feature count mismatch: model expects {self.input_size}, got {x.shape[2]} "
                f"(input shape {tuple(x.shape)})."
            )
        if self.n_timesteps is not None and x.shape[1] != self.n_timesteps:
            raise ShapeMismatchError(
                f"window length mismatch: model expects n_timesteps={self.n_timesteps}, got {x.shape[1]}."
            )
        if x.shape[1] == 0:
            raise ShapeMismatchError("Input window is empty.")

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        Parameters
        ----------
        x : torch.Tensor
            Input windows, shape (B, n_timesteps, input_size).

        Returns
        -------
        torch.Tensor
            Forecasts, shape (B, output_size).
        """
        self.check_input_shape(x)
        out, _ = self.encoder(x)        # (B, T, H)
        last = out[:, -1, :]            # last layer, last time step
        return self.head(self.dropout(last))

    def freeze(self) -> "SequenceForecaster":
        """Switch to inference: eval mode and no gradients."""
        self.eval()
        for p in self.parameters():
            p.requires_grad_(False)
        return self

    @property
    def is_frozen(self) -> bool:
        return not any(p.requires_grad for p in self.parameters())

    @property
    def n_params(self) -> int:
        return sum(p.numel() for p in self.parameters())

    def describe(self) -> str:
        return (f"SequenceForecaster(in={self.input_size}, hidden={self.hidden_size}, "
                f"n_layers={self.num_layers}, head={self.head_kind}, linear={self.linear_size}, "
                f"out={self.output_size}, n_params={self.n_params})")
