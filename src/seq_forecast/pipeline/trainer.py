import copy
import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np
import pandas as pd
import torch
import torch.nn as nn
from torch.utils.data import DataLoader
from tqdm.auto import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm

from ..errors import NonFiniteLossError, ShapeMismatchError
from .schedules import GeometricSweep, LRSchedule, NeverStop, StoppingPolicy, epochs_since_improvement


# ─────────────────────────────────────────────────────────────────────────────
# Training state & results
# ─────────────────────────────────────────────────────────────────────────────

class Termination(str, Enum):
    MAX_EPOCHS_REACHED = "max_epochs_reached"
    EARLY_STOPPED = "early_stopped"


@dataclass
class TrainingState:
    """
    Mutable state of one `fit` call. Created at start, updated once per epoch
    (plus `global_step`/`learning_rate` per batch), discarded at the end.
    """
    epoch: int = 0                       # 1-based, last completed epoch
    global_step: int = 0                 # optimizer steps taken so far
    learning_rate: float = float("nan")
    best_validation_loss: float = float("inf")
    best_epoch: Optional[int] = None     # 1-based
    epochs_since_improvement: int = 0


@dataclass
class FitResult:
    """
    Outcome of `SequenceTrainer.fit`.

    Attributes
    ----------
    termination : Termination
        MAX_EPOCHS_REACHED or EARLY_STOPPED (both are normal outcomes).
    epochs_run : int
        Number of completed epochs.
    best_epoch : int | None
        1-based epoch with the lowest monitored loss.
    best_val_loss : float
        Lowest monitored loss (validation loss, or training loss without validation).
    last_train_loss : float
        Training loss of the final epoch.
    history : pd.DataFrame
        Per-epoch rows: epoch, train_loss, val_loss, lr, epoch_time_sec.
    """
    termination: Termination
    epochs_run: int
    best_epoch: Optional[int]
    best_val_loss: float
    last_train_loss: float
    history: pd.DataFrame = field(repr=False)

    @property
    def early_stopped(self) -> bool:
        return self.termination is Termination.EARLY_STOPPED

    def to_dict(self) -> dict:
        return {
            "termination": self.termination.value,
            "epochs_run": self.epochs_run,
            "best_epoch": self.best_epoch,
            "best_val_loss": self.best_val_loss,
            "last_train_loss": self.last_train_loss,
        }


@dataclass
class LRFinderResult:
    """Learning rates tried by the LR finder, the (smoothed) losses they produced and a suggestion."""
    lrs: List[float]
    losses: List[float]
    suggested_lr: Optional[float]

    def as_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame({"lr": self.lrs, "loss": self.losses})


# ─────────────────────────────────────────────────────────────────────────────
# Trainer
# ─────────────────────────────────────────────────────────────────────────────

class SequenceTrainer:
    """
    Epoch-driven training loop for `SequenceForecaster` with MSE loss,
    per-batch LR scheduling, gradient clipping, early stopping, NaN/Inf
    detection, and a learning-rate finder.
    """

    def __init__(
        self,
        model: nn.Module,
        device: Optional[torch.device] = None,
        *,
        grad_clip_max_norm: Optional[float] = None,
        weight_decay: float = 0.0,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Parameters
        ----------
        model : nn.Module
            The model to train. Its parameters are only mutated by this trainer's optimizer.
        device : torch.device | None, default=None
            Defaults to CUDA when available, else CPU.
        grad_clip_max_norm : float | None, default=None
            Max global grad-norm; None disables clipping.
        weight_decay : float, default=0.0
            AdamW weight decay; if 0.0 uses Adam.
        logger : logging.Logger | None, default=None
            Logger for progress and diagnostics.
        """
        if grad_clip_max_norm is not None and grad_clip_max_norm <= 0:
            raise ValueError("grad_clip_max_norm must be a positive float or None.")
        if weight_decay < 0:
            raise ValueError("weight_decay must be non-negative.")
        self.device = device or torch.device("cuda" if torch.cuda.is_available() else "cpu")
        self.model = model.to(self.device)
        self.grad_clip_max_norm = grad_clip_max_norm
        self.weight_decay = weight_decay
        self._logger = logger or logging.getLogger(__name__)
        self._mse = nn.MSELoss()

        self.history: List[dict] = []
        self.train_losses: List[float] = []
        self.val_losses: List[float] = []

    # ---------- helpers ----------
    def _make_optimizer(self, lr: float) -> torch.optim.Optimizer:
        params = [p for p in self.model.parameters() if p.requires_grad]
        if not params:
            raise RuntimeError("Model has no trainable parameters (was it frozen?).")
        if self.weight_decay > 0:
            return torch.optim.AdamW(params, lr=lr, weight_decay=self.weight_decay)
        return torch.optim.Adam(params, lr=lr)

    @staticmethod
    def _set_lr(optimizer: torch.optim.Optimizer, lr: float) -> None:
        for pg in optimizer.param_groups:
            pg["lr"] = lr

    def _to_device(self, batch):
        nb = (self.device.type == "cuda")
        x, y = batch
        return x.to(self.device, non_blocking=nb), y.to(self.device, non_blocking=nb)

    def _loss(self, y_pred: torch.Tensor, y_true: torch.Tensor) -> torch.Tensor:
        if y_pred.shape != y_true.shape:
            raise ShapeMismatchError(
                f"Prediction shape {tuple(y_pred.shape)} does not match target shape {tuple(y_true.shape)}."
            )
        return self._mse(y_pred, y_true)

    # ---------- evaluation ----------
    def evaluate(self, loader: DataLoader) -> float:
        """
        Mean squared error over every element of `loader`, weighting each batch by
        its actual size (the last batch may be short).
        """
        self.model.eval()
        total_sum, total_cnt = 0.0, 0

        with torch.no_grad():
            for bidx, batch in enumerate(loader):
                x, y = self._to_device(batch)
                loss = self._loss(self.model(x), y)
                if not torch.isfinite(loss):
                    raise NonFiniteLossError(f"NaN/Inf in evaluation loss at batch {bidx}.")
                n = y.numel()
                total_sum += float(loss.item()) * n
                total_cnt += n

        if total_cnt == 0:
            raise ValueError("Cannot evaluate on an empty loader.")
        return total_sum / total_cnt

    def predict(self, loader: DataLoader) -> np.ndarray:
        """
        Run the model over `loader` in order and return the stacked predictions,
        shape (num_windows, output_size), on the normalized scale.
        """
        self.model.eval()
        outs = []
        with torch.no_grad():
            for batch in loader:
                x, _ = self._to_device(batch)
                outs.append(self.model(x).detach().cpu().numpy())
        if not outs:
            return np.zeros((0, getattr(self.model, "output_size", 1)), dtype=np.float32)
        return np.concatenate(outs, axis=0)

    # ---------- training ----------
    def _train_epoch(self, loader, optimizer, schedule: LRSchedule, state: TrainingState) -> float:
        self.model.train()
        total_sum, total_cnt = 0.0, 0
        grad_norms = []

        for bidx, batch in enumerate(loader):
            x, y = self._to_device(batch)

            lr = float(schedule.rate_for(state.global_step))
            self._set_lr(optimizer, lr)
            state.learning_rate = lr

            optimizer.zero_grad(set_to_none=True)
            loss = self._loss(self.model(x), y)
            if not torch.isfinite(loss):
                raise NonFiniteLossError(
                    f"NaN/Inf in training loss at epoch {state.epoch + 1}, batch {bidx} (lr={lr:.3e})."
                )
            loss.backward()

            max_norm = self.grad_clip_max_norm if self.grad_clip_max_norm is not None else float("inf")
            total_norm = float(torch.nn.utils.clip_grad_norm_(self.model.parameters(), max_norm=max_norm))
            if not math.isfinite(total_norm):
                self._logger.warning(f"Skipping optimizer.step() due to bad grad norm: {total_norm:.3e}")
                optimizer.zero_grad(set_to_none=True)
            else:
                optimizer.step()
                grad_norms.append(total_norm)
            state.global_step += 1

            n = y.numel()
            total_sum += float(loss.item()) * n
            total_cnt += n
            self._logger.debug(f"[ep {state.epoch + 1} b{bidx}] loss={loss.item():.5f} grad_norm={total_norm:.4f} lr={lr:.3e}")

        if total_cnt == 0:
            raise ValueError("Training loader yielded no batches.")
        return total_sum / total_cnt

    def fit(
        self,
        train_loader: DataLoader,
        val_loader: Optional[DataLoader] = None,
        *,
        max_epochs: int,
        schedule: LRSchedule,
        stopping: Optional[StoppingPolicy] = None,
        restore_best: bool = True,
    ) -> FitResult:
        """
        Train the model and (optionally) early-stop on validation loss.

        Parameters
        ----------
        train_loader : DataLoader
            Batches of (input_window, target_window) on the normalized scale.
        val_loader : DataLoader | None, default=None
            Validation batches; the monitored loss is the training loss when None.
        max_epochs : int
            Maximum number of epochs.
        schedule : LRSchedule
            Queried before every optimizer step with the global (zero-based) step index.
        stopping : StoppingPolicy | None, default=None
            Queried after every epoch with the monitored-loss history. None never stops early.
            Ignored without a validation loader.
        restore_best : bool, default=True
            Reload the weights of the best epoch before returning.

        Returns
        -------
        FitResult
        """
        if not isinstance(max_epochs, int) or max_epochs < 1:
            raise ValueError("max_epochs must be a positive integer.")
        if val_loader is None or stopping is None:
            stopping = NeverStop()

        # history belongs to this call only
        self.history, self.train_losses, self.val_losses = [], [], []

        with_val_txt = "without" if val_loader is None else "with"
        self._logger.info(f"[train] starting training {with_val_txt} validation "
                          f"(max_epochs={max_epochs}, schedule={schedule}, stopping={stopping}, "
                          f"max_grad_norm={self.grad_clip_max_norm}, weight_decay={self.weight_decay})")

        state = TrainingState()
        optimizer = self._make_optimizer(schedule.rate_for(0))
        monitored: List[float] = []
        best_state = None
        termination = Termination.MAX_EPOCHS_REACHED
        last_train_loss = float("nan")
        len_str_n_epochs = len(str(max_epochs))
        start_time = time.perf_counter()

        for epoch in range(max_epochs):
            t_epoch_start = time.perf_counter()
            train_loss = self._train_epoch(train_loader, optimizer, schedule, state)
            self.train_losses.append(train_loss)
            last_train_loss = train_loss

            val_loss = None
            if val_loader is not None:
                val_loss = self.evaluate(val_loader)
                self.val_losses.append(val_loss)
            state.epoch = epoch + 1

            current = val_loss if val_loss is not None else train_loss
            monitored.append(current)
            if current < state.best_validation_loss:
                state.best_validation_loss = current
                state.best_epoch = state.epoch
                if restore_best:
                    best_state = copy.deepcopy({k: v.detach().cpu() for k, v in self.model.state_dict().items()})
            state.epochs_since_improvement = epochs_since_improvement(monitored)

            t_epoch = time.perf_counter() - t_epoch_start
            self.history.append(dict(
                epoch=state.epoch, train_loss=train_loss, val_loss=val_loss,
                lr=state.learning_rate, epoch_time_sec=t_epoch,
            ))
            self._logger.info(
                f"Epoch {state.epoch:{len_str_n_epochs}d}/{max_epochs} "
                f"- train={train_loss:.5f} "
                + (f"- val={val_loss:.5f} " if val_loss is not None else "")
                + f"- lr={state.learning_rate:.3e} "
                + f"- wait={state.epochs_since_improvement} "
                + f"- {t_epoch:.2f}s"
            )

            if stopping.should_stop(monitored):
                termination = Termination.EARLY_STOPPED
                self._logger.info(
                    f"Early stopping triggered at epoch {state.epoch} "
                    f"({state.epochs_since_improvement} epochs without improvement; "
                    f"best={state.best_validation_loss:.5f} at epoch {state.best_epoch})."
                )
                break

        if restore_best and best_state is not None:
            self.model.load_state_dict(best_state)
            self._logger.info(f"Restored best weights from epoch {state.best_epoch} "
                              f"(loss={state.best_validation_loss:.6f})")

        mins, secs = divmod(int(round(time.perf_counter() - start_time)), 60)
        self._logger.info(f"[train] finished: {termination.value} after {state.epoch} epoch(s) "
                          f"in {mins:02d}'{secs:02d}\".")

        return FitResult(
            termination=termination,
            epochs_run=state.epoch,
            best_epoch=state.best_epoch,
            best_val_loss=state.best_validation_loss,
            last_train_loss=last_train_loss,
            history=self.history_as_dataframe(),
        )

    def history_as_dataframe(self) -> pd.DataFrame:
        """
        Return training/validation timeline with per-epoch metrics.
        """
        return pd.DataFrame(self.history, columns=["epoch", "train_loss", "val_loss", "lr", "epoch_time_sec"])

    # ---------- LR finder ----------
    def find_lr(
        self,
        train_loader: DataLoader,
        *,
        start_lr: float = 1e-7,
        end_lr: float = 10.0,
        num_steps: int = 100,
        beta: float = 0.98,
        diverge_factor: float = 4.0,
        verbose: bool = False,
    ) -> LRFinderResult:
        """
        Sweep the learning rate geometrically from `start_lr` to `end_lr`, one
        optimizer step per batch, recording the (exponentially smoothed) loss.

        The smoothed loss is a bias-corrected exponential moving average with
        weight `beta` on the past (`beta=0` records the raw loss).
        The model weights are restored afterwards: the sweep never affects a later `fit`.
        The sweep ends early when the loss becomes non-finite or exceeds
        `diverge_factor` × the best loss seen.

        Returns
        -------
        LRFinderResult
            `suggested_lr` is the rate with the lowest smoothed loss divided by 10.
        """
        if not (0.0 <= beta < 1.0):
            raise ValueError("beta must be in [0, 1).")
        sweep = GeometricSweep(start_lr, end_lr, num_steps)
        init_state = copy.deepcopy({k: v.detach().cpu() for k, v in self.model.state_dict().items()})
        optimizer = self._make_optimizer(start_lr)

        lrs, losses = [], []
        avg_loss, best_loss = 0.0, float("inf")
        self.model.train()

        def _cycle(loader):
            while True:
                n = 0
                for b in loader:
                    n += 1
                    yield b
                if n == 0:
                    raise ValueError("Training loader yielded no batches.")

        batches = _cycle(train_loader)
        self._logger.info(f"[lr-find] sweeping lr {start_lr:.1e} → {end_lr:.1e} over {num_steps} steps")
        try:
            with logging_redirect_tqdm():
                for step in tqdm(range(num_steps), disable=not verbose, desc="LR finder", leave=False):
                    x, y = self._to_device(next(batches))
                    lr = sweep.rate_for(step)
                    self._set_lr(optimizer, lr)

                    optimizer.zero_grad(set_to_none=True)
                    loss = self._loss(self.model(x), y)
                    if not torch.isfinite(loss):
                        self._logger.info(f"[lr-find] non-finite loss at lr={lr:.3e}; stopping sweep.")
                        break
                    loss.backward()
                    optimizer.step()

                    # bias-corrected exponential moving average
                    avg_loss = beta * avg_loss + (1 - beta) * float(loss.item())
                    smoothed = avg_loss / (1 - beta ** (step + 1))
                    lrs.append(lr)
                    losses.append(smoothed)
                    best_loss = min(best_loss, smoothed)
                    if step > 0 and smoothed > diverge_factor * best_loss:
                        self._logger.info(f"[lr-find] loss diverged at lr={lr:.3e}; stopping sweep.")
                        break
        finally:
            self.model.load_state_dict(init_state)

        suggested = None
        if losses:
            suggested = lrs[int(np.argmin(losses))] / 10.0
            self._logger.info(f"[lr-find] {len(losses)} steps; suggested peak lr ≈ {suggested:.3e}")
        return LRFinderResult(lrs=lrs, losses=losses, suggested_lr=suggested)
