import logging
import math
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, runtime_checkable

_LOGGER = logging.getLogger(__name__)
_LOGGER.addHandler(logging.NullHandler())


# ─────────────────────────────────────────────────────────────────────────────
# Learning-rate schedules (keyed per optimizer step)
# ─────────────────────────────────────────────────────────────────────────────

@runtime_checkable
class LRSchedule(Protocol):
    def rate_for(self, step: int) -> float:
        """Learning rate to use for the (zero-based) optimizer step `step`."""
        ...


@dataclass(frozen=True)
class ConstantSchedule:
    lr: float

    def __post_init__(self):
        if not (self.lr > 0.0):
            raise ValueError(f"lr must be positive, got {self.lr}.")

    def rate_for(self, step: int) -> float:
        return self.lr


def _cos_interp(start: float, end: float, pct: float) -> float:
    """Cosine interpolation from `start` (pct=0) to `end` (pct=1)."""
    return end + (start - end) / 2.0 * (math.cos(math.pi * pct) + 1.0)


@dataclass(frozen=True)
class OneCycleSchedule:
    """
    One-cycle policy over a fixed budget of optimizer steps.

    Behavior
    --------
    - Warmup [0, warmup_steps]: cosine ramp from `start_lr` up to `peak_lr`.
    - Annealing (warmup_steps, total_steps - 1]: cosine decay from `peak_lr` to `end_lr`.
    - Steps beyond the budget stay at `end_lr`.

    Attributes
    ----------
    start_lr : float
        Learning rate at step 0.
    peak_lr : float
        Maximum learning rate, reached at step `warmup_steps`.
    end_lr : float
        Learning rate at the last step.
    total_steps : int
        Planned number of optimizer steps (epochs × batches_per_epoch).
    pct_start : float, default=0.3
        Fraction of `total_steps` spent ramping up.
    """
    start_lr: float
    peak_lr: float
    end_lr: float
    total_steps: int
    pct_start: float = 0.3

    def __post_init__(self):
        # warmup, peak and annealing each need at least one step
        if not isinstance(self.total_steps, int) or self.total_steps < 3:
            raise ValueError(f"total_steps must be an integer >= 3, got {self.total_steps!r} "
                             f"(use a constant schedule for shorter runs).")
        if not (0.0 < self.pct_start < 1.0):
            raise ValueError(f"pct_start must be in (0, 1), got {self.pct_start}.")
        if min(self.start_lr, self.peak_lr, self.end_lr) <= 0.0:
            raise ValueError("start_lr, peak_lr and end_lr must be positive.")
        if not (self.start_lr <= self.peak_lr and self.end_lr <= self.peak_lr):
            raise ValueError("Require start_lr <= peak_lr and end_lr <= peak_lr.")

    @classmethod
    def for_training(
        cls,
        *,
        start_lr: float,
        peak_lr: float,
        end_lr: float,
        epochs: int,
        steps_per_epoch: int,
        pct_start: float = 0.3,
    ) -> "OneCycleSchedule":
        """Build the schedule for `epochs` × `steps_per_epoch` optimizer steps."""
        return cls(start_lr=start_lr, peak_lr=peak_lr, end_lr=end_lr,
                   total_steps=int(epochs) * int(steps_per_epoch), pct_start=pct_start)

    @property
    def warmup_steps(self) -> int:
        return max(1, int(math.floor(self.pct_start * (self.total_steps - 1))))

    def rate_for(self, step: int) -> float:
        if step < 0:
            raise ValueError(f"step must be non-negative, got {step}.")
        last = self.total_steps - 1
        if step >= last:
            return self.end_lr
        w = min(self.warmup_steps, last)
        if step <= w:
            return _cos_interp(self.start_lr, self.peak_lr, step / w)
        return _cos_interp(self.peak_lr, self.end_lr, (step - w) / max(1, last - w))


@dataclass(frozen=True)
class GeometricSweep:
    """Geometric sweep from `start_lr` to `end_lr` over `num_steps` steps (used by the LR finder)."""
    start_lr: float
    end_lr: float
    num_steps: int

    def __post_init__(self):
        if not (0.0 < self.start_lr < self.end_lr):
            raise ValueError("Require 0 < start_lr < end_lr.")
        if not isinstance(self.num_steps, int) or self.num_steps < 2:
            raise ValueError(f"num_steps must be an integer >= 2, got {self.num_steps!r}.")

    def rate_for(self, step: int) -> float:
        t = min(max(step, 0), self.num_steps - 1) / (self.num_steps - 1)
        return self.start_lr * (self.end_lr / self.start_lr) ** t


# ─────────────────────────────────────────────────────────────────────────────
# Stopping policies (queried once per epoch)
# ─────────────────────────────────────────────────────────────────────────────

@runtime_checkable
class StoppingPolicy(Protocol):
    def should_stop(self, history: Sequence[float]) -> bool:
        """Given the per-epoch monitored losses so far, decide whether to stop."""
        ...


def epochs_since_improvement(history: Sequence[float]) -> int:
    """
    Number of trailing epochs that did not strictly improve on the best value seen before them.
    Ties are not improvements.
    """
    best = math.inf
    wait = 0
    for v in history:
        if v < best:
            best = v
            wait = 0
        else:
            wait += 1
    return wait


@dataclass(frozen=True)
class PatienceStopping:
    """
    Stop after `patience` consecutive epochs without a strict improvement.

    Example: losses [10, 9, 9, 9, 9] with patience=3 stop after the fifth epoch,
    the best value being 9 at the second epoch.
    """
    patience: int

    def __post_init__(self):
        if not isinstance(self.patience, int) or self.patience < 1:
            raise ValueError(f"patience must be a positive integer, got {self.patience!r}.")

    def should_stop(self, history: Sequence[float]) -> bool:
        return epochs_since_improvement(history) >= self.patience


@dataclass(frozen=True)
class NeverStop:
    def should_stop(self, history: Sequence[float]) -> bool:
        return False


def make_stopping_policy(patience: Optional[int]) -> StoppingPolicy:
    """`PatienceStopping(patience)`, or `NeverStop()` when patience is None/0."""
    if not patience:
        return NeverStop()
    return PatienceStopping(patience)
