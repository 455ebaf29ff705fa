import hashlib
import os
import random
from typing import Callable, Optional

import numpy as np
import torch


def set_global_seed(seed: int) -> None:
    """
    Seed Python, NumPy and PyTorch (CPU & CUDA) and make cuDNN deterministic.
    """
    random.seed(seed); np.random.seed(seed); torch.manual_seed(seed)
    torch.cuda.manual_seed_all(seed)
    os.environ["PYTHONHASHSEED"] = str(seed)
    torch.backends.cudnn.deterministic = True
    torch.backends.cudnn.benchmark = False


def derive_seed(master: int, tag: str) -> int:
    """
    Per-component seed from a master seed and a tag (e.g. "sampling", "train_loader").
    Stable across processes and Python versions (SHA-256, not `hash`).
    """
    h = hashlib.sha256(f"{master}:{tag}".encode()).hexdigest()
    return int(h[:16], 16) % (2**31 - 1)


def make_generator(seed: Optional[int]) -> Optional[torch.Generator]:
    """CPU `torch.Generator` seeded with `seed`, or None when no seed is given."""
    if seed is None:
        return None
    return torch.Generator(device="cpu").manual_seed(int(seed))


def make_worker_init_fn(base_seed: int) -> Callable[[int], None]:
    """
    DataLoader `worker_init_fn` seeding worker `i` with `base_seed + i`.
    """
    def _init_fn(worker_id: int):
        seed = base_seed + worker_id
        random.seed(seed)
        np.random.seed(seed)
        torch.manual_seed(seed)
    return _init_fn
