"""Replay buffer utilities.

Why this file exists
--------------------
The replay buffer is an algorithm component (DQN) and should *not* live inside
the agent or the training loop. Keeping it here lets the trainer, the tests and
any ablation script reuse the same buffer.

We keep the stored transition as NumPy arrays / Python primitives so that:
  - replay is device-agnostic (CPU/GPU doesn't matter)
  - sampling is fast
  - torch tensors are created only at the update step

Observations are copied on the way in: environment buffers may be reused by
the caller, and a stored transition must never alias live state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

import numpy as np

from ..config import AGENT_CONFIG


@dataclass(slots=True)
class Transition:
    """A single experience tuple."""

    s: np.ndarray
    a: int
    r: float
    s2: np.ndarray
    done: bool


def replay_capacity(rows: int, cols: int) -> int:
    """Capacity for a maze: area * 1000, clamped to [50k, 150k]."""
    raw = int(rows) * int(cols) * AGENT_CONFIG["replay_per_cell"]
    return int(min(max(raw, AGENT_CONFIG["replay_min"]), AGENT_CONFIG["replay_max"]))


class ReplayBuffer:
    """Fixed-size circular replay buffer (FIFO overwrite once full)."""

    def __init__(self, capacity: int):
        if int(capacity) <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = int(capacity)
        self._buf: List[Transition] = []
        self._pos = 0

    def push(self, t: Transition) -> None:
        if len(self._buf) < self.capacity:
            self._buf.append(t)
        else:
            self._buf[self._pos] = t
        self._pos = (self._pos + 1) % self.capacity

    def add(self, s: np.ndarray, a: int, r: float, s2: np.ndarray, done: bool) -> None:
        """Copy and store one step."""
        self.push(Transition(
            s=np.array(s, dtype=np.float32, copy=True),
            a=int(a),
            r=float(r),
            s2=np.array(s2, dtype=np.float32, copy=True),
            done=bool(done),
        ))

    def sample(self, batch_size: int):
        """Uniform random sample *with replacement*.

        Returns:
            s:   (B, D) float32
            a:   (B,)   int64
            r:   (B,)   float32
            s2:  (B, D) float32
            done:(B,)   float32 (1.0 if done else 0.0)
        """
        idx = np.random.randint(0, len(self._buf), size=int(batch_size))
        batch = [self._buf[i] for i in idx]
        s = np.stack([b.s for b in batch]).astype(np.float32, copy=False)
        a = np.array([b.a for b in batch], dtype=np.int64)
        r = np.array([b.r for b in batch], dtype=np.float32)
        s2 = np.stack([b.s2 for b in batch]).astype(np.float32, copy=False)
        done = np.array([b.done for b in batch], dtype=np.float32)
        return s, a, r, s2, done

    def oldest_first(self) -> List[Transition]:
        """Stored transitions in insertion order (oldest surviving first)."""
        if len(self._buf) < self.capacity:
            return list(self._buf)
        return self._buf[self._pos:] + self._buf[:self._pos]

    def __len__(self) -> int:
        return len(self._buf)
