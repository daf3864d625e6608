"""
Utility functions for training and evaluation.
"""

from __future__ import annotations

import os
import random
from typing import Dict, Sequence

import numpy as np
import matplotlib.pyplot as plt

try:
    import torch
except ImportError as e:
    raise ImportError("PyTorch is required. Install with: pip install torch") from e

from .training.core import EpisodeResult
from .training.events import (
    EpisodeEndEvent,
    ErrorEvent,
    Event,
    ModelDeletedEvent,
    ModelListEvent,
    ModelLoadedEvent,
    ModelSavedEvent,
    TestDoneEvent,
    TestMazeEvent,
    TestResultEvent,
    TrainingDoneEvent,
)


def seed_everything(seed: int) -> None:
    """Seed python, numpy and torch RNGs (agent exploration, replay sampling, init)."""
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)


def setup_directories(paths: Dict[str, str]):
    """Create necessary directories if they don't exist."""
    for path in paths.values():
        if path.endswith(".json") or path.endswith(".png"):
            path = os.path.dirname(path)
        if path and not os.path.exists(path):
            os.makedirs(path)
            print(f"Created directory: {path}")


def moving_average(values: Sequence[float], window: int) -> np.ndarray:
    values = np.asarray(values, dtype=np.float64)
    if window <= 0 or len(values) < window:
        return np.array([], dtype=np.float64)
    return np.convolve(values, np.ones(window) / window, mode="valid")


def plot_training_history(
    history: Sequence[EpisodeResult],
    window: int = 30,
    save_path: str | None = None,
):
    """
    Plot episode lengths and success rate with a moving average.

    Args:
        history: Finished episodes of a training session.
        window: Window size for moving average.
        save_path: Optional path to save the plot.
    """
    steps = [r.total_steps for r in history]
    goals = [1.0 if r.reached_goal else 0.0 for r in history]

    fig, axes = plt.subplots(2, 1, figsize=(10, 8))

    # Episode lengths, failures marked
    ax = axes[0]
    ax.plot(steps, alpha=0.3, color="green", label="Episode Steps")
    failed = [i for i, g in enumerate(goals) if not g]
    if failed:
        ax.scatter(failed, [steps[i] for i in failed], s=8, color="black", label="No Goal")
    avg = moving_average(steps, window)
    if len(avg):
        ax.plot(range(window - 1, len(steps)), avg, color="red", label=f"Moving Avg ({window})")
    ax.set_xlabel("Episode")
    ax.set_ylabel("Steps")
    ax.set_title("Episode Lengths")
    ax.legend()
    ax.grid(True, alpha=0.3)

    # Success rate
    ax = axes[1]
    rate = moving_average(goals, window)
    if len(rate):
        ax.plot(range(window - 1, len(goals)), rate * 100, color="blue", label=f"Success % ({window})")
    ax.set_ylim(-5, 105)
    ax.set_xlabel("Episode")
    ax.set_ylabel("Success %")
    ax.set_title("Goal Rate")
    ax.legend()
    ax.grid(True, alpha=0.3)

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150)
        print(f"Plot saved to {save_path}")
    else:
        plt.show()

    plt.close(fig)


# ─────────────────────────────────────────────────────────────────────────────
# Console event printer
# ─────────────────────────────────────────────────────────────────────────────
class ConsolePrinter:
    """Callback that prints the events a terminal user cares about.

    Per-step events are skipped; episodes are printed every `log_interval`.
    """

    def __init__(self, log_interval: int = 10):
        self.log_interval = max(1, int(log_interval))
        self._recent_goals: list[bool] = []

    def __call__(self, event: Event) -> None:
        if isinstance(event, EpisodeEndEvent):
            self._recent_goals.append(event.reached_goal)
            if (event.episode + 1) % self.log_interval == 0:
                recent = self._recent_goals[-self.log_interval:]
                print(
                    f"  Ep {event.episode + 1:5d} │ "
                    f"Maze {event.maze_index} │ "
                    f"Steps {event.total_steps:4d} │ "
                    f"{'GOAL' if event.reached_goal else 'miss'} │ "
                    f"SR {100 * sum(recent) / len(recent):5.1f}% │ "
                    f"ε={event.epsilon:.3f} │ "
                    f"Loss {event.avg_loss:.4f}"
                )
        elif isinstance(event, TrainingDoneEvent):
            print("\n" + "=" * 70)
            print("  TRAINING COMPLETE")
            print("=" * 70)
            print(f"  Episodes:   {event.total_episodes}")
            print(f"  Converged:  {'YES' if event.converged else 'no'}")
            for i, path in enumerate(event.final_paths):
                print(f"  Maze {i}: greedy path {len(path) - 1} steps")
        elif isinstance(event, TestMazeEvent):
            bfs = event.bfs_shortest if event.bfs_shortest is not None else "-"
            print(f"  Test {event.test_index + 1:2d}: {event.start} → {event.goal} (BFS {bfs})", end=" ")
        elif isinstance(event, TestResultEvent):
            print(f"{'SUCCESS' if event.reached_goal else 'FAILED '} in {event.steps} steps")
        elif isinstance(event, TestDoneEvent):
            print("\n  ── Evaluation ──")
            print(
                f"  Success={event.success_rate * 100:.0f}% │ "
                f"Efficiency={event.avg_efficiency * 100:.0f}% │ "
                f"Score={event.total_score}"
            )
        elif isinstance(event, ErrorEvent):
            print(f"  [error] {event.message}")
        elif isinstance(event, ModelSavedEvent):
            print(f"  [Model → slot {event.slot}]")
        elif isinstance(event, ModelLoadedEvent):
            print(f"  [Model ← slot {event.slot}] episodes trained: {event.metadata.get('episode_count', '?')}")
        elif isinstance(event, ModelDeletedEvent):
            print(f"  [Slot {event.slot} deleted]")
        elif isinstance(event, ModelListEvent):
            if not event.slots:
                print("  No saved models.")
            for meta in event.slots:
                name = meta.get("name", "")
                print(f"  Slot {meta.get('slot')}: {name} episodes={meta.get('episode_count', '?')}")
