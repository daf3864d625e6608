"""Progress events emitted by the trainer, the evaluator and the worker.

Each event is an immutable record with a `type` tag. Hosts receive them
through a plain callback (`Callback`); the engine never waits for an
acknowledgment. `to_dict()` gives the JSON-ready wire form.
"""

from __future__ import annotations

import math
import threading
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Optional, Tuple

Cell = Tuple[int, int]


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round with .5 going up (toward +inf), not to even."""
    scale = 10 ** int(ndigits)
    return math.floor(float(value) * scale + 0.5) / scale


@dataclass(frozen=True)
class Event:
    type: ClassVar[str] = "event"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, **asdict(self)}


Callback = Callable[[Event], None]


def discard(event: Event) -> None:
    """Callback that ignores everything."""


# ─────────────────────────────────────────────────────────────────────────────
# Training
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class StepEvent(Event):
    type: ClassVar[str] = "step"

    episode: int
    maze_index: int
    step: int
    position: Cell
    action: int
    reward: float


@dataclass(frozen=True)
class EpisodeEndEvent(Event):
    type: ClassVar[str] = "episode_end"

    episode: int
    maze_index: int
    total_steps: int
    reached_goal: bool
    epsilon: float
    avg_loss: float


@dataclass(frozen=True)
class TrainingDoneEvent(Event):
    type: ClassVar[str] = "training_done"

    total_episodes: int
    final_paths: List[List[Cell]]
    converged: bool


# ─────────────────────────────────────────────────────────────────────────────
# Evaluation
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class TestMazeEvent(Event):
    __test__ = False  # not a pytest class
    type: ClassVar[str] = "test_maze"

    test_index: int
    walls: List[Cell]
    start: Cell
    goal: Cell
    bfs_shortest: Optional[int]


@dataclass(frozen=True)
class TestStepEvent(Event):
    __test__ = False
    type: ClassVar[str] = "test_step"

    test_index: int
    step: int
    position: Cell
    action: int
    action_name: str
    q_values: Dict[str, float]


@dataclass(frozen=True)
class TestResultEvent(Event):
    __test__ = False
    type: ClassVar[str] = "test_result"

    test_index: int
    reached_goal: bool
    steps: int
    path: List[Cell]


@dataclass(frozen=True)
class TestDoneEvent(Event):
    __test__ = False
    type: ClassVar[str] = "test_done"

    results: List[TestResultEvent]
    success_rate: float
    avg_efficiency: float
    total_score: int

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["results"] = [r.to_dict() for r in self.results]
        return data


# ─────────────────────────────────────────────────────────────────────────────
# Worker replies
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class ErrorEvent(Event):
    type: ClassVar[str] = "error"

    message: str


@dataclass(frozen=True)
class ModelSavedEvent(Event):
    type: ClassVar[str] = "model_saved"

    slot: int
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ModelLoadedEvent(Event):
    type: ClassVar[str] = "model_loaded"

    slot: int
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ModelDeletedEvent(Event):
    type: ClassVar[str] = "model_deleted"

    slot: int


@dataclass(frozen=True)
class ModelListEvent(Event):
    type: ClassVar[str] = "model_list"

    slots: List[Dict[str, Any]]


# ─────────────────────────────────────────────────────────────────────────────
# Cooperative cancellation
# ─────────────────────────────────────────────────────────────────────────────
class CancelToken:
    """Flag checked at every step/tick boundary.

    Stopping is a normal exit: the routine returns without its "done" event.
    Backed by threading.Event so a host thread may set it.
    """

    def __init__(self):
        self._flag = threading.Event()

    def cancel(self) -> None:
        self._flag.set()

    @property
    def cancelled(self) -> bool:
        return self._flag.is_set()
