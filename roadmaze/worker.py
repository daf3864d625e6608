"""Command worker: the engine side of the host/engine message boundary.

The host sends discrete commands (train, test, play, stop, reset, model
slot operations) and receives events through one callback. The worker owns
the agent for its whole lifetime and runs at most one training / testing /
playground run at a time. Everything runs on the caller's thread; `Stop`
may come from the callback itself or from another thread, and is observed
at the next step boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, Optional, Sequence

from .config import PATHS, PRESETS, TRAIN_CONFIG, EVAL_CONFIG
from .environment.generation import validate_maze
from .environment.maze import MazeConfig
from .errors import AgentNotReadyError, MazeValidationError, ModelStoreError
from .training.agent import DQNAgent
from .training.checkpoint import ModelStore
from .training.core import TrainingSession, run_training
from .training.eval import EvaluationReport, run_playground, run_tests
from .training.events import (
    Callback,
    CancelToken,
    ErrorEvent,
    ModelDeletedEvent,
    ModelListEvent,
    ModelLoadedEvent,
    ModelSavedEvent,
    discard,
)
from .training.replay import replay_capacity
from .training.schedules import auto_decay_episodes

NOT_READY_MESSAGE = "Train the agent first"
BUSY_MESSAGE = "Another run is active; stop it first"


# ─────────────────────────────────────────────────────────────────────────────
# Hyperparameters
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class HyperParams:
    max_episodes: int = PRESETS["standard"]["max_episodes"]
    lr: float = PRESETS["standard"]["lr"]
    gamma: float = PRESETS["standard"]["gamma"]
    epsilon_end: float = PRESETS["standard"]["epsilon_end"]
    epsilon_decay_episodes: int = PRESETS["standard"]["epsilon_decay_episodes"]
    revisit_penalty: float = PRESETS["standard"]["revisit_penalty"]

    @classmethod
    def from_preset(cls, name: str) -> "HyperParams":
        if name not in PRESETS:
            raise ValueError(f"Unknown preset '{name}' (choose from {', '.join(PRESETS)})")
        return cls(**PRESETS[name])

    def with_auto_decay(self) -> "HyperParams":
        """Decay epsilon over 2/3 of the episode budget."""
        return replace(self, epsilon_decay_episodes=auto_decay_episodes(self.max_episodes))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_episodes": self.max_episodes,
            "lr": self.lr,
            "gamma": self.gamma,
            "epsilon_end": self.epsilon_end,
            "epsilon_decay_episodes": self.epsilon_decay_episodes,
            "revisit_penalty": self.revisit_penalty,
        }


# ─────────────────────────────────────────────────────────────────────────────
# Agent lifecycle
# ─────────────────────────────────────────────────────────────────────────────
class AgentState(Enum):
    EMPTY = "empty"
    READY = "ready"


class AgentHandle:
    """Owned agent slot: EMPTY -> READY (create / load), READY -> EMPTY (dispose).

    Training reuses a READY agent (continued training) unless `fresh` asks
    for a new one.
    """

    def __init__(self):
        self._agent: Optional[DQNAgent] = None

    @property
    def state(self) -> AgentState:
        return AgentState.READY if self._agent is not None else AgentState.EMPTY

    @property
    def agent(self) -> DQNAgent:
        if self._agent is None:
            raise AgentNotReadyError(NOT_READY_MESSAGE)
        return self._agent

    def resolve(self, fresh: bool, factory: Callable[[], DQNAgent]) -> tuple[DQNAgent, bool]:
        """Agent for a training run, and whether it is a reused one."""
        if fresh:
            self.dispose()
        if self._agent is not None:
            return self._agent, True
        self._agent = factory()
        return self._agent, False

    def replace(self, agent: DQNAgent) -> None:
        self._agent = agent

    def dispose(self) -> None:
        self._agent = None


# ─────────────────────────────────────────────────────────────────────────────
# Commands
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class StartTrain:
    mazes: Sequence[MazeConfig]
    hyperparams: HyperParams = field(default_factory=HyperParams)
    fresh: bool = False


@dataclass(frozen=True)
class StartTest:
    rows: int
    cols: int
    count: int = EVAL_CONFIG["num_tests"]


@dataclass(frozen=True)
class Play:
    maze: MazeConfig


@dataclass(frozen=True)
class Stop:
    pass


@dataclass(frozen=True)
class Reset:
    pass


@dataclass(frozen=True)
class SaveModel:
    slot: int
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LoadModel:
    slot: int


@dataclass(frozen=True)
class DeleteModel:
    slot: int


@dataclass(frozen=True)
class CopyModel:
    src: int
    dst: int


@dataclass(frozen=True)
class ListModels:
    pass


# ─────────────────────────────────────────────────────────────────────────────
# Worker
# ─────────────────────────────────────────────────────────────────────────────
class EngineWorker:
    """Dispatches commands against one owned agent and reports via `callback`."""

    def __init__(
        self,
        callback: Callback = discard,
        store: ModelStore | None = None,
        *,
        train_step_delay: float = TRAIN_CONFIG["step_delay"],
        eval_step_delay: float = EVAL_CONFIG["step_delay"],
        device=None,
    ):
        self.callback = callback
        self.store = store if store is not None else ModelStore(PATHS["models_dir"])
        self.train_step_delay = float(train_step_delay)
        self.eval_step_delay = float(eval_step_delay)
        self.device = device

        self.agent_handle = AgentHandle()
        self._cancel: Optional[CancelToken] = None
        self._active = False

        # Side-channel data for model slots.
        self.last_hyperparams: Optional[HyperParams] = None
        self.last_session: Optional[TrainingSession] = None
        self.last_report: Optional[EvaluationReport] = None

        self._handlers: Dict[type, Callable[[Any], None]] = {
            StartTrain: self._start_train,
            StartTest: self._start_test,
            Play: self._play,
            Stop: self._stop,
            Reset: self._reset,
            SaveModel: self._save_model,
            LoadModel: self._load_model,
            DeleteModel: self._delete_model,
            CopyModel: self._copy_model,
            ListModels: self._list_models,
        }

    @property
    def agent_state(self) -> AgentState:
        return self.agent_handle.state

    @property
    def busy(self) -> bool:
        return self._active

    def handle(self, command) -> None:
        handler = self._handlers.get(type(command))
        if handler is None:
            raise TypeError(f"Unknown command: {command!r}")
        handler(command)

    def _error(self, message: str) -> None:
        self.callback(ErrorEvent(message=message))

    def _begin_run(self) -> Optional[CancelToken]:
        if self._active:
            self._error(BUSY_MESSAGE)
            return None
        self._active = True
        self._cancel = CancelToken()
        return self._cancel

    def _end_run(self) -> None:
        self._active = False
        self._cancel = None

    # --- runs ----------------------------------------------------------------

    def _start_train(self, cmd: StartTrain) -> None:
        if not cmd.mazes:
            self._error("No maze to train on")
            return
        for maze in cmd.mazes:
            check = validate_maze(maze)
            if not check.valid:
                self._error(check.message)
                return

        cancel = self._begin_run()
        if cancel is None:
            return
        try:
            hp = cmd.hyperparams
            first = cmd.mazes[0]

            def factory() -> DQNAgent:
                return DQNAgent(
                    lr=hp.lr,
                    gamma=hp.gamma,
                    epsilon_end=hp.epsilon_end,
                    epsilon_decay_episodes=hp.epsilon_decay_episodes,
                    buffer_size=replay_capacity(first.rows, first.cols),
                    device=self.device,
                )

            agent, reused = self.agent_handle.resolve(cmd.fresh, factory)
            if reused and agent.episode_count > 0:
                agent.reset_exploration()

            self.last_hyperparams = hp
            session = run_training(
                agent,
                cmd.mazes,
                self.callback,
                max_episodes=hp.max_episodes,
                revisit_penalty=hp.revisit_penalty,
                cancel=cancel,
                step_delay=self.train_step_delay,
            )
            if session is not None:
                self.last_session = session
        except MazeValidationError as e:
            self._error(str(e))
        finally:
            self._end_run()

    def _start_test(self, cmd: StartTest) -> None:
        if self.agent_handle.state is AgentState.EMPTY:
            self._error(NOT_READY_MESSAGE)
            return
        cancel = self._begin_run()
        if cancel is None:
            return
        try:
            report = run_tests(
                self.agent_handle.agent,
                cmd.rows,
                cmd.cols,
                cmd.count,
                self.callback,
                cancel=cancel,
                step_delay=self.eval_step_delay,
            )
            if report is not None:
                self.last_report = report
        finally:
            self._end_run()

    def _play(self, cmd: Play) -> None:
        if self.agent_handle.state is AgentState.EMPTY:
            self._error(NOT_READY_MESSAGE)
            return
        check = validate_maze(cmd.maze)
        if not check.valid:
            self._error(check.message)
            return
        cancel = self._begin_run()
        if cancel is None:
            return
        try:
            run_playground(
                self.agent_handle.agent,
                cmd.maze,
                self.callback,
                cancel=cancel,
                step_delay=self.eval_step_delay,
            )
        finally:
            self._end_run()

    def _stop(self, cmd: Stop) -> None:
        if self._cancel is not None:
            self._cancel.cancel()

    def _reset(self, cmd: Reset) -> None:
        self._stop(Stop())
        self.agent_handle.dispose()
        self.last_hyperparams = None
        self.last_session = None
        self.last_report = None

    # --- model slots -----------------------------------------------------------

    def _slot_metadata(self, extra: Dict[str, Any]) -> Dict[str, Any]:
        meta: Dict[str, Any] = {}
        if self.last_hyperparams is not None:
            meta["train_hyperparams"] = self.last_hyperparams.to_dict()
        if self.last_session is not None:
            meta["history"] = [
                {"episode": r.episode, "steps": r.total_steps, "reached_goal": r.reached_goal}
                for r in self.last_session.history
            ]
            meta["converged"] = self.last_session.converged
        if self.last_report is not None:
            s = self.last_report.score
            meta["score"] = {
                "success_rate": s.success_rate,
                "avg_efficiency": s.avg_efficiency,
                "total_score": s.total_score,
            }
        meta.update(extra)
        return meta

    def _save_model(self, cmd: SaveModel) -> None:
        if self.agent_handle.state is AgentState.EMPTY:
            self._error(NOT_READY_MESSAGE)
            return
        try:
            meta = self.store.save(cmd.slot, self.agent_handle.agent, self._slot_metadata(cmd.metadata))
        except ModelStoreError as e:
            self._error(f"Save failed: {e}")
            return
        self.callback(ModelSavedEvent(slot=cmd.slot, metadata=meta))

    def _load_model(self, cmd: LoadModel) -> None:
        if self._active:
            self._error(BUSY_MESSAGE)
            return
        try:
            agent, meta = self.store.load(cmd.slot, device=self.device)
        except ModelStoreError as e:
            self._error(f"Load failed: {e}")
            return
        self.agent_handle.replace(agent)
        self.last_session = None
        self.last_report = None
        self.callback(ModelLoadedEvent(slot=cmd.slot, metadata=meta))

    def _delete_model(self, cmd: DeleteModel) -> None:
        try:
            self.store.delete(cmd.slot)
        except ModelStoreError as e:
            self._error(f"Delete failed: {e}")
            return
        self.callback(ModelDeletedEvent(slot=cmd.slot))

    def _copy_model(self, cmd: CopyModel) -> None:
        try:
            meta = self.store.copy(cmd.src, cmd.dst)
        except ModelStoreError as e:
            self._error(f"Copy failed: {e}")
            return
        self.callback(ModelSavedEvent(slot=cmd.dst, metadata=meta))

    def _list_models(self, cmd: ListModels) -> None:
        try:
            slots = self.store.list_slots()
        except ModelStoreError as e:
            self._error(f"List failed: {e}")
            return
        self.callback(ModelListEvent(slots=slots))
