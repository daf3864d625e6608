from __future__ import annotations

from typing import List

import pytest

from roadmaze.environment.generation import START_ON_WALL_MESSAGE, UNREACHABLE_MESSAGE
from roadmaze.environment.maze import MazeConfig
from roadmaze.errors import AgentNotReadyError, ModelStoreError
from roadmaze.training.agent import DQNAgent
from roadmaze.training.checkpoint import ModelStore
from roadmaze.training.events import (
    ErrorEvent,
    Event,
    ModelDeletedEvent,
    ModelListEvent,
    ModelLoadedEvent,
    ModelSavedEvent,
    StepEvent,
    TestDoneEvent,
    TrainingDoneEvent,
)
from roadmaze.utils import seed_everything
from roadmaze.worker import (
    BUSY_MESSAGE,
    NOT_READY_MESSAGE,
    AgentHandle,
    AgentState,
    CopyModel,
    DeleteModel,
    EngineWorker,
    HyperParams,
    ListModels,
    LoadModel,
    Play,
    Reset,
    SaveModel,
    StartTest,
    StartTrain,
    Stop,
)

OPEN_3X3 = MazeConfig(3, 3)
BLOCKED = MazeConfig(3, 3, walls={(1, 0), (1, 1), (1, 2)})
QUICK = HyperParams(max_episodes=4, epsilon_decay_episodes=3)


@pytest.fixture(autouse=True)
def _seed():
    seed_everything(2)


class Host:
    """Records events; optional hook runs on every event."""

    def __init__(self):
        self.events: List[Event] = []
        self.hook = None

    def __call__(self, event: Event) -> None:
        self.events.append(event)
        if self.hook is not None:
            self.hook(event)

    def of(self, kind):
        return [e for e in self.events if isinstance(e, kind)]

    def errors(self) -> List[str]:
        return [e.message for e in self.of(ErrorEvent)]


@pytest.fixture
def host():
    return Host()


@pytest.fixture
def worker(host, tmp_path):
    return EngineWorker(
        host,
        ModelStore(str(tmp_path / "models")),
        train_step_delay=0,
        eval_step_delay=0,
        device="cpu",
    )


# ─────────────────────────────────────────────────────────────────────────────
# Hyperparameters
# ─────────────────────────────────────────────────────────────────────────────
def test_presets():
    assert HyperParams.from_preset("beginner").max_episodes == 100
    expert = HyperParams.from_preset("expert")
    assert expert.lr == 0.003 and expert.gamma == 0.99
    assert HyperParams() == HyperParams.from_preset("standard")
    with pytest.raises(ValueError):
        HyperParams.from_preset("insane")


def test_auto_decay():
    assert HyperParams.from_preset("standard").with_auto_decay().epsilon_decay_episodes == 200


# ─────────────────────────────────────────────────────────────────────────────
# Guards
# ─────────────────────────────────────────────────────────────────────────────
def test_test_and_play_need_an_agent(worker, host):
    worker.handle(StartTest(5, 5, 2))
    worker.handle(Play(OPEN_3X3))
    worker.handle(SaveModel(1))
    assert host.errors() == [NOT_READY_MESSAGE] * 3
    assert worker.agent_state is AgentState.EMPTY


def test_invalid_maze_message_is_forwarded(worker, host):
    worker.handle(StartTrain([OPEN_3X3, BLOCKED], QUICK))
    assert host.errors() == [UNREACHABLE_MESSAGE]
    assert host.events == host.of(ErrorEvent)
    assert worker.agent_state is AgentState.EMPTY


def test_play_rejects_invalid_maze(worker, host):
    worker.handle(StartTrain([OPEN_3X3], QUICK))
    host.events.clear()
    worker.handle(Play(MazeConfig(3, 3, walls={(0, 0)})))
    assert host.errors() == [START_ON_WALL_MESSAGE]


def test_unknown_command(worker):
    with pytest.raises(TypeError):
        worker.handle("train")


# ─────────────────────────────────────────────────────────────────────────────
# Runs
# ─────────────────────────────────────────────────────────────────────────────
def test_train_then_test_then_play(worker, host):
    worker.handle(StartTrain([OPEN_3X3], QUICK))
    assert isinstance(host.events[-1], TrainingDoneEvent)
    assert worker.agent_state is AgentState.READY
    assert worker.last_session.total_episodes == 4

    worker.handle(StartTest(5, 5, 2))
    assert isinstance(host.events[-1], TestDoneEvent)
    assert worker.last_report is not None

    worker.handle(Play(OPEN_3X3))
    assert isinstance(host.events[-1], TestDoneEvent)
    assert host.errors() == []
    assert not worker.busy


def test_continued_training_reuses_agent(worker):
    worker.handle(StartTrain([OPEN_3X3], QUICK))
    agent = worker.agent_handle.agent
    assert agent.episode_count == 4

    worker.handle(StartTrain([OPEN_3X3], QUICK))
    assert worker.agent_handle.agent is agent
    assert agent.episode_count == 8
    # exploration restarted from 0.4 and decayed over 4 more episodes
    assert agent.epsilon < 0.4

    worker.handle(StartTrain([OPEN_3X3], QUICK, fresh=True))
    assert worker.agent_handle.agent is not agent
    assert worker.agent_handle.agent.episode_count == 4


def test_new_agent_uses_hyperparams(worker):
    hp = HyperParams(max_episodes=2, lr=0.0005, gamma=0.9, epsilon_end=0.15, epsilon_decay_episodes=80)
    worker.handle(StartTrain([MazeConfig(10, 10)], hp))
    agent = worker.agent_handle.agent
    assert agent.lr == 0.0005
    assert agent.gamma == 0.9
    assert agent.epsilon_end == 0.15
    assert agent.replay.capacity == 100_000


def test_stop_from_callback(worker, host):
    def hook(event):
        if isinstance(event, StepEvent) and event.step == 2:
            worker.handle(Stop())

    host.hook = hook
    worker.handle(StartTrain([MazeConfig(5, 5)], QUICK))
    assert not host.of(TrainingDoneEvent)
    assert worker.last_session is None
    assert not worker.busy
    # the agent survives a stop
    assert worker.agent_state is AgentState.READY


def test_second_run_is_refused(worker, host):
    def hook(event):
        if isinstance(event, StepEvent) and event.step == 1:
            host.hook = None
            worker.handle(StartTest(5, 5, 1))
            worker.handle(Stop())

    host.hook = hook
    worker.handle(StartTrain([MazeConfig(5, 5)], QUICK))
    assert host.errors() == [BUSY_MESSAGE]
    assert not host.of(TestDoneEvent)


def test_reset_disposes_agent(worker, host):
    worker.handle(StartTrain([OPEN_3X3], QUICK))
    worker.handle(Reset())
    assert worker.agent_state is AgentState.EMPTY
    worker.handle(StartTest(5, 5, 1))
    assert host.errors() == [NOT_READY_MESSAGE]


# ─────────────────────────────────────────────────────────────────────────────
# Model slots
# ─────────────────────────────────────────────────────────────────────────────
def test_save_load_slots(worker, host):
    worker.handle(StartTrain([OPEN_3X3], QUICK))
    trained = worker.agent_handle.agent

    worker.handle(SaveModel(1, {"name": "open"}))
    saved = host.of(ModelSavedEvent)[-1]
    assert saved.slot == 1
    assert saved.metadata["name"] == "open"
    assert saved.metadata["episode_count"] == 4
    assert len(saved.metadata["history"]) == 4

    worker.handle(LoadModel(1))
    loaded = host.of(ModelLoadedEvent)[-1]
    assert loaded.metadata["name"] == "open"
    agent = worker.agent_handle.agent
    assert agent is not trained
    assert agent.episode_count == 4
    assert agent.epsilon == pytest.approx(trained.epsilon)


def test_failed_load_keeps_live_agent(worker, host):
    worker.handle(StartTrain([OPEN_3X3], QUICK))
    live = worker.agent_handle.agent
    worker.handle(LoadModel(7))
    assert host.errors()[-1].startswith("Load failed: ")
    assert worker.agent_handle.agent is live


def test_copy_delete_list(worker, host):
    worker.handle(StartTrain([OPEN_3X3], QUICK))
    worker.handle(SaveModel(1, {"name": "a"}))
    worker.handle(CopyModel(1, 3))
    assert host.of(ModelSavedEvent)[-1].slot == 3

    worker.handle(ListModels())
    listing = host.of(ModelListEvent)[-1]
    assert [m["slot"] for m in listing.slots] == [1, 3]
    assert listing.slots[1]["name"] == "a"

    worker.handle(DeleteModel(1))
    worker.handle(DeleteModel(5))
    assert [e.slot for e in host.of(ModelDeletedEvent)] == [1, 5]

    worker.handle(ListModels())
    assert [m["slot"] for m in host.of(ModelListEvent)[-1].slots] == [3]

    worker.handle(CopyModel(9, 2))
    assert host.errors()[-1].startswith("Copy failed: ")


def test_model_store_directly(tmp_path):
    store = ModelStore(str(tmp_path))
    agent = DQNAgent(device="cpu")
    agent.decay_epsilon()

    assert store.list_slots() == []
    meta = store.save(2, agent, {"name": "x"})
    assert meta["slot"] == 2
    assert store.exists(2)

    clone, meta = store.load(2, device="cpu")
    assert meta["name"] == "x"
    assert clone.episode_count == 1

    with pytest.raises(ModelStoreError):
        store.load(4)
    assert not [p for p in tmp_path.iterdir() if p.name.startswith(".tmp_")]


def test_empty_handle_raises():
    handle = AgentHandle()
    with pytest.raises(AgentNotReadyError):
        handle.agent


def test_failed_save_keeps_previous_slot(tmp_path):
    store = ModelStore(str(tmp_path))
    store.save(1, DQNAgent(device="cpu"), {"name": "first"})

    agent = DQNAgent(device="cpu")
    for _ in range(3):
        agent.decay_epsilon()
    # the blob stages fine, the metadata does not serialize
    with pytest.raises(ModelStoreError):
        store.save(1, agent, {"bad": object()})

    clone, meta = store.load(1, device="cpu")
    assert meta["name"] == "first"
    assert meta["episode_count"] == 0
    assert clone.episode_count == 0
    assert not [p for p in tmp_path.iterdir() if p.name.startswith(".tmp_")]
