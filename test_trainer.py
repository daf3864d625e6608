from __future__ import annotations

from typing import List

import pytest

from roadmaze.environment.generation import UNREACHABLE_MESSAGE
from roadmaze.environment.maze import MazeConfig
from roadmaze.environment.maze_env import MazeEnv
from roadmaze.errors import MazeValidationError
from roadmaze.training.agent import DQNAgent
from roadmaze.training.core import (
    EarlyStopTracker,
    Trainer,
    TrainingPhase,
    run_training,
    step_cap,
)
from roadmaze.training.events import (
    CancelToken,
    EpisodeEndEvent,
    Event,
    StepEvent,
    TrainingDoneEvent,
)
from roadmaze.utils import seed_everything


@pytest.fixture(autouse=True)
def _seed():
    seed_everything(1)


@pytest.fixture
def agent():
    return DQNAgent(batch_size=16, device="cpu")


class Recorder:
    def __init__(self):
        self.events: List[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def of(self, kind):
        return [e for e in self.events if isinstance(e, kind)]


# ─────────────────────────────────────────────────────────────────────────────
# Early stop
# ─────────────────────────────────────────────────────────────────────────────
def test_early_stop_needs_a_full_window():
    tracker = EarlyStopTracker(window=30, max_std=2.0)
    for _ in range(29):
        assert not tracker.record(True, 12)
    assert tracker.record(True, 12)


def test_early_stop_requires_all_successes():
    tracker = EarlyStopTracker(window=30, max_std=2.0)
    tracker.record(False, 40)
    for _ in range(29):
        tracker.record(True, 12)
    assert not tracker.converged
    tracker.record(True, 12)
    assert tracker.converged


def test_early_stop_requires_steady_lengths():
    tracker = EarlyStopTracker(window=30, max_std=2.0)
    for i in range(30):
        tracker.record(True, 10 if i % 2 else 20)
    assert not tracker.converged


# ─────────────────────────────────────────────────────────────────────────────
# Trainer
# ─────────────────────────────────────────────────────────────────────────────
def test_invalid_maze_rejected_before_any_event(agent):
    rec = Recorder()
    good = MazeConfig(3, 3)
    bad = MazeConfig(3, 3, walls={(1, 0), (1, 1), (1, 2)})
    with pytest.raises(MazeValidationError) as exc:
        run_training(agent, [good, bad], rec, step_delay=0)
    assert str(exc.value) == UNREACHABLE_MESSAGE
    assert rec.events == []
    assert agent.episode_count == 0


def test_empty_maze_list(agent):
    with pytest.raises(ValueError):
        Trainer(agent, [])


def test_short_run_emits_done(agent):
    rec = Recorder()
    session = run_training(agent, [MazeConfig(3, 3)], rec, max_episodes=5, step_delay=0)

    assert session is not None
    ends = rec.of(EpisodeEndEvent)
    assert len(ends) == 5 == session.total_episodes
    assert [e.episode for e in ends] == list(range(5))
    assert agent.episode_count == 5

    done = rec.events[-1]
    assert isinstance(done, TrainingDoneEvent)
    assert done.total_episodes == 5
    assert len(done.final_paths) == 1
    assert done.final_paths[0][0] == (0, 0)
    assert not done.converged

    # every step of the first two episodes is reported
    first = [e for e in rec.of(StepEvent) if e.episode == 0]
    assert [e.step for e in first] == list(range(1, ends[0].total_steps + 1))


def test_epsilon_reported_after_decay(agent):
    rec = Recorder()
    run_training(agent, [MazeConfig(3, 3)], rec, max_episodes=3, step_delay=0)
    ends = rec.of(EpisodeEndEvent)
    assert ends[-1].epsilon == pytest.approx(agent.epsilon, abs=1e-4)
    assert ends[0].epsilon < 1.0


def test_phases(agent):
    session = run_training(agent, [MazeConfig(3, 3)], max_episodes=12, step_delay=0)
    assert session.phase_starts[TrainingPhase.SEQUENTIAL] == 0
    assert session.phase_starts[TrainingPhase.PARALLEL] == 2
    assert session.total_episodes == 12


def test_open_maze_converges_to_shortest_path():
    seed_everything(0)
    maze = MazeConfig(3, 3)
    agent = DQNAgent(device="cpu", epsilon_decay_episodes=150)
    rec = Recorder()

    session = run_training(agent, [maze], rec, max_episodes=600, step_delay=0)

    assert session.converged
    assert session.total_episodes < 600
    assert len(rec.of(EpisodeEndEvent)) == session.total_episodes
    assert rec.events[-1].converged
    assert len(agent.greedy_path(MazeEnv(maze))) - 1 == 4
    assert len(session.final_paths[0]) - 1 == 4


def test_step_cap_comes_from_first_maze(agent):
    small = MazeConfig(3, 3)
    big = MazeConfig(10, 10)
    assert step_cap([small, big]) == 36
    assert step_cap([big, small]) == 400

    rec = Recorder()
    agent.epsilon = 1.0
    run_training(agent, [small, big], rec, max_episodes=10, step_delay=0)
    ends = rec.of(EpisodeEndEvent)
    assert all(e.total_steps <= 36 for e in ends)
    assert any(e.maze_index == 1 for e in ends)


def test_cancel_skips_done_event(agent):
    rec = Recorder()
    token = CancelToken()

    def callback(event: Event) -> None:
        rec(event)
        if isinstance(event, StepEvent) and event.step == 3:
            token.cancel()

    result = run_training(agent, [MazeConfig(5, 5)], callback, max_episodes=5, cancel=token, step_delay=0)
    assert result is None
    assert not rec.of(TrainingDoneEvent)
    assert rec.of(StepEvent)[-1].step == 3


def test_cancel_before_start(agent):
    token = CancelToken()
    token.cancel()
    rec = Recorder()
    assert run_training(agent, [MazeConfig(3, 3)], rec, cancel=token, step_delay=0) is None
    assert rec.events == []


def test_wire_form():
    event = EpisodeEndEvent(episode=3, maze_index=0, total_steps=9, reached_goal=True, epsilon=0.5, avg_loss=0.1)
    assert event.to_dict() == {
        "type": "episode_end",
        "episode": 3,
        "maze_index": 0,
        "total_steps": 9,
        "reached_goal": True,
        "epsilon": 0.5,
        "avg_loss": 0.1,
    }
