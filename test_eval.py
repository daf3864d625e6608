from __future__ import annotations

import random
from types import SimpleNamespace
from typing import List

import pytest

from roadmaze.environment.constants import DOWN, RIGHT, UP
from roadmaze.environment.generation import validate_maze
from roadmaze.environment.maze import MazeConfig
from roadmaze.errors import MazeValidationError
from roadmaze.training.agent import DQNAgent
from roadmaze.training.core import EpisodeStatus
from roadmaze.training.eval import (
    compute_score,
    drive,
    evaluation_seed,
    generate_evaluation_mazes,
    run_playground,
    run_tests,
)
from roadmaze.training.events import (
    CancelToken,
    Event,
    TestDoneEvent,
    TestMazeEvent,
    TestResultEvent,
    TestStepEvent,
)
from roadmaze.utils import seed_everything


class ScriptedAgent:
    """Plays a fixed action list, then repeats the last action."""

    def __init__(self, actions: List[int]):
        self.actions = list(actions)
        self.calls = 0

    def greedy_action_with_q(self, obs):
        action = self.actions[min(self.calls, len(self.actions) - 1)]
        self.calls += 1
        q = [0.0, 0.0, 0.0, 0.0]
        q[action] = 1.0
        return action, q


def _result(reached_goal: bool, steps: int, bfs_shortest: int):
    return SimpleNamespace(reached_goal=reached_goal, steps=steps, bfs_shortest=bfs_shortest)


# ─────────────────────────────────────────────────────────────────────────────
# Scoring
# ─────────────────────────────────────────────────────────────────────────────
def test_perfect_score():
    score = compute_score([_result(True, 8, 8) for _ in range(10)])
    assert score.success_rate == 1.0
    assert score.avg_efficiency == 1.0
    assert score.total_score == 200


def test_zero_score():
    score = compute_score([_result(False, 400, 8) for _ in range(10)])
    assert score.success_rate == 0.0
    assert score.avg_efficiency == 0.0
    assert score.total_score == 0
    assert compute_score([]).total_score == 0


def test_mixed_score():
    score = compute_score([_result(True, 16, 8), _result(False, 50, 8)])
    assert score.success_rate == 0.5
    assert score.avg_efficiency == 0.5
    assert score.total_score == 75


def test_efficiency_capped_at_one():
    score = compute_score([_result(True, 4, 8)])
    assert score.avg_efficiency == 1.0


def test_score_rounds_half_up():
    results = [_result(True, 10, 0)] + [_result(False, 10, 8) for _ in range(7)]
    # 1/8 success, no usable efficiency: 12.5 -> 13
    assert compute_score(results).total_score == 13


# ─────────────────────────────────────────────────────────────────────────────
# Test mazes
# ─────────────────────────────────────────────────────────────────────────────
def test_evaluation_seed():
    assert evaluation_seed(8, 10, 0) == 81001
    assert evaluation_seed(8, 10, 9) == 81010


def test_evaluation_mazes_are_fixed_per_size():
    a = generate_evaluation_mazes(7, 7, 4)
    b = generate_evaluation_mazes(7, 7, 4)
    assert a == b
    assert all(validate_maze(m).valid for m in a)


def test_evaluation_mazes_leave_global_rng_alone():
    random.seed(5)
    expected = random.random()
    random.seed(5)
    generate_evaluation_mazes(6, 6, 2)
    assert random.random() == expected


# ─────────────────────────────────────────────────────────────────────────────
# Driving
# ─────────────────────────────────────────────────────────────────────────────
def test_drive_reaches_goal():
    events: List[Event] = []
    agent = ScriptedAgent([RIGHT, RIGHT, DOWN, DOWN])
    result = drive(agent, MazeConfig(3, 3), 0, events.append, step_delay=0)

    assert result.reached_goal
    assert result.status is EpisodeStatus.GOAL
    assert result.steps == 4
    assert result.path == [(0, 0), (0, 1), (0, 2), (1, 2), (2, 2)]
    assert result.bfs_shortest == 4

    assert isinstance(events[0], TestMazeEvent)
    steps = [e for e in events if isinstance(e, TestStepEvent)]
    assert [e.step for e in steps] == [1, 2, 3, 4]
    assert steps[0].action_name == "right"
    assert set(steps[0].q_values) == {"up", "right", "down", "left"}
    assert isinstance(events[-1], TestResultEvent)


def test_drive_stops_when_stuck():
    agent = ScriptedAgent([UP])
    result = drive(agent, MazeConfig(3, 3), 0, step_delay=0)
    assert not result.reached_goal
    assert result.status is EpisodeStatus.STUCK
    # start counts as the first visit
    assert result.steps == 9


def test_drive_cancel():
    token = CancelToken()
    events: List[Event] = []

    def callback(event):
        events.append(event)
        if isinstance(event, TestStepEvent):
            token.cancel()

    assert drive(ScriptedAgent([UP]), MazeConfig(3, 3), 0, callback, cancel=token, step_delay=0) is None
    assert not any(isinstance(e, TestResultEvent) for e in events)


def test_playground_report():
    events: List[Event] = []
    report = run_playground(ScriptedAgent([RIGHT, RIGHT, DOWN, DOWN]), MazeConfig(3, 3), events.append, step_delay=0)
    assert report.score.total_score == 200
    assert isinstance(events[-1], TestDoneEvent)
    assert events[-1].to_dict()["results"][0]["type"] == "test_result"


def test_playground_rejects_invalid_maze():
    events: List[Event] = []
    with pytest.raises(MazeValidationError):
        run_playground(ScriptedAgent([UP]), MazeConfig(3, 3, walls={(2, 2)}), events.append, step_delay=0)
    assert events == []


def test_run_tests_with_real_agent():
    seed_everything(3)
    agent = DQNAgent(device="cpu")
    events: List[Event] = []
    report = run_tests(agent, 5, 5, 3, events.append, step_delay=0)

    assert len(report.results) == 3
    assert [r.test_index for r in report.results] == [0, 1, 2]
    assert 0 <= report.score.total_score <= 200
    assert isinstance(events[0], TestMazeEvent)
    done = events[-1]
    assert isinstance(done, TestDoneEvent)
    assert done.total_score == report.score.total_score
    for r in report.results:
        assert r.steps <= 5 * 5 * 4


def test_run_tests_cancelled():
    token = CancelToken()
    token.cancel()
    events: List[Event] = []
    assert run_tests(ScriptedAgent([UP]), 5, 5, 3, events.append, cancel=token, step_delay=0) is None
    assert events == []
