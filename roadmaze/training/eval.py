"""Evaluation: batch tests on procedural mazes, and the playground.

Evaluation should be isolated from training so you can:
  - run it from scripts
  - score a loaded model without a training run
  - replay a single user-authored maze step by step

Both modes share one stepping protocol: the greedy policy (epsilon = 0)
drives until the goal, the step cap (rows * cols * 4), or until one cell
has been entered `stuck_limit` times.

Test mazes are seeded by (rows, cols, index) so the same grid size always
gets the same test set.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Iterable, List, Optional

import numpy as np

from ..config import EVAL_CONFIG
from ..environment.constants import ACTION_NAMES
from ..environment.generation import bfs_shortest_path, generate_random_maze, validate_maze
from ..environment.maze import Cell, MazeConfig
from ..environment.maze_env import MazeEnv
from ..errors import MazeValidationError
from .agent import DQNAgent
from .core import EpisodeStatus
from .events import (
    Callback,
    CancelToken,
    TestDoneEvent,
    TestMazeEvent,
    TestResultEvent,
    TestStepEvent,
    discard,
    round_half_up,
)


@dataclass(frozen=True)
class TestResult:
    __test__ = False  # not a pytest class

    test_index: int
    maze: MazeConfig
    path: List[Cell]
    steps: int
    reached_goal: bool
    bfs_shortest: Optional[int]
    status: EpisodeStatus = EpisodeStatus.GOAL

    def to_event(self) -> TestResultEvent:
        return TestResultEvent(
            test_index=self.test_index,
            reached_goal=self.reached_goal,
            steps=self.steps,
            path=list(self.path),
        )


@dataclass(frozen=True)
class Score:
    success_rate: float
    avg_efficiency: float
    total_score: int


@dataclass(frozen=True)
class EvaluationReport:
    results: List[TestResult]
    score: Score


# ─────────────────────────────────────────────────────────────────────────────
# Scoring
# ─────────────────────────────────────────────────────────────────────────────
def compute_score(results: Iterable) -> Score:
    """Pure function of (reached_goal, steps, bfs_shortest) per result.

    success_rate   = successes / total
    efficiency     = min(bfs_shortest / steps, 1) per successful run
    avg_efficiency = mean efficiency over successes (0 if none)
    total_score    = round(success_rate * 100 * (1 + avg_efficiency))
    """
    results = list(results)
    if not results:
        return Score(0.0, 0.0, 0)

    successes = [r for r in results if r.reached_goal]
    success_rate = len(successes) / len(results)

    efficiencies = [
        min(r.bfs_shortest / r.steps, 1.0)
        for r in successes
        if r.bfs_shortest and r.bfs_shortest > 0 and r.steps > 0
    ]
    avg_efficiency = float(np.mean(efficiencies)) if efficiencies else 0.0

    total_score = int(round_half_up(success_rate * 100 * (1 + avg_efficiency)))

    return Score(
        success_rate=round_half_up(success_rate, 2),
        avg_efficiency=round_half_up(avg_efficiency, 2),
        total_score=total_score,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Test mazes
# ─────────────────────────────────────────────────────────────────────────────
def evaluation_seed(rows: int, cols: int, index: int) -> int:
    return int(rows) * 10000 + int(cols) * 100 + int(index) + 1


def evaluation_maze(rows: int, cols: int, index: int) -> MazeConfig:
    """Test maze `index` for a grid size. Uses its own seeded RNG only."""
    return generate_random_maze(
        rows,
        cols,
        random_endpoints=True,
        max_attempts=EVAL_CONFIG["max_attempts"],
        rng=np.random.default_rng(evaluation_seed(rows, cols, index)),
    )


def generate_evaluation_mazes(rows: int, cols: int, count: int) -> List[MazeConfig]:
    return [evaluation_maze(rows, cols, i) for i in range(int(count))]


# ─────────────────────────────────────────────────────────────────────────────
# Greedy drive
# ─────────────────────────────────────────────────────────────────────────────
def drive(
    agent: DQNAgent,
    maze: MazeConfig,
    test_index: int = 0,
    callback: Callback = discard,
    *,
    cancel: CancelToken | None = None,
    step_delay: float = EVAL_CONFIG["step_delay"],
) -> Optional[TestResult]:
    """Run the greedy policy on one maze and report every step. None if cancelled."""
    bfs_len, _ = bfs_shortest_path(maze.rows, maze.cols, maze.walls, maze.start, maze.goal)

    callback(TestMazeEvent(
        test_index=test_index,
        walls=sorted(maze.walls),
        start=maze.start,
        goal=maze.goal,
        bfs_shortest=bfs_len,
    ))

    env = MazeEnv(maze)
    obs, _ = env.reset()
    path = [env.agent_pos]
    max_steps = maze.rows * maze.cols * EVAL_CONFIG["step_cap_factor"]
    visit_counts = {env.agent_pos: 1}
    status = EpisodeStatus.RUNNING

    for step in range(max_steps):
        if cancel is not None and cancel.cancelled:
            return None

        action, q_values = agent.greedy_action_with_q(obs)
        obs, _, terminated, _, _ = env.step(action)
        pos = env.agent_pos
        path.append(pos)
        visit_counts[pos] = visit_counts.get(pos, 0) + 1

        callback(TestStepEvent(
            test_index=test_index,
            step=step + 1,
            position=pos,
            action=action,
            action_name=ACTION_NAMES[action],
            q_values={ACTION_NAMES[a]: round_half_up(q, 3) for a, q in enumerate(q_values)},
        ))
        if step_delay > 0:
            time.sleep(step_delay)

        if terminated:
            status = EpisodeStatus.GOAL
            break
        if visit_counts[pos] >= EVAL_CONFIG["stuck_limit"]:
            status = EpisodeStatus.STUCK
            break
    else:
        status = EpisodeStatus.STEP_CAP

    result = TestResult(
        test_index=test_index,
        maze=maze,
        path=path,
        steps=len(path) - 1,
        reached_goal=status is EpisodeStatus.GOAL,
        bfs_shortest=bfs_len,
        status=status,
    )
    callback(result.to_event())
    return result


def _report(results: List[TestResult], callback: Callback) -> EvaluationReport:
    score = compute_score(results)
    callback(TestDoneEvent(
        results=[r.to_event() for r in results],
        success_rate=score.success_rate,
        avg_efficiency=score.avg_efficiency,
        total_score=score.total_score,
    ))
    return EvaluationReport(results=results, score=score)


def run_tests(
    agent: DQNAgent,
    rows: int,
    cols: int,
    num_tests: int = EVAL_CONFIG["num_tests"],
    callback: Callback = discard,
    *,
    cancel: CancelToken | None = None,
    step_delay: float = EVAL_CONFIG["step_delay"],
) -> Optional[EvaluationReport]:
    """Score the agent on the seeded test set for rows x cols. None if cancelled."""
    results: List[TestResult] = []
    for i in range(int(num_tests)):
        if cancel is not None and cancel.cancelled:
            return None

        maze = evaluation_maze(rows, cols, i)
        result = drive(agent, maze, i, callback, cancel=cancel, step_delay=step_delay)
        if result is None:
            return None
        results.append(result)

    return _report(results, callback)


def run_playground(
    agent: DQNAgent,
    maze: MazeConfig,
    callback: Callback = discard,
    *,
    cancel: CancelToken | None = None,
    step_delay: float = EVAL_CONFIG["step_delay"],
) -> Optional[EvaluationReport]:
    """Drive one user-authored maze.

    Raises:
        MazeValidationError: the maze failed `validate_maze`.
    """
    check = validate_maze(maze)
    if not check.valid:
        raise MazeValidationError(check.message)

    result = drive(agent, maze, 0, callback, cancel=cancel, step_delay=step_delay)
    if result is None:
        return None
    return _report([result], callback)
