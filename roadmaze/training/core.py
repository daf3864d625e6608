"""Core DQN training loop (two phases).

Design goals
------------
- Keep the control flow readable.
- Separate concerns:
    * env interaction
    * replay storage / network update (agent)
    * convergence detection (EarlyStopTracker)
    * progress reporting (events)

Phases
------
1. SEQUENTIAL: the first (at most 2) episodes run one environment at a time
   and report every step, so a host can draw them live.
2. PARALLEL: the remaining episodes run in up to 8 environment slots that
   are stepped together. One batched forward pass picks all actions of a
   tick; a slot whose episode ends is finalized and respawned at once.
   There are no threads: "parallel" means batched.

learn() runs once every `learn_every` global steps. In the batched phase one
global step is one tick over all slots.
"""

from __future__ import annotations

import random
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

import numpy as np

from ..config import ENV_CONFIG, TRAIN_CONFIG
from ..environment.generation import validate_maze
from ..environment.maze import Cell, MazeConfig
from ..environment.maze_env import MazeEnv
from ..errors import MazeValidationError
from .agent import DQNAgent
from .events import (
    Callback,
    CancelToken,
    EpisodeEndEvent,
    StepEvent,
    TrainingDoneEvent,
    discard,
    round_half_up,
)


class EpisodeStatus(Enum):
    """Episode state machine: RUNNING until one of the terminal states."""

    RUNNING = "running"
    GOAL = "goal"
    STUCK = "stuck"
    STEP_CAP = "step_cap"


class TrainingPhase(Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


@dataclass(frozen=True)
class EpisodeResult:
    episode: int
    total_steps: int
    reached_goal: bool


@dataclass
class TrainingSession:
    """Outcome of one training invocation. The agent outlives it."""

    history: List[EpisodeResult] = field(default_factory=list)
    phase_starts: Dict[TrainingPhase, int] = field(default_factory=dict)
    converged: bool = False
    final_paths: List[List[Cell]] = field(default_factory=list)

    @property
    def total_episodes(self) -> int:
        return len(self.history)


class EarlyStopTracker:
    """Sliding windows over recent episodes.

    Converged when the last `window` episodes all reached the goal and the
    step counts of the last `window` successes have a population standard
    deviation below `max_std`.
    """

    def __init__(
        self,
        window: int = TRAIN_CONFIG["early_stop_window"],
        max_std: float = TRAIN_CONFIG["early_stop_max_std"],
    ):
        self.window = int(window)
        self.max_std = float(max_std)
        self.goals: deque[bool] = deque(maxlen=self.window)
        self.lengths: deque[int] = deque(maxlen=self.window)

    def record(self, reached_goal: bool, total_steps: int) -> bool:
        """Push one finished episode; return True once converged."""
        self.goals.append(bool(reached_goal))
        if reached_goal:
            self.lengths.append(int(total_steps))
        return self.converged

    @property
    def converged(self) -> bool:
        if len(self.goals) < self.window or not all(self.goals):
            return False
        if len(self.lengths) < self.window:
            return False
        std = float(np.std(self.lengths)) if len(self.lengths) >= 2 else 0.0
        return std < self.max_std


def step_cap(mazes: Sequence[MazeConfig], factor: int = TRAIN_CONFIG["step_cap_factor"]) -> int:
    """Per-episode step cap. Taken from the FIRST maze for every maze."""
    first = mazes[0]
    return first.rows * first.cols * int(factor)


@dataclass
class _Slot:
    env: MazeEnv
    maze_index: int
    obs: np.ndarray
    steps: int = 0


class Trainer:
    """Runs one training invocation of `agent` over `mazes`."""

    def __init__(
        self,
        agent: DQNAgent,
        mazes: Sequence[MazeConfig],
        callback: Callback = discard,
        *,
        max_episodes: int = TRAIN_CONFIG["max_episodes"],
        revisit_penalty: float = ENV_CONFIG["revisit_penalty"],
        early_stop_window: int = TRAIN_CONFIG["early_stop_window"],
        early_stop_max_std: float = TRAIN_CONFIG["early_stop_max_std"],
        cancel: CancelToken | None = None,
        step_delay: float = TRAIN_CONFIG["step_delay"],
        sequential_episodes: int = TRAIN_CONFIG["sequential_episodes"],
        num_parallel: int = TRAIN_CONFIG["num_parallel"],
        learn_every: int = TRAIN_CONFIG["learn_every"],
        yield_every: int = TRAIN_CONFIG["yield_every"],
    ):
        if not mazes:
            raise ValueError("Training needs at least one maze")

        # Validation gate: nothing runs if any maze is broken.
        for maze in mazes:
            check = validate_maze(maze)
            if not check.valid:
                raise MazeValidationError(check.message)

        self.agent = agent
        self.mazes = list(mazes)
        self.callback = callback
        self.max_episodes = int(max_episodes)
        self.revisit_penalty = float(revisit_penalty)
        self.cancel = cancel or CancelToken()
        self.step_delay = float(step_delay)
        self.sequential_episodes = int(sequential_episodes)
        self.num_parallel = int(num_parallel)
        self.learn_every = max(1, int(learn_every))
        self.yield_every = max(1, int(yield_every))

        self.max_steps = step_cap(self.mazes)
        self.tracker = EarlyStopTracker(early_stop_window, early_stop_max_std)
        self.session = TrainingSession()
        self.global_step = 0

    # --- helpers -------------------------------------------------------------

    def _make_env(self, maze_index: int) -> MazeEnv:
        return MazeEnv(self.mazes[maze_index], revisit_penalty=self.revisit_penalty)

    def _pick_maze(self) -> int:
        return random.randrange(len(self.mazes))

    def _finish_episode(self, maze_index: int, total_steps: int, reached_goal: bool, avg_loss: float) -> bool:
        """Episode bookkeeping. Returns True when training has converged."""
        self.agent.soft_update()
        self.agent.decay_epsilon()

        episode = len(self.session.history)
        self.callback(EpisodeEndEvent(
            episode=episode,
            maze_index=maze_index,
            total_steps=int(total_steps),
            reached_goal=bool(reached_goal),
            epsilon=round_half_up(self.agent.epsilon, 4),
            avg_loss=round_half_up(avg_loss, 4),
        ))
        self.session.history.append(EpisodeResult(episode, int(total_steps), bool(reached_goal)))

        if self.tracker.record(reached_goal, total_steps):
            self.session.converged = True
        return self.session.converged

    # --- phase 1 -------------------------------------------------------------

    def _run_sequential(self) -> bool:
        """Returns False if cancelled."""
        n_episodes = min(self.sequential_episodes, self.max_episodes)
        if n_episodes > 0:
            self.session.phase_starts[TrainingPhase.SEQUENTIAL] = len(self.session.history)

        for _ in range(n_episodes):
            if self.cancel.cancelled:
                return False

            maze_index = self._pick_maze()
            env = self._make_env(maze_index)
            obs, _ = env.reset()

            status = EpisodeStatus.RUNNING
            steps = 0
            losses: List[float] = []

            while status is EpisodeStatus.RUNNING:
                if self.cancel.cancelled:
                    return False

                action = self.agent.choose_action(obs)
                next_obs, reward, terminated, _, _ = env.step(action)
                self.agent.store_transition(obs, action, reward, next_obs, terminated)

                self.global_step += 1
                if self.global_step % self.learn_every == 0:
                    loss = self.agent.learn()
                    if loss is not None:
                        losses.append(loss)

                steps += 1
                self.callback(StepEvent(
                    episode=len(self.session.history),
                    maze_index=maze_index,
                    step=steps,
                    position=env.agent_pos,
                    action=int(action),
                    reward=round_half_up(reward, 3),
                ))
                if self.step_delay > 0:
                    time.sleep(self.step_delay)

                obs = next_obs
                if terminated:
                    status = EpisodeStatus.GOAL
                elif steps >= self.max_steps:
                    status = EpisodeStatus.STEP_CAP

            avg_loss = float(np.mean(losses)) if losses else 0.0
            if self._finish_episode(maze_index, steps, status is EpisodeStatus.GOAL, avg_loss):
                break
        return True

    # --- phase 2 -------------------------------------------------------------

    def _spawn(self) -> _Slot:
        maze_index = self._pick_maze()
        env = self._make_env(maze_index)
        obs, _ = env.reset()
        return _Slot(env=env, maze_index=maze_index, obs=obs)

    def _run_parallel(self) -> bool:
        """Returns False if cancelled."""
        remaining = self.max_episodes - len(self.session.history)
        if self.session.converged or remaining <= 0:
            return True

        self.session.phase_starts[TrainingPhase.PARALLEL] = len(self.session.history)
        slots = [self._spawn() for _ in range(min(self.num_parallel, remaining))]
        running_losses: List[float] = []

        while len(self.session.history) < self.max_episodes:
            if self.cancel.cancelled:
                return False

            obs_batch = np.stack([slot.obs for slot in slots])
            actions = self.agent.choose_action_batch(obs_batch)

            for i, slot in enumerate(slots):
                action = int(actions[i])
                next_obs, reward, terminated, _, _ = slot.env.step(action)
                self.agent.store_transition(slot.obs, action, reward, next_obs, terminated)
                slot.obs = next_obs
                slot.steps += 1

                if not terminated and slot.steps < self.max_steps:
                    continue

                avg_loss = float(np.mean(running_losses)) if running_losses else 0.0
                running_losses = []
                if self._finish_episode(slot.maze_index, slot.steps, terminated, avg_loss):
                    return True
                if len(self.session.history) >= self.max_episodes:
                    return True
                slots[i] = self._spawn()

            self.global_step += 1
            if self.global_step % self.learn_every == 0:
                loss = self.agent.learn()
                if loss is not None:
                    running_losses.append(loss)

            # Periodic progress from slot 0, then give the host a turn.
            if self.global_step % self.yield_every == 0:
                head = slots[0]
                self.callback(StepEvent(
                    episode=len(self.session.history),
                    maze_index=head.maze_index,
                    step=head.steps,
                    position=head.env.agent_pos,
                    action=0,
                    reward=0.0,
                ))
                time.sleep(0)
        return True

    # --- entry point ---------------------------------------------------------

    def run(self) -> Optional[TrainingSession]:
        """Train until converged or out of episodes. None if cancelled."""
        if not self._run_sequential():
            return None
        if not self._run_parallel():
            return None

        self.session.final_paths = [
            self.agent.greedy_path(self._make_env(i)) for i in range(len(self.mazes))
        ]
        self.callback(TrainingDoneEvent(
            total_episodes=len(self.session.history),
            final_paths=[list(p) for p in self.session.final_paths],
            converged=self.session.converged,
        ))
        return self.session


def run_training(
    agent: DQNAgent,
    mazes: Sequence[MazeConfig],
    callback: Callback = discard,
    **options,
) -> Optional[TrainingSession]:
    """Validate `mazes` and train `agent` on them. See `Trainer` for options.

    Raises:
        MazeValidationError: a maze failed `validate_maze`; no episode ran.
    """
    return Trainer(agent, mazes, callback, **options).run()
