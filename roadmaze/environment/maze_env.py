"""Road-maze Gymnasium environment (core dynamics only)."""

from __future__ import annotations

from typing import Any, Dict, Optional

import numpy as np
import gymnasium as gym
from gymnasium import spaces

from .constants import (
    UP, RIGHT, DOWN, LEFT,
    ACTION_DELTAS,
    OBS_VIEW_SIZE, OBS_CHANNELS, OBS_DIM,
    CH_WALL, CH_GOAL, CH_VISITED,
    REWARD_GOAL, REWARD_COLLISION, REWARD_UTURN, REWARD_STEP,
    DEFAULT_REVISIT_PENALTY,
    METADATA,
)
from .maze import Cell, MazeConfig
from .rendering import render_text


class MazeEnv(gym.Env):
    """One fixed maze. The agent sees a 5x5 window plus the goal direction.

    Observation (77 floats):
        5x5 window x [wall-or-outside, goal, visited], row-major, channel last
        dx = clamp((goal_col - col) / cols, -1, 1)
        dy = clamp((goal_row - row) / rows, -1, 1)

    Episodes end only at the goal. Step caps are applied by the caller, so
    `truncated` is always False.
    """

    # constants
    UP = UP
    RIGHT = RIGHT
    DOWN = DOWN
    LEFT = LEFT
    ACTION_DELTAS = ACTION_DELTAS

    OBS_VIEW_SIZE = OBS_VIEW_SIZE
    OBS_CHANNELS = OBS_CHANNELS
    OBS_DIM = OBS_DIM

    metadata = METADATA

    def __init__(
        self,
        maze: MazeConfig,
        revisit_penalty: float = DEFAULT_REVISIT_PENALTY,
        render_mode: str | None = None,
    ):
        self.maze = maze
        self.num_rows = maze.rows
        self.num_cols = maze.cols
        self.walls = maze.walls
        self.start: Cell = maze.start
        self.goal: Cell = maze.goal
        self.revisit_penalty = float(revisit_penalty)
        self.render_mode = render_mode

        # Episode state
        self._agent_pos: Cell = self.start
        self._prev_pos: Optional[Cell] = None
        self._visited: set[Cell] = {self.start}

        self.action_space = spaces.Discrete(4)
        self.observation_space = spaces.Box(low=-1.0, high=1.0, shape=(OBS_DIM,), dtype=np.float32)

    # -- true if position is outside the grid or a wall
    def _is_blocked(self, r: int, c: int) -> bool:
        return not self.maze.in_bounds(r, c) or self.maze.is_wall(r, c)

    @property
    def agent_pos(self) -> Cell:
        return (self._agent_pos[0], self._agent_pos[1])

    @property
    def prev_pos(self) -> Optional[Cell]:
        return self._prev_pos

    @property
    def visited(self) -> frozenset:
        return frozenset(self._visited)

    def reset(self, seed: int | None = None, options: dict | None = None
    ) -> tuple[np.ndarray, Dict[str, Any]]:
        """Put the agent back on the start cell and forget the visit history."""
        super().reset(seed=seed)

        self._agent_pos = self.start
        self._prev_pos = None
        self._visited = {self.start}

        return self._get_obs(), self._get_info(moved=False)

    def _get_obs(self) -> np.ndarray:
        r, c = self._agent_pos
        half = OBS_VIEW_SIZE // 2
        view = np.zeros((OBS_VIEW_SIZE, OBS_VIEW_SIZE, OBS_CHANNELS), dtype=np.float32)

        for dr in range(-half, half + 1):
            for dc in range(-half, half + 1):
                gr, gc = r + dr, c + dc
                vr, vc = dr + half, dc + half
                if self._is_blocked(gr, gc):
                    view[vr, vc, CH_WALL] = 1.0
                if (gr, gc) == self.goal:
                    view[vr, vc, CH_GOAL] = 1.0
                if (gr, gc) in self._visited:
                    view[vr, vc, CH_VISITED] = 1.0

        # graded direction signal, saturates far from the goal
        dx = float(np.clip((self.goal[1] - c) / max(self.num_cols, 1), -1.0, 1.0))
        dy = float(np.clip((self.goal[0] - r) / max(self.num_rows, 1), -1.0, 1.0))

        obs = np.empty(OBS_DIM, dtype=np.float32)
        obs[:-2] = view.reshape(-1)
        obs[-2] = dx
        obs[-1] = dy
        return obs

    def _get_info(self, moved: bool) -> Dict[str, Any]:
        return {"position": self.agent_pos, "moved": bool(moved)}

    def step(self, action: int) -> tuple[np.ndarray, float, bool, bool, Dict[str, Any]]:
        assert self.action_space.contains(int(action)), f"Invalid action: {action}"

        r, c = self._agent_pos
        dr, dc = ACTION_DELTAS[int(action)]
        new_pos: Cell = (r + dr, c + dc)

        if self._is_blocked(*new_pos):
            new_pos = (r, c)

        old_pos = self._agent_pos
        self._agent_pos = new_pos

        # Reward precedence: goal > collision > u-turn > revisit > forward.
        terminated = new_pos == self.goal
        if terminated:
            reward = REWARD_GOAL
        elif new_pos == old_pos:
            reward = REWARD_COLLISION
        elif self._prev_pos is not None and new_pos == self._prev_pos:
            reward = REWARD_UTURN
        elif new_pos in self._visited:
            reward = -self.revisit_penalty
        else:
            reward = REWARD_STEP

        self._prev_pos = old_pos
        self._visited.add(new_pos)

        return self._get_obs(), float(reward), bool(terminated), False, self._get_info(moved=new_pos != old_pos)

    # -------------------- Rendering --------------------

    def render(self) -> str | None:
        if self.render_mode == "ansi":
            return render_text(self.maze, agent_pos=self._agent_pos)
        return None

    def close(self):
        pass
