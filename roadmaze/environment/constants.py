"""Constants for the road-maze environment."""

from __future__ import annotations

from typing import Dict, Tuple

# Actions
UP: int = 0
RIGHT: int = 1
DOWN: int = 2
LEFT: int = 3

# (d_row, d_col)
ACTION_DELTAS: Dict[int, Tuple[int, int]] = {
    UP: (-1, 0),
    RIGHT: (0, 1),
    DOWN: (1, 0),
    LEFT: (0, -1),
}

ACTION_NAMES: Dict[int, str] = {
    UP: "up",
    RIGHT: "right",
    DOWN: "down",
    LEFT: "left",
}

N_ACTIONS: int = len(ACTION_DELTAS)

# Observation layout
OBS_VIEW_SIZE: int = 5
OBS_CHANNELS: int = 3
OBS_DIM: int = OBS_VIEW_SIZE * OBS_VIEW_SIZE * OBS_CHANNELS + 2  # 77

CH_WALL: int = 0
CH_GOAL: int = 1
CH_VISITED: int = 2

# Rewards (precedence: goal > collision > u-turn > revisit > step)
REWARD_GOAL: float = 1.0
REWARD_COLLISION: float = -0.6
REWARD_UTURN: float = -0.2
REWARD_STEP: float = -0.01
DEFAULT_REVISIT_PENALTY: float = 0.05

METADATA = {
    "render_modes": ["ansi"],
    "render_fps": 10,
}
