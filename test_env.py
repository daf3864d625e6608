from __future__ import annotations

import numpy as np
import pytest

from roadmaze.environment.constants import (
    CH_GOAL,
    CH_VISITED,
    CH_WALL,
    DOWN,
    LEFT,
    OBS_DIM,
    OBS_VIEW_SIZE,
    RIGHT,
    UP,
)
from roadmaze.environment.maze import MazeConfig
from roadmaze.environment.maze_env import MazeEnv


def _cell(obs: np.ndarray, dr: int, dc: int, channel: int) -> float:
    """Window value at offset (dr, dc) from the agent."""
    half = OBS_VIEW_SIZE // 2
    return float(obs[((dr + half) * OBS_VIEW_SIZE + (dc + half)) * 3 + channel])


@pytest.fixture
def env():
    return MazeEnv(MazeConfig(3, 3), render_mode="ansi")


def test_spaces(env):
    assert env.action_space.n == 4
    assert env.observation_space.shape == (OBS_DIM,)
    obs, info = env.reset()
    assert obs.shape == (77,)
    assert obs.dtype == np.float32
    assert env.observation_space.contains(obs)
    assert info == {"position": (0, 0), "moved": False}


def test_direction_scalars(env):
    obs, _ = env.reset()
    assert obs[-2] == pytest.approx(2 / 3)
    assert obs[-1] == pytest.approx(2 / 3)
    obs, *_ = env.step(DOWN)
    assert obs[-2] == pytest.approx(2 / 3)
    assert obs[-1] == pytest.approx(1 / 3)


def test_direction_scalars_on_goal_row():
    env = MazeEnv(MazeConfig(1, 2, goal=(0, 1)))
    obs, _ = env.reset()
    assert obs[-2] == pytest.approx(0.5)
    assert obs[-1] == pytest.approx(0.0)


def test_window_channels(env):
    obs, _ = env.reset()
    # outside the grid counts as wall
    assert _cell(obs, -1, 0, CH_WALL) == 1.0
    assert _cell(obs, 0, -2, CH_WALL) == 1.0
    assert _cell(obs, 0, 1, CH_WALL) == 0.0
    # goal two down, two right
    assert _cell(obs, 2, 2, CH_GOAL) == 1.0
    # only the start is visited
    assert _cell(obs, 0, 0, CH_VISITED) == 1.0
    assert _cell(obs, 0, 1, CH_VISITED) == 0.0


def test_wall_cell_in_window():
    env = MazeEnv(MazeConfig(3, 3, walls={(0, 1)}))
    obs, _ = env.reset()
    assert _cell(obs, 0, 1, CH_WALL) == 1.0


def test_collision_reward(env):
    env.reset()
    _, reward, terminated, truncated, info = env.step(UP)
    assert reward == pytest.approx(-0.6)
    assert env.agent_pos == (0, 0)
    assert info["moved"] is False
    assert not terminated and not truncated


def test_wall_collision():
    env = MazeEnv(MazeConfig(3, 3, walls={(0, 1)}))
    env.reset()
    _, reward, *_ = env.step(RIGHT)
    assert reward == pytest.approx(-0.6)
    assert env.agent_pos == (0, 0)


def test_forward_and_uturn(env):
    env.reset()
    _, reward, *_ = env.step(RIGHT)
    assert reward == pytest.approx(-0.01)
    _, reward, *_ = env.step(LEFT)
    assert reward == pytest.approx(-0.2)
    assert env.agent_pos == (0, 0)


def test_revisit_reward():
    for penalty in (0.05, 0.2):
        env = MazeEnv(MazeConfig(3, 3), revisit_penalty=penalty)
        env.reset()
        for action in (RIGHT, DOWN, LEFT):
            env.step(action)
        _, reward, *_ = env.step(UP)
        assert env.agent_pos == (0, 0)
        assert reward == pytest.approx(-penalty)


def test_goal_terminates(env):
    env.reset()
    rewards = []
    terminated = False
    for action in (RIGHT, RIGHT, DOWN, DOWN):
        _, reward, terminated, truncated, info = env.step(action)
        rewards.append(reward)
        assert truncated is False
    assert terminated
    assert rewards[-1] == pytest.approx(1.0)
    assert info["position"] == (2, 2)


def test_reset_forgets_visits(env):
    env.reset()
    env.step(RIGHT)
    env.step(DOWN)
    assert len(env.visited) == 3
    env.reset()
    assert env.visited == frozenset({(0, 0)})
    assert env.prev_pos is None
    _, reward, *_ = env.step(RIGHT)
    assert reward == pytest.approx(-0.01)


def test_observation_is_a_fresh_array(env):
    obs, _ = env.reset()
    before = obs.copy()
    env.step(RIGHT)
    np.testing.assert_array_equal(obs, before)


def test_render_ansi(env):
    env.reset()
    text = env.render()
    assert text.splitlines()[0].split()[0] == "A"
    assert "G" in text
