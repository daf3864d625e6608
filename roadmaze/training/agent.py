"""DQN agent: policy/target networks, replay, epsilon schedule.

The agent only knows the observation/action contract of the environment
(77 floats in, one of 4 actions out). It never holds on to environment
buffers: every stored observation is copied by the replay buffer.

Update rule
-----------
    y = r + gamma * (1 - done) * max_a Q_target(s', a)
    loss = MSE(y, Q_policy(s, a_taken))        (one-hot action mask)

The target network follows the policy network by a soft update once per
finished episode:  target <- tau * policy + (1 - tau) * target.
"""

from __future__ import annotations

import io
import random
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

try:
    import torch
    import torch.nn.functional as F
    import torch.optim as optim
except ImportError as e:  # pragma: no cover
    raise ImportError("PyTorch is required. Install with: pip install torch") from e

from ..config import AGENT_CONFIG, EVAL_CONFIG
from ..environment.constants import OBS_DIM, N_ACTIONS
from ..environment.maze import Cell
from ..environment.maze_env import MazeEnv
from .network import QNetwork
from .replay import ReplayBuffer
from .schedules import linear_epsilon


class DQNAgent:
    """Deep Q-learning agent for the road maze."""

    def __init__(
        self,
        obs_dim: int = OBS_DIM,
        n_actions: int = N_ACTIONS,
        lr: float = AGENT_CONFIG["learning_rate"],
        gamma: float = AGENT_CONFIG["discount_factor"],
        epsilon_start: float = AGENT_CONFIG["epsilon_start"],
        epsilon_end: float = AGENT_CONFIG["epsilon_end"],
        epsilon_decay_episodes: int = AGENT_CONFIG["epsilon_decay_episodes"],
        buffer_size: int = AGENT_CONFIG["replay_size"],
        batch_size: int = AGENT_CONFIG["batch_size"],
        tau: float = AGENT_CONFIG["tau"],
        hidden_size: int = AGENT_CONFIG["hidden_size"],
        device: torch.device | str | None = None,
    ):
        self.obs_dim = int(obs_dim)
        self.n_actions = int(n_actions)
        self.lr = float(lr)
        self.gamma = float(gamma)
        self.epsilon_start = float(epsilon_start)
        self.epsilon_end = float(epsilon_end)
        self.epsilon_decay_episodes = int(epsilon_decay_episodes)
        self.buffer_size = int(buffer_size)
        self.batch_size = int(batch_size)
        self.tau = float(tau)
        self.hidden_size = int(hidden_size)

        if device is None:
            device = "cuda" if torch.cuda.is_available() else "cpu"
        self.device = torch.device(device)

        self.policy_net = QNetwork(self.obs_dim, self.n_actions, self.hidden_size).to(self.device)
        self.target_net = QNetwork(self.obs_dim, self.n_actions, self.hidden_size).to(self.device)
        self.target_net.load_state_dict(self.policy_net.state_dict())
        self.target_net.eval()

        self.optimizer = optim.Adam(self.policy_net.parameters(), lr=self.lr)
        self.replay = ReplayBuffer(self.buffer_size)

        self.epsilon = self.epsilon_start
        self.episode_count = 0

        # The decay schedule restarts from here after reset_exploration().
        self._schedule_start = self.epsilon_start
        self._schedule_offset = 0

    @property
    def hyperparams(self) -> Dict[str, Any]:
        return {
            "obs_dim": self.obs_dim,
            "n_actions": self.n_actions,
            "lr": self.lr,
            "gamma": self.gamma,
            "epsilon_start": self.epsilon_start,
            "epsilon_end": self.epsilon_end,
            "epsilon_decay_episodes": self.epsilon_decay_episodes,
            "buffer_size": self.buffer_size,
            "batch_size": self.batch_size,
            "tau": self.tau,
            "hidden_size": self.hidden_size,
        }

    # --- Action selection ---------------------------------------------------

    @torch.no_grad()
    def _q_values(self, obs_batch: np.ndarray) -> torch.Tensor:
        x = torch.as_tensor(np.asarray(obs_batch, dtype=np.float32), device=self.device)
        if x.dim() == 1:
            x = x.unsqueeze(0)
        return self.policy_net(x)

    def choose_action(self, obs: np.ndarray) -> int:
        """Epsilon-greedy action for one observation."""
        if random.random() < self.epsilon:
            return random.randrange(self.n_actions)
        return self.greedy_action(obs)

    def choose_action_batch(self, obs_batch: np.ndarray) -> np.ndarray:
        """One forward pass over (n, D) observations, independent epsilon draws."""
        greedy = self._q_values(obs_batch).argmax(dim=1).cpu().numpy()
        actions = np.empty(len(greedy), dtype=np.int64)
        for i, g in enumerate(greedy):
            if random.random() < self.epsilon:
                actions[i] = random.randrange(self.n_actions)
            else:
                actions[i] = int(g)
        return actions

    def greedy_action(self, obs: np.ndarray) -> int:
        return int(self._q_values(obs).argmax(dim=1).item())

    def greedy_action_with_q(self, obs: np.ndarray) -> Tuple[int, List[float]]:
        """Greedy action plus the raw action-values (for display only)."""
        q = self._q_values(obs)[0].cpu().numpy()
        return int(np.argmax(q)), [float(v) for v in q]

    # --- Learning -----------------------------------------------------------

    def store_transition(
        self,
        obs: np.ndarray,
        action: int,
        reward: float,
        next_obs: np.ndarray,
        done: bool,
    ) -> None:
        self.replay.add(obs, action, reward, next_obs, done)

    def learn(self) -> Optional[float]:
        """One gradient step on a replay batch. None until the buffer holds a batch."""
        if len(self.replay) < self.batch_size:
            return None

        bs, ba, br, bs2, bdone = self.replay.sample(self.batch_size)

        bs_t = torch.as_tensor(bs, device=self.device)
        ba_t = torch.as_tensor(ba, device=self.device)
        br_t = torch.as_tensor(br, device=self.device)
        bs2_t = torch.as_tensor(bs2, device=self.device)
        bdone_t = torch.as_tensor(bdone, device=self.device)

        with torch.no_grad():
            next_q = self.target_net(bs2_t).max(dim=1).values
            target_q = br_t + self.gamma * (1.0 - bdone_t) * next_q

        # Only the taken action's prediction is penalized.
        mask = F.one_hot(ba_t, self.n_actions).to(torch.float32)
        q_taken = (self.policy_net(bs_t) * mask).sum(dim=1)
        loss = F.mse_loss(q_taken, target_q)

        self.optimizer.zero_grad(set_to_none=True)
        loss.backward()
        self.optimizer.step()

        return float(loss.item())

    @torch.no_grad()
    def soft_update(self) -> None:
        """target <- tau * policy + (1 - tau) * target, for every parameter."""
        tau = self.tau
        for tp, pp in zip(self.target_net.parameters(), self.policy_net.parameters()):
            tp.copy_(pp * tau + tp * (1.0 - tau))

    def decay_epsilon(self) -> None:
        """Advance the episode counter and move epsilon along the linear schedule."""
        self.episode_count += 1
        self.epsilon = linear_epsilon(
            self.episode_count - self._schedule_offset,
            self._schedule_start,
            self.epsilon_end,
            self.epsilon_decay_episodes,
        )

    def reset_exploration(self, value: float = AGENT_CONFIG["resume_epsilon"]) -> None:
        """Continue training on new content: keep the weights, explore again."""
        self.epsilon = float(value)
        self._schedule_start = float(value)
        self._schedule_offset = self.episode_count

    # --- Rollout ------------------------------------------------------------

    def greedy_path(self, env: MazeEnv) -> List[Cell]:
        """Cells visited by the greedy policy from env.reset().

        Stops at the goal, after 2 * rows * cols steps, or when a single cell
        has been entered `stuck_limit` times. Agent state is not touched.
        """
        obs, _ = env.reset()
        path = [env.agent_pos]
        max_steps = env.num_rows * env.num_cols * EVAL_CONFIG["greedy_path_factor"]
        visit_counts = {env.agent_pos: 1}

        for _ in range(max_steps):
            action = self.greedy_action(obs)
            obs, _, terminated, _, _ = env.step(action)
            pos = env.agent_pos
            path.append(pos)

            visit_counts[pos] = visit_counts.get(pos, 0) + 1
            if terminated or visit_counts[pos] >= EVAL_CONFIG["stuck_limit"]:
                break
        return path

    # --- Persistence --------------------------------------------------------

    def serialize(self) -> bytes:
        """Opaque blob: both networks, optimizer, exploration state, hyperparams."""
        data = {
            "hyperparams": self.hyperparams,
            "policy_state_dict": self.policy_net.state_dict(),
            "target_state_dict": self.target_net.state_dict(),
            "optimizer_state_dict": self.optimizer.state_dict(),
            "epsilon": float(self.epsilon),
            "episode_count": int(self.episode_count),
            "schedule_start": float(self._schedule_start),
            "schedule_offset": int(self._schedule_offset),
        }
        buf = io.BytesIO()
        torch.save(data, buf)
        return buf.getvalue()

    @classmethod
    def deserialize(cls, blob: bytes, device: torch.device | str | None = None) -> "DQNAgent":
        """Rebuild an agent from `serialize()` output. The replay buffer starts empty."""
        # Try newer PyTorch signature first.
        try:
            data = torch.load(io.BytesIO(blob), map_location="cpu", weights_only=True)
        except TypeError:
            data = torch.load(io.BytesIO(blob), map_location="cpu")

        agent = cls(**data["hyperparams"], device=device)
        agent.policy_net.load_state_dict(data["policy_state_dict"])
        agent.target_net.load_state_dict(data["target_state_dict"])
        agent.optimizer.load_state_dict(data["optimizer_state_dict"])
        agent.epsilon = float(data["epsilon"])
        agent.episode_count = int(data["episode_count"])
        agent._schedule_start = float(data["schedule_start"])
        agent._schedule_offset = int(data["schedule_offset"])
        return agent
