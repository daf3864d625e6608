"""Neural network definitions for DQN.

Keep networks in their own module so:
  - the agent stays readable
  - the policy and target networks are guaranteed to share one architecture
"""

from __future__ import annotations

try:
    import torch
    import torch.nn as nn
except ImportError as e:  # pragma: no cover
    raise ImportError("PyTorch is required. Install with: pip install torch") from e


class QNetwork(nn.Module):
    """Simple MLP Q-network with two hidden layers.

    Input:  D (77 for the 5x5x3 window + goal direction)
    Output: n_actions (default 4)
    """

    def __init__(self, input_dim: int, n_actions: int = 4, hidden_size: int = 128):
        super().__init__()
        self.net = nn.Sequential(
            nn.Linear(int(input_dim), int(hidden_size)),
            nn.ReLU(),
            nn.Linear(int(hidden_size), int(hidden_size)),
            nn.ReLU(),
            nn.Linear(int(hidden_size), int(n_actions)),
        )

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.net(x)
