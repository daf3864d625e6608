"""
Configuration for RoadMaze
==========================
"""

# Environment Configuration
ENV_CONFIG = {
    "revisit_penalty": 0.05,       # Reward for re-entering a visited cell (negated)
}

# DQN Hyperparameters
AGENT_CONFIG = {
    "n_actions": 4,                # Actions: 0=UP, 1=RIGHT, 2=DOWN, 3=LEFT
    "hidden_size": 128,            # Width of both hidden layers
    "learning_rate": 1e-3,         # Adam learning rate
    "discount_factor": 0.99,       # Gamma: discount factor
    "epsilon_start": 1.0,          # Initial exploration rate
    "epsilon_end": 0.05,           # Minimum epsilon
    "epsilon_decay_episodes": 200, # Episodes to linearly decay epsilon over
    "batch_size": 64,              # Replay buffer sample size
    "replay_size": 10_000,         # Replay capacity when no maze size is known
    "replay_per_cell": 1000,       # Replay capacity per maze cell ...
    "replay_min": 50_000,          # ... clamped to this range
    "replay_max": 150_000,
    "tau": 0.01,                   # Soft target update rate (per episode)
    "resume_epsilon": 0.4,         # Epsilon when continuing training
}

# Training Configuration
TRAIN_CONFIG = {
    "max_episodes": 300,           # Episode budget per training run
    "sequential_episodes": 2,      # Phase 1: stepped one env at a time
    "num_parallel": 8,             # Phase 2: batched environment slots
    "learn_every": 4,              # learn() once every N global steps
    "step_cap_factor": 4,          # Step cap = rows * cols * factor
    "early_stop_window": 30,       # Sliding window for convergence
    "early_stop_max_std": 2.0,     # Converged when step-count std < this
    "step_delay": 0.02,            # Pause after every sequential step (s)
    "yield_every": 50,             # Batched phase reports/yields every N ticks
}

# Evaluation Configuration
EVAL_CONFIG = {
    "num_tests": 10,               # Procedural test mazes per batch test
    "step_delay": 0.03,            # Playback pause after each step (s)
    "stuck_limit": 10,             # Stop when one cell is visited this often
    "step_cap_factor": 4,          # Step cap = rows * cols * factor
    "greedy_path_factor": 2,       # greedy_path bound = rows * cols * factor
    "max_attempts": 30,            # Generator retries before the L fallback
}

# Hyperparameter presets
PRESETS = {
    "beginner": {
        "max_episodes": 100,
        "lr": 0.0005,
        "gamma": 0.9,
        "epsilon_end": 0.15,
        "epsilon_decay_episodes": 80,
        "revisit_penalty": 0.05,
    },
    "standard": {
        "max_episodes": 300,
        "lr": 0.001,
        "gamma": 0.95,
        "epsilon_end": 0.1,
        "epsilon_decay_episodes": 250,
        "revisit_penalty": 0.05,
    },
    "expert": {
        "max_episodes": 500,
        "lr": 0.003,
        "gamma": 0.99,
        "epsilon_end": 0.05,
        "epsilon_decay_episodes": 400,
        "revisit_penalty": 0.05,
    },
}

# Paths
PATHS = {
    "models_dir": "./models",
    "plots_dir": "./plots",
}
