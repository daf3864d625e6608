"""
RoadMaze
========
A DQN agent that learns to drive through road-network mazes.

This package provides:
- MazeConfig / MazeEnv: maze description and Gymnasium environment
- generate_random_maze / validate_maze: road generator and BFS solver
- DQNAgent, run_training, run_tests, run_playground: learning and scoring
- EngineWorker: command/event front end with model slots

Usage:
    from roadmaze import DQNAgent, generate_random_maze, run_training, run_tests

    maze = generate_random_maze(8, 8)
    agent = DQNAgent()
    session = run_training(agent, [maze], step_delay=0)
    report = run_tests(agent, 8, 8, step_delay=0)
    print(report.score.total_score)
"""

__version__ = "1.0.0"

from .environment import MazeConfig, MazeEnv, generate_random_maze, validate_maze
from .training import DQNAgent, run_playground, run_training, run_tests
from .worker import EngineWorker, HyperParams

__all__ = [
    "MazeConfig", "MazeEnv", "generate_random_maze", "validate_maze",
    "DQNAgent", "run_training", "run_tests", "run_playground",
    "EngineWorker", "HyperParams",
]
