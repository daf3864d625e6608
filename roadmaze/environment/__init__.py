"""Environment modules for RoadMaze."""

from .maze import MazeConfig, load_mazes, save_mazes
from .maze_env import MazeEnv
from .generation import bfs_shortest_path, validate_maze, generate_random_maze

__all__ = [
    "MazeConfig", "load_mazes", "save_mazes",
    "MazeEnv",
    "bfs_shortest_path", "validate_maze", "generate_random_maze",
]
