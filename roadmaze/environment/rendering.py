"""Text (ANSI) rendering for road mazes.

Graphical rendering belongs to the host application; this is only what the
command line needs to show a maze, an agent or a learned path.
"""

from __future__ import annotations

from typing import Iterable, Optional

from .maze import Cell, MazeConfig


def render_text(
    maze: MazeConfig,
    agent_pos: Optional[Cell] = None,
    path: Optional[Iterable[Cell]] = None,
) -> str:
    """One character pair per cell.

    A = agent, S = start, G = goal, # = wall, * = path, . = road
    """
    on_path = set(path) if path is not None else set()
    lines = []
    for r in range(maze.rows):
        row = ""
        for c in range(maze.cols):
            if (r, c) == agent_pos:
                row += " A"
            elif (r, c) == maze.goal:
                row += " G"
            elif (r, c) == maze.start:
                row += " S"
            elif (r, c) in maze.walls:
                row += " #"
            elif (r, c) in on_path:
                row += " *"
            else:
                row += " ."
        lines.append(row)
    return "\n".join(lines)
