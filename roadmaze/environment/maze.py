"""Maze description shared by the solver, the environment and the trainer.

A maze is a `rows x cols` grid. Every cell is a wall, the start, the goal or
a drivable road cell. Only walls are stored; everything else is road.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Tuple

Cell = Tuple[int, int]


@dataclass(frozen=True)
class MazeConfig:
    """Immutable maze handed to the environment, trainer and evaluator."""

    rows: int
    cols: int
    walls: frozenset = field(default_factory=frozenset)
    start: Cell = (0, 0)
    goal: Cell | None = None

    def __post_init__(self):
        if int(self.rows) <= 0 or int(self.cols) <= 0:
            raise ValueError(f"Grid size must be positive, got {self.rows}x{self.cols}")
        object.__setattr__(self, "rows", int(self.rows))
        object.__setattr__(self, "cols", int(self.cols))
        object.__setattr__(self, "walls", frozenset((int(r), int(c)) for r, c in self.walls))
        object.__setattr__(self, "start", (int(self.start[0]), int(self.start[1])))
        goal = self.goal if self.goal is not None else (self.rows - 1, self.cols - 1)
        object.__setattr__(self, "goal", (int(goal[0]), int(goal[1])))

    def in_bounds(self, r: int, c: int) -> bool:
        return 0 <= r < self.rows and 0 <= c < self.cols

    def is_wall(self, r: int, c: int) -> bool:
        return (r, c) in self.walls

    def roads(self) -> set[Cell]:
        """All non-wall cells (start and goal included)."""
        return {
            (r, c)
            for r in range(self.rows)
            for c in range(self.cols)
            if (r, c) not in self.walls
        }

    # -- wire format: {"num_rows", "num_cols", "walls": [[r, c], ...], "start", "goal"}
    def to_dict(self) -> dict[str, Any]:
        return {
            "num_rows": self.rows,
            "num_cols": self.cols,
            "walls": [list(w) for w in sorted(self.walls)],
            "start": list(self.start),
            "goal": list(self.goal),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MazeConfig":
        rows = data.get("num_rows", data.get("rows"))
        cols = data.get("num_cols", data.get("cols"))
        if rows is None or cols is None:
            raise ValueError("Maze needs 'num_rows' and 'num_cols'")
        return cls(
            rows=rows,
            cols=cols,
            walls=frozenset(tuple(w) for w in data.get("walls", [])),
            start=tuple(data.get("start", (0, 0))),
            goal=tuple(data["goal"]) if data.get("goal") is not None else None,
        )


def walls_from_roads(rows: int, cols: int, roads: Iterable[Cell]) -> frozenset:
    """Every cell that is not a road becomes a wall."""
    road_set = set(roads)
    return frozenset(
        (r, c) for r in range(rows) for c in range(cols) if (r, c) not in road_set
    )


def load_mazes(path: str) -> List[MazeConfig]:
    """Read one maze object or a list of maze objects from a JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = [data]
    return [MazeConfig.from_dict(d) for d in data]


def save_mazes(path: str, mazes: Iterable[MazeConfig]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump([m.to_dict() for m in mazes], f, indent=2)
