"""Procedural maze generation and BFS utilities.

Keeps the env file small by isolating:
  - shortest paths (BFS)
  - maze validation (the gate before training / evaluation)
  - road-network generation with structural constraints
  - fallback map

Generated mazes are road networks: a biased random walk from start to goal
plus a few dead-end branches. All randomness comes from the `rng` argument
(a numpy Generator), so a seeded generator always reproduces the same maze.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from .constants import ACTION_DELTAS
from .maze import Cell, MazeConfig, walls_from_roads

START_ON_WALL_MESSAGE = "The start cell is on a wall"
START_OUTSIDE_MESSAGE = "The start cell is outside the grid"
GOAL_OUTSIDE_MESSAGE = "The goal cell is outside the grid"
GOAL_ON_WALL_MESSAGE = "The goal cell is on a wall"
UNREACHABLE_MESSAGE = "There is no road to the goal! Try adding more road"

# up, right, down, left
_DELTAS = [ACTION_DELTAS[a] for a in sorted(ACTION_DELTAS)]


def neighbors(r: int, c: int, rows: int, cols: int) -> List[Cell]:
    """In-bounds 4-neighbours of (r, c)."""
    out = []
    for dr, dc in _DELTAS:
        nr, nc = r + dr, c + dc
        if 0 <= nr < rows and 0 <= nc < cols:
            out.append((nr, nc))
    return out


# ─────────────────────────────────────────────────────────────────────────────
# Shortest path
# ─────────────────────────────────────────────────────────────────────────────
def bfs_shortest_path(
    rows: int,
    cols: int,
    walls: Iterable[Cell],
    start: Cell,
    goal: Cell,
) -> Tuple[Optional[int], Optional[List[Cell]]]:
    """BFS over 4-connected road cells.

    Returns:
        (length, path): path starts with `start` and ends with `goal`,
        length == len(path) - 1. (None, None) when start or goal is off the
        grid or a wall, or the goal is unreachable.
    """
    wall_set = walls if isinstance(walls, (set, frozenset)) else set(walls)
    start = (int(start[0]), int(start[1]))
    goal = (int(goal[0]), int(goal[1]))

    off_grid = [p for p in (start, goal) if not (0 <= p[0] < rows and 0 <= p[1] < cols)]
    if off_grid or start in wall_set or goal in wall_set:
        return None, None

    parent: dict[Cell, Optional[Cell]] = {start: None}
    q = deque([start])

    while q:
        cur = q.popleft()
        if cur == goal:
            path = []
            node: Optional[Cell] = cur
            while node is not None:
                path.append(node)
                node = parent[node]
            path.reverse()
            return len(path) - 1, path

        for nxt in neighbors(cur[0], cur[1], rows, cols):
            if nxt in wall_set or nxt in parent:
                continue
            parent[nxt] = cur
            q.append(nxt)

    return None, None


@dataclass(frozen=True)
class MazeValidation:
    valid: bool
    message: str
    shortest_path_length: Optional[int]


def validate_maze(maze: MazeConfig) -> MazeValidation:
    """Fail closed: endpoint off the grid, start on wall, goal on wall, unreachable goal."""
    if not maze.in_bounds(*maze.start):
        return MazeValidation(False, START_OUTSIDE_MESSAGE, None)
    if not maze.in_bounds(*maze.goal):
        return MazeValidation(False, GOAL_OUTSIDE_MESSAGE, None)
    if maze.start in maze.walls:
        return MazeValidation(False, START_ON_WALL_MESSAGE, None)
    if maze.goal in maze.walls:
        return MazeValidation(False, GOAL_ON_WALL_MESSAGE, None)

    length, _ = bfs_shortest_path(maze.rows, maze.cols, maze.walls, maze.start, maze.goal)
    if length is None:
        return MazeValidation(False, UNREACHABLE_MESSAGE, None)

    return MazeValidation(True, f"OK! The goal can be reached in {length} steps", length)


# ─────────────────────────────────────────────────────────────────────────────
# Structural constraints
# ─────────────────────────────────────────────────────────────────────────────
def road_neighbors(r: int, c: int, roads: Set[Cell], rows: int, cols: int) -> int:
    return sum(1 for n in neighbors(r, c, rows, cols) if n in roads)


def is_intersection(r: int, c: int, roads: Set[Cell], rows: int, cols: int) -> bool:
    return road_neighbors(r, c, roads, rows, cols) >= 3


def has_adjacent_intersections(roads: Set[Cell], rows: int, cols: int) -> bool:
    crossings = {cell for cell in roads if is_intersection(cell[0], cell[1], roads, rows, cols)}
    for r, c in crossings:
        for n in neighbors(r, c, rows, cols):
            if n in crossings:
                return True
    return False


def would_create_2x2_block(r: int, c: int, roads: Set[Cell]) -> bool:
    """True if adding (r, c) completes a 2x2 block of road."""
    for dr, dc in ((-1, -1), (-1, 0), (0, -1), (0, 0)):
        top, left = r + dr, c + dc
        block = [(top, left), (top + 1, left), (top, left + 1), (top + 1, left + 1)]
        if all(cell in roads for cell in block if cell != (r, c)):
            return True
    return False


def has_2x2_block(roads: Set[Cell]) -> bool:
    for r, c in roads:
        if (r + 1, c) in roads and (r, c + 1) in roads and (r + 1, c + 1) in roads:
            return True
    return False


def would_create_adjacent_intersections(
    r: int, c: int, roads: Set[Cell], rows: int, cols: int
) -> bool:
    test_roads = set(roads)
    test_roads.add((r, c))

    to_check = [(r, c)] + [n for n in neighbors(r, c, rows, cols) if n in test_roads]
    for cr, cc in to_check:
        if not is_intersection(cr, cc, test_roads, rows, cols):
            continue
        for n in neighbors(cr, cc, rows, cols):
            if n in test_roads and is_intersection(n[0], n[1], test_roads, rows, cols):
                return True
    return False


def _admissible(cell: Cell, roads: Set[Cell], rows: int, cols: int) -> bool:
    r, c = cell
    return not would_create_adjacent_intersections(r, c, roads, rows, cols) and not would_create_2x2_block(r, c, roads)


# ─────────────────────────────────────────────────────────────────────────────
# Random helpers (all draws from `rng`)
# ─────────────────────────────────────────────────────────────────────────────
def _choice(items: Sequence, rng: np.random.Generator):
    return items[int(rng.integers(len(items)))]


def _randint(low: int, high: int, rng: np.random.Generator) -> int:
    """Inclusive on both ends."""
    return int(rng.integers(low, high + 1))


def _weighted_choice(items: Sequence, weights: Sequence[float], rng: np.random.Generator):
    x = float(rng.random()) * sum(weights)
    for item, w in zip(items, weights):
        x -= w
        if x <= 0:
            return item
    return items[-1]


# ─────────────────────────────────────────────────────────────────────────────
# Generation
# ─────────────────────────────────────────────────────────────────────────────
def pick_random_endpoints(
    rows: int,
    cols: int,
    rng: np.random.Generator,
    max_tries: int = 200,
) -> Tuple[Cell, Cell]:
    """Start and goal on the perimeter, at least max(rows, cols)//2 apart."""
    perimeter = [
        (r, c)
        for r in range(rows)
        for c in range(cols)
        if r == 0 or r == rows - 1 or c == 0 or c == cols - 1
    ]
    min_dist = max(rows, cols) // 2
    for _ in range(max_tries):
        s = _choice(perimeter, rng)
        g = _choice(perimeter, rng)
        if s != g and abs(s[0] - g[0]) + abs(s[1] - g[1]) >= min_dist:
            return s, g
    return (0, 0), (rows - 1, cols - 1)


def generate_road_network(
    rows: int,
    cols: int,
    start: Cell,
    goal: Cell,
    rng: np.random.Generator,
) -> Optional[Set[Cell]]:
    """Main road (goal-biased walk) + 2-4 branches. None if the goal is cut off."""
    roads: Set[Cell] = {start, goal}

    # 1. main road
    pos = start
    walked = {start}
    for _ in range(rows * cols * 3):
        if pos == goal:
            break

        candidates = [
            n for n in neighbors(pos[0], pos[1], rows, cols)
            if n not in walked and _admissible(n, roads, rows, cols)
        ]

        if not candidates:
            # stuck: restart from any admissible cell next to the network
            restart = [
                n
                for cell in roads
                for n in neighbors(cell[0], cell[1], rows, cols)
                if n not in walked and _admissible(n, roads, rows, cols)
            ]
            if not restart:
                break
            pos = _choice(restart, rng)
            roads.add(pos)
            walked.add(pos)
            continue

        weights = [1.0 / (abs(r - goal[0]) + abs(c - goal[1]) + 1) for r, c in candidates]
        pos = _weighted_choice(candidates, weights, rng)
        roads.add(pos)
        walked.add(pos)

    length, _ = bfs_shortest_path(rows, cols, walls_from_roads(rows, cols, roads), start, goal)
    if length is None:
        return None

    # 2. branches
    n_branches = _randint(2, 4, rng)
    road_list = [cell for cell in roads if cell != start and cell != goal]

    for _ in range(n_branches):
        if not road_list:
            break
        b_pos = _choice(road_list, rng)
        b_len = _randint(2, max(3, rows - 2), rng)

        for _ in range(b_len):
            cands = [
                n for n in neighbors(b_pos[0], b_pos[1], rows, cols)
                if n not in roads and _admissible(n, roads, rows, cols)
            ]
            if not cands:
                break
            b_pos = _choice(cands, rng)
            roads.add(b_pos)
            road_list.append(b_pos)

    return roads


def _passes_constraints(roads: Set[Cell], rows: int, cols: int) -> bool:
    if has_adjacent_intersections(roads, rows, cols):
        return False
    if has_2x2_block(roads):
        return False
    # no isolated islands
    return all(road_neighbors(r, c, roads, rows, cols) >= 1 for r, c in roads)


def create_fallback_maze(rows: int, cols: int) -> MazeConfig:
    """Guaranteed-solvable L-shaped road: top row + rightmost column."""
    roads = {(0, c) for c in range(cols)} | {(r, cols - 1) for r in range(rows)}
    return MazeConfig(
        rows=rows,
        cols=cols,
        walls=walls_from_roads(rows, cols, roads),
        start=(0, 0),
        goal=(rows - 1, cols - 1),
    )


def generate_random_maze(
    rows: int,
    cols: int,
    *,
    random_endpoints: bool = False,
    max_attempts: int = 30,
    rng: np.random.Generator | None = None,
) -> MazeConfig:
    """Generate a road maze whose goal is BFS-reachable from its start."""
    rows, cols = int(rows), int(cols)
    if rows <= 0 or cols <= 0:
        raise ValueError(f"Grid size must be positive, got {rows}x{cols}")
    if rng is None:
        rng = np.random.default_rng()

    for _ in range(int(max_attempts)):
        if random_endpoints:
            start, goal = pick_random_endpoints(rows, cols, rng)
        else:
            start, goal = (0, 0), (rows - 1, cols - 1)

        roads = generate_road_network(rows, cols, start, goal, rng)
        if roads is None or not _passes_constraints(roads, rows, cols):
            continue

        walls = walls_from_roads(rows, cols, roads)

        # final BFS check
        length, _ = bfs_shortest_path(rows, cols, walls, start, goal)
        if length is not None:
            return MazeConfig(rows=rows, cols=cols, walls=walls, start=start, goal=goal)

    # last resort fallback
    return create_fallback_maze(rows, cols)
