"""
Main entry point for RoadMaze.
==============================

Commands:
    train     - Train a DQN agent on one or more mazes
    test      - Score a saved agent on the seeded test set of a grid size
    play      - Drive a saved agent through one maze (playground)
    generate  - Generate random road mazes
    validate  - Check that mazes are solvable
    models    - List / delete / copy saved model slots

Usage:
    python -m roadmaze train --rows 8 --cols 8 --slot 1
    python -m roadmaze train --maze mazes.json --preset expert --plot
    python -m roadmaze test --rows 8 --cols 8 --slot 1
    python -m roadmaze play --maze mazes.json --slot 1
    python -m roadmaze generate --rows 10 --cols 10 --count 3 --out mazes.json
    python -m roadmaze validate --maze mazes.json
    python -m roadmaze models --list
"""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from typing import List

import numpy as np

from .config import EVAL_CONFIG, PATHS, PRESETS
from .environment.generation import generate_random_maze, validate_maze
from .environment.maze import MazeConfig, load_mazes, save_mazes
from .environment.rendering import render_text
from .training.checkpoint import ModelStore
from .training.events import Event, TestResultEvent
from .utils import ConsolePrinter, plot_training_history, seed_everything, setup_directories
from .worker import (
    CopyModel,
    DeleteModel,
    EngineWorker,
    HyperParams,
    ListModels,
    LoadModel,
    Play,
    SaveModel,
    StartTest,
    StartTrain,
)


def _read_mazes(args) -> List[MazeConfig]:
    if args.maze:
        return load_mazes(args.maze)
    rng = np.random.default_rng(args.seed)
    return [
        generate_random_maze(args.rows, args.cols, random_endpoints=args.random_endpoints, rng=rng)
        for _ in range(args.count)
    ]


def _make_worker(args, printer) -> EngineWorker:
    return EngineWorker(
        printer,
        ModelStore(args.models_dir),
        train_step_delay=args.delay,
        eval_step_delay=args.delay,
        device="cpu" if args.cpu else None,
    )


def train_command(args):
    """Train on mazes from a file or freshly generated ones."""
    seed_everything(args.seed)
    mazes = _read_mazes(args)

    hp = HyperParams.from_preset(args.preset)
    if args.episodes is not None:
        hp = replace(hp, max_episodes=args.episodes)
    if args.auto_decay:
        hp = hp.with_auto_decay()

    print("=" * 70)
    print("  DQN TRAINING - RoadMaze")
    print("=" * 70)
    print(f"  Mazes:             {len(mazes)} ({', '.join(f'{m.rows}×{m.cols}' for m in mazes)})")
    print(f"  Preset:            {args.preset}")
    print(f"  Episodes:          {hp.max_episodes}")
    print(f"  Learning rate:     {hp.lr}")
    print(f"  Gamma:             {hp.gamma}")
    print(f"  Epsilon:           1.0 → {hp.epsilon_end} over {hp.epsilon_decay_episodes} eps")
    print(f"  Revisit penalty:   {hp.revisit_penalty}")
    print("=" * 70 + "\n")

    worker = _make_worker(args, ConsolePrinter(args.log_interval))
    if args.resume_slot is not None:
        worker.handle(LoadModel(args.resume_slot))

    worker.handle(StartTrain(mazes, hp, fresh=args.resume_slot is None))
    session = worker.last_session
    if session is None:
        return 1

    if session.final_paths:
        for maze, path in zip(mazes, session.final_paths):
            print("\n" + render_text(maze, path=path))

    if args.slot is not None:
        name = args.name or f"{mazes[0].rows}x{mazes[0].cols} {args.preset}"
        worker.handle(SaveModel(args.slot, {"name": name}))

    if args.plot:
        setup_directories({"plots": PATHS["plots_dir"]})
        plot_training_history(
            session.history,
            save_path=os.path.join(PATHS["plots_dir"], "training_history.png"),
        )
    return 0


def test_command(args):
    """Score a saved agent on the procedural test set."""
    seed_everything(args.seed)
    worker = _make_worker(args, ConsolePrinter())
    worker.handle(LoadModel(args.slot))
    print(f"\n  Testing on {args.count} mazes of {args.rows}×{args.cols}\n")
    worker.handle(StartTest(args.rows, args.cols, args.count))
    return 0 if worker.last_report is not None else 1


def play_command(args):
    """Drive one maze with a saved agent and show the path."""
    mazes = load_mazes(args.maze)
    maze = mazes[args.index]
    results: List[TestResultEvent] = []
    printer = ConsolePrinter()

    def callback(event: Event) -> None:
        if isinstance(event, TestResultEvent):
            results.append(event)
        printer(event)

    worker = _make_worker(args, callback)
    worker.handle(LoadModel(args.slot))
    worker.handle(Play(maze))
    if not results:
        return 1
    print("\n" + render_text(maze, path=results[-1].path))
    return 0


def generate_command(args):
    """Generate mazes, print them, optionally save to JSON."""
    args.maze = None
    mazes = _read_mazes(args)
    for i, maze in enumerate(mazes):
        check = validate_maze(maze)
        print(f"\n--- Maze {i} ({maze.rows}×{maze.cols}) start={maze.start} goal={maze.goal} ---")
        print(render_text(maze))
        print(f"  {check.message}")
    if args.out:
        save_mazes(args.out, mazes)
        print(f"\nSaved {len(mazes)} maze(s) to {args.out}")
    return 0


def validate_command(args):
    """Validate every maze in a file."""
    mazes = load_mazes(args.maze)
    ok = True
    for i, maze in enumerate(mazes):
        check = validate_maze(maze)
        ok = ok and check.valid
        print(f"  Maze {i}: {check.message}")
    return 0 if ok else 1


def models_command(args):
    """Manage saved model slots."""
    worker = _make_worker(args, ConsolePrinter())
    if args.delete is not None:
        worker.handle(DeleteModel(args.delete))
    if args.copy is not None:
        worker.handle(CopyModel(args.copy[0], args.copy[1]))
    worker.handle(ListModels())
    return 0


def _add_common(p: argparse.ArgumentParser, *, grid: bool = False):
    p.add_argument("--models-dir", type=str, default=PATHS["models_dir"], help="Model slot directory")
    p.add_argument("--cpu", action="store_true", help="Force CPU")
    p.add_argument("--delay", type=float, default=0.0, help="Pause after each step in seconds (default: 0)")
    p.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    if grid:
        p.add_argument("--maze", type=str, default=None, help="JSON file with one maze or a list of mazes")
        p.add_argument("--rows", type=int, default=8, help="Rows of generated mazes (default: 8)")
        p.add_argument("--cols", type=int, default=8, help="Columns of generated mazes (default: 8)")
        p.add_argument("--count", type=int, default=1, help="Number of generated mazes (default: 1)")
        p.add_argument("--random-endpoints", action="store_true", help="Random start/goal on the border")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="RoadMaze - DQN agent for road-network mazes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m roadmaze train --rows 8 --cols 8 --slot 1
  python -m roadmaze test --rows 8 --cols 8 --slot 1
  python -m roadmaze generate --rows 12 --cols 12 --out mazes.json
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Train command
    train_parser = subparsers.add_parser("train", help="Train an agent")
    _add_common(train_parser, grid=True)
    train_parser.add_argument("--preset", choices=list(PRESETS), default="standard",
                              help="Hyperparameter preset (default: standard)")
    train_parser.add_argument("--episodes", type=int, default=None, help="Override max episodes")
    train_parser.add_argument("--auto-decay", action="store_true",
                              help="Decay epsilon over 2/3 of the episodes")
    train_parser.add_argument("--resume-slot", type=int, default=None,
                              help="Continue training the agent saved in this slot")
    train_parser.add_argument("--slot", type=int, default=None, help="Save the trained agent to this slot")
    train_parser.add_argument("--name", type=str, default=None, help="Name stored with the slot")
    train_parser.add_argument("--log-interval", type=int, default=10, help="Print every N episodes")
    train_parser.add_argument("--plot", action="store_true", help="Save a training plot")
    train_parser.set_defaults(func=train_command)

    # Test command
    test_parser = subparsers.add_parser("test", help="Score a saved agent")
    _add_common(test_parser)
    test_parser.add_argument("--rows", type=int, default=8)
    test_parser.add_argument("--cols", type=int, default=8)
    test_parser.add_argument("--count", type=int, default=EVAL_CONFIG["num_tests"],
                             help=f"Number of test mazes (default: {EVAL_CONFIG['num_tests']})")
    test_parser.add_argument("--slot", type=int, default=1, help="Model slot to load (default: 1)")
    test_parser.set_defaults(func=test_command)

    # Play command
    play_parser = subparsers.add_parser("play", help="Drive one maze with a saved agent")
    _add_common(play_parser)
    play_parser.add_argument("--maze", type=str, required=True, help="JSON maze file")
    play_parser.add_argument("--index", type=int, default=0, help="Maze index in the file")
    play_parser.add_argument("--slot", type=int, default=1, help="Model slot to load (default: 1)")
    play_parser.set_defaults(func=play_command)

    # Generate command
    gen_parser = subparsers.add_parser("generate", help="Generate random mazes")
    _add_common(gen_parser, grid=True)
    gen_parser.add_argument("--out", type=str, default=None, help="Write mazes to this JSON file")
    gen_parser.set_defaults(func=generate_command)

    # Validate command
    val_parser = subparsers.add_parser("validate", help="Check mazes for solvability")
    val_parser.add_argument("--maze", type=str, required=True, help="JSON maze file")
    val_parser.set_defaults(func=validate_command)

    # Models command
    models_parser = subparsers.add_parser("models", help="Manage model slots")
    _add_common(models_parser)
    models_parser.add_argument("--list", action="store_true", help="List slots (always done)")
    models_parser.add_argument("--delete", type=int, default=None, help="Delete a slot")
    models_parser.add_argument("--copy", type=int, nargs=2, metavar=("SRC", "DST"), help="Copy a slot")
    models_parser.set_defaults(func=models_command)

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
