"""Training modules for RoadMaze: agent, replay, trainer, evaluator, model slots."""

from .agent import DQNAgent
from .core import EarlyStopTracker, EpisodeResult, EpisodeStatus, TrainingPhase, TrainingSession, run_training
from .eval import EvaluationReport, Score, compute_score, run_playground, run_tests
from .checkpoint import ModelStore

__all__ = [
    "DQNAgent",
    "EarlyStopTracker", "EpisodeResult", "EpisodeStatus", "TrainingPhase", "TrainingSession", "run_training",
    "EvaluationReport", "Score", "compute_score", "run_playground", "run_tests",
    "ModelStore",
]
