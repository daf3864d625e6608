"""Exceptions raised by the engine."""

from __future__ import annotations


class RoadMazeError(Exception):
    """Base class for engine errors."""


class MazeValidationError(RoadMazeError, ValueError):
    """A maze failed validation (start/goal on a wall, or goal unreachable).

    The message is the human-readable cause from `validate_maze` and is
    forwarded to the host unmodified.
    """


class AgentNotReadyError(RoadMazeError):
    """Test or play was requested before any agent was trained or loaded."""


class ModelStoreError(RoadMazeError):
    """Saving, loading or copying a model slot failed."""
