"""Core utilities for the ralph loop."""

from .exceptions import (
    RalphError,
    StateError,
    MalformedStateError,
    TaskError,
    SpawnError,
    PrerequisiteError,
    StuckRunError,
)
from .logger import RunLogger

__all__ = [
    # Exceptions
    "RalphError",
    "StateError",
    "MalformedStateError",
    "TaskError",
    "SpawnError",
    "PrerequisiteError",
    "StuckRunError",
    # Logger
    "RunLogger",
]
