"""Data models for the ralph loop."""

from .task import (
    TaskStatus,
    Task,
    RunConfig,
    TaskStatistics,
    ValidationResult,
)

__all__ = [
    "TaskStatus",
    "Task",
    "RunConfig",
    "TaskStatistics",
    "ValidationResult",
]
