"""State layer: the JSON task file."""

from .store import TaskStore

__all__ = [
    "TaskStore",
]
