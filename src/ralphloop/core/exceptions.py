"""Custom exceptions for the ralph loop."""

from typing import Optional


class RalphError(Exception):
    """Base exception for ralph loop errors."""

    def __init__(self, message: str, retryable: bool = False, original_error: Optional[Exception] = None):
        """
        Initialize ralph loop error.

        Args:
            message: Error message
            retryable: Whether a later cycle may succeed where this one failed
            original_error: Original exception that caused this error
        """
        super().__init__(message)
        self.retryable = retryable
        self.original_error = original_error


class StateError(RalphError):
    """Error related to the task file."""

    def __init__(self, message: str, retryable: bool = False, original_error: Optional[Exception] = None):
        super().__init__(message, retryable=retryable, original_error=original_error)


class MalformedStateError(StateError):
    """Task file is not valid JSON or lacks a ``tasks`` array.

    Retryable: an external writer may be halfway through rewriting the file.
    """

    def __init__(self, path: str, reason: str, original_error: Optional[Exception] = None):
        message = f"Malformed task file {path}: {reason}"
        super().__init__(message, retryable=True, original_error=original_error)
        self.path = path
        self.reason = reason


class TaskError(RalphError):
    """Error related to a single task."""

    def __init__(self, task_id: str, message: str, retryable: bool = False, original_error: Optional[Exception] = None):
        full_message = f"Task {task_id}: {message}"
        super().__init__(full_message, retryable=retryable, original_error=original_error)
        self.task_id = task_id


class SpawnError(TaskError):
    """Worker process could not be started; the task stays pending."""

    def __init__(self, task_id: str, message: str, original_error: Optional[Exception] = None):
        super().__init__(task_id, message, retryable=True, original_error=original_error)


class PrerequisiteError(RalphError):
    """A startup requirement is missing (marker file, worker CLI, task or prompt file)."""


class StuckRunError(RalphError):
    """Nothing is pending or running, yet not every task reached a terminal status."""

    def __init__(self, stuck_ids: list[str]):
        message = (
            "No task is pending or running but some tasks are not terminal: "
            + ", ".join(stuck_ids)
        )
        super().__init__(message, retryable=False)
        self.stuck_ids = stuck_ids
