"""Scheduler layer: the control loop.

This module drives workers through the pending -> running -> completed/failed
lifecycle within a concurrency budget.
"""

from .loop import (
    EXIT_INTERRUPTED,
    EXIT_STUCK,
    EXIT_SUCCESS,
    EXIT_TASKS_FAILED,
    SchedulerLoop,
    utc_timestamp,
)

__all__ = [
    "SchedulerLoop",
    "EXIT_SUCCESS",
    "EXIT_TASKS_FAILED",
    "EXIT_STUCK",
    "EXIT_INTERRUPTED",
    "utc_timestamp",
]
