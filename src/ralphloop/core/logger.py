"""Logging utilities for the ralph loop."""

import json
import logging
import os
import traceback
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional


LOGGER_NAME = "ralph_loop"


class RunLogger:
    """Logger for orchestrator runs.

    Human-readable lines go to a rotating file and, for warnings and errors,
    to stderr. Structured events (per-cycle progress, task transitions and
    errors) are appended to daily JSONL files next to the text log.
    """

    def __init__(
        self,
        log_dir: str = ".ralph/logs",
        log_level: str = "INFO",
        max_bytes: int = 10 * 1024 * 1024,
        backup_count: int = 5,
        sync: bool = False,
        name: str = LOGGER_NAME,
    ):
        """
        Initialize logger.

        Args:
            log_dir: Directory for log files
            log_level: Log level (DEBUG, INFO, WARNING, ERROR)
            max_bytes: Maximum size of log file before rotation (default: 10MB)
            backup_count: Number of backup files to keep (default: 5)
            sync: Flush and fsync every JSONL write
            name: Name of the underlying stdlib logger
        """
        self.log_dir = Path(log_dir)
        self.sync = sync
        self.log_dir.mkdir(parents=True, exist_ok=True)

        level = getattr(logging, log_level.upper(), logging.INFO)

        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

        # Handlers are attached once per logger name
        if not self.logger.handlers:
            log_file = self.log_dir / f"execution_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding='utf-8'
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(
                logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
            )

            # stderr only carries problems; the status screen owns stdout
            console_handler = logging.StreamHandler()
            console_handler.setLevel(logging.WARNING)
            console_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))

            self.logger.addHandler(file_handler)
            self.logger.addHandler(console_handler)

        # Prevent duplicate logs
        self.logger.propagate = False

    def _flush_and_sync(self, file_obj) -> None:
        """Ensure log contents are flushed to disk when sync is enabled."""
        if not self.sync:
            return
        try:
            file_obj.flush()
            os.fsync(file_obj.fileno())
        except OSError:
            # fsync is not supported on every filesystem
            pass

    def _append_jsonl(self, prefix: str, entry: Dict[str, Any]) -> None:
        log_file = self.log_dir / f"{prefix}_{datetime.now().strftime('%Y%m%d')}.jsonl"
        with open(log_file, 'a', encoding='utf-8') as f:
            f.write(json.dumps(entry, ensure_ascii=False) + '\n')
            self._flush_and_sync(f)

    def log_task_transition(
        self,
        task_id: str,
        from_status: Optional[str],
        to_status: str,
        **kwargs
    ) -> None:
        """
        Log a task status change.

        Args:
            task_id: Task identifier
            from_status: Previous status (None when unknown)
            to_status: New status
            **kwargs: Additional metadata (pid, exit_code, ...)
        """
        entry = {
            'timestamp': datetime.now().isoformat(),
            'task_id': task_id,
            'from': from_status,
            'to': to_status,
            **kwargs
        }
        self._append_jsonl("tasks", entry)

        details = ", ".join(f"{key}={value}" for key, value in kwargs.items())
        suffix = f" ({details})" if details else ""
        self.logger.info(f"[{task_id}] {from_status or '?'} -> {to_status}{suffix}")

    def log_error_with_traceback(
        self,
        source: str,
        error: Exception,
        context: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Log error with full traceback and context.

        Args:
            source: Component that hit the error
            error: Exception that occurred
            context: Additional context information
        """
        tb = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        error_entry = {
            'timestamp': datetime.now().isoformat(),
            'source': source,
            'error_type': type(error).__name__,
            'error_message': str(error),
            'traceback': tb,
            'context': context or {}
        }
        self._append_jsonl("errors", error_entry)

        self.logger.error(f"[{source}] {type(error).__name__}: {error}")
        self.logger.debug(f"[{source}] Traceback:\n{tb}")

    def log_progress(
        self,
        cycle: int,
        total_tasks: int,
        completed_tasks: int,
        failed_tasks: int,
        pending_tasks: int,
        running_tasks: int
    ) -> None:
        """
        Log progress summary for one scheduling cycle.

        Args:
            cycle: Current cycle number
            total_tasks: Total number of tasks
            completed_tasks: Number of completed tasks
            failed_tasks: Number of failed tasks
            pending_tasks: Number of pending tasks
            running_tasks: Number of running tasks
        """
        progress_entry = {
            'timestamp': datetime.now().isoformat(),
            'cycle': cycle,
            'total_tasks': total_tasks,
            'completed_tasks': completed_tasks,
            'failed_tasks': failed_tasks,
            'pending_tasks': pending_tasks,
            'running_tasks': running_tasks,
            'completion_rate': round(completed_tasks / total_tasks * 100, 2) if total_tasks > 0 else 0
        }
        self._append_jsonl("progress", progress_entry)

        self.logger.debug(
            f"[Progress] Cycle {cycle}: "
            f"{completed_tasks}/{total_tasks} completed, "
            f"{running_tasks} running, {failed_tasks} failed, {pending_tasks} pending"
        )

    def info(self, message: str) -> None:
        """Log info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log debug message."""
        self.logger.debug(message)
