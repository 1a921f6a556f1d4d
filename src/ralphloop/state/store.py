"""Task file access for the ralph loop."""

import json
import os
import tempfile
from pathlib import Path
from typing import List, Optional, Union

from ..core.exceptions import MalformedStateError
from ..models import RunConfig, TaskStatus, ValidationResult


class TaskStore:
    """Reads and writes the JSON task file.

    The file is the durable run ledger. Every mutation rewrites the whole
    document; there is no partial patching and no version check, so the last
    writer wins.
    """

    def __init__(self, path: Union[str, Path]):
        """
        Initialize TaskStore.

        Args:
            path: Path of the JSON task file
        """
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> RunConfig:
        """
        Parse the task file.

        Returns:
            RunConfig built from the document

        Raises:
            MalformedStateError: If the file is unreadable, is not valid JSON,
                or lacks a ``tasks`` array of objects
        """
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise MalformedStateError(str(self.path), f"invalid JSON ({e})", e)
        except OSError as e:
            raise MalformedStateError(str(self.path), f"cannot read file ({e})", e)

        if not isinstance(data, dict):
            raise MalformedStateError(str(self.path), "top level is not an object")
        tasks = data.get("tasks")
        if not isinstance(tasks, list):
            raise MalformedStateError(str(self.path), "missing 'tasks' array")
        if not all(isinstance(t, dict) for t in tasks):
            raise MalformedStateError(str(self.path), "'tasks' must contain objects")

        return RunConfig.from_dict(data)

    def save(self, config: RunConfig) -> None:
        """
        Write the full document back to disk.

        The document is pretty-printed with a stable key order and replaces the
        old file atomically, so readers never observe a half-written file.

        Args:
            config: Run configuration to persist
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(config.to_dict(), indent=2, ensure_ascii=False) + "\n"

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())  # Force write to disk
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def update_task_status(
        self,
        config: RunConfig,
        task_id: str,
        status: TaskStatus
    ) -> Optional[str]:
        """
        Set one task's status and persist the whole document.

        Args:
            config: In-memory run configuration (mutated in place)
            task_id: Task to update
            status: New status

        Returns:
            The previous status value, or None if the task is not in the document
        """
        task = config.get_task(task_id)
        if task is None:
            return None
        previous = task.status_value
        task.status = status
        self.save(config)
        return previous

    def reset_stale_running(self, config: RunConfig) -> List[str]:
        """
        Force every ``running`` task back to ``pending``.

        Used at startup after a crash and during shutdown: bookkeeping from a
        process that is gone cannot vouch for any worker's liveness. Tasks in
        any other status are left untouched. The config is mutated but not
        saved; callers persist when the returned list is non-empty.

        Args:
            config: Run configuration to repair

        Returns:
            List of task IDs that were reset
        """
        recovered = []
        for task in config.tasks:
            if task.is_running():
                task.status = TaskStatus.PENDING
                recovered.append(task.id)
        return recovered

    def validate(self, config: RunConfig) -> ValidationResult:
        """
        Validate task identity and run settings.

        Returns:
            ValidationResult object with validation results
        """
        result = ValidationResult()

        seen = set()
        for index, task in enumerate(config.tasks):
            if not task.id:
                result.add_error(f"Task at index {index} has no 'id'")
                continue
            if task.id in seen:
                result.add_error(f"Duplicate task id: {task.id}")
            seen.add(task.id)
            if not isinstance(task.status, TaskStatus):
                result.add_warning(f"Task {task.id} has unrecognized status '{task.status_value}'")
            if task.title is not None and not isinstance(task.title, str):
                result.add_warning(f"Task {task.id} has a non-string 'title'")
            if task.acceptance_criteria is not None and not isinstance(task.acceptance_criteria, list):
                result.add_warning(f"Task {task.id} has 'acceptanceCriteria' that is not a list")

        if not config.tasks:
            result.add_warning("Task file contains no tasks")

        return result
