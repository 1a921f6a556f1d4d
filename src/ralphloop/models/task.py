"""Task-related data models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, List, Optional, Union


class TaskStatus(str, Enum):
    """Task status enumeration."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: Any) -> Union["TaskStatus", str]:
        """
        Normalize a raw status value.

        A missing status means pending. Unrecognized values are kept as plain
        strings so they survive a save and can be reported as stuck.
        """
        if value is None:
            return cls.PENDING
        try:
            return cls(value)
        except ValueError:
            return str(value)

    @classmethod
    def terminal(cls) -> tuple:
        """Statuses a task never leaves during a run."""
        return (cls.COMPLETED, cls.FAILED)


# Keys the orchestrator understands; anything else is passed through untouched
TASK_KEYS = ("id", "title", "description", "acceptanceCriteria", "status")
RUN_CONFIG_KEYS = (
    "project", "description", "maxParallel", "checkInterval",
    "promptFile", "tasks", "completedAt",
)


@dataclass
class Task:
    """A unit of work handed to one worker process."""
    id: str
    title: Optional[str] = None
    description: Optional[str] = None
    acceptance_criteria: Optional[List[str]] = None
    status: Union[TaskStatus, str] = TaskStatus.PENDING
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Post-initialization processing."""
        self.status = TaskStatus.parse(self.status)

    @property
    def status_value(self) -> str:
        """Status as the plain string stored in the task file."""
        return self.status.value if isinstance(self.status, TaskStatus) else self.status

    @property
    def display_title(self) -> str:
        if self.title is None or self.title == "":
            return "Untitled"
        return str(self.title)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: Dict[str, Any] = {"id": self.id}
        if self.title is not None:
            data["title"] = self.title
        if self.description is not None:
            data["description"] = self.description
        if self.acceptance_criteria is not None:
            criteria = self.acceptance_criteria
            data["acceptanceCriteria"] = list(criteria) if isinstance(criteria, list) else criteria
        data["status"] = self.status_value
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Create Task from dictionary."""
        criteria = data.get("acceptanceCriteria")
        return cls(
            id=str(data.get("id", "")),
            title=data.get("title"),
            description=data.get("description"),
            acceptance_criteria=list(criteria) if isinstance(criteria, list) else criteria,
            status=data.get("status"),
            extra={key: value for key, value in data.items() if key not in TASK_KEYS},
        )

    def is_pending(self) -> bool:
        """Check if task is pending."""
        return self.status == TaskStatus.PENDING

    def is_running(self) -> bool:
        """Check if task is running."""
        return self.status == TaskStatus.RUNNING

    def is_completed(self) -> bool:
        """Check if task is completed."""
        return self.status == TaskStatus.COMPLETED

    def is_failed(self) -> bool:
        """Check if task is failed."""
        return self.status == TaskStatus.FAILED

    def is_terminal(self) -> bool:
        """Check if task reached completed or failed."""
        return self.status in TaskStatus.terminal()


@dataclass
class RunConfig:
    """Structure of the task file: project settings plus the task list.

    ``max_parallel``, ``check_interval`` and ``prompt_file`` stay ``None`` when
    the document omits them so command-line flags and defaults can fill in.
    """
    tasks: List[Task] = field(default_factory=list)
    project: Optional[str] = None
    description: Optional[str] = None
    max_parallel: Optional[int] = None
    check_interval: Optional[int] = None
    prompt_file: Optional[str] = None
    completed_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def project_name(self) -> str:
        return self.project or "Unknown"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data: Dict[str, Any] = {}
        if self.project is not None:
            data["project"] = self.project
        if self.description is not None:
            data["description"] = self.description
        if self.max_parallel is not None:
            data["maxParallel"] = self.max_parallel
        if self.check_interval is not None:
            data["checkInterval"] = self.check_interval
        if self.prompt_file is not None:
            data["promptFile"] = self.prompt_file
        data.update(self.extra)
        data["tasks"] = [t.to_dict() for t in self.tasks]
        if self.completed_at is not None:
            data["completedAt"] = self.completed_at
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunConfig":
        """Create RunConfig from dictionary."""
        return cls(
            tasks=[Task.from_dict(t) for t in data.get("tasks", [])],
            project=data.get("project"),
            description=data.get("description"),
            max_parallel=data.get("maxParallel"),
            check_interval=data.get("checkInterval"),
            prompt_file=data.get("promptFile"),
            completed_at=data.get("completedAt"),
            extra={key: value for key, value in data.items() if key not in RUN_CONFIG_KEYS},
        )

    def get_task(self, task_id: str) -> Optional[Task]:
        """Get task by ID."""
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def tasks_by_status(self, status: Union[TaskStatus, str]) -> List[Task]:
        """Tasks with the given status, in document order."""
        return [t for t in self.tasks if t.status == status]


@dataclass
class TaskStatistics:
    """Per-status task counts for one cycle."""
    total: int = 0
    completed: int = 0
    running: int = 0
    failed: int = 0
    pending: int = 0

    @property
    def other(self) -> int:
        """Tasks whose status is not one of the four known values."""
        return self.total - self.completed - self.running - self.failed - self.pending

    @property
    def is_finished(self) -> bool:
        """Nothing left to start or wait for."""
        return self.pending == 0 and self.running == 0 and self.total > 0

    def to_dict(self) -> Dict[str, int]:
        """Convert to dictionary."""
        return {
            "total": self.total,
            "completed": self.completed,
            "running": self.running,
            "failed": self.failed,
            "pending": self.pending,
        }

    @classmethod
    def from_tasks(cls, tasks: List[Task]) -> "TaskStatistics":
        """Calculate statistics from task list."""
        return cls(
            total=len(tasks),
            completed=len([t for t in tasks if t.is_completed()]),
            running=len([t for t in tasks if t.is_running()]),
            failed=len([t for t in tasks if t.is_failed()]),
            pending=len([t for t in tasks if t.is_pending()]),
        )


@dataclass
class ValidationResult:
    """Task file validation result."""
    valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add_error(self, error: str) -> None:
        """Add an error and mark as invalid."""
        self.errors.append(error)
        self.valid = False

    def add_warning(self, warning: str) -> None:
        """Add a warning."""
        self.warnings.append(warning)
