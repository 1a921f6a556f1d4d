"""Read-only monitor for a task file, using Textual."""

from pathlib import Path
from typing import Optional, Union

from textual.app import App, ComposeResult
from textual.widgets import Static

from .. import config
from ..core.exceptions import MalformedStateError
from ..models import RunConfig
from ..runner.startup import read_master_pid
from ..runner.supervisor import process_alive
from ..state import TaskStore
from .widgets import OverviewWidget, TasksWidget


class DashboardApp(App):
    """Polls the task file and shows progress; never starts or stops workers."""

    CSS = """
    Screen {
        background: $surface;
    }

    #header-bar {
        height: 1;
        dock: top;
        background: $primary;
        color: $text;
        text-align: center;
    }

    #footer-bar {
        height: 1;
        dock: bottom;
        background: $primary;
        color: $text;
    }

    OverviewWidget {
        height: auto;
        max-height: 50%;
    }

    TasksWidget {
        height: 1fr;
    }

    .section-title {
        margin: 1 1 0 1;
        text-style: bold;
    }

    .content {
        margin: 0 1;
    }
    """

    TITLE = "Ralph Loop"
    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "refresh", "Refresh"),
    ]

    def __init__(
        self,
        task_file: Union[str, Path],
        pid_file: Optional[str] = None,
        refresh_interval: float = 1.0,
    ):
        super().__init__()
        self.store = TaskStore(task_file)
        self.pid_file = pid_file or config.MASTER_PID_FILE
        self.refresh_interval = refresh_interval
        self.snapshot: Optional[RunConfig] = None

    def compose(self) -> ComposeResult:
        """Create child widgets for the app."""
        yield Static(f"Ralph Loop | {self.store.path.name}", id="header-bar", markup=False)
        yield OverviewWidget(id="overview")
        yield TasksWidget(id="tasks")
        yield Static("[q] quit  [r] refresh", id="footer-bar", markup=False)

    def on_mount(self) -> None:
        """Called when app starts."""
        self.action_refresh()
        self.set_interval(self.refresh_interval, self.action_refresh)

    def _master(self) -> Optional[int]:
        pid = read_master_pid(self.pid_file)
        if pid is not None and process_alive(pid):
            return pid
        return None

    def action_refresh(self) -> None:
        """Reload the task file; a malformed read keeps the previous snapshot."""
        error = None
        try:
            self.snapshot = self.store.load()
        except MalformedStateError as e:
            error = str(e)

        if self.snapshot is None:
            self.snapshot = RunConfig()

        master_pid = self._master()
        run_dir = Path(config.run_dir_for(master_pid)) if master_pid is not None else None

        self.query_one(OverviewWidget).update_content(self.snapshot, master_pid, error)
        self.query_one(TasksWidget).update_tasks(self.snapshot, run_dir)
