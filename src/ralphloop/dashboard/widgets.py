"""Dashboard widgets."""

from pathlib import Path
from typing import List, Optional

from rich.markup import escape
from textual.containers import ScrollableContainer
from textual.widgets import DataTable, Static

from ..models import RunConfig, TaskStatistics
from .render import progress_bar, status_label, status_line


class OverviewWidget(ScrollableContainer):
    """Project name, progress bar, status counts and master process."""

    def compose(self):
        """Create overview content."""
        yield Static("[bold]Project[/bold]", classes="section-title")
        yield Static(id="project-name", classes="content")
        yield Static("[bold]Progress[/bold]", classes="section-title")
        yield Static(id="progress-info", classes="content", markup=False)
        yield Static(id="status-info", classes="content")
        yield Static(id="master-info", classes="content")

    def update_content(
        self,
        config: RunConfig,
        master_pid: Optional[int],
        error: Optional[str] = None,
    ) -> None:
        """Refresh every line from the latest task file snapshot."""
        stats = TaskStatistics.from_tasks(config.tasks)

        project = escape(config.project_name)
        if config.description:
            project += f"\n[bright_black]{escape(config.description)}[/bright_black]"
        self.query_one("#project-name", Static).update(project)

        self.query_one("#progress-info", Static).update(progress_bar(stats.completed, stats.total))
        self.query_one("#status-info", Static).update(
            status_line(stats.running, stats.failed, stats.pending) or "[green]Nothing pending[/green]"
        )

        if error:
            master = f"[red]{escape(error)}[/red]"
        elif master_pid is not None:
            master = f"Master loop: [cyan]PID {master_pid}[/cyan]"
        else:
            master = "[bright_black]No master loop running[/bright_black]"
        if config.completed_at:
            master += f"\nCompleted at {escape(config.completed_at)}"
        self.query_one("#master-info", Static).update(master)


class TasksWidget(DataTable):
    """Every task with its status and log file."""

    COLUMNS = ("Status", "ID", "Title", "Log")

    def on_mount(self) -> None:
        for column in self.COLUMNS:
            self.add_column(column, key=column)
        self.cursor_type = "row"

    def update_tasks(self, config: RunConfig, run_dir: Optional[Path]) -> None:
        """Update rows in place, keeping the cursor on the same task."""
        current_ids: List[str] = []
        existing = {str(key.value) for key in self.rows.keys()}

        for task in config.tasks:
            if task.id in current_ids:
                continue
            current_ids.append(task.id)
            log = ""
            if run_dir is not None:
                log_path = run_dir / f"{task.id}.log"
                if log_path.exists():
                    log = str(log_path)
            cells = (status_label(task.status_value), escape(task.id), escape(task.display_title), log)

            if task.id in existing:
                for column, value in zip(self.COLUMNS, cells):
                    self.update_cell(task.id, column, value)
            else:
                self.add_row(*cells, key=task.id)

        for task_id in existing - set(current_ids):
            self.remove_row(task_id)
