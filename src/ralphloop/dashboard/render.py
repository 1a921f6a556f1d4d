"""Status screen rendering.

The helpers return Rich markup strings so the same text serves both the
redrawn terminal screen and the Textual dashboard.
"""

import math
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from rich.console import Console
from rich.markup import escape

from ..models import RunConfig, Task, TaskStatistics, TaskStatus


BAR_WIDTH = 30
TITLE_BUDGET = 40
RULE_WIDTH = 64

STATUS_STYLES = {
    TaskStatus.PENDING.value: "bright_black",
    TaskStatus.RUNNING.value: "cyan",
    TaskStatus.COMPLETED.value: "green",
    TaskStatus.FAILED.value: "red",
}


def round_half_up(value: float) -> int:
    """Round .5 away from zero, unlike the built-in banker's ``round``."""
    return math.floor(value + 0.5)


def hyperlink(path: Union[str, Path], text: str) -> str:
    """Markup for a clickable ``file://`` link (OSC 8 on capable terminals)."""
    return f"[link=file://{Path(path).resolve()}]{text}[/link]"


def progress_bar(completed: int, total: int, width: int = BAR_WIDTH) -> str:
    """
    Render a block-character progress bar.

    Args:
        completed: Number of completed tasks
        total: Number of tasks
        width: Bar width in characters

    Returns:
        e.g. ``[███░░░] 50% (3/6 completed)``
    """
    if total == 0:
        return "[" + "░" * width + "] 0% (0/0 completed)"

    percent = round_half_up(completed * 100 / total)
    filled = round_half_up(completed * width / total)
    empty = width - filled
    return f"[{'█' * filled}{'░' * empty}] {percent}% ({completed}/{total} completed)"


def status_line(running: int, failed: int, pending: int) -> str:
    """Join the non-zero counts; empty string when all are zero."""
    parts = []
    if running > 0:
        parts.append(f"[cyan]{running} running[/cyan]")
    if failed > 0:
        parts.append(f"[red]{failed} failed[/red]")
    if pending > 0:
        parts.append(f"[bright_black]{pending} pending[/bright_black]")
    return " | ".join(parts)


def status_label(status: str) -> str:
    style = STATUS_STYLES.get(status, "yellow")
    return f"[{style}]{escape(status):<9}[/{style}]"


def truncate_title(title: str, budget: int = TITLE_BUDGET) -> str:
    if len(title) > budget:
        return title[:budget - 3] + "..."
    return title


def task_list(
    tasks: Sequence[Task],
    run_dir: Union[str, Path],
    max_display: int = 3,
    pids: Optional[Dict[str, int]] = None,
) -> List[str]:
    """
    Rows for the task section: running first, then failed, then pending.

    Completed tasks are never listed. Each id links to the task's log file.

    Args:
        tasks: Tasks in document order
        run_dir: Directory holding the ``{id}.log`` files
        max_display: Maximum number of rows
        pids: Worker PID per running task id, shown next to running rows

    Returns:
        List of markup rows
    """
    pids = pids or {}
    ordered = (
        [t for t in tasks if t.is_running()]
        + [t for t in tasks if t.is_failed()]
        + [t for t in tasks if t.is_pending()]
    )

    rows = []
    for task in ordered[:max_display]:
        link = hyperlink(Path(run_dir) / f"{task.id}.log", escape(task.id))
        title = escape(truncate_title(task.display_title))
        pid = pids.get(task.id) if task.is_running() else None
        pid_str = f"  (PID {pid})" if pid else ""
        rows.append(f"  {link}  {status_label(task.status_value)}  {title}{pid_str}")
    return rows


class ScreenRenderer:
    """Clears and redraws the whole status screen every cycle."""

    def __init__(self, console: Optional[Console] = None, max_display: int = 3):
        self.console = console or Console(highlight=False)
        self.max_display = max_display

    def draw(
        self,
        config: RunConfig,
        stats: TaskStatistics,
        task_file: Union[str, Path],
        prompt_file: Union[str, Path],
        run_dir: Union[str, Path],
        pids: Optional[Dict[str, int]] = None,
    ) -> None:
        console = self.console
        console.clear()
        console.print()
        console.print(f"[yellow]Ralph Loop[/yellow] | {escape(config.project_name)}")
        console.print(f"[blue]{'━' * RULE_WIDTH}[/blue]")
        task_link = hyperlink(task_file, f"Tasks: {escape(Path(task_file).name)}")
        prompt_link = hyperlink(prompt_file, f"Prompt: {escape(Path(prompt_file).name)}")
        console.print(f"[bright_black]{task_link} | {prompt_link}[/bright_black]")
        console.print()
        console.print(progress_bar(stats.completed, stats.total), markup=False)
        console.print()
        console.print(status_line(stats.running, stats.failed, stats.pending))
        console.print()
        console.print("Tasks:")
        for row in task_list(config.tasks, run_dir, self.max_display, pids):
            console.print(row)

    def finished(self, failed: int) -> None:
        self.console.print()
        if failed == 0:
            self.console.print("[green]All tasks completed![/green]")
        else:
            self.console.print(f"[yellow]Finished with {failed} failed task(s)[/yellow]")

    def error(self, message: str) -> None:
        self.console.print(f"[red]Error: {escape(message)}[/red]")

    def countdown(self, remaining: int) -> None:
        """Redraw the heartbeat line in place."""
        stream = self.console.file
        stream.write(f"\r{' ' * 80}\rNext check in {remaining}s... (Ctrl+C to stop)")
        stream.flush()

    def end_countdown(self) -> None:
        self.console.file.write("\n")
        self.console.file.flush()
