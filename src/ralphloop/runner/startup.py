"""Startup checks, master PID side channel and the kill-all sweep."""

import glob
import os
import shutil
import signal
import time
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence, Tuple

from ..core.exceptions import PrerequisiteError
from ..models import RunConfig
from .supervisor import process_alive, sweep_by_pattern


def check_marker_file(marker: str, root: str = ".") -> Path:
    """Fail unless the project-root marker file exists in ``root``."""
    path = Path(root) / marker
    if not path.exists():
        raise PrerequisiteError(
            f"Must run from project root ({marker} not found)\n"
            f"cd to your project directory first"
        )
    return path


def resolve_worker_executable(worker_argv: Sequence[str]) -> str:
    """
    Locate the worker executable on PATH.

    Returns:
        Absolute path of the executable

    Raises:
        PrerequisiteError: If it cannot be found
    """
    if not worker_argv:
        raise PrerequisiteError("No worker command configured (RALPH_WORKER_COMMAND is empty)")
    binary = shutil.which(worker_argv[0])
    if binary is None:
        raise PrerequisiteError(f"{worker_argv[0]} CLI not found on PATH")
    return binary


def find_task_file(explicit: Optional[str], candidates: Iterable[str]) -> Path:
    """
    Pick the task file: the explicit path, else the first existing candidate.

    Raises:
        PrerequisiteError: If the file does not exist
    """
    if explicit:
        path = Path(explicit)
        if not path.is_file():
            raise PrerequisiteError(f"Task file not found: {explicit}")
        return path

    searched = list(candidates)
    for candidate in searched:
        if Path(candidate).is_file():
            return Path(candidate)

    lines = ["No task file found. Looked for:"]
    lines.extend(f"  - {candidate}" for candidate in searched)
    lines.append("Use: ralph-loop -p /path/to/tasks.json")
    raise PrerequisiteError("\n".join(lines))


def resolve_prompt_file(override: Optional[str], config: RunConfig, default: str) -> Path:
    """
    Pick the prompt file: flag, then the task file's ``promptFile``, then default.

    Raises:
        PrerequisiteError: If the chosen file does not exist
    """
    path = Path(override or config.prompt_file or default)
    if not path.is_file():
        raise PrerequisiteError(
            f"Prompt file not found: {path}\n"
            f"Set 'promptFile' in the task file, use --prompt, or create the file"
        )
    return path


def resolve_run_settings(
    jobs: Optional[int],
    delay: Optional[int],
    config: RunConfig,
    default_jobs: int,
    default_delay: int,
) -> Tuple[int, int]:
    """
    Resolve max parallelism and check interval (flag > task file > default).

    Returns:
        (max_parallel, check_interval) tuple

    Raises:
        PrerequisiteError: If a value is not an integer in range
    """
    max_parallel = jobs if jobs is not None else config.max_parallel
    if max_parallel is None:
        max_parallel = default_jobs
    check_interval = delay if delay is not None else config.check_interval
    if check_interval is None:
        check_interval = default_delay

    if isinstance(max_parallel, bool) or not isinstance(max_parallel, int) or max_parallel < 1:
        raise PrerequisiteError(f"maxParallel must be an integer >= 1 (got {max_parallel!r})")
    if isinstance(check_interval, bool) or not isinstance(check_interval, int) or check_interval < 0:
        raise PrerequisiteError(f"checkInterval must be an integer >= 0 (got {check_interval!r})")
    return max_parallel, check_interval


def write_master_pid(pid_file: str, pid: Optional[int] = None) -> None:
    Path(pid_file).write_text(str(pid if pid is not None else os.getpid()))


def read_master_pid(pid_file: str) -> Optional[int]:
    """Return the PID recorded in the PID file, or None if absent or unreadable."""
    try:
        return int(Path(pid_file).read_text().strip())
    except (OSError, ValueError):
        return None


def remove_master_pid(pid_file: str, only_if_pid: Optional[int] = None) -> None:
    """
    Delete the PID file.

    Args:
        pid_file: PID file path
        only_if_pid: When given, leave the file alone unless it records this PID
    """
    if only_if_pid is not None and read_master_pid(pid_file) != only_if_pid:
        return
    Path(pid_file).unlink(missing_ok=True)


def kill_all(
    pid_file: str,
    worker_pattern: Optional[str],
    run_dir_prefix: Optional[str],
    sleep: Callable[[float], None] = time.sleep,
    out: Callable[[str], None] = print,
) -> None:
    """
    Stop a running master loop and every worker process, tracked or not.

    Needs no task file: the master is found through the PID file and workers
    through their command-line pattern.
    """
    out("Killing all ralph-loop and worker processes...")

    master_pid = read_master_pid(pid_file)
    if master_pid is not None and master_pid != os.getpid() and process_alive(master_pid):
        out(f"  Killing master loop (PID: {master_pid})")
        try:
            os.kill(master_pid, signal.SIGTERM)
            sleep(1)
            if process_alive(master_pid):
                os.kill(master_pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
    remove_master_pid(pid_file)

    if worker_pattern:
        out(f"  Killing all '{worker_pattern}' processes...")
        if not sweep_by_pattern(worker_pattern, grace_period=1, sleep=sleep):
            out("  pkill not available; worker sweep skipped")

    if run_dir_prefix:
        for leftover in glob.glob(f"{run_dir_prefix}*"):
            shutil.rmtree(leftover, ignore_errors=True)

    out("Done.")
