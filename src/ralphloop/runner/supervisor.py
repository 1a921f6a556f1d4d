"""Worker process supervision: spawn, poll, reap and tear down."""

import json
import os
import shutil
import signal
import subprocess
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

from ..core.exceptions import SpawnError
from ..models import Task

if TYPE_CHECKING:
    from ..core.logger import RunLogger


TASK_HEADER = "# YOUR ASSIGNED TASK"


def build_worker_input(task: Task, prompt_text: str) -> str:
    """
    Compose the text a worker reads on stdin.

    A fenced JSON block describing the assigned task comes first, followed by
    the shared prompt verbatim.

    Args:
        task: Task assigned to the worker
        prompt_text: Shared prompt file contents

    Returns:
        Composed worker input
    """
    task_data = task.to_dict()
    task_data.pop("status", None)
    task_json = json.dumps(task_data, indent=2, ensure_ascii=False)
    return f"{TASK_HEADER}\n\n```json\n{task_json}\n```\n\n{prompt_text}"


def signal_process_group(pgid: int, sig: int) -> bool:
    """
    Send a signal to a whole process group.

    Returns:
        True if the signal was delivered, False if the group is gone or not ours
    """
    try:
        os.killpg(pgid, sig)
        return True
    except (ProcessLookupError, PermissionError):
        return False


def process_alive(pid: int) -> bool:
    """Check whether a process exists, without reaping it."""
    try:
        os.kill(pid, 0)
        return True
    except (ProcessLookupError, PermissionError):
        return False


def sweep_by_pattern(
    pattern: str,
    grace_period: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """
    Terminate, then kill, every process whose command line matches ``pattern``.

    Covers workers whose handle was lost. Returns False when ``pkill`` is not
    available on this system.
    """
    try:
        subprocess.run(["pkill", "-TERM", "-f", pattern], capture_output=True, check=False)
        sleep(grace_period)
        subprocess.run(["pkill", "-KILL", "-f", pattern], capture_output=True, check=False)
    except FileNotFoundError:
        return False
    return True


class WorkerHandle:
    """One spawned worker and its scratch files."""

    def __init__(
        self,
        task_id: str,
        process: subprocess.Popen,
        log_path: Path,
        prompt_path: Path,
    ):
        self.task_id = task_id
        self.process = process
        self.log_path = log_path
        self.prompt_path = prompt_path
        self.started_at = datetime.now()
        self.returncode: Optional[int] = None
        # Set when the OS had no child to report; the exit status is unknown
        self.unreaped = False

    @property
    def pid(self) -> int:
        return self.process.pid

    def poll(self) -> Optional[int]:
        """
        Non-blocking reap.

        Returns:
            Exit code once the worker has finished, None while it runs. A
            worker killed by a signal reports the negative signal number.
        """
        if self.returncode is not None:
            return self.returncode
        if self.process.returncode is not None:
            # Reaped through Popen.wait()
            self.returncode = self.process.returncode
            return self.returncode
        try:
            pid, status = os.waitpid(self.pid, os.WNOHANG)
        except ChildProcessError:
            # Already reaped elsewhere; no status can be recovered
            self.unreaped = True
            self._finish(0)
            return self.returncode
        if pid == 0:
            return None
        self._finish(os.waitstatus_to_exitcode(status))
        return self.returncode

    def _finish(self, returncode: int) -> None:
        self.returncode = returncode
        # Keep Popen's bookkeeping in step so it never waits on a reaped pid
        self.process.returncode = returncode

    def is_alive(self) -> bool:
        return self.poll() is None

    def exit_code(self) -> Optional[int]:
        return self.returncode


class ProcessSupervisor:
    """Owns every worker process of one run.

    Handles live only in memory and are keyed by task id. The scheduler asks
    questions (is this task tracked, is it alive, how many are alive) and
    gives orders (start, discard, terminate all); it never touches processes
    directly.
    """

    def __init__(
        self,
        run_dir: str,
        worker_argv: Sequence[str],
        cwd: Optional[str] = None,
        worker_pattern: Optional[str] = None,
        grace_period: float = 2.0,
        logger: Optional["RunLogger"] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize process supervisor.

        Args:
            run_dir: Per-run scratch directory for prompt and log files
            worker_argv: Worker command line; the composed prompt is its stdin
            cwd: Working directory of the workers (default: current directory)
            worker_pattern: ``pkill -f`` pattern for the untracked-worker sweep
            grace_period: Seconds between SIGTERM and SIGKILL on shutdown
            logger: Run logger (optional)
            sleep: Sleep function, replaceable in tests
        """
        if not worker_argv:
            raise ValueError("worker_argv must not be empty")
        self.run_dir = Path(run_dir)
        self.worker_argv = list(worker_argv)
        self.cwd = cwd
        self.worker_pattern = worker_pattern
        self.grace_period = grace_period
        self.logger = logger
        self._sleep = sleep
        self._handles: Dict[str, WorkerHandle] = {}

    def setup(self) -> None:
        """Create the run directory."""
        self.run_dir.mkdir(parents=True, exist_ok=True)

    def log_path(self, task_id: str) -> Path:
        return self.run_dir / f"{task_id}.log"

    def prompt_path(self, task_id: str) -> Path:
        return self.run_dir / f"{task_id}-prompt.txt"

    def start(self, task: Task, prompt_text: str) -> WorkerHandle:
        """
        Spawn a worker for ``task`` in its own process group.

        Args:
            task: Task to run
            prompt_text: Shared prompt contents

        Returns:
            Handle of the spawned worker

        Raises:
            SpawnError: If the scratch files cannot be written or the worker
                cannot be launched
        """
        log_path = self.log_path(task.id)
        prompt_path = self.prompt_path(task.id)
        env = {**os.environ, "RALPH_TASK_ID": task.id, "RALPH_RUN_DIR": str(self.run_dir)}

        try:
            self.run_dir.mkdir(parents=True, exist_ok=True)
            prompt_path.write_text(build_worker_input(task, prompt_text), encoding='utf-8')

            # The child keeps its own copies of both descriptors
            with open(prompt_path, 'rb') as stdin_file, open(log_path, 'wb') as log_file:
                process = subprocess.Popen(
                    self.worker_argv,
                    stdin=stdin_file,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    cwd=self.cwd,
                    env=env,
                    start_new_session=True,
                )
        except FileNotFoundError as e:
            raise SpawnError(task.id, f"worker executable not found: {self.worker_argv[0]}", e)
        except OSError as e:
            raise SpawnError(task.id, f"failed to start worker: {e}", e)

        handle = WorkerHandle(task.id, process, log_path, prompt_path)
        self._handles[task.id] = handle
        if self.logger:
            self.logger.info(f"[{task.id}] Started worker PID {handle.pid}, log: {log_path}")
        return handle

    def get(self, task_id: str) -> Optional[WorkerHandle]:
        return self._handles.get(task_id)

    def is_tracked(self, task_id: str) -> bool:
        return task_id in self._handles

    def is_alive(self, task_id: str) -> bool:
        handle = self._handles.get(task_id)
        return handle is not None and handle.is_alive()

    def alive_count(self) -> int:
        return sum(1 for handle in self._handles.values() if handle.is_alive())

    def pid_for(self, task_id: str) -> Optional[int]:
        handle = self._handles.get(task_id)
        return handle.pid if handle else None

    def tracked_ids(self) -> List[str]:
        return list(self._handles)

    def reap_finished(self) -> List[Tuple[str, int]]:
        """
        Collect workers that have exited, without blocking.

        Finished handles stay tracked until ``discard`` is called.

        Returns:
            List of (task_id, exit_code) tuples
        """
        finished = []
        for task_id, handle in self._handles.items():
            exit_code = handle.poll()
            if exit_code is None:
                continue
            if handle.unreaped and self.logger:
                self.logger.warning(
                    f"[{task_id}] Worker PID {handle.pid} was already reaped; "
                    f"exit status unknown, treating as 0"
                )
            finished.append((task_id, exit_code))
        return finished

    def discard(self, task_id: str) -> None:
        """Stop tracking a finished worker. Its log file is kept."""
        handle = self._handles.pop(task_id, None)
        if handle is not None:
            handle.prompt_path.unlink(missing_ok=True)

    def terminate_all(self) -> int:
        """
        Tear down every tracked worker process group.

        Sends SIGTERM to each group, waits the grace period, then SIGKILLs
        whatever is left, and finally sweeps untracked workers by pattern.

        Returns:
            Number of process groups that received SIGTERM
        """
        pgids = sorted({handle.pid for handle in self._handles.values()})

        signalled = 0
        for pgid in pgids:
            if signal_process_group(pgid, signal.SIGTERM):
                signalled += 1

        if signalled:
            if self.logger:
                self.logger.warning(f"Stopping {signalled} worker process group(s)")
            self._sleep(self.grace_period)

        for pgid in pgids:
            signal_process_group(pgid, signal.SIGKILL)

        for handle in self._handles.values():
            try:
                handle.process.wait(timeout=1)
            except subprocess.TimeoutExpired:
                if self.logger:
                    self.logger.warning(f"[{handle.task_id}] Worker PID {handle.pid} did not exit after SIGKILL")
            handle.poll()

        if self.worker_pattern:
            if not sweep_by_pattern(self.worker_pattern, sleep=self._sleep) and self.logger:
                self.logger.warning("pkill not available; skipped worker sweep by pattern")

        return signalled

    def cleanup_run_dir(self) -> None:
        """Remove the run directory with every prompt and log file in it."""
        shutil.rmtree(self.run_dir, ignore_errors=True)
