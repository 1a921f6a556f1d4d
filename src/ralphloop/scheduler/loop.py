"""The scheduling loop: reconcile, reap, render, admit, wait."""

import signal
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Optional, Union

from ..core.exceptions import MalformedStateError, SpawnError, StuckRunError
from ..core.logger import RunLogger
from ..dashboard.render import ScreenRenderer
from ..models import RunConfig, TaskStatistics, TaskStatus
from ..state import TaskStore


EXIT_SUCCESS = 0
EXIT_TASKS_FAILED = 1
EXIT_STUCK = 2
EXIT_INTERRUPTED = 130

# Granularity of the countdown wait; bounds how late a shutdown request is seen
WAIT_STEP_SECONDS = 0.1


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. ``2026-01-02T03:04:05.678Z``."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class SchedulerLoop:
    """Single-threaded control loop driving a run to completion.

    Each cycle reloads the task file, reconciles it with the live workers,
    reaps finished workers, redraws the screen, checks for the end of the
    run and admits pending tasks up to ``max_parallel``. Between cycles it
    waits ``check_interval`` seconds, drawing a countdown; a shutdown request
    cuts the wait short.
    """

    def __init__(
        self,
        store: TaskStore,
        supervisor,
        prompt_file: Union[str, Path],
        max_parallel: int,
        check_interval: int,
        logger: RunLogger,
        renderer: Optional[ScreenRenderer] = None,
        spawn_delay: float = 0.5,
        reload_retry_delay: float = 1.0,
        keep_run_dir: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize scheduler loop.

        Args:
            store: Task file store
            supervisor: Process supervisor owning the worker handles
            prompt_file: Shared prompt file
            max_parallel: Maximum number of live workers
            check_interval: Seconds between cycles
            logger: Run logger
            renderer: Screen renderer (default: a fresh ScreenRenderer)
            spawn_delay: Pause between two consecutive spawns
            reload_retry_delay: Pause after a failed reload
            keep_run_dir: Keep prompt and log files after the run
            sleep: Sleep function, replaceable in tests
        """
        self.store = store
        self.supervisor = supervisor
        self.prompt_file = Path(prompt_file)
        self.max_parallel = max_parallel
        self.check_interval = check_interval
        self.logger = logger
        self.renderer = renderer or ScreenRenderer()
        self.spawn_delay = spawn_delay
        self.reload_retry_delay = reload_retry_delay
        self.keep_run_dir = keep_run_dir
        self._sleep = sleep

        self.config: Optional[RunConfig] = None
        self.cycle = 0
        self._shutdown = False
        self._cleaning_up = False

    # ─── Shutdown wiring ─────────────────────────────────────────────

    def request_shutdown(self, signum=None, frame=None) -> None:
        """Ask the loop to stop; usable directly as a signal handler.

        Only sets a flag; it runs on the main thread and must not take locks.
        """
        self._shutdown = True

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self.request_shutdown)
        signal.signal(signal.SIGTERM, self.request_shutdown)

    # ─── Task file ──────────────────────────────────────────────────

    def reload(self) -> bool:
        """
        Re-read the task file.

        Returns:
            False if the file could not be parsed; the previously loaded
            config is kept in that case
        """
        try:
            self.config = self.store.load()
            return True
        except MalformedStateError as e:
            self.logger.error(f"{e} (skipping iteration)")
            self.renderer.error(f"{e} (skipping iteration)")
            return False

    def sync_running_status(self) -> None:
        """Mark tasks with a live worker as running unless already terminal."""
        changed = []
        for task in self.config.tasks:
            if task.is_running() or task.is_terminal():
                continue
            if self.supervisor.is_alive(task.id):
                changed.append((task.id, task.status_value))
                task.status = TaskStatus.RUNNING

        if changed:
            self.store.save(self.config)
            for task_id, previous in changed:
                self.logger.log_task_transition(task_id, previous, TaskStatus.RUNNING.value, reason="live worker")

    # ─── Reaping ────────────────────────────────────────────────────

    def check_running_tasks(self) -> None:
        for task_id, exit_code in self.supervisor.reap_finished():
            self.process_finished_task(task_id, exit_code)

    def process_finished_task(self, task_id: str, exit_code: int) -> None:
        """
        Record a worker's exit: 0 means completed, anything else failed.

        The status is persisted immediately and the worker is no longer
        tracked. Its log file stays in the run directory.
        """
        status = TaskStatus.COMPLETED if exit_code == 0 else TaskStatus.FAILED
        pid = self.supervisor.pid_for(task_id)

        previous = self.store.update_task_status(self.config, task_id, status)
        if previous is None:
            self.logger.warning(f"[{task_id}] Finished (exit {exit_code}) but is no longer in the task file")
        else:
            self.logger.log_task_transition(task_id, previous, status.value, pid=pid, exit_code=exit_code)
            if status == TaskStatus.FAILED:
                self.logger.warning(f"[{task_id}] Worker failed with exit code {exit_code}")

        self.supervisor.discard(task_id)

    # ─── Admission ──────────────────────────────────────────────────

    def available_slots(self) -> int:
        return self.max_parallel - self.supervisor.alive_count()

    def start_pending_tasks(self) -> int:
        """
        Start pending tasks in document order while slots are free.

        Returns:
            Number of workers started
        """
        available = self.available_slots()
        if available <= 0:
            return 0

        candidates = [
            task for task in self.config.tasks_by_status(TaskStatus.PENDING)
            if not self.supervisor.is_tracked(task.id)
        ]
        if not candidates:
            return 0

        try:
            prompt_text = self.prompt_file.read_text(encoding='utf-8')
        except OSError as e:
            self.logger.log_error_with_traceback("Scheduler", e, context={"prompt_file": str(self.prompt_file)})
            self.renderer.error(f"Cannot read prompt file {self.prompt_file}: {e}")
            return 0

        started = 0
        for task in candidates:
            if available <= 0 or self.shutdown_requested:
                break
            if started:
                self._sleep(self.spawn_delay)

            try:
                self.supervisor.start(task, prompt_text)
            except SpawnError as e:
                # Stays pending; the next cycle tries again
                self.logger.log_error_with_traceback("Supervisor", e, context={"task_id": task.id, "cycle": self.cycle})
                self.renderer.error(str(e))
                continue

            previous = self.store.update_task_status(self.config, task.id, TaskStatus.RUNNING)
            self.logger.log_task_transition(
                task.id, previous, TaskStatus.RUNNING.value, pid=self.supervisor.pid_for(task.id)
            )
            available -= 1
            started += 1

        return started

    # ─── Cycle ──────────────────────────────────────────────────────

    def statistics(self) -> TaskStatistics:
        return TaskStatistics.from_tasks(self.config.tasks)

    def render(self, stats: TaskStatistics) -> None:
        pids: Dict[str, int] = {}
        for task_id in self.supervisor.tracked_ids():
            pid = self.supervisor.pid_for(task_id)
            if pid is not None:
                pids[task_id] = pid
        self.renderer.draw(
            self.config,
            stats,
            task_file=self.store.path,
            prompt_file=self.prompt_file,
            run_dir=self.supervisor.run_dir,
            pids=pids,
        )

    def run_cycle(self) -> Optional[int]:
        """
        Run one scheduling iteration.

        Returns:
            The run's exit code once every task is terminal, otherwise None

        Raises:
            StuckRunError: If nothing is pending or running but some tasks
                carry an unrecognized status
        """
        self.cycle += 1

        if not self.reload():
            self._sleep(self.reload_retry_delay)
            return None

        self.sync_running_status()
        self.check_running_tasks()

        stats = self.statistics()
        self.render(stats)
        self.logger.log_progress(
            cycle=self.cycle,
            total_tasks=stats.total,
            completed_tasks=stats.completed,
            failed_tasks=stats.failed,
            pending_tasks=stats.pending,
            running_tasks=stats.running,
        )

        if stats.total > 0 and stats.pending == 0 and stats.running == 0:
            if stats.other > 0 and self.supervisor.alive_count() == 0:
                stuck = [t.id for t in self.config.tasks if not t.is_terminal()]
                raise StuckRunError(stuck)
            return self.finish(stats)

        self.start_pending_tasks()
        return None

    def finish(self, stats: TaskStatistics) -> int:
        """Record completion and return the run's exit code."""
        self.renderer.finished(stats.failed)

        if not self.config.completed_at:
            self.config.completed_at = utc_timestamp()
            self.store.save(self.config)

        self.logger.info(
            f"Run finished: {stats.completed}/{stats.total} completed, {stats.failed} failed"
        )
        if not self.keep_run_dir:
            self.supervisor.cleanup_run_dir()
        return EXIT_SUCCESS if stats.failed == 0 else EXIT_TASKS_FAILED

    def wait_for_next_cycle(self) -> None:
        """Count down to the next cycle; returns early on a shutdown request."""
        if self.check_interval <= 0:
            return
        for remaining in range(self.check_interval, 0, -1):
            if self.shutdown_requested:
                break
            self.renderer.countdown(remaining)
            self._wait_one_second()
        self.renderer.end_countdown()

    def _wait_one_second(self) -> None:
        deadline = time.monotonic() + 1
        while not self.shutdown_requested:
            left = deadline - time.monotonic()
            if left <= 0:
                break
            time.sleep(min(WAIT_STEP_SECONDS, left))

    def run(self) -> int:
        """
        Drive the run until every task is terminal or a shutdown is requested.

        Returns:
            Process exit code
        """
        finished = False
        try:
            while not self.shutdown_requested:
                code = self.run_cycle()
                if code is not None:
                    finished = True
                    return code
                self.wait_for_next_cycle()

            self.logger.warning("Interrupted; shutting down")
            return EXIT_INTERRUPTED
        except StuckRunError as e:
            finished = True
            self.logger.log_error_with_traceback("Scheduler", e, context={"cycle": self.cycle})
            self.renderer.error(str(e))
            return EXIT_STUCK
        finally:
            if not finished:
                self.shutdown()

    # ─── Cleanup ────────────────────────────────────────────────────

    def shutdown(self) -> None:
        """
        Tear everything down after an interrupt or an unexpected error.

        Kills every worker process group, then puts tasks still marked
        running back to pending so a later run retries them. Runs at most once.
        """
        if self._cleaning_up:
            return
        self._cleaning_up = True

        self.supervisor.terminate_all()

        try:
            config = self.store.load()
        except MalformedStateError as e:
            self.logger.warning(f"{e}; resetting from the last good copy")
            config = self.config

        if config is not None:
            recovered = self.store.reset_stale_running(config)
            if recovered:
                self.store.save(config)
                for task_id in recovered:
                    self.logger.log_task_transition(
                        task_id, TaskStatus.RUNNING.value, TaskStatus.PENDING.value, reason="shutdown"
                    )
            self.config = config

        if not self.keep_run_dir:
            self.supervisor.cleanup_run_dir()
