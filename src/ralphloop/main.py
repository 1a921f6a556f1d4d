"""Command-line entry point for the ralph loop."""

import argparse
import os
import sys
from typing import List, Optional

from . import config
from .core.exceptions import MalformedStateError, PrerequisiteError
from .core.logger import RunLogger
from .dashboard.render import ScreenRenderer
from .runner.startup import (
    check_marker_file,
    find_task_file,
    kill_all,
    remove_master_pid,
    resolve_prompt_file,
    resolve_run_settings,
    resolve_worker_executable,
    write_master_pid,
)
from .runner.supervisor import ProcessSupervisor
from .scheduler.loop import SchedulerLoop
from .state import TaskStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ralph-loop",
        description="Run the tasks of a JSON task file through parallel headless worker processes.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ralph-loop                          # use ralph-tasks.json or .claude/tasks/prd.json
  ralph-loop -p tasks.json -j 3       # three workers at a time
  ralph-loop -p tasks.json -d 5       # check every 5 seconds
  ralph-loop --dashboard              # watch a running loop
  ralph-loop -k                       # stop the loop and every worker
        """
    )
    parser.add_argument(
        '-p', '--prd',
        metavar='FILE',
        help='task file (default: first of %s)' % ', '.join(config.TASK_FILE_CANDIDATES)
    )
    parser.add_argument(
        '-m', '--prompt',
        metavar='FILE',
        help='prompt file (default: promptFile in the task file, else %s)' % config.DEFAULT_PROMPT_FILE
    )
    parser.add_argument(
        '-j', '--jobs',
        type=int,
        metavar='N',
        help='maximum parallel workers (default: maxParallel, else %d)' % config.DEFAULT_MAX_PARALLEL
    )
    parser.add_argument(
        '-d', '--delay',
        type=int,
        metavar='SECONDS',
        help='seconds between checks (default: checkInterval, else %d)' % config.DEFAULT_CHECK_INTERVAL
    )
    parser.add_argument(
        '-k', '--kill',
        action='store_true',
        help='kill the running loop and all worker processes, then exit'
    )
    parser.add_argument(
        '--dashboard',
        action='store_true',
        help='open a read-only monitor of the task file'
    )
    return parser


def run_dashboard(args: argparse.Namespace) -> int:
    """Open the Textual monitor; it never starts or stops workers."""
    task_file = find_task_file(args.prd, config.TASK_FILE_CANDIDATES)
    try:
        from .dashboard.app import DashboardApp
    except ImportError as e:
        print(f"Error: the dashboard needs textual: {e}", file=sys.stderr)
        print("Install it with: pip install textual", file=sys.stderr)
        return 1
    DashboardApp(task_file, pid_file=config.MASTER_PID_FILE).run()
    return 0


def run_loop(args: argparse.Namespace) -> int:
    """
    Validate prerequisites, then drive the run to completion.

    Returns:
        Process exit code

    Raises:
        PrerequisiteError: If the run cannot start
    """
    check_marker_file(config.MARKER_FILE)
    worker_argv = config.worker_argv()
    resolve_worker_executable(worker_argv)

    task_file = find_task_file(args.prd, config.TASK_FILE_CANDIDATES)
    store = TaskStore(task_file)
    try:
        run_config = store.load()
    except MalformedStateError as e:
        raise PrerequisiteError(str(e), original_error=e)

    validation = store.validate(run_config)
    if not validation.valid:
        raise PrerequisiteError("Invalid task file:\n" + "\n".join(f"  - {e}" for e in validation.errors))

    prompt_file = resolve_prompt_file(args.prompt, run_config, config.DEFAULT_PROMPT_FILE)
    max_parallel, check_interval = resolve_run_settings(
        args.jobs,
        args.delay,
        run_config,
        config.DEFAULT_MAX_PARALLEL,
        config.DEFAULT_CHECK_INTERVAL,
    )

    logger = RunLogger(log_dir=config.LOG_DIR, log_level=config.LOG_LEVEL, sync=config.LOG_FSYNC)
    for warning in validation.warnings:
        logger.warning(warning)

    # Nothing from an earlier master can still be running for us
    recovered = store.reset_stale_running(run_config)
    if recovered:
        store.save(run_config)
        for task_id in recovered:
            logger.log_task_transition(task_id, "running", "pending", reason="stale on startup")

    master_pid = os.getpid()
    supervisor = ProcessSupervisor(
        config.run_dir_for(master_pid),
        worker_argv,
        worker_pattern=config.WORKER_PATTERN,
        grace_period=config.GRACE_PERIOD_SECONDS,
        logger=logger,
    )
    supervisor.setup()

    loop = SchedulerLoop(
        store,
        supervisor,
        prompt_file=prompt_file,
        max_parallel=max_parallel,
        check_interval=check_interval,
        logger=logger,
        renderer=ScreenRenderer(max_display=config.MAX_DISPLAY_TASKS),
        spawn_delay=config.SPAWN_DELAY_SECONDS,
        reload_retry_delay=config.RELOAD_RETRY_SECONDS,
        keep_run_dir=config.KEEP_RUN_DIR,
    )
    loop.install_signal_handlers()

    write_master_pid(config.MASTER_PID_FILE, master_pid)
    logger.info(
        f"Starting run: {task_file} (PID {master_pid}, maxParallel={max_parallel}, "
        f"checkInterval={check_interval}s)"
    )
    try:
        return loop.run()
    finally:
        remove_master_pid(config.MASTER_PID_FILE, only_if_pid=master_pid)


def main(argv: Optional[List[str]] = None) -> None:
    """Parse arguments, dispatch the selected mode and exit with its code."""
    args = build_parser().parse_args(argv)

    try:
        if args.kill:
            kill_all(config.MASTER_PID_FILE, config.WORKER_PATTERN, config.RUN_DIR_PREFIX)
            code = 0
        elif args.dashboard:
            code = run_dashboard(args)
        else:
            code = run_loop(args)
    except PrerequisiteError as e:
        print(f"Error: {e}", file=sys.stderr)
        code = 1

    sys.exit(code)


if __name__ == "__main__":
    main()
