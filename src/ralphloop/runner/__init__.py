"""Runner layer: worker processes and startup utilities."""

from .supervisor import (
    ProcessSupervisor,
    WorkerHandle,
    build_worker_input,
    process_alive,
    signal_process_group,
    sweep_by_pattern,
)
from .startup import (
    check_marker_file,
    find_task_file,
    kill_all,
    read_master_pid,
    remove_master_pid,
    resolve_prompt_file,
    resolve_run_settings,
    resolve_worker_executable,
    write_master_pid,
)

__all__ = [
    # Supervisor
    "ProcessSupervisor",
    "WorkerHandle",
    "build_worker_input",
    "process_alive",
    "signal_process_group",
    "sweep_by_pattern",
    # Startup
    "check_marker_file",
    "find_task_file",
    "kill_all",
    "read_master_pid",
    "remove_master_pid",
    "resolve_prompt_file",
    "resolve_run_settings",
    "resolve_worker_executable",
    "write_master_pid",
]
