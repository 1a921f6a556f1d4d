"""Configuration for the ralph loop."""

import os
import shlex
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_or_default(name: str, default: str | None) -> str | None:
    """
    Get environment variable value or default, treating empty string as unset.
    """
    value = os.getenv(name, None)
    if value is None or value == "":
        return default
    return value


def _env_flag(name: str, default: str = "false") -> bool:
    """Read a boolean flag from the environment."""
    return (_env_or_default(name, default) or default).lower() == "true"


# Worker Configuration
# The worker reads the composed prompt on stdin and exits with a status code.
WORKER_COMMAND = shlex.split(
    _env_or_default("RALPH_WORKER_COMMAND", "claude --print --dangerously-skip-permissions")
)
WORKER_MODEL = _env_or_default("RALPH_WORKER_MODEL", None)
# Pattern used by the pkill sweep for workers that lost their handle
WORKER_PATTERN = _env_or_default("RALPH_WORKER_PATTERN", " ".join(WORKER_COMMAND))

# Project Configuration
MARKER_FILE = _env_or_default("RALPH_MARKER_FILE", "CLAUDE.md")
TASK_FILE_CANDIDATES = [
    path for path in
    (_env_or_default("RALPH_TASK_FILES", "ralph-tasks.json:.claude/tasks/prd.json") or "").split(os.pathsep)
    if path
]
DEFAULT_PROMPT_FILE = _env_or_default("RALPH_DEFAULT_PROMPT_FILE", "ralph-prompt.md")
DEFAULT_MAX_PARALLEL = int(_env_or_default("RALPH_DEFAULT_MAX_PARALLEL", "1"))
DEFAULT_CHECK_INTERVAL = int(_env_or_default("RALPH_DEFAULT_CHECK_INTERVAL", "15"))

# Process Configuration
MASTER_PID_FILE = _env_or_default("RALPH_MASTER_PID_FILE", "/tmp/ralph-loop-master.pid")
RUN_DIR_PREFIX = _env_or_default("RALPH_RUN_DIR_PREFIX", "/tmp/ralph-loop-")
SPAWN_DELAY_SECONDS = float(_env_or_default("RALPH_SPAWN_DELAY_SECONDS", "0.5"))
GRACE_PERIOD_SECONDS = float(_env_or_default("RALPH_GRACE_PERIOD_SECONDS", "2.0"))
RELOAD_RETRY_SECONDS = float(_env_or_default("RALPH_RELOAD_RETRY_SECONDS", "1.0"))
KEEP_RUN_DIR = _env_flag("RALPH_KEEP_RUN_DIR")

# Display Configuration
MAX_DISPLAY_TASKS = int(_env_or_default("RALPH_MAX_DISPLAY_TASKS", "3"))

# Logging Configuration
LOG_DIR = _env_or_default("RALPH_LOG_DIR", ".ralph/logs")
LOG_LEVEL = _env_or_default("RALPH_LOG_LEVEL", "INFO")
LOG_FSYNC = _env_flag("RALPH_LOG_FSYNC")


def worker_argv() -> list[str]:
    """Build the worker command line, appending the model flag when configured."""
    argv = list(WORKER_COMMAND)
    if WORKER_MODEL:
        argv.extend(["--model", WORKER_MODEL])
    return argv


def run_dir_for(pid: int) -> str:
    """Return the scratch directory used by the master process ``pid``."""
    return f"{RUN_DIR_PREFIX}{pid}"
