"""Tests for the scheduling loop, driven through an in-memory supervisor."""

import json
import signal
import threading
import time
import uuid
from io import StringIO
from pathlib import Path

import pytest
from rich.console import Console

from ralphloop.core.exceptions import SpawnError
from ralphloop.core.logger import RunLogger
from ralphloop.dashboard.render import ScreenRenderer
from ralphloop.scheduler.loop import (
    EXIT_INTERRUPTED,
    EXIT_STUCK,
    EXIT_SUCCESS,
    EXIT_TASKS_FAILED,
    SchedulerLoop,
)
from ralphloop.state import TaskStore


class FakeSupervisor:
    """Stands in for ProcessSupervisor without spawning processes.

    A started worker stays alive until the next ``reap_finished`` call, then
    exits with its code from ``exit_codes`` (default 0). Ids in ``hold`` never
    exit on their own.
    """

    def __init__(self, run_dir, exit_codes=None, hold=(), fail_spawn=()):
        self.run_dir = Path(run_dir)
        self.exit_codes = dict(exit_codes or {})
        self.hold = set(hold)
        self.fail_spawn = set(fail_spawn)
        self.on_start = None
        self.handles = {}
        self.started = []
        self.prompts = {}
        self.max_alive = 0
        self.terminated = False
        self.cleaned_up = False
        self._next_pid = 1000

    def setup(self):
        pass

    def start(self, task, prompt_text):
        if task.id in self.fail_spawn:
            raise SpawnError(task.id, "worker executable not found: fake")
        self._next_pid += 1
        self.handles[task.id] = {"pid": self._next_pid, "exit": None}
        self.started.append(task.id)
        self.prompts[task.id] = prompt_text
        self.max_alive = max(self.max_alive, self.alive_count())
        if self.on_start:
            self.on_start()

    def is_tracked(self, task_id):
        return task_id in self.handles

    def is_alive(self, task_id):
        handle = self.handles.get(task_id)
        return handle is not None and handle["exit"] is None

    def alive_count(self):
        return sum(1 for task_id in self.handles if self.is_alive(task_id))

    def pid_for(self, task_id):
        handle = self.handles.get(task_id)
        return handle["pid"] if handle else None

    def tracked_ids(self):
        return list(self.handles)

    def reap_finished(self):
        finished = []
        for task_id, handle in self.handles.items():
            if handle["exit"] is None and task_id not in self.hold:
                handle["exit"] = self.exit_codes.get(task_id, 0)
            if handle["exit"] is not None:
                finished.append((task_id, handle["exit"]))
        return finished

    def discard(self, task_id):
        self.handles.pop(task_id, None)

    def terminate_all(self):
        self.terminated = True
        alive = [task_id for task_id in self.handles if self.is_alive(task_id)]
        for task_id in alive:
            self.handles[task_id]["exit"] = -15
        return len(alive)

    def cleanup_run_dir(self):
        self.cleaned_up = True


def _write_tasks(path, tasks, **settings):
    path.write_text(json.dumps({"project": "Demo", **settings, "tasks": tasks}), encoding="utf-8")


def _statuses(path):
    data = json.loads(path.read_text(encoding="utf-8"))
    return {task["id"]: task["status"] for task in data["tasks"]}


@pytest.fixture
def workspace(tmp_path):
    task_file = tmp_path / "tasks.json"
    prompt_file = tmp_path / "prompt.md"
    prompt_file.write_text("Do the task.", encoding="utf-8")
    _write_tasks(task_file, [
        {"id": "t1", "title": "One"},
        {"id": "t2", "title": "Two"},
        {"id": "t3", "title": "Three"},
    ])
    return tmp_path


def _make_loop(workspace, supervisor=None, max_parallel=1, **kwargs):
    supervisor = supervisor or FakeSupervisor(workspace / "run")
    logger = RunLogger(log_dir=str(workspace / "logs"), name=f"ralph_loop_test_{uuid.uuid4().hex}")
    console = Console(file=StringIO(), width=400, color_system=None)
    sleeps = []
    loop = SchedulerLoop(
        TaskStore(workspace / "tasks.json"),
        supervisor,
        prompt_file=workspace / "prompt.md",
        max_parallel=max_parallel,
        check_interval=0,
        logger=logger,
        renderer=ScreenRenderer(console=console),
        sleep=sleeps.append,
        **kwargs,
    )
    return loop, supervisor, sleeps


def test_run_completes_all_tasks_one_at_a_time(workspace):
    loop, supervisor, _ = _make_loop(workspace, max_parallel=1)

    assert loop.run() == EXIT_SUCCESS

    assert supervisor.started == ["t1", "t2", "t3"]
    assert supervisor.max_alive == 1
    assert set(_statuses(workspace / "tasks.json").values()) == {"completed"}
    assert supervisor.cleaned_up
    assert not supervisor.terminated
    assert "All tasks completed!" in loop.renderer.console.file.getvalue()


def test_run_sets_completed_at_once(workspace):
    loop, _, _ = _make_loop(workspace, max_parallel=3)
    loop.run()

    data = json.loads((workspace / "tasks.json").read_text(encoding="utf-8"))
    stamp = data["completedAt"]
    assert stamp.endswith("Z")

    loop, _, _ = _make_loop(workspace)
    assert loop.run() == EXIT_SUCCESS
    data = json.loads((workspace / "tasks.json").read_text(encoding="utf-8"))
    assert data["completedAt"] == stamp


def test_run_with_failed_task_exits_nonzero(workspace):
    supervisor = FakeSupervisor(workspace / "run", exit_codes={"t2": 1})
    loop, _, _ = _make_loop(workspace, supervisor, max_parallel=2)

    assert loop.run() == EXIT_TASKS_FAILED

    assert _statuses(workspace / "tasks.json") == {"t1": "completed", "t2": "failed", "t3": "completed"}
    assert "Finished with 1 failed task(s)" in loop.renderer.console.file.getvalue()


def test_admission_respects_max_parallel(workspace):
    supervisor = FakeSupervisor(workspace / "run", hold={"t1", "t2", "t3"})
    loop, _, sleeps = _make_loop(workspace, supervisor, max_parallel=2, spawn_delay=0.5)

    assert loop.run_cycle() is None
    assert supervisor.started == ["t1", "t2"]
    assert sleeps == [0.5]
    assert _statuses(workspace / "tasks.json") == {"t1": "running", "t2": "running", "t3": "pending"}

    assert loop.run_cycle() is None
    assert supervisor.started == ["t1", "t2"]


def test_worker_receives_prompt_file_contents(workspace):
    loop, supervisor, _ = _make_loop(workspace)
    loop.run_cycle()
    assert supervisor.prompts["t1"] == "Do the task."


def test_running_task_is_not_spawned_twice(workspace):
    supervisor = FakeSupervisor(workspace / "run", hold={"t1"})
    loop, _, _ = _make_loop(workspace, supervisor, max_parallel=2)
    loop.run_cycle()
    assert supervisor.started == ["t1", "t2"]

    # Someone resets t1 while its worker is still alive
    _write_tasks(workspace / "tasks.json", [
        {"id": "t1", "title": "One", "status": "pending"},
        {"id": "t2", "title": "Two", "status": "completed"},
        {"id": "t3", "title": "Three"},
    ])
    supervisor.discard("t2")

    loop.run_cycle()

    assert supervisor.started.count("t1") == 1
    assert _statuses(workspace / "tasks.json")["t1"] == "running"


def test_process_finished_task(workspace):
    loop, supervisor, _ = _make_loop(workspace, FakeSupervisor(workspace / "run", hold={"t1", "t2"}), max_parallel=2)
    loop.run_cycle()

    loop.process_finished_task("t1", 0)
    loop.process_finished_task("t2", 7)

    assert _statuses(workspace / "tasks.json") == {"t1": "completed", "t2": "failed", "t3": "pending"}
    assert not supervisor.is_tracked("t1")
    assert not supervisor.is_tracked("t2")

    transitions = [
        json.loads(line)
        for path in (workspace / "logs").glob("tasks_*.jsonl")
        for line in path.read_text(encoding="utf-8").splitlines()
    ]
    failed = [t for t in transitions if t["task_id"] == "t2" and t["to"] == "failed"]
    assert failed and failed[0]["exit_code"] == 7 and failed[0]["from"] == "running"


def test_interrupt_resets_running_tasks(workspace):
    supervisor = FakeSupervisor(workspace / "run", hold={"t1", "t2", "t3"})
    loop, _, _ = _make_loop(workspace, supervisor, max_parallel=1)
    supervisor.on_start = loop.request_shutdown

    assert loop.run() == EXIT_INTERRUPTED

    assert supervisor.terminated
    assert supervisor.cleaned_up
    assert _statuses(workspace / "tasks.json") == {"t1": "pending", "t2": "pending", "t3": "pending"}


def test_countdown_stops_at_once_when_already_interrupted(workspace):
    loop, _, _ = _make_loop(workspace)
    loop.check_interval = 30
    loop.request_shutdown(signal.SIGINT, None)

    started = time.monotonic()
    loop.wait_for_next_cycle()

    assert time.monotonic() - started < 1
    assert "Next check in" not in loop.renderer.console.file.getvalue()


def test_countdown_breaks_out_on_interrupt(workspace):
    loop, _, _ = _make_loop(workspace)
    loop.check_interval = 30
    timer = threading.Timer(0.3, loop.request_shutdown)

    started = time.monotonic()
    timer.start()
    try:
        loop.wait_for_next_cycle()
    finally:
        timer.cancel()

    assert loop.shutdown_requested
    assert time.monotonic() - started < 2
    assert "Next check in 30s..." in loop.renderer.console.file.getvalue()


def test_shutdown_runs_once(workspace):
    supervisor = FakeSupervisor(workspace / "run", hold={"t1"})
    loop, _, _ = _make_loop(workspace, supervisor)
    loop.run_cycle()

    loop.shutdown()
    supervisor.terminated = False
    loop.shutdown()

    assert not supervisor.terminated


def test_keep_run_dir(workspace):
    loop, supervisor, _ = _make_loop(workspace, keep_run_dir=True)
    assert loop.run() == EXIT_SUCCESS
    assert not supervisor.cleaned_up


def test_malformed_reload_keeps_previous_config(workspace):
    supervisor = FakeSupervisor(workspace / "run", hold={"t1"})
    loop, _, sleeps = _make_loop(workspace, supervisor, reload_retry_delay=1.0)
    loop.run_cycle()
    previous = loop.config

    (workspace / "tasks.json").write_text("{\"tasks\": [", encoding="utf-8")

    assert loop.run_cycle() is None
    assert loop.config is previous
    assert sleeps == [1.0]
    assert "skipping iteration" in loop.renderer.console.file.getvalue()
    assert supervisor.started == ["t1"]


def test_spawn_error_leaves_task_pending(workspace):
    supervisor = FakeSupervisor(workspace / "run", hold={"t2"}, fail_spawn={"t1"})
    loop, _, _ = _make_loop(workspace, supervisor, max_parallel=1)

    loop.run_cycle()

    assert supervisor.started == ["t2"]
    assert _statuses(workspace / "tasks.json") == {"t1": "pending", "t2": "running", "t3": "pending"}
    assert list((workspace / "logs").glob("errors_*.jsonl"))


def test_unknown_status_is_reported_as_stuck(workspace):
    _write_tasks(workspace / "tasks.json", [
        {"id": "t1", "status": "completed"},
        {"id": "t2", "status": "blocked"},
    ])
    loop, supervisor, _ = _make_loop(workspace)

    assert loop.run() == EXIT_STUCK

    assert supervisor.started == []
    assert "t2" in loop.renderer.console.file.getvalue()


def test_empty_task_list_keeps_waiting(workspace):
    _write_tasks(workspace / "tasks.json", [])
    loop, supervisor, _ = _make_loop(workspace)

    assert loop.run_cycle() is None
    assert loop.run_cycle() is None
    assert supervisor.started == []


def test_progress_is_logged_each_cycle(workspace):
    loop, _, _ = _make_loop(workspace, max_parallel=3)
    loop.run()

    lines = [
        json.loads(line)
        for path in (workspace / "logs").glob("progress_*.jsonl")
        for line in path.read_text(encoding="utf-8").splitlines()
    ]
    assert [entry["cycle"] for entry in lines] == list(range(1, len(lines) + 1))
    assert lines[-1]["completed_tasks"] == 3
    assert lines[-1]["completion_rate"] == 100.0
