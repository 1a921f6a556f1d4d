"""Tests for the JSON task file store and models."""

import json

import pytest

from ralphloop.core.exceptions import MalformedStateError
from ralphloop.models import RunConfig, Task, TaskStatistics, TaskStatus
from ralphloop.state import TaskStore


def _write(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture
def task_file(tmp_path):
    return _write(tmp_path / "tasks.json", {
        "project": "Demo",
        "maxParallel": 2,
        "owner": "platform-team",
        "tasks": [
            {"id": "t1", "title": "One", "status": "completed", "priority": 1},
            {"id": "t2", "title": "Two", "acceptanceCriteria": ["works"]},
            {"id": "t3", "status": "running"},
        ],
    })


def test_load_parses_document(task_file):
    config = TaskStore(task_file).load()

    assert config.project == "Demo"
    assert config.max_parallel == 2
    assert config.check_interval is None
    assert [t.id for t in config.tasks] == ["t1", "t2", "t3"]
    assert config.tasks[0].status == TaskStatus.COMPLETED
    # Missing status means pending
    assert config.tasks[1].status == TaskStatus.PENDING
    assert config.tasks[2].display_title == "Untitled"


@pytest.mark.parametrize("content", [
    "{not json",
    "[]",
    json.dumps({"project": "x"}),
    json.dumps({"tasks": {"id": "t1"}}),
    json.dumps({"tasks": ["t1"]}),
])
def test_load_rejects_malformed_documents(tmp_path, content):
    path = tmp_path / "tasks.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(MalformedStateError) as exc_info:
        TaskStore(path).load()
    assert exc_info.value.retryable
    assert exc_info.value.path == str(path)


def test_load_missing_file(tmp_path):
    store = TaskStore(tmp_path / "absent.json")
    assert not store.exists()
    with pytest.raises(MalformedStateError):
        store.load()


def test_save_preserves_unknown_fields(task_file):
    store = TaskStore(task_file)
    store.save(store.load())

    data = json.loads(task_file.read_text(encoding="utf-8"))
    assert data["owner"] == "platform-team"
    assert data["tasks"][0]["priority"] == 1
    assert data["tasks"][1]["acceptanceCriteria"] == ["works"]
    assert data["tasks"][1]["status"] == "pending"


def test_save_is_pretty_printed_and_leaves_no_temp_files(task_file):
    store = TaskStore(task_file)
    store.save(store.load())

    text = task_file.read_text(encoding="utf-8")
    assert text.startswith("{\n  \"project\": \"Demo\"")
    assert text.endswith("}\n")
    assert [p.name for p in task_file.parent.iterdir()] == ["tasks.json"]


def test_save_keeps_non_ascii_text(tmp_path):
    store = TaskStore(tmp_path / "tasks.json")
    store.save(RunConfig(tasks=[Task(id="t1", title="Überprüfung")]))
    assert "Überprüfung" in (tmp_path / "tasks.json").read_text(encoding="utf-8")


def test_update_task_status_persists(task_file):
    store = TaskStore(task_file)
    config = store.load()

    previous = store.update_task_status(config, "t2", TaskStatus.RUNNING)

    assert previous == "pending"
    assert store.load().get_task("t2").status == TaskStatus.RUNNING


def test_update_task_status_unknown_id(task_file):
    store = TaskStore(task_file)
    config = store.load()
    before = task_file.read_text(encoding="utf-8")

    assert store.update_task_status(config, "nope", TaskStatus.FAILED) is None
    assert task_file.read_text(encoding="utf-8") == before


def test_reset_stale_running(task_file):
    store = TaskStore(task_file)
    config = store.load()

    recovered = store.reset_stale_running(config)

    assert recovered == ["t3"]
    assert config.get_task("t3").status == TaskStatus.PENDING
    assert config.get_task("t1").status == TaskStatus.COMPLETED
    # Not saved until the caller decides to
    assert store.load().get_task("t3").status == TaskStatus.RUNNING


def test_validate_reports_duplicates_and_unknown_status(tmp_path):
    path = _write(tmp_path / "tasks.json", {"tasks": [
        {"id": "a"},
        {"id": "a"},
        {"title": "no id"},
        {"id": "b", "status": "blocked"},
    ]})
    store = TaskStore(path)

    result = store.validate(store.load())

    assert not result.valid
    assert any("Duplicate task id: a" in e for e in result.errors)
    assert any("index 2" in e for e in result.errors)
    assert any("blocked" in w for w in result.warnings)


def test_validate_empty_task_list_is_a_warning(tmp_path):
    store = TaskStore(_write(tmp_path / "tasks.json", {"tasks": []}))
    result = store.validate(store.load())
    assert result.valid
    assert result.warnings


def test_scalar_acceptance_criteria_survive_save(tmp_path):
    path = _write(tmp_path / "tasks.json", {"tasks": [
        {"id": "a", "title": 42, "acceptanceCriteria": "tests pass"},
    ]})
    store = TaskStore(path)
    config = store.load()

    store.save(config)

    saved = json.loads(path.read_text(encoding="utf-8"))["tasks"][0]
    assert saved["acceptanceCriteria"] == "tests pass"
    assert saved["title"] == 42

    warnings = store.validate(config).warnings
    assert any("acceptanceCriteria" in w for w in warnings)
    assert any("title" in w for w in warnings)


def test_unknown_status_survives_round_trip(tmp_path):
    path = _write(tmp_path / "tasks.json", {"tasks": [{"id": "b", "status": "blocked"}]})
    store = TaskStore(path)
    config = store.load()

    task = config.get_task("b")
    assert task.status == "blocked"
    assert not task.is_terminal()

    store.save(config)
    assert json.loads(path.read_text(encoding="utf-8"))["tasks"][0]["status"] == "blocked"


def test_statistics_counts_other_statuses():
    stats = TaskStatistics.from_tasks([
        Task(id="a", status="completed"),
        Task(id="b", status="failed"),
        Task(id="c", status="blocked"),
        Task(id="d"),
    ])
    assert stats.to_dict() == {"total": 4, "completed": 1, "running": 0, "failed": 1, "pending": 1}
    assert stats.other == 1
    assert not stats.is_finished
