"""CLI routing, exit codes, and end-to-end storage workflows over SQLite."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from scrypture.config.loader import env_var_name
from scrypture.config.schema import FIELD_RULES
from scrypture.domain.models import Priority, Task
from scrypture.main import ExitCode, cli_entrypoint
from scrypture.persistence.kv_store import KeyValueStore
from scrypture.persistence.repositories import TypedRepository
from scrypture.persistence.state_db import SQLiteBackend
from scrypture.ui.cli import build_parser, run_cli

_TS = datetime(2026, 2, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    for rule in FIELD_RULES:
        monkeypatch.delenv(env_var_name(rule), raising=False)


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return (tmp_path / "data" / "store.sqlite3").as_posix()


def _repository(db_path: str) -> TypedRepository:
    return TypedRepository(KeyValueStore(SQLiteBackend(db_path)))


def _task(task_id: str) -> Task:
    return Task(
        id=task_id,
        title=f"Task {task_id}",
        completed=False,
        priority=Priority.HIGH,
        created_at=_TS,
        updated_at=_TS,
    )


def _json_output(capsys: pytest.CaptureFixture[str]) -> dict[str, object]:
    out = capsys.readouterr().out.strip().splitlines()
    return json.loads(out[-1])


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_stats_json_on_empty_store(db_path: str, capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["stats", "--db", db_path, "--json"]) == 0

    payload = _json_output(capsys)
    assert payload["command"] == "stats"
    assert payload["storage_available"] is True
    assert payload["used"] == 0
    assert payload["available"] == 5 * 1024 * 1024
    assert payload["percentage"] == 0.0
    assert Path(db_path).exists()


def test_stats_counts_seeded_data(db_path: str, capsys: pytest.CaptureFixture[str]) -> None:
    _repository(db_path).set_tasks([_task("t1")])

    assert run_cli(["stats", "--db", db_path]) == 0

    out = capsys.readouterr().out
    assert "Storage available: yes" in out
    assert "Used: 0 chars" not in out


def test_memory_backend_override(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    assert run_cli(["stats", "--backend", "memory", "--json"]) == 0

    assert _json_output(capsys)["used"] == 0
    assert not (tmp_path / ".scrypture").exists()


def test_export_import_round_trip(
    db_path: str, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    repository = _repository(db_path)
    repository.set_tasks([_task("t1"), _task("t2")])
    export_path = tmp_path / "export.json"

    assert run_cli(["export", "--db", db_path, "-o", str(export_path)]) == 0
    assert run_cli(["clear", "--db", db_path, "--yes"]) == 0
    assert repository.get_tasks() == []
    assert run_cli(["import", "--db", db_path, str(export_path)]) == 0

    assert repository.get_tasks() == [_task("t1"), _task("t2")]
    assert "Imported" in capsys.readouterr().out


def test_export_to_stdout(db_path: str, capsys: pytest.CaptureFixture[str]) -> None:
    _repository(db_path).set_settings({"theme": "dark"})

    assert run_cli(["export", "--db", db_path]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["settings"] == {"theme": "dark"}
    assert payload["version"] == "1.0.0"


def test_import_of_unreadable_file_fails(
    db_path: str, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    bad = tmp_path / "bad.json"
    bad.write_text("{nope", encoding="utf-8")

    assert run_cli(["import", "--db", db_path, str(bad)]) == 1
    assert "import failed" in capsys.readouterr().err


def test_clear_requires_confirmation(db_path: str, capsys: pytest.CaptureFixture[str]) -> None:
    _repository(db_path).set_tasks([_task("t1")])

    assert run_cli(["clear", "--db", db_path]) == 1

    assert "--yes" in capsys.readouterr().err
    assert _repository(db_path).get_tasks() == [_task("t1")]


def test_backup_and_restore_backup(db_path: str, capsys: pytest.CaptureFixture[str]) -> None:
    repository = _repository(db_path)
    repository.set_tasks([_task("kept")])

    assert run_cli(["backup", "--db", db_path]) == 0
    repository.set_tasks([])
    assert run_cli(["restore-backup", "--db", db_path]) == 0

    assert repository.get_tasks() == [_task("kept")]
    assert "Backup restored." in capsys.readouterr().out


def test_backup_file_copies_the_database(
    db_path: str, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    _repository(db_path).set_tasks([_task("kept")])
    copy_path = tmp_path / "copies" / "store.sqlite3"

    assert run_cli(["backup", "--db", db_path, "--file", str(copy_path)]) == 0

    assert "Database copied to" in capsys.readouterr().out
    assert _repository(copy_path.as_posix()).get_tasks() == [_task("kept")]


def test_backup_file_needs_sqlite(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = run_cli(["backup", "--backend", "memory", "--file", str(tmp_path / "x.sqlite3")])

    assert code == 1
    assert "sqlite" in capsys.readouterr().err


def test_restore_backup_without_backup_fails(
    db_path: str, capsys: pytest.CaptureFixture[str]
) -> None:
    assert run_cli(["restore-backup", "--db", db_path]) == 1
    assert "no backup found" in capsys.readouterr().err


def test_tutorial_progression(db_path: str, capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["tutorial", "--db", db_path, "start"]) == 0
    assert run_cli(["tutorial", "--db", db_path, "complete", "bobrIntroduction"]) == 0
    capsys.readouterr()

    assert run_cli(["tutorial", "--db", db_path, "status", "--json"]) == 0

    payload = _json_output(capsys)
    assert payload["status"] == "in_progress"
    assert payload["progress"] == 29
    assert payload["currentStep"] == "damMetaphor"
    assert payload["steps"]["welcome"]["completed"] is True


def test_tutorial_unknown_step_fails(db_path: str, capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["tutorial", "--db", db_path, "complete", "dragons"]) == 1

    err = capsys.readouterr().err
    assert "unknown tutorial step 'dragons'" in err
    assert "welcome" in err


def test_tutorial_skip_then_reset(db_path: str, capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["tutorial", "--db", db_path, "skip"]) == 0
    assert run_cli(["tutorial", "--db", db_path, "status"]) == 0
    assert "Progress: 100%" in capsys.readouterr().out

    assert run_cli(["tutorial", "--db", db_path, "reset"]) == 0
    assert run_cli(["tutorial", "--db", db_path, "status"]) == 0
    out = capsys.readouterr().out
    assert "Status: not_started" in out
    assert "Progress: 0%" in out


def test_tutorial_start_twice_reports_state(
    db_path: str, capsys: pytest.CaptureFixture[str]
) -> None:
    assert run_cli(["tutorial", "--db", db_path, "start"]) == 0
    assert run_cli(["tutorial", "--db", db_path, "start"]) == 0

    assert "Tutorial already in progress." in capsys.readouterr().out


def test_missing_config_file_is_a_config_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = run_cli(["stats", "--config", str(tmp_path / "absent.toml")])

    assert code == 2
    assert "config file not found" in capsys.readouterr().err


def test_config_file_selects_storage(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config_path = tmp_path / "conf" / "scrypture.toml"
    config_path.parent.mkdir()
    config_path.write_text('[storage]\npath = "db/store.sqlite3"\n', encoding="utf-8")

    assert run_cli(["stats", "--config", str(config_path), "--json"]) == 0

    assert (tmp_path / "conf" / "db" / "store.sqlite3").exists()
    assert _json_output(capsys)["storage_available"] is True


def test_unusable_storage_path_fails(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")

    code = run_cli(["stats", "--db", str(blocker / "store.sqlite3")])

    assert code == 1
    assert "storage is not available" in capsys.readouterr().err


def test_entrypoint_normalizes_exit_codes(db_path: str) -> None:
    assert cli_entrypoint(["stats", "--db", db_path, "--json"]) == ExitCode.SUCCESS
    assert cli_entrypoint(["no-such-command"]) == ExitCode.CONFIG_ERROR
    assert cli_entrypoint(["clear", "--db", db_path]) == ExitCode.OPERATION_FAILED


def test_verbose_status_shows_completion_time(
    db_path: str, capsys: pytest.CaptureFixture[str]
) -> None:
    assert run_cli(["tutorial", "--db", db_path, "skip"]) == 0
    assert run_cli(["tutorial", "--db", db_path, "status"]) == 0
    assert "Completed at" not in capsys.readouterr().out

    assert run_cli(["tutorial", "--db", db_path, "-v", "status"]) == 0
    assert "Completed at: 20" in capsys.readouterr().out
