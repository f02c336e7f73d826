"""Snapshot creation, named backups, restore semantics, and JSON transport."""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest

from scrypture.constants import (
    BACKUP_KEY,
    CUSTOM_CATEGORIES_KEY,
    HABITS_KEY,
    SETTINGS_KEY,
    SNAPSHOT_VERSION,
    START_HERE_KEYS,
    TASKS_KEY,
    TUTORIAL_STATE_KEY,
    USER_KEY,
)
from scrypture.domain.models import Habit, Priority, TargetFrequency, Task, User
from scrypture.persistence.backup import BackupManager, Snapshot, is_supported_version
from scrypture.persistence.kv_store import KeyValueStore, MemoryBackend
from scrypture.persistence.repositories import TypedRepository

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from tests.conftest import FakeClock

_TS = datetime(2026, 2, 1, 12, 0, 0, tzinfo=UTC)


def _task(task_id: str) -> Task:
    return Task(
        id=task_id,
        title=f"Task {task_id}",
        completed=task_id.endswith("done"),
        priority=Priority.LOW,
        created_at=_TS,
        updated_at=_TS,
        categories=["work"],
    )


def _habit(habit_id: str) -> Habit:
    return Habit(
        id=habit_id,
        name=f"Habit {habit_id}",
        streak=3,
        target_frequency=TargetFrequency.DAILY,
        created_at=_TS,
    )


def _user() -> User:
    return User(
        id="user-1",
        name="Ola",
        level=2,
        experience=50,
        body=1,
        mind=2,
        soul=3,
        created_at=_TS,
        updated_at=_TS,
    )


def _seed(repository: TypedRepository) -> None:
    repository.set_tasks([_task("t1"), _task("t2-done")])
    repository.set_habits([_habit("h1")])
    repository.set_user(_user())
    repository.set_settings({"theme": "dark", "sound": False})
    repository.set_custom_categories([{"name": "garden"}])


@pytest.fixture
def manager(repository: TypedRepository, clock: FakeClock) -> BackupManager:
    return BackupManager(repository, clock=clock)


class _FailingHabitsRepository(TypedRepository):
    def set_habits(self, habits: Sequence[Habit | Mapping[str, object]]) -> bool:
        raise RuntimeError("habits store rejected the write")


class _RejectingUserRepository(TypedRepository):
    def set_user(self, user: User | Mapping[str, object]) -> bool:
        return False


def test_snapshot_reads_every_store(manager: BackupManager, repository: TypedRepository) -> None:
    _seed(repository)

    snapshot = manager.create_snapshot()

    assert snapshot.tasks == [_task("t1"), _task("t2-done")]
    assert snapshot.habits == [_habit("h1")]
    assert snapshot.user == _user()
    assert snapshot.settings == {"theme": "dark", "sound": False}
    assert snapshot.custom_categories == [{"name": "garden"}]
    assert snapshot.timestamp == _TS
    assert snapshot.version == SNAPSHOT_VERSION


def test_snapshot_of_empty_store_uses_empty_defaults(manager: BackupManager) -> None:
    snapshot = manager.create_snapshot()

    assert snapshot.tasks == []
    assert snapshot.habits == []
    assert snapshot.user is None
    assert snapshot.settings == {}
    assert snapshot.custom_categories is None


def test_snapshot_clear_restore_reproduces_state(
    manager: BackupManager, repository: TypedRepository
) -> None:
    _seed(repository)
    snapshot = manager.create_snapshot()

    assert manager.clear_all_data() is True
    assert repository.get_tasks() == []
    assert manager.restore(snapshot) is True

    assert repository.get_tasks() == snapshot.tasks
    assert repository.get_habits() == snapshot.habits
    assert repository.get_user() == snapshot.user
    assert repository.get_settings() == snapshot.settings


def test_restore_skips_absent_fields(manager: BackupManager, repository: TypedRepository) -> None:
    _seed(repository)

    assert manager.restore(Snapshot(tasks=[_task("only")])) is True

    assert repository.get_tasks() == [_task("only")]
    assert repository.get_habits() == [_habit("h1")]
    assert repository.get_user() == _user()


def test_restore_with_empty_list_clears_collection(
    manager: BackupManager, repository: TypedRepository
) -> None:
    _seed(repository)

    assert manager.restore({"habits": []}) is True

    assert repository.get_habits() == []
    assert repository.get_tasks() == [_task("t1"), _task("t2-done")]


def test_restore_is_not_atomic_when_a_write_raises(clock: FakeClock) -> None:
    repository = _FailingHabitsRepository(KeyValueStore(MemoryBackend()))
    repository.set_tasks([_task("old")])
    repository.set_user(_user())
    manager = BackupManager(repository, clock=clock)

    restored = manager.restore(
        Snapshot(
            tasks=[_task("new")],
            habits=[_habit("h1")],
            user=User.from_dict({**_user().to_dict(), "name": "Changed"}),
        )
    )

    assert restored is False
    assert repository.get_tasks() == [_task("new")]
    assert repository.get_user() == _user()


def test_restore_stops_at_first_rejected_write(clock: FakeClock) -> None:
    repository = _RejectingUserRepository(KeyValueStore(MemoryBackend()))
    manager = BackupManager(repository, clock=clock)

    restored = manager.restore(
        Snapshot(tasks=[_task("t")], user=_user(), settings={"theme": "light"})
    )

    assert restored is False
    assert repository.get_tasks() == [_task("t")]
    assert repository.get_settings() is None


def test_named_backup_round_trip(manager: BackupManager, repository: TypedRepository) -> None:
    _seed(repository)

    assert manager.save_named_backup() is True
    repository.set_tasks([])
    loaded = manager.load_named_backup()

    assert loaded is not None
    assert loaded.tasks == [_task("t1"), _task("t2-done")]
    assert loaded.timestamp == _TS
    assert manager.restore(loaded) is True
    assert repository.get_tasks() == [_task("t1"), _task("t2-done")]


def test_load_named_backup_without_backup_returns_none(manager: BackupManager) -> None:
    assert manager.load_named_backup() is None


def test_export_text_is_indented_and_complete(
    manager: BackupManager, repository: TypedRepository
) -> None:
    _seed(repository)

    text = manager.export_text()
    payload = json.loads(text)

    assert text.startswith('{\n  "tasks": [')
    assert set(payload) == {
        "tasks",
        "habits",
        "user",
        "settings",
        "customCategories",
        "timestamp",
        "version",
    }
    assert payload["version"] == SNAPSHOT_VERSION
    assert payload["timestamp"] == "2026-02-01T12:00:00.000000Z"


def test_export_then_import_reproduces_state(
    manager: BackupManager, repository: TypedRepository
) -> None:
    _seed(repository)
    text = manager.export_text()
    manager.clear_all_data()

    assert manager.import_text(text) is True

    assert repository.get_tasks() == [_task("t1"), _task("t2-done")]
    assert repository.get_habits() == [_habit("h1")]
    assert repository.get_user() == _user()
    assert repository.get_settings() == {"theme": "dark", "sound": False}
    assert repository.get_custom_categories() == [{"name": "garden"}]


@pytest.mark.parametrize(
    "text",
    [
        "{not json",
        "",
        "[1, 2, 3]",
        '"just a string"',
        json.dumps({"version": "2.0.0", "tasks": []}),
        json.dumps({"version": 1, "tasks": []}),
    ],
)
def test_unreadable_import_changes_nothing(
    manager: BackupManager, repository: TypedRepository, text: str
) -> None:
    _seed(repository)
    before = manager.create_snapshot()

    assert manager.import_text(text) is False

    after = manager.create_snapshot()
    assert after.tasks == before.tasks
    assert after.user == before.user
    assert after.settings == before.settings


def test_import_without_version_is_accepted(
    manager: BackupManager, repository: TypedRepository
) -> None:
    assert manager.import_text(json.dumps({"tasks": [_task("x").to_dict()]})) is True

    assert repository.get_tasks() == [_task("x")]


def test_import_drops_invalid_records_and_fields(
    manager: BackupManager, repository: TypedRepository
) -> None:
    _seed(repository)
    payload = {
        "version": "1.2.0",
        "tasks": [_task("keep").to_dict(), {"id": "broken"}],
        "habits": "not a list",
        "user": {"id": "u"},
        "settings": None,
    }

    assert manager.import_text(json.dumps(payload)) is True

    assert repository.get_tasks() == [_task("keep")]
    assert repository.get_habits() == [_habit("h1")]
    assert repository.get_user() == _user()


def test_file_export_and_import(
    manager: BackupManager, repository: TypedRepository, tmp_path: Path
) -> None:
    _seed(repository)
    target = tmp_path / "exports" / "scrypture.json"

    assert manager.export_to_file(target) is True
    manager.clear_all_data()
    assert manager.import_from_file(target) is True

    assert repository.get_habits() == [_habit("h1")]


def test_import_from_missing_file_fails(manager: BackupManager, tmp_path: Path) -> None:
    assert manager.import_from_file(tmp_path / "missing.json") is False


def test_clear_all_data_removes_entity_and_onboarding_keys(
    manager: BackupManager, repository: TypedRepository, backend: MemoryBackend
) -> None:
    _seed(repository)
    manager.save_named_backup()
    for key in START_HERE_KEYS:
        repository.set_item(key, True)
    repository.set_item(TUTORIAL_STATE_KEY, {"completed": True})

    assert manager.clear_all_data() is True

    remaining = set(backend.keys())
    for key in (TASKS_KEY, HABITS_KEY, USER_KEY, SETTINGS_KEY, BACKUP_KEY, *START_HERE_KEYS):
        assert key not in remaining
    assert remaining == {CUSTOM_CATEGORIES_KEY, TUTORIAL_STATE_KEY}


def test_storage_stats_cover_known_keys(
    manager: BackupManager, repository: TypedRepository, backend: MemoryBackend
) -> None:
    repository.set_tasks([_task("t")])
    repository.set_custom_categories(["ignored"])
    expected = len(backend.get_text(TASKS_KEY) or "")

    stats = manager.storage_stats()

    assert stats.used == expected
    assert stats.available == 5 * 1024 * 1024
    assert stats.percentage == round(expected / (5 * 1024 * 1024) * 100, 2)


def test_unavailable_storage_reports_failures(clock: FakeClock) -> None:
    repository = TypedRepository(KeyValueStore(MemoryBackend(fail_check=True)))
    manager = BackupManager(repository, clock=clock)

    assert manager.save_named_backup() is False
    assert manager.restore(Snapshot(tasks=[])) is False
    assert manager.clear_all_data() is False
    assert manager.storage_stats().available == 0


@pytest.mark.parametrize(
    ("version", "supported"),
    [("1.0.0", True), ("1.4", True), (" 1.0.0", True), ("2.0.0", False), (None, False)],
)
def test_version_support(version: object, supported: bool) -> None:
    assert is_supported_version(version) is supported


def test_excessively_nested_import_is_rejected(
    manager: BackupManager, repository: TypedRepository
) -> None:
    _seed(repository)
    before = manager.create_snapshot()

    assert manager.import_text("[" * 100_000 + "]" * 100_000) is False
    assert manager.create_snapshot().tasks == before.tasks
