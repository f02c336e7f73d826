"""
scrypture-store: snapshot, backup slot, restore and transport

File: src/scrypture/persistence/backup.py

Purpose
- Aggregate full application state into a :class:`Snapshot`, persist it in the
  named backup slot, restore it into each entity store, and move it in and out
  of the JSON transport format.

Functional requirements
- A snapshot reads each store independently; there is no cross-store locking.
- Restore is partial: fields absent from the snapshot leave their store alone.
- Restore is NOT atomic. Writes run in a fixed order and the first failure
  aborts the remaining ones; earlier writes from the same call stay applied.
- Import never mutates anything when the payload is unreadable.
- No exception crosses the public surface; failures come back as False/None.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Final

import structlog

from scrypture.constants import (
    BACKUP_KEY,
    SNAPSHOT_VERSION,
    START_HERE_KEYS,
    STORAGE_KEYS,
)
from scrypture.domain.models import (
    Habit,
    JSONValue,
    RecordShapeError,
    Task,
    User,
    as_utc_datetime,
    to_iso8601z,
    utc_now,
)
from scrypture.persistence.kv_store import StorageStats, encode_json
from scrypture.persistence.repositories import TypedRepository, decode_records

_EXPORT_INDENT: Final[int] = 2

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class Snapshot:
    """Point-in-time aggregate of every entity store.

    ``None`` marks a field as absent: restore skips it. An empty list is present
    and restores as an empty collection.
    """

    tasks: list[Task] | None = None
    habits: list[Habit] | None = None
    user: User | None = None
    settings: dict[str, JSONValue] | None = None
    custom_categories: JSONValue = None
    timestamp: datetime | None = None
    version: str | None = SNAPSHOT_VERSION

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "tasks": None if self.tasks is None else [task.to_dict() for task in self.tasks],
            "habits": None if self.habits is None else [habit.to_dict() for habit in self.habits],
            "user": None if self.user is None else self.user.to_dict(),
            "settings": None if self.settings is None else dict(self.settings),
            "customCategories": self.custom_categories,
            "timestamp": None if self.timestamp is None else to_iso8601z(self.timestamp),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> Snapshot:
        """Lenient decode: wrongly typed fields read as absent, bad records are dropped."""

        raw_tasks = payload.get("tasks")
        raw_habits = payload.get("habits")
        raw_settings = payload.get("settings")
        raw_version = payload.get("version")
        return cls(
            tasks=(
                decode_records(raw_tasks, Task.from_dict, entity="Task")
                if isinstance(raw_tasks, list)
                else None
            ),
            habits=(
                decode_records(raw_habits, Habit.from_dict, entity="Habit")
                if isinstance(raw_habits, list)
                else None
            ),
            user=_decode_user(payload.get("user")),
            settings=_as_json_object(raw_settings),
            custom_categories=_as_json(payload.get("customCategories")),
            timestamp=_decode_timestamp(payload.get("timestamp")),
            version=raw_version if isinstance(raw_version, str) else None,
        )


class BackupManager:
    """Create, persist, restore and transport :class:`Snapshot` objects."""

    def __init__(
        self,
        repository: TypedRepository,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repository = repository
        self._clock = clock

    @property
    def repository(self) -> TypedRepository:
        return self._repository

    def create_snapshot(self) -> Snapshot:
        repo = self._repository
        return Snapshot(
            tasks=repo.get_tasks(),
            habits=repo.get_habits(),
            user=repo.get_user(),
            settings=repo.get_settings() or {},
            custom_categories=_as_json(repo.get_custom_categories()),
            timestamp=self._clock(),
            version=SNAPSHOT_VERSION,
        )

    def save_named_backup(self, snapshot: Snapshot | None = None) -> bool:
        current = snapshot if snapshot is not None else self.create_snapshot()
        saved = self._repository.set_item(BACKUP_KEY, current.to_dict())
        if saved:
            logger.info("backup_saved", key=BACKUP_KEY, timestamp=_timestamp_text(current))
        return saved

    def load_named_backup(self) -> Snapshot | None:
        raw = self._repository.get_item(BACKUP_KEY)
        if not isinstance(raw, Mapping):
            return None
        return Snapshot.from_dict(raw)

    def restore(self, snapshot: Snapshot | Mapping[str, object]) -> bool:
        """Write every present snapshot field back to its store.

        Order is tasks, habits, user, settings, customCategories. The first
        failing write stops the rest and returns False. Writes already applied
        by this call are kept; there is no rollback.
        """

        if isinstance(snapshot, Mapping):
            snapshot = Snapshot.from_dict(snapshot)

        repo = self._repository
        writes: list[tuple[str, Callable[[], bool]]] = []
        if snapshot.tasks is not None:
            tasks = snapshot.tasks
            writes.append(("tasks", lambda: repo.set_tasks(tasks)))
        if snapshot.habits is not None:
            habits = snapshot.habits
            writes.append(("habits", lambda: repo.set_habits(habits)))
        if snapshot.user is not None:
            user = snapshot.user
            writes.append(("user", lambda: repo.set_user(user)))
        if snapshot.settings is not None:
            settings = snapshot.settings
            writes.append(("settings", lambda: repo.set_settings(settings)))
        if snapshot.custom_categories is not None:
            categories = snapshot.custom_categories
            writes.append(("customCategories", lambda: repo.set_custom_categories(categories)))

        applied: list[str] = []
        for name, write in writes:
            try:
                ok = write()
            except Exception as exc:
                logger.error(
                    "restore_write_failed",
                    field=name,
                    applied=applied,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                return False
            if not ok:
                logger.error("restore_write_failed", field=name, applied=applied)
                return False
            applied.append(name)

        logger.info("restore_completed", applied=applied)
        return True

    def export_text(self, snapshot: Snapshot | None = None) -> str:
        """Human-readable JSON transport text; snapshots current state when none is given."""

        current = snapshot if snapshot is not None else self.create_snapshot()
        return encode_json(current.to_dict(), indent=_EXPORT_INDENT)

    def parse_text(self, text: str) -> Snapshot | None:
        """Decode transport text, or ``None`` when it cannot be imported."""

        try:
            payload = json.loads(text)
        except (TypeError, ValueError, RecursionError) as exc:
            logger.error("import_parse_failed", reason="malformed_json", error=str(exc))
            return None
        if not isinstance(payload, dict):
            logger.error(
                "import_parse_failed",
                error=f"expected object, got {type(payload).__name__}",
            )
            return None
        version = payload.get("version")
        if version is not None and not is_supported_version(version):
            logger.error(
                "import_version_unsupported",
                version=version,
                supported=SNAPSHOT_VERSION,
            )
            return None
        return Snapshot.from_dict(payload)

    def import_text(self, text: str) -> bool:
        snapshot = self.parse_text(text)
        if snapshot is None:
            return False
        return self.restore(snapshot)

    def export_to_file(self, path: str | Path, snapshot: Snapshot | None = None) -> bool:
        target = Path(path).expanduser()
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(self.export_text(snapshot) + "\n", encoding="utf-8")
        except OSError as exc:
            logger.error("export_write_failed", path=str(target), error=str(exc))
            return False
        logger.info("export_written", path=str(target))
        return True

    def import_from_file(self, path: str | Path) -> bool:
        source = Path(path).expanduser()
        try:
            text = source.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.error("import_read_failed", path=str(source), error=str(exc))
            return False
        return self.import_text(text)

    def storage_stats(self) -> StorageStats:
        return self._repository.store.usage(STORAGE_KEYS.values())

    def clear_all_data(self) -> bool:
        """Remove every entity key and the onboarding bookkeeping keys."""

        success = True
        for key in (*STORAGE_KEYS.values(), *START_HERE_KEYS):
            if not self._repository.remove_item(key):
                success = False
        if success:
            logger.info("data_cleared")
        return success


def is_supported_version(version: object) -> bool:
    """Snapshots are compatible when their major version matches ours."""

    if not isinstance(version, str):
        return False
    return _major(version) == _major(SNAPSHOT_VERSION)


def _major(version: str) -> str:
    return version.strip().split(".", 1)[0]


def _decode_user(value: object) -> User | None:
    if not isinstance(value, Mapping):
        return None
    try:
        return User.from_dict(value)
    except RecordShapeError as exc:
        logger.warning("record_shape_invalid", entity="User", error=str(exc))
        return None


def _decode_timestamp(value: object) -> datetime | None:
    if value is None:
        return None
    try:
        return as_utc_datetime(value, "Snapshot.timestamp")
    except RecordShapeError:
        return None


def _as_json(value: object) -> JSONValue:
    if value is None:
        return None
    try:
        return json.loads(encode_json(value))
    except (TypeError, ValueError, RecursionError):
        return None


def _as_json_object(value: object) -> dict[str, JSONValue] | None:
    if not isinstance(value, Mapping):
        return None
    decoded = _as_json(value)
    return decoded if isinstance(decoded, dict) else None


def _timestamp_text(snapshot: Snapshot) -> str | None:
    return None if snapshot.timestamp is None else to_iso8601z(snapshot.timestamp)


__all__ = ["BackupManager", "Snapshot", "is_supported_version"]
