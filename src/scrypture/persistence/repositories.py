"""
scrypture-store: typed entity repositories

File: src/scrypture/persistence/repositories.py

Purpose
- One accessor pair per entity kind over :class:`KeyValueStore`: tasks, habits,
  user, settings, achievements and custom categories, plus generic item access.

Functional requirements
- Reads rehydrate timestamps and apply a structural shape check per record.
- Partial-failure tolerance: an invalid record inside a collection is dropped and
  logged; its siblings are returned. An invalid singleton reads as ``None``.
- A payload that is missing or unreadable reads as "no data" (empty list / None).
- Writes are trusted: plain mappings are stored as given, dataclasses via
  ``to_dict()``. Writes return ``False`` instead of raising.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Protocol, TypeVar

import structlog

from scrypture.constants import (
    ACHIEVEMENTS_KEY,
    CUSTOM_CATEGORIES_KEY,
    HABITS_KEY,
    SETTINGS_KEY,
    TASKS_KEY,
    USER_KEY,
)
from scrypture.domain.models import Achievement, Habit, JSONValue, RecordShapeError, Task, User
from scrypture.persistence.kv_store import KeyValueStore

T = TypeVar("T")

logger = structlog.get_logger(__name__)


class SupportsToDict(Protocol):
    def to_dict(self) -> dict[str, JSONValue]: ...


Record = SupportsToDict | Mapping[str, object]
Decoder = Callable[[Mapping[str, object]], T]


class TypedRepository:
    """Validated typed read/write for every persisted entity kind."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    @property
    def store(self) -> KeyValueStore:
        return self._store

    # Generic item access (tutorial state and other side stores go through these).

    def get_item(self, key: str) -> object | None:
        return self._store.get(key)

    def set_item(self, key: str, value: object) -> bool:
        return self._store.set(key, value)

    def remove_item(self, key: str) -> bool:
        return self._store.remove(key)

    # Tasks

    def get_tasks(self) -> list[Task]:
        return self._read_collection(TASKS_KEY, Task.from_dict, "Task")

    def set_tasks(self, tasks: Sequence[Task | Mapping[str, object]]) -> bool:
        return self._store.set(TASKS_KEY, _encode_records(tasks))

    # Habits

    def get_habits(self) -> list[Habit]:
        return self._read_collection(HABITS_KEY, Habit.from_dict, "Habit")

    def set_habits(self, habits: Sequence[Habit | Mapping[str, object]]) -> bool:
        return self._store.set(HABITS_KEY, _encode_records(habits))

    # Achievements

    def get_achievements(self) -> list[Achievement]:
        return self._read_collection(ACHIEVEMENTS_KEY, Achievement.from_dict, "Achievement")

    def set_achievements(
        self, achievements: Sequence[Achievement | Mapping[str, object]]
    ) -> bool:
        return self._store.set(ACHIEVEMENTS_KEY, _encode_records(achievements))

    # User

    def get_user(self) -> User | None:
        raw = self._store.get(USER_KEY)
        if raw is None:
            return None
        if not isinstance(raw, Mapping):
            logger.warning(
                "record_shape_invalid",
                key=USER_KEY,
                entity="User",
                error=f"expected object, got {type(raw).__name__}",
            )
            return None
        try:
            return User.from_dict(raw)
        except RecordShapeError as exc:
            logger.warning("record_shape_invalid", key=USER_KEY, entity="User", error=str(exc))
            return None

    def set_user(self, user: User | Mapping[str, object]) -> bool:
        return self._store.set(USER_KEY, _encode_record(user))

    # Settings

    def get_settings(self) -> dict[str, object] | None:
        raw = self._store.get(SETTINGS_KEY)
        if raw is None:
            return None
        if not isinstance(raw, Mapping):
            logger.warning(
                "record_shape_invalid",
                key=SETTINGS_KEY,
                entity="Settings",
                error=f"expected object, got {type(raw).__name__}",
            )
            return None
        return dict(raw)

    def set_settings(self, settings: Mapping[str, object]) -> bool:
        return self._store.set(SETTINGS_KEY, dict(settings))

    # Custom categories are an opaque side store owned by the category UI.

    def get_custom_categories(self) -> object | None:
        return self._store.get(CUSTOM_CATEGORIES_KEY)

    def set_custom_categories(self, categories: object) -> bool:
        return self._store.set(CUSTOM_CATEGORIES_KEY, categories)

    def _read_collection(self, key: str, decoder: Decoder[T], entity: str) -> list[T]:
        raw = self._store.get(key)
        if raw is None:
            return []
        if not isinstance(raw, list):
            logger.warning(
                "record_shape_invalid",
                key=key,
                entity=entity,
                error=f"expected array, got {type(raw).__name__}",
            )
            return []
        return decode_records(raw, decoder, entity=entity, key=key)


def decode_records(
    values: Sequence[object],
    decoder: Decoder[T],
    *,
    entity: str,
    key: str | None = None,
) -> list[T]:
    """Decode each record independently, dropping (and logging) the invalid ones."""

    records: list[T] = []
    for index, item in enumerate(values):
        if not isinstance(item, Mapping):
            logger.warning(
                "record_shape_invalid",
                key=key,
                entity=entity,
                index=index,
                error=f"expected object, got {type(item).__name__}",
            )
            continue
        try:
            records.append(decoder(item))
        except RecordShapeError as exc:
            logger.warning(
                "record_shape_invalid",
                key=key,
                entity=entity,
                index=index,
                error=str(exc),
            )
    return records


def _encode_record(record: Record) -> object:
    if isinstance(record, Mapping):
        return dict(record)
    return record.to_dict()


def _encode_records(records: Sequence[Record]) -> list[object]:
    return [_encode_record(record) for record in records]


__all__ = ["Decoder", "Record", "SupportsToDict", "TypedRepository", "decode_records"]
