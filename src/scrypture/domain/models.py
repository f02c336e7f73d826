"""Dataclass entity models with structural shape checks and camelCase serialization.

Shape checks are structural only: field presence plus primitive/enum typing.
Cross-field business rules (XP vs difficulty, streak arithmetic) belong to the
callers that produce these records.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, StrEnum
from typing import NoReturn, TypeVar

import structlog

logger = structlog.get_logger(__name__)

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
Number = int | float

TEnum = TypeVar("TEnum", bound=Enum)

_STAT_REWARD_KEYS: tuple[str, ...] = ("body", "mind", "soul", "xp")


class RecordShapeError(ValueError):
    """Raised when a decoded record does not match its entity's minimum shape."""


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TargetFrequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class BobrStage(StrEnum):
    HATCHLING = "hatchling"
    YOUNG = "young"
    MATURE = "mature"


@dataclass(slots=True)
class Task:
    """A single to-do item as persisted under the tasks key."""

    id: str
    title: str
    completed: bool
    priority: Priority
    created_at: datetime
    updated_at: datetime
    categories: list[str] = field(default_factory=list)
    description: str | None = None
    completed_at: datetime | None = None
    stat_rewards: dict[str, JSONValue] | None = None
    difficulty: Number | None = None
    extra: dict[str, JSONValue] = field(default_factory=dict)

    def to_dict(self) -> dict[str, JSONValue]:
        out: dict[str, JSONValue] = dict(self.extra)
        out.update(
            {
                "id": self.id,
                "title": self.title,
                "completed": self.completed,
                "priority": self.priority.value,
                "categories": list(self.categories),
                "createdAt": to_iso8601z(self.created_at),
                "updatedAt": to_iso8601z(self.updated_at),
            }
        )
        _put_optional(out, "description", self.description)
        _put_optional(out, "completedAt", _optional_iso(self.completed_at))
        _put_optional(out, "statRewards", _optional_rewards(self.stat_rewards))
        _put_optional(out, "difficulty", self.difficulty)
        return out

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> Task:
        data = _expect_object(
            payload,
            "Task",
            required=("id", "title", "completed", "priority", "createdAt", "updatedAt"),
        )
        return cls(
            id=_as_str(data["id"], "Task.id"),
            title=_as_str(data["title"], "Task.title"),
            completed=_as_bool(data["completed"], "Task.completed"),
            priority=_as_enum(Priority, data["priority"], "Task.priority"),
            created_at=as_utc_datetime(data["createdAt"], "Task.createdAt"),
            updated_at=as_utc_datetime(data["updatedAt"], "Task.updatedAt"),
            categories=_as_str_list(data.get("categories", []), "Task.categories"),
            description=_as_optional_str(data.get("description"), "Task.description"),
            completed_at=_as_optional_datetime(data.get("completedAt"), "Task.completedAt"),
            stat_rewards=_as_stat_rewards(data.get("statRewards"), "Task.statRewards"),
            difficulty=_as_optional_number(data.get("difficulty"), "Task.difficulty"),
            extra=_extra_fields(data, _TASK_FIELDS),
        )


@dataclass(slots=True)
class Habit:
    """A recurring habit with streak bookkeeping."""

    id: str
    name: str
    streak: Number
    target_frequency: TargetFrequency
    created_at: datetime
    best_streak: Number | None = None
    last_completed: datetime | None = None
    categories: list[str] = field(default_factory=list)
    description: str | None = None
    stat_rewards: dict[str, JSONValue] | None = None
    extra: dict[str, JSONValue] = field(default_factory=dict)

    def to_dict(self) -> dict[str, JSONValue]:
        out: dict[str, JSONValue] = dict(self.extra)
        out.update(
            {
                "id": self.id,
                "name": self.name,
                "streak": self.streak,
                "targetFrequency": self.target_frequency.value,
                "categories": list(self.categories),
                "createdAt": to_iso8601z(self.created_at),
            }
        )
        _put_optional(out, "bestStreak", self.best_streak)
        _put_optional(out, "lastCompleted", _optional_iso(self.last_completed))
        _put_optional(out, "description", self.description)
        _put_optional(out, "statRewards", _optional_rewards(self.stat_rewards))
        return out

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> Habit:
        data = _expect_object(
            payload,
            "Habit",
            required=("id", "name", "streak", "targetFrequency", "createdAt"),
        )
        return cls(
            id=_as_str(data["id"], "Habit.id"),
            name=_as_str(data["name"], "Habit.name"),
            streak=_as_number(data["streak"], "Habit.streak"),
            target_frequency=_as_enum(
                TargetFrequency, data["targetFrequency"], "Habit.targetFrequency"
            ),
            created_at=as_utc_datetime(data["createdAt"], "Habit.createdAt"),
            best_streak=_as_optional_number(data.get("bestStreak"), "Habit.bestStreak"),
            last_completed=_as_optional_datetime(
                data.get("lastCompleted"), "Habit.lastCompleted"
            ),
            categories=_as_str_list(data.get("categories", []), "Habit.categories"),
            description=_as_optional_str(data.get("description"), "Habit.description"),
            stat_rewards=_as_stat_rewards(data.get("statRewards"), "Habit.statRewards"),
            extra=_extra_fields(data, _HABIT_FIELDS),
        )


@dataclass(slots=True)
class Achievement:
    """Achievement record as stored on the user; unlock rules live elsewhere."""

    id: str
    name: str
    unlocked: bool = False
    unlocked_at: datetime | None = None
    extra: dict[str, JSONValue] = field(default_factory=dict)

    def to_dict(self) -> dict[str, JSONValue]:
        out: dict[str, JSONValue] = dict(self.extra)
        out.update({"id": self.id, "name": self.name, "unlocked": self.unlocked})
        _put_optional(out, "unlockedAt", _optional_iso(self.unlocked_at))
        return out

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> Achievement:
        data = _expect_object(payload, "Achievement", required=("id", "name"))
        return cls(
            id=_as_str(data["id"], "Achievement.id"),
            name=_as_str(data["name"], "Achievement.name"),
            unlocked=_as_bool(data.get("unlocked", False), "Achievement.unlocked"),
            unlocked_at=_as_optional_datetime(data.get("unlockedAt"), "Achievement.unlockedAt"),
            extra=_extra_fields(data, _ACHIEVEMENT_FIELDS),
        )


@dataclass(slots=True)
class User:
    """The single local user profile."""

    id: str
    name: str
    level: Number
    experience: Number
    body: Number
    mind: Number
    soul: Number
    created_at: datetime
    updated_at: datetime
    achievements: list[Achievement] = field(default_factory=list)
    # Entries that failed the shape check; written back unchanged.
    unparsed_achievements: list[JSONValue] = field(default_factory=list)
    bobr_stage: BobrStage = BobrStage.HATCHLING
    dam_progress: Number = 0
    extra: dict[str, JSONValue] = field(default_factory=dict)

    def to_dict(self) -> dict[str, JSONValue]:
        out: dict[str, JSONValue] = dict(self.extra)
        out.update(
            {
                "id": self.id,
                "name": self.name,
                "level": self.level,
                "experience": self.experience,
                "body": self.body,
                "mind": self.mind,
                "soul": self.soul,
                "achievements": [
                    *(item.to_dict() for item in self.achievements),
                    *self.unparsed_achievements,
                ],
                "createdAt": to_iso8601z(self.created_at),
                "updatedAt": to_iso8601z(self.updated_at),
                "bobrStage": self.bobr_stage.value,
                "damProgress": self.dam_progress,
            }
        )
        return out

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> User:
        data = _expect_object(
            payload,
            "User",
            required=(
                "id",
                "name",
                "level",
                "experience",
                "body",
                "mind",
                "soul",
                "achievements",
                "createdAt",
                "updatedAt",
            ),
        )
        raw_achievements = data["achievements"]
        if not isinstance(raw_achievements, list):
            _fail("User.achievements", f"expected array, got {type(raw_achievements).__name__}")
        # Profiles created before the companion feature lack these two fields.
        raw_stage = data.get("bobrStage") or BobrStage.HATCHLING.value
        raw_progress = data.get("damProgress")
        achievements, unparsed = _decode_achievements(raw_achievements)
        return cls(
            id=_as_str(data["id"], "User.id"),
            name=_as_str(data["name"], "User.name"),
            level=_as_number(data["level"], "User.level"),
            experience=_as_number(data["experience"], "User.experience"),
            body=_as_number(data["body"], "User.body"),
            mind=_as_number(data["mind"], "User.mind"),
            soul=_as_number(data["soul"], "User.soul"),
            created_at=as_utc_datetime(data["createdAt"], "User.createdAt"),
            updated_at=as_utc_datetime(data["updatedAt"], "User.updatedAt"),
            achievements=achievements,
            unparsed_achievements=unparsed,
            bobr_stage=_as_enum(BobrStage, raw_stage, "User.bobrStage"),
            dam_progress=(
                _as_number(raw_progress, "User.damProgress")
                if isinstance(raw_progress, (int, float)) and not isinstance(raw_progress, bool)
                else 0
            ),
            extra=_extra_fields(data, _USER_FIELDS),
        )


_TASK_FIELDS: frozenset[str] = frozenset(
    {
        "id",
        "title",
        "completed",
        "priority",
        "createdAt",
        "updatedAt",
        "categories",
        "description",
        "completedAt",
        "statRewards",
        "difficulty",
    }
)
_HABIT_FIELDS: frozenset[str] = frozenset(
    {
        "id",
        "name",
        "streak",
        "targetFrequency",
        "createdAt",
        "bestStreak",
        "lastCompleted",
        "categories",
        "description",
        "statRewards",
    }
)
_ACHIEVEMENT_FIELDS: frozenset[str] = frozenset({"id", "name", "unlocked", "unlockedAt"})
_USER_FIELDS: frozenset[str] = frozenset(
    {
        "id",
        "name",
        "level",
        "experience",
        "body",
        "mind",
        "soul",
        "achievements",
        "createdAt",
        "updatedAt",
        "bobrStage",
        "damProgress",
    }
)


def _decode_achievements(values: list[object]) -> tuple[list[Achievement], list[JSONValue]]:
    # A malformed achievement entry does not invalidate the whole user.
    decoded: list[Achievement] = []
    unparsed: list[JSONValue] = []
    for index, item in enumerate(values):
        try:
            if not isinstance(item, Mapping):
                _fail(f"User.achievements[{index}]", f"expected object, got {type(item).__name__}")
            decoded.append(Achievement.from_dict(item))
        except RecordShapeError as exc:
            logger.warning(
                "record_shape_invalid", entity="Achievement", index=index, error=str(exc)
            )
            unparsed.append(_as_json_value(item))
    return decoded, unparsed


def as_utc_datetime(value: object, path: str) -> datetime:
    """Rehydrate a datetime from its ISO-8601 text form; naive values are read as UTC."""

    if not isinstance(value, (datetime, str)):
        _fail(path, f"expected datetime or ISO-8601 string, got {type(value).__name__}")
    try:
        if isinstance(value, datetime):
            parsed = value
        else:
            text = value[:-1] + "+00:00" if value.endswith("Z") else value
            parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None or parsed.utcoffset() is None:
            parsed = parsed.replace(tzinfo=UTC)
        # Offsets near datetime.min/max can push the UTC instant out of range.
        return parsed.astimezone(UTC)
    except (ValueError, OverflowError) as exc:
        _fail(path, f"invalid ISO-8601 datetime: {value!r} ({exc})")


def to_iso8601z(value: datetime) -> str:
    normalized = as_utc_datetime(value, "datetime")
    return normalized.isoformat(timespec="microseconds").replace("+00:00", "Z")


def utc_now() -> datetime:
    return datetime.now(UTC)


def _fail(path: str, message: str) -> NoReturn:
    raise RecordShapeError(f"{path}: {message}")


def _expect_object(
    value: object,
    path: str,
    *,
    required: tuple[str, ...],
) -> dict[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")

    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            _fail(path, f"object keys must be strings, got {type(key).__name__}")
        parsed[key] = item

    missing = sorted(key for key in required if key not in parsed)
    if missing:
        _fail(path, f"missing required fields: {missing}")
    return parsed


def _extra_fields(data: Mapping[str, object], known: frozenset[str]) -> dict[str, JSONValue]:
    return {key: _as_json_value(value) for key, value in data.items() if key not in known}


def _as_json_value(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, datetime):
        return to_iso8601z(value)
    if isinstance(value, (list, tuple)):
        return [_as_json_value(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): _as_json_value(item) for key, item in value.items()}
    return str(value)


def _as_str(value: object, path: str) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    return value


def _as_optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    return _as_str(value, path)


def _as_bool(value: object, path: str) -> bool:
    if isinstance(value, bool):
        return value
    _fail(path, f"expected boolean, got {type(value).__name__}")


def _as_number(value: object, path: str) -> Number:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        _fail(path, f"expected number, got {type(value).__name__}")
    if isinstance(value, float) and not math.isfinite(value):
        _fail(path, "must be finite")
    return value


def _as_optional_number(value: object, path: str) -> Number | None:
    if value is None:
        return None
    return _as_number(value, path)


def _as_optional_datetime(value: object, path: str) -> datetime | None:
    if value is None or value == "":
        return None
    return as_utc_datetime(value, path)


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string enum value, got {type(value).__name__}")
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(sorted(str(item.value) for item in enum_type))
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _as_str_list(value: object, path: str) -> list[str]:
    if not isinstance(value, (list, tuple)):
        _fail(path, f"expected array, got {type(value).__name__}")
    return [_as_str(item, f"{path}[{index}]") for index, item in enumerate(value)]


def _as_stat_rewards(value: object, path: str) -> dict[str, JSONValue] | None:
    """Known stats must be numbers; other reward keys are carried through unchanged."""

    if value is None:
        return None
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")
    rewards: dict[str, JSONValue] = {}
    for key, item in value.items():
        if key not in _STAT_REWARD_KEYS:
            rewards[str(key)] = _as_json_value(item)
        elif item is not None:
            rewards[key] = _as_number(item, f"{path}.{key}")
    return rewards


def _optional_iso(value: datetime | None) -> str | None:
    return None if value is None else to_iso8601z(value)


def _optional_rewards(value: dict[str, JSONValue] | None) -> dict[str, JSONValue] | None:
    if value is None:
        return None
    ordered = {key: value[key] for key in _STAT_REWARD_KEYS if key in value}
    ordered.update((key, item) for key, item in value.items() if key not in ordered)
    return ordered


def _put_optional(target: dict[str, JSONValue], key: str, value: JSONValue) -> None:
    if value is not None:
        target[key] = value


__all__ = [
    "Achievement",
    "BobrStage",
    "Habit",
    "JSONScalar",
    "JSONValue",
    "Number",
    "Priority",
    "RecordShapeError",
    "TargetFrequency",
    "Task",
    "User",
    "as_utc_datetime",
    "to_iso8601z",
    "utc_now",
]
