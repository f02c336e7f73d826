"""
scrypture-store: key-value storage wrapper

File: src/scrypture/persistence/kv_store.py

Purpose
- Isolate every interaction with the host's persistent key-value medium behind
  get/set/remove keyed by string, with JSON encoding.

Functional requirements
- Availability is checked once at construction (write + delete a marker key).
  An unavailable store turns every operation into a no-op that reports failure.
- Nothing raises past this boundary: reads return ``None`` and writes return
  ``False`` on unavailable storage, parse failures, or backend errors.
- No retries; a failed write is reported once and the caller decides what to do.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Final, Protocol, runtime_checkable

import structlog

from scrypture.constants import DEFAULT_QUOTA_BYTES
from scrypture.domain.models import to_iso8601z

_CHECK_KEY: Final[str] = "__storage_test__"
_CHECK_VALUE: Final[str] = "test"

logger = structlog.get_logger(__name__)


class StorageError(RuntimeError):
    """Base class for host storage failures raised by backends."""


class StorageUnavailableError(StorageError):
    """Raised by a backend whose medium cannot be used at all."""


class StorageQuotaError(StorageError):
    """Raised by a backend when a write would exceed its quota."""


@runtime_checkable
class StorageBackend(Protocol):
    """Raw text medium. Implementations may raise; :class:`KeyValueStore` contains it."""

    def get_text(self, key: str) -> str | None: ...

    def set_text(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


class MemoryBackend:
    """Process-local backend, also used as the substitutable test double."""

    def __init__(self, *, quota_bytes: int | None = None, fail_check: bool = False) -> None:
        if quota_bytes is not None and quota_bytes < 0:
            raise ValueError("quota_bytes must be >= 0")
        self._items: dict[str, str] = {}
        self._quota_bytes = quota_bytes
        self._fail_check = fail_check

    def get_text(self, key: str) -> str | None:
        return self._items.get(key)

    def set_text(self, key: str, value: str) -> None:
        if self._fail_check and key == _CHECK_KEY:
            raise StorageUnavailableError("storage medium is disabled")
        if self._quota_bytes is not None:
            projected = self.used_chars() - len(self._items.get(key, "")) + len(value)
            if projected > self._quota_bytes:
                raise StorageQuotaError(
                    f"quota exceeded writing {key!r} ({projected} > {self._quota_bytes})"
                )
        self._items[key] = value

    def remove(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._items)

    def used_chars(self) -> int:
        return sum(len(key) + len(value) for key, value in self._items.items())


@dataclass(frozen=True, slots=True)
class StorageStats:
    """Usage across known keys relative to an assumed quota."""

    used: int
    available: int
    percentage: float

    def to_dict(self) -> dict[str, int | float]:
        return {"used": self.used, "available": self.available, "percentage": self.percentage}


_CONTAINED_ERRORS: Final[tuple[type[BaseException], ...]] = (StorageError, OSError)


class KeyValueStore:
    """JSON get/set/remove over a :class:`StorageBackend` with error containment."""

    def __init__(
        self,
        backend: StorageBackend,
        *,
        quota_bytes: int = DEFAULT_QUOTA_BYTES,
    ) -> None:
        if quota_bytes <= 0:
            raise ValueError("quota_bytes must be > 0")
        self._backend = backend
        self._quota_bytes = quota_bytes
        self._available = self._check_availability()

    @property
    def is_available(self) -> bool:
        return self._available

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    def get(self, key: str) -> object | None:
        """Return the decoded value for ``key`` or ``None`` when absent or unreadable."""

        text = self.get_text(key)
        if not text:
            return None
        try:
            return json.loads(text)
        except (ValueError, RecursionError) as exc:
            logger.error("storage_read_failed", key=key, reason="malformed_json", error=str(exc))
            return None

    def get_text(self, key: str) -> str | None:
        """Return the raw stored text for ``key`` without decoding it."""

        if not self._available:
            logger.warning("storage_unavailable", operation="get", key=key)
            return None
        try:
            return self._backend.get_text(key)
        except _CONTAINED_ERRORS as exc:
            logger.error("storage_read_failed", key=key, error=str(exc))
            return None

    def set(self, key: str, value: object) -> bool:
        """Encode ``value`` as JSON and write it. Returns ``False`` instead of raising."""

        if not self._available:
            logger.warning("storage_unavailable", operation="set", key=key)
            return False
        try:
            text = encode_json(value)
        except (TypeError, ValueError, RecursionError) as exc:
            logger.error("storage_write_failed", key=key, reason="unserializable", error=str(exc))
            return False
        try:
            self._backend.set_text(key, text)
        except _CONTAINED_ERRORS as exc:
            logger.error(
                "storage_write_failed",
                key=key,
                reason=type(exc).__name__,
                error=str(exc),
            )
            return False
        return True

    def remove(self, key: str) -> bool:
        """Delete ``key``. Returns ``False`` instead of raising."""

        if not self._available:
            logger.warning("storage_unavailable", operation="remove", key=key)
            return False
        try:
            self._backend.remove(key)
        except _CONTAINED_ERRORS as exc:
            logger.error("storage_remove_failed", key=key, error=str(exc))
            return False
        return True

    def usage(self, keys: Iterable[str]) -> StorageStats:
        """Characters stored under ``keys`` relative to the configured quota."""

        if not self._available:
            return StorageStats(used=0, available=0, percentage=0.0)
        total = 0
        for key in keys:
            try:
                text = self._backend.get_text(key)
            except _CONTAINED_ERRORS as exc:
                logger.error("storage_usage_failed", key=key, error=str(exc))
                return StorageStats(used=0, available=0, percentage=0.0)
            if isinstance(text, str):
                total += len(text)
        percentage = round(total / self._quota_bytes * 100, 2)
        return StorageStats(used=total, available=self._quota_bytes, percentage=percentage)

    def _check_availability(self) -> bool:
        try:
            self._backend.set_text(_CHECK_KEY, _CHECK_VALUE)
            self._backend.remove(_CHECK_KEY)
        except _CONTAINED_ERRORS as exc:
            logger.warning("storage_check_failed", error=str(exc))
            return False
        return True


def encode_json(value: object, *, indent: int | None = None) -> str:
    """JSON text for persisted values; datetimes become ISO-8601 ``Z`` text.

    Compact by default; ``indent`` produces the human-readable export form.
    """

    return json.dumps(
        value,
        default=_json_default,
        ensure_ascii=False,
        indent=indent,
        separators=(",", ": ") if indent is not None else (",", ":"),
        allow_nan=False,
    )


def _json_default(value: object) -> object:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(value, datetime):
        return to_iso8601z(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


__all__ = [
    "KeyValueStore",
    "MemoryBackend",
    "StorageBackend",
    "StorageError",
    "StorageQuotaError",
    "StorageStats",
    "StorageUnavailableError",
    "encode_json",
]
