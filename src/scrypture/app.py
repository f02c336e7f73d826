"""
scrypture-store: application wiring

File: src/scrypture/app.py

Purpose
- Construct the storage handle once and pass it explicitly to the repository,
  backup manager and tutorial state machine.

Functional requirements
- The same :class:`KeyValueStore` instance backs every component for the life
  of the process; tests substitute :class:`MemoryBackend`.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

import structlog

from scrypture.constants import DEFAULT_QUOTA_BYTES
from scrypture.observability.events import EventBus
from scrypture.onboarding.tutorial import TutorialStateMachine
from scrypture.persistence.backup import BackupManager
from scrypture.persistence.kv_store import KeyValueStore, MemoryBackend, StorageBackend
from scrypture.persistence.repositories import TypedRepository
from scrypture.persistence.state_db import DEFAULT_BUSY_TIMEOUT_MS, SQLiteBackend

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ScryptureApp:
    store: KeyValueStore
    repository: TypedRepository
    backups: BackupManager
    tutorial: TutorialStateMachine
    events: EventBus

    @classmethod
    def from_backend(
        cls,
        backend: StorageBackend,
        *,
        quota_bytes: int = DEFAULT_QUOTA_BYTES,
        event_bus: EventBus | None = None,
    ) -> ScryptureApp:
        store = KeyValueStore(backend, quota_bytes=quota_bytes)
        repository = TypedRepository(store)
        events = event_bus if event_bus is not None else EventBus()
        return cls(
            store=store,
            repository=repository,
            backups=BackupManager(repository),
            tutorial=TutorialStateMachine(repository, event_bus=events),
            events=events,
        )

    @classmethod
    def in_memory(cls, *, quota_bytes: int = DEFAULT_QUOTA_BYTES) -> ScryptureApp:
        return cls.from_backend(MemoryBackend(), quota_bytes=quota_bytes)


def build_app(config: Mapping[str, object]) -> ScryptureApp:
    """Build the application from a validated config mapping."""

    storage = config.get("storage")
    settings: Mapping[str, object] = storage if isinstance(storage, Mapping) else {}
    quota = settings.get("quota_bytes", DEFAULT_QUOTA_BYTES)
    quota_bytes = quota if isinstance(quota, int) else DEFAULT_QUOTA_BYTES

    backend: StorageBackend
    if settings.get("backend") == "memory":
        backend = MemoryBackend(quota_bytes=quota_bytes)
    else:
        timeout = settings.get("busy_timeout_ms", DEFAULT_BUSY_TIMEOUT_MS)
        backend = SQLiteBackend(
            Path(str(settings.get("path"))),
            quota_bytes=quota_bytes,
            busy_timeout_ms=timeout if isinstance(timeout, int) else DEFAULT_BUSY_TIMEOUT_MS,
        )
    app = ScryptureApp.from_backend(backend, quota_bytes=quota_bytes)
    logger.debug(
        "app_built",
        backend=type(backend).__name__,
        available=app.store.is_available,
        quota_bytes=quota_bytes,
    )
    return app


__all__ = ["ScryptureApp", "build_app"]
