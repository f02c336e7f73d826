"""Shared fixtures for scrypture-store unit tests."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta

import pytest

from scrypture.observability.logging import reset_logging
from scrypture.persistence.kv_store import KeyValueStore, MemoryBackend
from scrypture.persistence.repositories import TypedRepository

BASE_TS = datetime(2026, 2, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime = BASE_TS) -> None:
        self._current = start

    def __call__(self) -> datetime:
        value = self._current
        self._current = value + timedelta(seconds=1)
        return value


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    yield
    reset_logging()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def store(backend: MemoryBackend) -> KeyValueStore:
    return KeyValueStore(backend)


@pytest.fixture
def repository(store: KeyValueStore) -> TypedRepository:
    return TypedRepository(store)
