"""
scrypture-store: SQLite-backed key-value medium

File: src/scrypture/persistence/state_db.py

Purpose
- Durable host medium for :class:`~scrypture.persistence.kv_store.KeyValueStore`:
  one ``kv_items`` row per storage key, holding the JSON text.

Functional requirements
- Schema changes ship as numbered migrations whose SHA-256 checksum is recorded
  in ``schema_versions``; an edited migration or a newer database is refused.
- Busy/locked errors are retried with exponential backoff a bounded number of times.
- Every SQLite failure surfaces as a :class:`StateDBError`, which the key-value
  store contains and reports as a failed read or write.
"""

from __future__ import annotations

import hashlib
import sqlite3
import time
from collections.abc import Iterator, Sequence
from contextlib import closing, contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from scrypture.constants import STATE_DB_SCHEMA_VERSION
from scrypture.domain.models import to_iso8601z, utc_now
from scrypture.persistence.kv_store import StorageError, StorageQuotaError

SQLValue = str | int | float | bytes | None
SQLParams = Sequence[SQLValue]

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 4
DEFAULT_BUSY_RETRY_BACKOFF_MS: Final[int] = 25


class StateDBError(StorageError):
    """Base class for SQLite medium errors."""


class StateDBBusyError(StateDBError):
    """The database stayed locked through every retry."""


class StateDBMigrationError(StateDBError):
    """Stored schema history does not match the migrations shipped here."""


class StateDBCorruptionError(StateDBError):
    """SQLite reports the file is not a usable database."""


_CREATE_HISTORY: Final[str] = """
CREATE TABLE IF NOT EXISTS schema_versions (
    version INTEGER PRIMARY KEY CHECK (version > 0),
    name TEXT NOT NULL,
    checksum TEXT NOT NULL CHECK (length(checksum) = 64),
    applied_at TEXT NOT NULL
)
"""

_SELECT_HISTORY: Final[str] = (
    "SELECT version, name, checksum, applied_at FROM schema_versions ORDER BY version"
)
_INSERT_HISTORY: Final[str] = (
    "INSERT INTO schema_versions (version, name, checksum, applied_at) VALUES (?, ?, ?, ?)"
)

_SELECT_VALUE: Final[str] = "SELECT value FROM kv_items WHERE key = ?"
_UPSERT_VALUE: Final[str] = (
    "INSERT INTO kv_items (key, value, updated_at) VALUES (?, ?, ?) "
    "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at"
)
_DELETE_VALUE: Final[str] = "DELETE FROM kv_items WHERE key = ?"
_SELECT_KEYS: Final[str] = "SELECT key FROM kv_items ORDER BY key"
_USAGE_EXCLUDING: Final[str] = (
    "SELECT COALESCE(SUM(length(key) + length(value)), 0) FROM kv_items WHERE key <> ?"
)


@dataclass(frozen=True, slots=True)
class Migration:
    version: int
    name: str
    statements: tuple[str, ...]

    @property
    def checksum(self) -> str:
        digest = hashlib.sha256(f"{self.version}:{self.name}\n".encode())
        for statement in self.statements:
            lines = (line.rstrip() for line in statement.strip().splitlines())
            digest.update("\n".join(lines).encode("utf-8") + b"\n--\n")
        return digest.hexdigest()


@dataclass(frozen=True, slots=True)
class MigrationRecord:
    version: int
    name: str
    checksum: str
    applied_at: str


MIGRATIONS: Final[tuple[Migration, ...]] = (
    Migration(
        version=1,
        name="kv_items_store",
        statements=(
            _CREATE_HISTORY,
            """
            CREATE TABLE IF NOT EXISTS kv_items (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """,
        ),
    ),
)

_BUSY_CODES: Final[frozenset[int]] = frozenset(
    getattr(sqlite3, name)
    for name in ("SQLITE_BUSY", "SQLITE_BUSY_RECOVERY", "SQLITE_BUSY_SNAPSHOT", "SQLITE_LOCKED")
    if isinstance(getattr(sqlite3, name, None), int)
)
_BUSY_MARKERS: Final[tuple[str, ...]] = ("database is locked", "database table is locked")
_CORRUPT_MARKERS: Final[tuple[str, ...]] = (
    "database disk image is malformed",
    "file is not a database",
)


def _is_busy(exc: sqlite3.Error) -> bool:
    if getattr(exc, "sqlite_errorcode", None) in _BUSY_CODES:
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _BUSY_MARKERS)


def _is_corrupt(exc: sqlite3.Error) -> bool:
    text = str(exc).lower()
    return any(marker in text for marker in _CORRUPT_MARKERS)


class SQLiteBackend:
    """:class:`StorageBackend` keeping every key as one row of ``kv_items``.

    Each call opens a short-lived connection; the first one in the life of the
    instance runs pending migrations. ``quota_bytes`` (when given) caps the total
    ``len(key) + len(value)`` across rows and is checked inside the write transaction.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        quota_bytes: int | None = None,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
    ) -> None:
        for label, number in (
            ("quota_bytes", 0 if quota_bytes is None else quota_bytes),
            ("busy_timeout_ms", busy_timeout_ms),
            ("busy_retry_limit", busy_retry_limit),
            ("busy_retry_backoff_ms", busy_retry_backoff_ms),
        ):
            if number < 0:
                raise ValueError(f"{label} must be >= 0")

        self._path = Path(path).expanduser()
        self._quota = quota_bytes
        self._timeout_ms = busy_timeout_ms
        self._retries = busy_retry_limit
        self._backoff_s = busy_retry_backoff_ms / 1000.0
        self._schema_ready = False

    @property
    def path(self) -> Path:
        return self._path

    # StorageBackend

    def get_text(self, key: str) -> str | None:
        with self._session() as conn:
            row = self._run(conn, _SELECT_VALUE, (key,), what=f"read {key!r}").fetchone()
        return None if row is None else str(row[0])

    def set_text(self, key: str, value: str) -> None:
        with self._session() as conn, self._immediate(conn):
            if self._quota is not None:
                usage = self._run(conn, _USAGE_EXCLUDING, (key,), what="measure usage")
                projected = int(usage.fetchone()[0]) + len(key) + len(value)
                if projected > self._quota:
                    raise StorageQuotaError(
                        f"quota exceeded writing {key!r} ({projected} > {self._quota})"
                    )
            stamp = to_iso8601z(utc_now())
            self._run(conn, _UPSERT_VALUE, (key, value, stamp), what=f"write {key!r}")

    def remove(self, key: str) -> None:
        with self._session() as conn:
            self._run(conn, _DELETE_VALUE, (key,), what=f"remove {key!r}")

    def keys(self) -> list[str]:
        with self._session() as conn:
            rows = self._run(conn, _SELECT_KEYS, (), what="list keys").fetchall()
        return [str(row[0]) for row in rows]

    # Maintenance

    def migrate(self) -> int:
        """Apply pending migrations and return the resulting schema version."""

        with self._open() as conn:
            return self._apply_migrations(conn)

    def schema_history(self) -> list[MigrationRecord]:
        with self._session() as conn:
            return list(self._history(conn).values())

    def backup(self, destination: str | Path) -> Path:
        """Write a consistent copy of the database via the SQLite online backup API."""

        target_path = Path(destination).expanduser()
        target_path.parent.mkdir(parents=True, exist_ok=True)
        with self._session() as conn:
            try:
                with closing(sqlite3.connect(target_path)) as target:
                    conn.backup(target)
            except sqlite3.Error as exc:
                raise self._translate(exc, "backup") from exc
        return target_path

    # Internals

    def _apply_migrations(self, conn: sqlite3.Connection) -> int:
        self._run(conn, _CREATE_HISTORY, (), what="create schema_versions")
        history = self._history(conn)
        newest = max(history, default=0)
        if newest > STATE_DB_SCHEMA_VERSION:
            raise StateDBMigrationError(
                f"database schema is newer than supported "
                f"(db={newest}, code={STATE_DB_SCHEMA_VERSION})"
            )

        for migration in MIGRATIONS:
            if migration.version > STATE_DB_SCHEMA_VERSION:
                break
            recorded = history.get(migration.version)
            if recorded is None:
                self._apply(conn, migration)
            elif recorded.checksum != migration.checksum:
                raise StateDBMigrationError(
                    f"migration checksum mismatch for version {migration.version}: "
                    f"db={recorded.checksum} code={migration.checksum}"
                )

        self._schema_ready = True
        return max(self._history(conn), default=0)

    def _apply(self, conn: sqlite3.Connection, migration: Migration) -> None:
        what = f"apply migration {migration.version}"
        with self._immediate(conn):
            for statement in migration.statements:
                self._run(conn, statement, (), what=what)
            row = (migration.version, migration.name, migration.checksum, to_iso8601z(utc_now()))
            self._run(conn, _INSERT_HISTORY, row, what=what)

    def _history(self, conn: sqlite3.Connection) -> dict[int, MigrationRecord]:
        rows = self._run(conn, _SELECT_HISTORY, (), what="load schema_versions").fetchall()
        history: dict[int, MigrationRecord] = {}
        for version, name, checksum, applied_at in rows:
            if not isinstance(version, int):
                raise StateDBMigrationError("schema_versions.version must be integer")
            history[version] = MigrationRecord(version, str(name), str(checksum), str(applied_at))
        return history

    @contextmanager
    def _open(self) -> Iterator[sqlite3.Connection]:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                self._path, timeout=self._timeout_ms / 1000.0, isolation_level=None
            )
        except (OSError, sqlite3.Error) as exc:
            raise StateDBError(f"cannot open {self._path}: {exc}") from exc
        with closing(conn):
            self._run(conn, f"PRAGMA busy_timeout={self._timeout_ms}", (), what="configure")
            yield conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        with self._open() as conn:
            if not self._schema_ready:
                self._apply_migrations(conn)
            yield conn

    @contextmanager
    def _immediate(self, conn: sqlite3.Connection) -> Iterator[None]:
        self._run(conn, "BEGIN IMMEDIATE", (), what="begin transaction")
        try:
            yield
        except Exception:
            self._run(conn, "ROLLBACK", (), what="rollback transaction")
            raise
        self._run(conn, "COMMIT", (), what="commit transaction")

    def _run(
        self,
        conn: sqlite3.Connection,
        sql: str,
        params: SQLParams,
        *,
        what: str,
    ) -> sqlite3.Cursor:
        attempt = 0
        while True:
            try:
                return conn.execute(sql, tuple(params))
            except sqlite3.Error as exc:
                if not _is_busy(exc) or attempt >= self._retries:
                    raise self._translate(exc, what) from exc
            time.sleep(self._backoff_s * 2**attempt)
            attempt += 1

    def _translate(self, exc: sqlite3.Error, what: str) -> StateDBError:
        if _is_corrupt(exc):
            return StateDBCorruptionError(
                f"{what} failed for {self._path}: {exc}. "
                "Point --db at a copy written by `scrypture backup --file PATH`, "
                "or import an export written by `scrypture export -o FILE`."
            )
        if _is_busy(exc):
            return StateDBBusyError(
                f"{what} hit SQLITE_BUSY for {self._path} after "
                f"{self._retries + 1} attempt(s): {exc}"
            )
        return StateDBError(f"{what} failed for {self._path}: {exc}")


__all__ = [
    "DEFAULT_BUSY_RETRY_BACKOFF_MS",
    "DEFAULT_BUSY_RETRY_LIMIT",
    "DEFAULT_BUSY_TIMEOUT_MS",
    "MIGRATIONS",
    "Migration",
    "MigrationRecord",
    "SQLParams",
    "SQLValue",
    "SQLiteBackend",
    "StateDBBusyError",
    "StateDBCorruptionError",
    "StateDBError",
    "StateDBMigrationError",
]
