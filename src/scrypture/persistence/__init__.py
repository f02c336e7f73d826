"""
scrypture-store: persistence package

File: src/scrypture/persistence/__init__.py

Purpose
- Key-value storage wrapper, SQLite medium, typed repositories and the backup
  manager.
"""

from scrypture.persistence.backup import BackupManager, Snapshot, is_supported_version
from scrypture.persistence.kv_store import (
    KeyValueStore,
    MemoryBackend,
    StorageBackend,
    StorageError,
    StorageQuotaError,
    StorageStats,
    StorageUnavailableError,
)
from scrypture.persistence.repositories import TypedRepository, decode_records
from scrypture.persistence.state_db import (
    SQLiteBackend,
    StateDBBusyError,
    StateDBCorruptionError,
    StateDBError,
    StateDBMigrationError,
)

__all__ = [
    "BackupManager",
    "KeyValueStore",
    "MemoryBackend",
    "SQLiteBackend",
    "Snapshot",
    "StateDBBusyError",
    "StateDBCorruptionError",
    "StateDBError",
    "StateDBMigrationError",
    "StorageBackend",
    "StorageError",
    "StorageQuotaError",
    "StorageStats",
    "StorageUnavailableError",
    "TypedRepository",
    "decode_records",
    "is_supported_version",
]
