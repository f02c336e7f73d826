"""Stable constants shared across the storage and onboarding layers."""

from __future__ import annotations

from typing import Final

# Persisted key layout. These names are read by existing installs; never rename.
TASKS_KEY: Final[str] = "scrypture_tasks"
HABITS_KEY: Final[str] = "scrypture_habits"
USER_KEY: Final[str] = "scrypture_user"
ACHIEVEMENTS_KEY: Final[str] = "scrypture_achievements"
SETTINGS_KEY: Final[str] = "scrypture_settings"
BACKUP_KEY: Final[str] = "scrypture_backup"
CUSTOM_CATEGORIES_KEY: Final[str] = "scrypture_custom_categories"
TUTORIAL_STATE_KEY: Final[str] = "tutorial_state"

STORAGE_KEYS: Final[dict[str, str]] = {
    "TASKS": TASKS_KEY,
    "HABITS": HABITS_KEY,
    "USER": USER_KEY,
    "ACHIEVEMENTS": ACHIEVEMENTS_KEY,
    "SETTINGS": SETTINGS_KEY,
    "BACKUP": BACKUP_KEY,
}

# Onboarding "start here" bookkeeping cleared together with user data.
START_HERE_KEYS: Final[tuple[str, ...]] = ("startHereGivenTasks", "startHereGivenHabits")

# Schema versions for persisted contracts.
SNAPSHOT_VERSION: Final[str] = "1.0.0"
TUTORIAL_SCHEMA_VERSION: Final[int] = 1
STATE_DB_SCHEMA_VERSION: Final[int] = 1
CONFIG_SCHEMA_VERSION: Final[int] = 1

# Typical host key-value quota (5 MiB).
DEFAULT_QUOTA_BYTES: Final[int] = 5 * 1024 * 1024

PRIORITIES: Final[tuple[str, ...]] = ("low", "medium", "high")
TARGET_FREQUENCIES: Final[tuple[str, ...]] = ("daily", "weekly", "monthly")
BOBR_STAGES: Final[tuple[str, ...]] = ("hatchling", "young", "mature")

__all__ = [
    "ACHIEVEMENTS_KEY",
    "BACKUP_KEY",
    "BOBR_STAGES",
    "CONFIG_SCHEMA_VERSION",
    "CUSTOM_CATEGORIES_KEY",
    "DEFAULT_QUOTA_BYTES",
    "HABITS_KEY",
    "PRIORITIES",
    "SETTINGS_KEY",
    "SNAPSHOT_VERSION",
    "START_HERE_KEYS",
    "STATE_DB_SCHEMA_VERSION",
    "STORAGE_KEYS",
    "TARGET_FREQUENCIES",
    "TASKS_KEY",
    "TUTORIAL_SCHEMA_VERSION",
    "TUTORIAL_STATE_KEY",
    "USER_KEY",
]
