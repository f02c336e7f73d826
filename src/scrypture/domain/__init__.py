"""
scrypture-store: domain package

File: src/scrypture/domain/__init__.py

Purpose
- Entity types shared by the storage and onboarding layers: Task, Habit, User,
  Achievement, and the event envelope.

Functional requirements
- Domain objects are JSON-serializable and free of IO side effects.
"""

from scrypture.domain.events import EventType, ScryptureEvent
from scrypture.domain.models import (
    Achievement,
    BobrStage,
    Habit,
    JSONValue,
    Priority,
    RecordShapeError,
    TargetFrequency,
    Task,
    User,
)

__all__ = [
    "Achievement",
    "BobrStage",
    "EventType",
    "Habit",
    "JSONValue",
    "Priority",
    "RecordShapeError",
    "ScryptureEvent",
    "TargetFrequency",
    "Task",
    "User",
]
