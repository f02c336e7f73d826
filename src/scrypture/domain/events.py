"""Domain event definitions broadcast to in-process subscribers."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from scrypture.domain.models import JSONValue, to_iso8601z, utc_now


class EventType(StrEnum):
    """Application-wide events emitted by the core."""

    TUTORIAL_COMPLETED = "tutorialCompleted"


@dataclass(frozen=True, slots=True)
class ScryptureEvent:
    """Serializable event envelope handed to subscribers."""

    event_type: EventType
    payload: dict[str, JSONValue]
    timestamp: datetime = field(default_factory=utc_now)
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": to_iso8601z(self.timestamp),
            "payload": dict(self.payload),
        }

    @classmethod
    def create(
        cls,
        event_type: EventType | str,
        payload: Mapping[str, JSONValue],
    ) -> ScryptureEvent:
        return cls(event_type=EventType(event_type), payload=dict(payload))


__all__ = ["EventType", "ScryptureEvent"]
