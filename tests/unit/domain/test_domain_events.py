"""Unit tests for the domain event envelope."""

from __future__ import annotations

import json

import pytest

from scrypture.domain.events import EventType, ScryptureEvent


def test_create_normalizes_event_type_and_copies_payload() -> None:
    payload = {"progress": 100}
    event = ScryptureEvent.create("tutorialCompleted", payload)
    payload["progress"] = 0

    assert event.event_type is EventType.TUTORIAL_COMPLETED
    assert event.payload == {"progress": 100}


def test_to_dict_is_json_serializable() -> None:
    event = ScryptureEvent.create(EventType.TUTORIAL_COMPLETED, {"completedAt": None})

    encoded = event.to_dict()

    assert encoded["event_type"] == "tutorialCompleted"
    assert encoded["timestamp"].endswith("Z")
    json.dumps(encoded)


def test_unknown_event_type_is_rejected() -> None:
    with pytest.raises(ValueError):
        ScryptureEvent.create("dataCleared", {})


def test_event_ids_are_unique() -> None:
    first = ScryptureEvent.create(EventType.TUTORIAL_COMPLETED, {})
    second = ScryptureEvent.create(EventType.TUTORIAL_COMPLETED, {})

    assert first.event_id != second.event_id
