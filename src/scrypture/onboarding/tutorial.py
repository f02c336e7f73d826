"""
scrypture-store: tutorial progression state machine

File: src/scrypture/onboarding/tutorial.py

Purpose
- Track the onboarding tutorial: an ordered template of named steps, the current
  step, per-step completion flags and whole-tutorial completion.
- Persist the state through the generic item accessor of the repository and
  broadcast ``tutorialCompleted`` to subscribers when the last required step is done.

Functional requirements
- ``start`` only acts on a tutorial that has not been started.
- ``complete_step`` on an unknown id returns False and changes nothing.
- Completion requires every ``required`` step; it is stamped, persisted and
  broadcast exactly once per run (until ``reset``).
- Stored state is upgraded by an explicit migration chain keyed by
  ``schemaVersion``, then reconciled with the current template so that adding a
  step never erases progress on earlier ones.

Non-functional requirements
- Subscribers never affect the state machine; their failures are recorded on the
  event bus and logged.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import Final, Protocol

import structlog

from scrypture.constants import TUTORIAL_SCHEMA_VERSION, TUTORIAL_STATE_KEY
from scrypture.domain.events import EventType
from scrypture.domain.models import (
    JSONValue,
    RecordShapeError,
    as_utc_datetime,
    to_iso8601z,
    utc_now,
)
from scrypture.observability.events import DispatchError, EventBus, Subscriber

logger = structlog.get_logger(__name__)


class TutorialStatus(StrEnum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class TutorialStep:
    id: str
    title: str
    completed: bool = False
    required: bool = True

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "title": self.title,
            "completed": self.completed,
            "required": self.required,
        }


@dataclass(slots=True)
class TutorialState:
    """Whole-tutorial state; ``steps`` preserves template order."""

    completed: bool = False
    current_step: str | None = None
    steps: dict[str, TutorialStep] = field(default_factory=dict)
    completed_at: datetime | None = None
    schema_version: int = TUTORIAL_SCHEMA_VERSION

    def copy(self) -> TutorialState:
        return replace(self, steps=dict(self.steps))

    def to_dict(self) -> dict[str, JSONValue]:
        out: dict[str, JSONValue] = {
            "completed": self.completed,
            "currentStep": self.current_step,
            "steps": {step_id: step.to_dict() for step_id, step in self.steps.items()},
            "schemaVersion": self.schema_version,
        }
        if self.completed_at is not None:
            out["completedAt"] = to_iso8601z(self.completed_at)
        return out


DEFAULT_STEPS: Final[tuple[TutorialStep, ...]] = (
    TutorialStep("welcome", "Welcome to Scrypture"),
    TutorialStep("bobrIntroduction", "Meet your companion Bóbr"),
    TutorialStep("damMetaphor", "Learn about the dam building metaphor"),
    TutorialStep("firstTask", "Create your first task"),
    TutorialStep("taskCompletion", "Complete your first task"),
    TutorialStep("hatchlingEvolution", "See Bóbr grow with your progress"),
    TutorialStep("completion", "Tutorial completed"),
)


class ItemStore(Protocol):
    def get_item(self, key: str) -> object | None: ...

    def set_item(self, key: str, value: object) -> bool: ...


StateMigration = Callable[[Mapping[str, object]], dict[str, object]]


def _migrate_v0_to_v1(payload: Mapping[str, object]) -> dict[str, object]:
    # Unversioned records: loose truthiness on flags, steps possibly missing.
    raw_steps = payload.get("steps")
    steps: dict[str, object] = {}
    if isinstance(raw_steps, Mapping):
        for step_id, raw_step in raw_steps.items():
            if isinstance(step_id, str) and isinstance(raw_step, Mapping):
                steps[step_id] = {"completed": bool(raw_step.get("completed"))}
    current = payload.get("currentStep")
    return {
        "completed": bool(payload.get("completed")),
        "currentStep": current if isinstance(current, str) and current else None,
        "steps": steps,
        "completedAt": payload.get("completedAt") or None,
        "schemaVersion": 1,
    }


_STATE_MIGRATIONS: Final[dict[int, StateMigration]] = {0: _migrate_v0_to_v1}


def migrate_state_payload(payload: Mapping[str, object]) -> dict[str, object]:
    """Run the migration chain from the stored ``schemaVersion`` up to the current one."""

    raw_version = payload.get("schemaVersion", 0)
    version = 0
    if isinstance(raw_version, int) and not isinstance(raw_version, bool):
        version = max(raw_version, 0)
    migrated = dict(payload)
    if version > TUTORIAL_SCHEMA_VERSION:
        logger.warning(
            "tutorial_state_newer_schema",
            stored=version,
            supported=TUTORIAL_SCHEMA_VERSION,
        )
        return migrated
    while version < TUTORIAL_SCHEMA_VERSION:
        migration = _STATE_MIGRATIONS.get(version)
        if migration is None:
            raise RecordShapeError(f"TutorialState.schemaVersion: no migration from {version}")
        migrated = migration(migrated)
        logger.info("tutorial_state_migrated", from_version=version, to_version=version + 1)
        version += 1
    return migrated


def reconcile_with_template(
    payload: Mapping[str, object],
    template: Sequence[TutorialStep],
) -> TutorialState:
    """Apply stored flags onto the template; new steps are Pending, unknown ones dropped."""

    raw_steps = payload.get("steps")
    stored_steps = raw_steps if isinstance(raw_steps, Mapping) else {}
    steps: dict[str, TutorialStep] = {}
    for definition in template:
        stored = stored_steps.get(definition.id)
        completed = isinstance(stored, Mapping) and stored.get("completed") is True
        steps[definition.id] = replace(definition, completed=completed)

    completed = payload.get("completed") is True
    current = payload.get("currentStep")
    current_step = current if isinstance(current, str) and current in steps else None
    completed_at: datetime | None = None
    raw_completed_at = payload.get("completedAt")
    if raw_completed_at is not None:
        try:
            completed_at = as_utc_datetime(raw_completed_at, "TutorialState.completedAt")
        except RecordShapeError as exc:
            logger.warning("tutorial_state_field_invalid", field="completedAt", error=str(exc))

    return TutorialState(
        completed=completed,
        current_step=None if completed else current_step,
        steps=steps,
        completed_at=completed_at,
        schema_version=TUTORIAL_SCHEMA_VERSION,
    )


class TutorialStateMachine:
    """Step-ordered tutorial progression persisted under ``tutorial_state``."""

    def __init__(
        self,
        store: ItemStore,
        *,
        steps: Sequence[TutorialStep] = DEFAULT_STEPS,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
        storage_key: str = TUTORIAL_STATE_KEY,
    ) -> None:
        template = tuple(steps)
        if not template:
            raise ValueError("tutorial template must contain at least one step")
        ids = [step.id for step in template]
        if len(set(ids)) != len(ids):
            raise ValueError(f"tutorial step ids must be unique: {ids}")

        self._store = store
        self._template = tuple(replace(step, completed=False) for step in template)
        self._order = tuple(ids)
        self._events = event_bus if event_bus is not None else EventBus()
        self._clock = clock
        self._key = storage_key
        self._state = self._load()

    # Observers

    def subscribe(self, callback: Subscriber) -> int:
        """Register a ``tutorialCompleted`` listener; returns a token for :meth:`unsubscribe`."""

        return self._events.subscribe(EventType.TUTORIAL_COMPLETED, callback)

    def unsubscribe(self, token: int) -> bool:
        return self._events.unsubscribe(token)

    def dispatch_errors(self) -> tuple[DispatchError, ...]:
        return self._events.dispatch_errors()

    # Queries

    @property
    def status(self) -> TutorialStatus:
        if self._state.completed:
            return TutorialStatus.COMPLETED
        if self._state.current_step is not None or any(
            step.completed for step in self._state.steps.values()
        ):
            return TutorialStatus.IN_PROGRESS
        return TutorialStatus.NOT_STARTED

    @property
    def is_completed(self) -> bool:
        return self._state.completed

    @property
    def current_step(self) -> str | None:
        return self._state.current_step

    @property
    def step_order(self) -> tuple[str, ...]:
        return self._order

    def steps(self) -> list[TutorialStep]:
        return list(self._state.steps.values())

    def step(self, step_id: str) -> TutorialStep | None:
        return self._state.steps.get(step_id)

    def state(self) -> TutorialState:
        return self._state.copy()

    def progress(self) -> int:
        if self._state.completed:
            return 100
        required = [step for step in self._state.steps.values() if step.required]
        if not required:
            return 0
        done = sum(1 for step in required if step.completed)
        return math.floor(100 * done / len(required) + 0.5)

    def should_show_step(self, step_id: str) -> bool:
        step = self._state.steps.get(step_id)
        return step is not None and self._state.current_step == step_id and not step.completed

    # Commands

    def start(self) -> bool:
        """Complete the first step and point at the next one. No-op unless NOT_STARTED."""

        if self.status is not TutorialStatus.NOT_STARTED:
            return False
        first = self._order[0]
        self._mark(first)
        self._state.current_step = self._next_step(first)
        self._persist()
        logger.info("tutorial_started", current_step=self._state.current_step)
        self._complete_if_done()
        return True

    def complete_step(self, step_id: str) -> bool:
        if step_id not in self._state.steps:
            logger.info("tutorial_step_unknown", step_id=step_id)
            return False
        self._mark(step_id)
        if not self._state.completed:
            self._state.current_step = self._next_step(step_id)
        self._persist()
        self._complete_if_done()
        return True

    def skip(self) -> None:
        if self._state.completed:
            return
        for step_id in self._order:
            self._mark(step_id)
        logger.info("tutorial_skipped")
        self._complete()

    def reset(self) -> None:
        self._state = self._fresh_state()
        self._persist()
        logger.info("tutorial_reset")

    def reinitialize(self) -> None:
        """Return to the template in memory without touching storage."""

        self._state = self._fresh_state()

    # Internals

    def _mark(self, step_id: str) -> None:
        step = self._state.steps[step_id]
        if not step.completed:
            self._state.steps[step_id] = replace(step, completed=True)

    def _next_step(self, step_id: str) -> str | None:
        index = self._order.index(step_id)
        if index + 1 < len(self._order):
            return self._order[index + 1]
        return None

    def _all_required_done(self) -> bool:
        return all(step.completed for step in self._state.steps.values() if step.required)

    def _complete_if_done(self) -> None:
        if not self._state.completed and self._all_required_done():
            self._complete()

    def _complete(self) -> None:
        self._state.completed = True
        self._state.current_step = None
        self._state.completed_at = self._clock()
        self._persist()
        completed_at = to_iso8601z(self._state.completed_at)
        logger.info("tutorial_completed", completed_at=completed_at)
        self._events.emit(
            EventType.TUTORIAL_COMPLETED,
            {"completedAt": completed_at, "progress": self.progress()},
        )

    def _persist(self) -> bool:
        return self._store.set_item(self._key, self._state.to_dict())

    def _fresh_state(self) -> TutorialState:
        return TutorialState(steps={step.id: step for step in self._template})

    def _load(self) -> TutorialState:
        raw = self._store.get_item(self._key)
        if raw is None:
            return self._fresh_state()
        if not isinstance(raw, Mapping):
            logger.warning(
                "tutorial_state_corrupt",
                key=self._key,
                error=f"expected object, got {type(raw).__name__}",
            )
            return self._fresh_state()
        try:
            migrated = migrate_state_payload(raw)
        except RecordShapeError as exc:
            logger.warning("tutorial_state_corrupt", key=self._key, error=str(exc))
            return self._fresh_state()
        return reconcile_with_template(migrated, self._template)


__all__ = [
    "DEFAULT_STEPS",
    "ItemStore",
    "StateMigration",
    "TutorialState",
    "TutorialStateMachine",
    "TutorialStatus",
    "TutorialStep",
    "migrate_state_payload",
    "reconcile_with_template",
]
