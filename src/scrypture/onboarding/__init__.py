"""
scrypture-store: onboarding package

File: src/scrypture/onboarding/__init__.py

Purpose
- The tutorial progression state machine and its persisted state types.
"""

from scrypture.onboarding.tutorial import (
    DEFAULT_STEPS,
    TutorialState,
    TutorialStateMachine,
    TutorialStatus,
    TutorialStep,
    migrate_state_payload,
    reconcile_with_template,
)

__all__ = [
    "DEFAULT_STEPS",
    "TutorialState",
    "TutorialStateMachine",
    "TutorialStatus",
    "TutorialStep",
    "migrate_state_payload",
    "reconcile_with_template",
]
