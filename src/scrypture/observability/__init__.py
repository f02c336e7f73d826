"""Public observability primitives: structured logging and the in-process event bus."""

from scrypture.observability.events import DispatchError, EventBus, Subscriber
from scrypture.observability.logging import (
    LOG_FORMATS,
    LOG_LEVELS,
    LogFormat,
    configure_logging,
    reset_logging,
)

__all__ = [
    "DispatchError",
    "EventBus",
    "LOG_FORMATS",
    "LOG_LEVELS",
    "LogFormat",
    "Subscriber",
    "configure_logging",
    "reset_logging",
]
