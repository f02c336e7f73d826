"""In-process event bus with subscriber isolation and a bounded replay buffer."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Final

import structlog

from scrypture.domain.events import EventType, ScryptureEvent
from scrypture.domain.models import JSONValue

Subscriber = Callable[[ScryptureEvent], object]

_DEFAULT_ERROR_BUFFER: Final[int] = 256

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class DispatchError:
    """Subscriber failure captured without interrupting the publisher."""

    event_id: str
    target: str
    error_type: str
    message: str


@dataclass(frozen=True, slots=True)
class _Subscription:
    token: int
    event_type: EventType | None
    callback: Subscriber


class EventBus:
    """Fire-and-forget fanout: publishers never wait on or fail because of subscribers."""

    def __init__(self, *, buffer_size: int = 64) -> None:
        if not isinstance(buffer_size, int) or isinstance(buffer_size, bool):
            raise ValueError(f"buffer_size must be an integer, got {type(buffer_size).__name__}")
        if buffer_size <= 0:
            raise ValueError("buffer_size must be > 0")

        self._buffer = deque[ScryptureEvent](maxlen=buffer_size)
        self._subscriptions: dict[int, _Subscription] = {}
        self._dispatch_errors = deque[DispatchError](maxlen=_DEFAULT_ERROR_BUFFER)
        self._next_token = 1

    def subscribe(self, event_type: EventType | str | None, callback: Subscriber) -> int:
        """Subscribe to one event type, or to every event when ``event_type`` is ``None``."""

        if not callable(callback):
            raise ValueError("callback must be callable")
        normalized = None if event_type is None else EventType(event_type)

        token = self._next_token
        self._next_token += 1
        self._subscriptions[token] = _Subscription(
            token=token, event_type=normalized, callback=callback
        )
        return token

    def unsubscribe(self, token: int) -> bool:
        """Remove a subscription. Returns ``True`` when the token existed."""

        return self._subscriptions.pop(token, None) is not None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: ScryptureEvent) -> tuple[DispatchError, ...]:
        """Deliver ``event`` to matching subscribers in subscription order."""

        if not isinstance(event, ScryptureEvent):
            raise ValueError(f"event must be ScryptureEvent, got {type(event).__name__}")
        self._buffer.append(event)

        errors: list[DispatchError] = []
        for subscription in tuple(self._subscriptions.values()):
            if subscription.event_type is not None and subscription.event_type != event.event_type:
                continue
            try:
                subscription.callback(event)
            except Exception as exc:  # noqa: BLE001 - subscribers must not break publishers
                error = DispatchError(
                    event_id=event.event_id,
                    target=_callback_name(subscription.callback),
                    error_type=type(exc).__name__,
                    message=str(exc),
                )
                logger.warning(
                    "event_subscriber_failed",
                    event_type=event.event_type.value,
                    target=error.target,
                    error_type=error.error_type,
                    error=error.message,
                )
                errors.append(error)

        self._dispatch_errors.extend(errors)
        return tuple(errors)

    def emit(
        self,
        event_type: EventType | str,
        payload: Mapping[str, JSONValue],
    ) -> tuple[ScryptureEvent, tuple[DispatchError, ...]]:
        """Create and publish an event."""

        event = ScryptureEvent.create(event_type, payload)
        return event, self.publish(event)

    def replay(self, *, event_type: EventType | str | None = None) -> tuple[ScryptureEvent, ...]:
        """Return buffered events in publish order, optionally filtered by type."""

        wanted = None if event_type is None else EventType(event_type)
        return tuple(
            event for event in self._buffer if wanted is None or event.event_type == wanted
        )

    def dispatch_errors(self) -> tuple[DispatchError, ...]:
        return tuple(self._dispatch_errors)


def _callback_name(callback: Subscriber) -> str:
    name = getattr(callback, "__qualname__", None) or getattr(callback, "__name__", None)
    if isinstance(name, str) and name:
        return name
    return type(callback).__name__


__all__ = ["DispatchError", "EventBus", "Subscriber"]
