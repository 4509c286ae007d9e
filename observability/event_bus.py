"""
In-process event bus for pipeline notifications.

Publishing is synchronous and fire-and-forget: every subscriber runs in the
publisher's thread, return values are ignored, and a failing subscriber is
logged and counted without affecting the publisher or other subscribers.

Payloads are deep-copied and frozen on publish, so a subscriber can never
write back into pipeline state.

Usage:
    >>> bus = EventBus()
    >>> unsubscribe = bus.subscribe(EventType.DECISION_MADE, print)
    >>> bus.publish(EventType.DECISION_MADE, {"decision": "WAIT"}, source="pipeline")
    >>> unsubscribe()
"""

import copy
import logging
import threading
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

from config.constants import EVENT_HISTORY_SIZE
from config.logging_config import LogCategory
from core.domain.base import now_utc

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    SIGNAL_RECEIVED = "SIGNAL_RECEIVED"
    SIGNAL_EXPIRED = "SIGNAL_EXPIRED"
    PHASE_RECEIVED = "PHASE_RECEIVED"
    PHASE_EXPIRED = "PHASE_EXPIRED"
    DECISION_MADE = "DECISION_MADE"
    TRADE_OPENED = "TRADE_OPENED"
    TRADE_CLOSED = "TRADE_CLOSED"
    LEDGER_ENTRY_CREATED = "LEDGER_ENTRY_CREATED"
    SAFETY_ALERT = "SAFETY_ALERT"
    METRICS_UPDATED = "METRICS_UPDATED"


def freeze_payload(value: Any) -> Any:
    """
    Recursively copy ``value`` into read-only containers.

    Mappings become MappingProxyType, lists, tuples and sets become tuples,
    and pydantic models are dumped to JSON-compatible dicts first.
    """
    if hasattr(value, "model_dump"):
        value = value.model_dump(mode="json", by_alias=True)
    if isinstance(value, Mapping):
        return MappingProxyType({key: freeze_payload(item) for key, item in value.items()})
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(freeze_payload(item) for item in value)
    if isinstance(value, Enum):
        return value.value
    return copy.deepcopy(value)


@dataclass(frozen=True)
class Event:
    type: EventType
    payload: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    timestamp: datetime = field(default_factory=now_utc)
    source: str = ""


Handler = Callable[[Event], Any]


class EventBus:
    """
    Synchronous publish/subscribe hub with bounded history.

    Thread-safe: subscriptions and history are guarded by a lock, but
    handlers are invoked outside it so a handler may publish or subscribe.
    """

    def __init__(self, history_size: int = EVENT_HISTORY_SIZE):
        self._subscribers: dict[EventType, list[Handler]] = defaultdict(list)
        self._wildcard_subscribers: list[Handler] = []
        self._history: deque[Event] = deque(maxlen=history_size)
        self._lock = threading.Lock()

        self._stats = {
            "events_published": 0,
            "handlers_executed": 0,
            "handler_errors": 0,
        }
        self._published_by_type: dict[str, int] = defaultdict(int)

        logger.debug(f"{LogCategory.EVENTS} EventBus initialized (history={history_size})")

    def subscribe(self, event_type: EventType, handler: Handler) -> Callable[[], None]:
        """
        Subscribe ``handler`` to one event type.

        Returns:
            Callable that removes this subscription; calling it twice is a no-op
        """
        with self._lock:
            self._subscribers[event_type].append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._subscribers.get(event_type, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def subscribe_all(self, handler: Handler) -> Callable[[], None]:
        """Subscribe ``handler`` to every event type."""
        with self._lock:
            self._wildcard_subscribers.append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._wildcard_subscribers:
                    self._wildcard_subscribers.remove(handler)

        return unsubscribe

    def publish(
        self,
        event_type: EventType,
        payload: Optional[Mapping[str, Any]] = None,
        source: str = "",
    ) -> None:
        event = Event(
            type=event_type,
            payload=freeze_payload(payload or {}),
            source=source,
        )

        with self._lock:
            self._history.append(event)
            self._stats["events_published"] += 1
            self._published_by_type[event_type.value] += 1
            handlers = list(self._subscribers.get(event_type, ())) + list(self._wildcard_subscribers)

        for handler in handlers:
            try:
                handler(event)
            except Exception:
                with self._lock:
                    self._stats["handler_errors"] += 1
                logger.exception(
                    f"{LogCategory.EVENTS} Handler {getattr(handler, '__name__', handler)!s} "
                    f"failed on {event_type.value}"
                )
            finally:
                with self._lock:
                    self._stats["handlers_executed"] += 1

    def get_history(
        self, event_type: Optional[EventType] = None, limit: Optional[int] = None
    ) -> list[Event]:
        """Retained events, oldest first, optionally filtered and limited to the newest ``limit``."""
        with self._lock:
            events = [e for e in self._history if event_type is None or e.type == event_type]
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            stats = self._stats.copy()
            stats["published_by_type"] = dict(self._published_by_type)
            stats["subscribers"] = sum(len(h) for h in self._subscribers.values())
            stats["wildcard_subscribers"] = len(self._wildcard_subscribers)
            stats["history_size"] = len(self._history)
        return stats

    def clear(self) -> None:
        """Drop history and statistics. Subscriptions are kept."""
        with self._lock:
            self._history.clear()
            self._stats = {key: 0 for key in self._stats}
            self._published_by_type.clear()
