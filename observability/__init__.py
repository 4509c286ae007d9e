"""
Pipeline observability.

The event bus is the only outward surface: metrics collectors, dashboards
and learning tools subscribe to it and never write back into the pipeline.

Usage:
    >>> from observability import EventBus, EventType
    >>> bus = EventBus()
    >>> bus.subscribe(EventType.TRADE_CLOSED, lambda event: print(event.payload))
"""

from observability.event_bus import Event, EventBus, EventType, freeze_payload

__all__ = ["Event", "EventBus", "EventType", "freeze_payload"]
