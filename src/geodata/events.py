"""EventBus — synchronous pub/sub for registry notifications.

Listeners run on the caller's thread, in subscription order, as soon as an
event is published. Every listener receives ``(source, layer)``; ``layer``
is None for events that concern the whole registry.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

LAYER_ADDED = "layer_added"
LAYER_REMOVED = "layer_removed"
LAYERS_REORDERED = "layers_reordered"
JOIN_TABLE_CHANGED = "join_table_changed"
VIEWER_CHANGED = "viewer_changed"

Listener = Callable[[Any, Any], None]


class EventBus:
    """Named events with ordered listener lists."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Listener]] = defaultdict(list)

    def subscribe(self, event_type: str, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a function that unsubscribes it."""
        self._subscribers[event_type].append(listener)
        return lambda: self.unsubscribe(event_type, listener)

    def unsubscribe(self, event_type: str, listener: Listener) -> None:
        try:
            self._subscribers[event_type].remove(listener)
        except ValueError:
            pass

    def publish(self, event_type: str, source: Any, layer: Any = None) -> None:
        # Copy so listeners may unsubscribe while being notified
        for listener in list(self._subscribers.get(event_type, ())):
            try:
                listener(source, layer)
            except Exception as e:
                logger.error(f"Listener for {event_type} failed: {e}")
