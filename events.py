"""In-process product change events for live dashboards and other observers."""

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Listener = Callable[[str, Dict[str, Any]], None]


class EventBus:
    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    def subscribe(self, event: str, listener: Listener) -> None:
        """Register a listener; event "*" receives everything."""
        self._listeners[event].append(listener)

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        """Deliver to every listener. A failing listener never reaches the emitter."""
        for listener in self._listeners.get(event, []) + self._listeners.get("*", []):
            try:
                listener(event, payload)
            except Exception:
                logger.exception("Listener for %s failed", event)


bus = EventBus()
