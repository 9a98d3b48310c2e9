"""Publish point for model change notifications."""

import logging
from collections import defaultdict
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

STATS_UPDATED = "statsUpdated"


class Notifier:
    """Named events without payloads. Subscriber failures are logged, not raised."""

    def __init__(self):
        self._subscribers: Dict[str, List[Callable[[], None]]] = defaultdict(list)

    def subscribe(self, event: str, callback: Callable[[], None]):
        self._subscribers[event].append(callback)

    def unsubscribe(self, event: str, callback: Callable[[], None]):
        try:
            self._subscribers[event].remove(callback)
        except ValueError:
            pass

    def publish(self, event: str = STATS_UPDATED):
        for callback in list(self._subscribers.get(event, [])):
            try:
                callback()
            except Exception:
                logger.exception(f"Subscriber to {event} failed")
