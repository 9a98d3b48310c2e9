"""Server-Sent Events stream of model change notifications."""

import asyncio
import json
from typing import AsyncGenerator, Optional
from dataclasses import dataclass
from enum import Enum

from .notifier import STATS_UPDATED, Notifier


class StreamEventType(str, Enum):
    """Types of streaming events."""
    STATS_UPDATED = STATS_UPDATED
    KEEPALIVE = "keepalive"


@dataclass
class StreamEvent:
    """A single streaming event."""
    event_type: StreamEventType
    data: str = ""

    def to_sse(self) -> str:
        """Format as Server-Sent Event."""
        payload = {
            "type": self.event_type.value,
            "data": self.data,
        }
        return f"data: {json.dumps(payload)}\n\n"


class StreamingHandler:
    """Relays statsUpdated notifications to one SSE client."""

    def __init__(self, notifier: Notifier, keepalive: Optional[float] = 15.0):
        self.notifier = notifier
        self.keepalive = keepalive

    async def stream_updates(self) -> AsyncGenerator[str, None]:
        queue: asyncio.Queue = asyncio.Queue()

        def on_update():
            queue.put_nowait(StreamEventType.STATS_UPDATED)

        self.notifier.subscribe(STATS_UPDATED, on_update)
        try:
            while True:
                try:
                    event_type = await asyncio.wait_for(queue.get(), timeout=self.keepalive)
                except asyncio.TimeoutError:
                    event_type = StreamEventType.KEEPALIVE
                yield StreamEvent(event_type=event_type).to_sse()
        finally:
            self.notifier.unsubscribe(STATS_UPDATED, on_update)
