"""Real-time request/acknowledge channel over a WebSocket.

Frames are JSON objects:

    client -> server   {"event": "getStats", "data": {...}, "id": 7}
    server -> client   {"ack": 7, "status": 200, "body": {...}}
    server -> client   {"event": "statsUpdated", "data": {...}}

A request that carries an ``id`` expects exactly one ``ack`` frame with the
same id; its callback receives ``{"status", "body"}``.
"""

import asyncio
import inspect
import itertools
import json
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Set
from urllib.parse import urlencode

import websockets

from ..errors import ConnectivityUnavailable

logger = logging.getLogger(__name__)

CONNECT_EVENT = "connect"


class RealtimeClient:
    """Reconnecting WebSocket client with callback acknowledgments."""

    def __init__(
        self,
        url: str,
        access_key: str,
        reconnect_attempts: int = 5,
        reconnect_delay: float = 1.0,
    ):
        self.url = url
        self.access_key = access_key
        self.reconnect_attempts = reconnect_attempts
        self.reconnect_delay = reconnect_delay

        self._ws = None
        self._closing = False
        self._ids = itertools.count(1)
        self._pending: Dict[int, Callable[[dict], Any]] = {}
        self._handlers: Dict[str, List[Callable[[Any], Any]]] = defaultdict(list)
        self._tasks: Set[asyncio.Future] = set()

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def on(self, event: str, handler: Callable[[Any], Any]):
        """Register a handler for a server-pushed event (or ``connect``)."""
        self._handlers[event].append(handler)

    def emit(self, event: str, data: dict, callback: Optional[Callable[[dict], Any]] = None):
        """Send a request; ``callback`` runs when the server acknowledges it."""
        if self._ws is None:
            raise ConnectivityUnavailable("Socket not connected")
        frame = {"event": event, "data": data}
        if callback is not None:
            message_id = next(self._ids)
            self._pending[message_id] = callback
            frame["id"] = message_id
        self._track(asyncio.ensure_future(self._send(frame)))

    async def _send(self, frame: dict):
        ws = self._ws
        if ws is None:
            self._pending.pop(frame.get("id"), None)
            return
        try:
            await ws.send(json.dumps(frame))
        except websockets.exceptions.ConnectionClosed as e:
            logger.warning(f"Socket closed while sending {frame['event']}: {e}")
            self._pending.pop(frame.get("id"), None)

    def _connect_uri(self) -> str:
        separator = "&" if "?" in self.url else "?"
        return f"{self.url}{separator}{urlencode({'key': self.access_key})}"

    async def run(self):
        """Connect and read frames until closed or out of reconnect attempts."""
        failures = 0
        while not self._closing:
            try:
                async with websockets.connect(self._connect_uri()) as ws:
                    self._ws = ws
                    failures = 0
                    logger.info("Socket connected")
                    self._dispatch(CONNECT_EVENT, None)
                    async for message in ws:
                        self._handle_message(message)
                logger.info("Socket disconnected")
            except websockets.exceptions.ConnectionClosed as e:
                logger.info(f"Socket disconnected: {e}")
            except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
                logger.error(f"Socket connection error: {e}")
            finally:
                self._ws = None
                # Acks for requests on a dead socket never arrive
                self._pending.clear()

            if self._closing:
                break
            failures += 1
            if failures > self.reconnect_attempts:
                logger.error("Socket reconnection failed.")
                break
            await asyncio.sleep(self.reconnect_delay)

    def _handle_message(self, message):
        try:
            frame = json.loads(message)
        except (TypeError, ValueError):
            logger.warning("Ignoring non-JSON socket frame")
            return
        if not isinstance(frame, dict):
            logger.warning("Ignoring socket frame that is not an object")
            return

        if "ack" in frame:
            callback = self._pending.pop(frame["ack"], None)
            if callback is None:
                logger.debug(f"Ack {frame['ack']} has no pending request")
                return
            try:
                callback({"status": frame.get("status"), "body": frame.get("body")})
            except Exception:
                logger.exception(f"Ack callback for {frame['ack']} failed")
        elif "event" in frame:
            self._dispatch(frame["event"], frame.get("data"))

    def _dispatch(self, event: str, data: Any):
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(data)
            except Exception:
                logger.exception(f"Handler for socket event {event} failed")
                continue
            if inspect.isawaitable(result):
                self._track(asyncio.ensure_future(result))

    def _track(self, future: asyncio.Future):
        self._tasks.add(future)
        future.add_done_callback(self._task_done)

    def _task_done(self, future: asyncio.Future):
        self._tasks.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.error(f"Socket task failed: {future.exception()!r}")

    async def close(self):
        self._closing = True
        ws = self._ws
        if ws is not None:
            await ws.close()
