"""Dual-transport synchronization with the remote stats store.

The real-time channel is preferred. A save sent over it arms a fallback
window; whichever of (real-time acknowledgment, fallback save) claims the
push's completion cell first is the one that counts, and the other is
discarded. Reads never race: one path is chosen from channel availability at
call time.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Optional

import httpx

from ..errors import ConnectivityUnavailable, RemoteRejected

logger = logging.getLogger(__name__)

READ_OK_STATUS = 200
SAVE_ACK_STATUS = 202
CLEAR_OK_STATUS = 200


class SyncPath(str, Enum):
    """Transport that completed an operation."""
    REALTIME = "realtime"
    FALLBACK = "fallback"


class CompletionCell:
    """One-shot slot: the first claimant wins, later claims are refused.

    All claimants run on the same event loop and claim() never awaits, so
    the check and the assignment cannot interleave.
    """

    def __init__(self):
        self._owner: Optional[SyncPath] = None

    def claim(self, owner: SyncPath) -> bool:
        if self._owner is not None:
            return False
        self._owner = owner
        return True

    @property
    def owner(self) -> Optional[SyncPath]:
        return self._owner

    @property
    def claimed(self) -> bool:
        return self._owner is not None


def _status(response: Any) -> Optional[int]:
    if isinstance(response, dict):
        return response.get("status")
    return None


def _message(response: Any) -> str:
    if isinstance(response, dict):
        body = response.get("body")
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
    return "Unknown error"


class SyncChannel:
    """Save, load and clear operations against the remote store."""

    def __init__(
        self,
        realtime=None,
        fallback=None,
        fallback_window: float = 3.0,
        pull_timeout: float = 10.0,
    ):
        self.realtime = realtime
        self.fallback = fallback
        self.fallback_window = fallback_window
        self.pull_timeout = pull_timeout

    @property
    def realtime_connected(self) -> bool:
        return self.realtime is not None and bool(self.realtime.connected)

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    async def push(self, key: Optional[str], player_id: Optional[str], body: dict) -> Optional[SyncPath]:
        """Save ``body``. Returns the path whose completion was accepted, or None."""
        if not key:
            logger.error("Access key not found, skipping save")
            return None

        if not self.realtime_connected:
            if await self._save_via_fallback(key, player_id, body):
                return SyncPath.FALLBACK
            return None

        cell = CompletionCell()
        acked = asyncio.Event()

        def on_ack(response):
            if _status(response) != SAVE_ACK_STATUS:
                # Leave the cell unclaimed; the armed fallback takes over
                logger.error(f"Error updating stats: {_message(response)}")
                return
            if cell.claim(SyncPath.REALTIME):
                acked.set()
            else:
                logger.warning("Late real-time acknowledgment discarded, fallback already saved")

        request = {"key": key, "playerId": player_id, "body": body}
        try:
            self.realtime.emit("updateStats", request, on_ack)
        except ConnectivityUnavailable as e:
            logger.warning(f"Real-time channel dropped before save: {e}")
        else:
            try:
                await asyncio.wait_for(acked.wait(), timeout=self.fallback_window)
                return SyncPath.REALTIME
            except asyncio.TimeoutError:
                pass

        if not cell.claim(SyncPath.FALLBACK):
            return cell.owner
        logger.warning(f"No acknowledgment within {self.fallback_window}s, saving via fallback")
        if await self._save_via_fallback(key, player_id, body):
            return SyncPath.FALLBACK
        return None

    async def _save_via_fallback(self, key: str, player_id: Optional[str], body: dict) -> bool:
        if self.fallback is None:
            logger.error("No transport available to save stats")
            return False
        try:
            await self.fallback.update_stats(key, player_id, body)
            return True
        except (RemoteRejected, httpx.HTTPError) as e:
            logger.error(f"Fallback save failed: {e}")
            return False

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    async def pull(self, key: Optional[str], player_id: Optional[str] = None, peers: bool = False) -> Optional[dict]:
        """Fetch own (or peer) stats. Returns the raw body, or None on failure."""
        if not key:
            logger.error("Access key not found, skipping load")
            return None

        if self.realtime_connected:
            return await self._pull_via_realtime(key, player_id, peers)
        return await self._pull_via_fallback(key, player_id, peers)

    async def _pull_via_realtime(self, key: str, player_id: Optional[str], peers: bool) -> Optional[dict]:
        future = asyncio.get_running_loop().create_future()

        def on_response(response):
            if not future.done():
                future.set_result(response)

        event = "getOtherPlayersStats" if peers else "getStats"
        request = {"key": key}
        if peers:
            request["playerId"] = player_id
        try:
            self.realtime.emit(event, request, on_response)
            response = await asyncio.wait_for(future, timeout=self.pull_timeout)
        except ConnectivityUnavailable as e:
            logger.error(f"{event} skipped: {e}")
            return None
        except asyncio.TimeoutError:
            logger.error(f"{event} got no response within {self.pull_timeout}s")
            return None

        if _status(response) != READ_OK_STATUS:
            logger.error(f"Error in {event} via socket: {_message(response)}")
            return None
        return response.get("body")

    async def _pull_via_fallback(self, key: str, player_id: Optional[str], peers: bool) -> Optional[dict]:
        if self.fallback is None:
            logger.error("No transport available to load stats")
            return None
        try:
            if peers:
                body = await self.fallback.get_other_players_stats(key, player_id)
            else:
                body = await self.fallback.get_stats(key, player_id)
        except (RemoteRejected, httpx.HTTPError, ValueError) as e:
            logger.error(f"Fallback {'peer ' if peers else ''}load failed: {e}")
            return None
        if not isinstance(body, dict):
            logger.error(f"Fallback load returned {type(body).__name__}, expected an object")
            return None
        return {"success": True, **body}

    # ------------------------------------------------------------------
    # Clear
    # ------------------------------------------------------------------

    async def clear(self, key: Optional[str]):
        """Wipe the remote store. Only the real-time channel supports this."""
        if not key or not self.realtime_connected:
            raise ConnectivityUnavailable("Socket not connected or access key not found")

        future = asyncio.get_running_loop().create_future()

        def on_response(response):
            if not future.done():
                future.set_result(response)

        self.realtime.emit("clearStats", {"key": key}, on_response)
        try:
            response = await asyncio.wait_for(future, timeout=self.pull_timeout)
        except asyncio.TimeoutError:
            raise ConnectivityUnavailable(f"clearStats got no response within {self.pull_timeout}s")
        if _status(response) != CLEAR_OK_STATUS:
            raise RemoteRejected(_status(response), _message(response))
