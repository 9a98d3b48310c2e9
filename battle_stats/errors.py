"""Error taxonomy for the stats synchronization engine."""

from typing import Optional


class StatsSyncError(Exception):
    """Base class for all engine errors."""


class ConnectivityUnavailable(StatsSyncError):
    """No transport can reach the remote store, or no access key is configured."""


class RemoteRejected(StatsSyncError):
    """The remote store answered with a non-success status."""

    def __init__(self, status: Optional[int], message: str = ""):
        self.status = status
        self.message = message
        super().__init__(f"Remote store rejected request (status={status}): {message or 'Unknown error'}")


class MalformedPayload(StatsSyncError):
    """An inbound payload is missing the shape a handler requires."""


class PrecursorMissing(StatsSyncError):
    """A player-level operation ran before its owning battle (or player) existed."""
