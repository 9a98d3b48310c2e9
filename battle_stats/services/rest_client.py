"""HTTP fallback transport for the remote stats store."""

from typing import Optional
import httpx

from ..errors import RemoteRejected


class RestFallbackClient:
    """Async REST client used when the real-time channel is unavailable.

    Own stats and saves share one endpoint (``{base}{key}``); peer stats live
    under ``{base}pid/{key}``. Every request carries the caller's player id.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url
        self.client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self, player_id: Optional[str]) -> dict:
        return {
            "Content-Type": "application/json",
            "X-Player-ID": str(player_id) if player_id is not None else "",
        }

    async def get_stats(self, key: str, player_id: Optional[str] = None) -> dict:
        """Read this participant's stats."""
        response = await self.client.get(f"{self.base_url}{key}", headers=self._headers(player_id))
        self._check(response)
        return response.json()

    async def get_other_players_stats(self, key: str, player_id: Optional[str]) -> dict:
        """Read the peers' stats for this participant's group."""
        response = await self.client.get(f"{self.base_url}pid/{key}", headers=self._headers(player_id))
        self._check(response)
        return response.json()

    async def update_stats(self, key: str, player_id: Optional[str], body: dict):
        """Save a full snapshot."""
        response = await self.client.post(
            f"{self.base_url}{key}",
            json=body,
            headers=self._headers(player_id),
        )
        self._check(response)

    @staticmethod
    def _check(response: httpx.Response):
        if not response.is_success:
            raise RemoteRejected(response.status_code, response.reason_phrase)

    async def close(self):
        """Close the client."""
        await self.client.aclose()
