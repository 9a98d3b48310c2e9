"""Tests for rest_client.py"""

import asyncio
import json

import httpx
import pytest

from battle_stats.errors import RemoteRejected
from battle_stats.services.rest_client import RestFallbackClient

BASE = "https://stats.test/api/battle-stats/"


def _client(handler):
    return RestFallbackClient(BASE, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestRestFallbackClient:
    """Tests for the HTTP fallback transport."""

    def test_get_stats(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"BattleStats": {}, "PlayerInfo": {"1001": "Alpha"}})

        async def scenario():
            client = _client(handler)
            try:
                return await client.get_stats("abc", "1001")
            finally:
                await client.close()

        body = asyncio.run(scenario())
        assert body["PlayerInfo"] == {"1001": "Alpha"}
        assert seen[0].method == "GET"
        assert str(seen[0].url) == f"{BASE}abc"
        assert seen[0].headers["X-Player-ID"] == "1001"

    def test_peer_endpoint(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={})

        async def scenario():
            client = _client(handler)
            try:
                await client.get_other_players_stats("abc", "1001")
            finally:
                await client.close()

        asyncio.run(scenario())
        assert str(seen[0].url) == f"{BASE}pid/abc"

    def test_update_posts_json(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(202)

        async def scenario():
            client = _client(handler)
            try:
                await client.update_stats("abc", None, {"BattleStats": {}})
            finally:
                await client.close()

        asyncio.run(scenario())
        assert seen[0].method == "POST"
        assert json.loads(seen[0].content) == {"BattleStats": {}}
        assert seen[0].headers["X-Player-ID"] == ""

    def test_error_status_raises(self):
        async def scenario():
            client = _client(lambda request: httpx.Response(503))
            try:
                await client.update_stats("abc", "1", {})
            finally:
                await client.close()

        with pytest.raises(RemoteRejected) as exc_info:
            asyncio.run(scenario())
        assert exc_info.value.status == 503
