"""Shared fakes for the stats engine tests."""

import asyncio
import heapq
import itertools

import pytest

from battle_stats.config import Settings
from battle_stats.errors import ConnectivityUnavailable, RemoteRejected
from battle_stats.services.debounce import DebounceScheduler
from battle_stats.services.reconciliation import ObservedIdentity, ReconciliationEngine
from battle_stats.services.state_store import JsonStateStore
from battle_stats.services.sync_channel import SyncChannel


class ManualTimer:
    def __init__(self, when, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualClock:
    """Deterministic stand-in for the event loop's call_later()."""

    def __init__(self):
        self.now = 0.0
        self._queue = []
        self._seq = itertools.count()

    def time(self):
        return self.now

    def call_later(self, delay, callback, *args):
        timer = ManualTimer(self.now + delay, callback, args)
        heapq.heappush(self._queue, (timer.when, next(self._seq), timer))
        return timer

    def advance_to(self, when):
        while self._queue and self._queue[0][0] <= when:
            due, _, timer = heapq.heappop(self._queue)
            self.now = due
            if not timer.cancelled:
                timer.callback(*timer.args)
        self.now = when

    def advance(self, delta):
        self.advance_to(self.now + delta)


class FakeRealtime:
    """Request/ack channel whose acknowledgments the test controls."""

    def __init__(self, connected=True, auto_ack=None):
        self.connected = connected
        self.auto_ack = auto_ack  # event -> response dict, delivered on the next loop turn
        self.sent = []
        self.callbacks = []
        self.handlers = {}

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)

    def emit(self, event, data, callback=None):
        if not self.connected:
            raise ConnectivityUnavailable("Socket not connected")
        self.sent.append((event, data))
        self.callbacks.append(callback)
        if self.auto_ack and event in self.auto_ack and callback is not None:
            asyncio.get_running_loop().call_soon(callback, self.auto_ack[event])


class FakeFallback:
    """REST fallback that records calls."""

    def __init__(self, stats=None, peer_stats=None, fail=False):
        self.stats = stats or {}
        self.peer_stats = peer_stats or {}
        self.fail = fail
        self.saves = []
        self.reads = []

    async def update_stats(self, key, player_id, body):
        if self.fail:
            raise RemoteRejected(500, "Internal Server Error")
        self.saves.append((key, player_id, body))

    async def get_stats(self, key, player_id=None):
        self.reads.append(("own", key, player_id))
        if self.fail:
            raise RemoteRejected(500, "Internal Server Error")
        return self.stats

    async def get_other_players_stats(self, key, player_id):
        self.reads.append(("peers", key, player_id))
        if self.fail:
            raise RemoteRejected(500, "Internal Server Error")
        return self.peer_stats


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def settings():
    return Settings(
        access_key="test-key",
        debounce_delay=0.05,
        save_fallback_window=0.05,
        pull_timeout=0.5,
        hangar_delay=0,
        random_delay_min=0,
        random_delay_max=0,
        ui_update_delay=0,
        settle_delay=0,
    )


@pytest.fixture
def store(tmp_path):
    return JsonStateStore(tmp_path / "state.json", access_key="test-key")


@pytest.fixture
def realtime():
    return FakeRealtime(connected=False)


@pytest.fixture
def fallback():
    return FakeFallback()


@pytest.fixture
def identity():
    return ObservedIdentity(player_id="1001", player_name="Alpha", arena_id="arena-1")


@pytest.fixture
def engine(realtime, fallback, store, identity, settings, clock):
    channel = SyncChannel(realtime=realtime, fallback=fallback, fallback_window=0.05, pull_timeout=0.5)
    return ReconciliationEngine(
        channel,
        store,
        identity=identity,
        settings=settings,
        scheduler=DebounceScheduler(loop=clock),
    )
