from .stat_model import StatModel, Battle, PlayerStat, SessionCursor, ServerSnapshot, WinState
from .metrics_cache import MetricsCache, StatsAggregator
from .debounce import DebounceScheduler
from .notifier import Notifier, STATS_UPDATED
from .sync_channel import SyncChannel, SyncPath, CompletionCell
from .rest_client import RestFallbackClient
from .realtime import RealtimeClient
from .state_store import JsonStateStore

__all__ = [
    "StatModel",
    "Battle",
    "PlayerStat",
    "SessionCursor",
    "ServerSnapshot",
    "WinState",
    "MetricsCache",
    "StatsAggregator",
    "DebounceScheduler",
    "Notifier",
    "STATS_UPDATED",
    "SyncChannel",
    "SyncPath",
    "CompletionCell",
    "RestFallbackClient",
    "RealtimeClient",
    "JsonStateStore",
]

# ReconciliationEngine imports the wire schemas, which import this package;
# import it from .reconciliation directly.
