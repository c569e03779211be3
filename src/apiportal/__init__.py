"""
apiportal — API gateway with request statistics
=================================================

Serves API routers under a common prefix and counts every successful
call per endpoint, per day and in total, in memory or in SQLite.

Quick start:
    pip install apiportal
    apiportal start --port 4000 --db ./data/stats.db --router myapi.routes:router

Then open http://localhost:4000/api/stats
"""

__version__ = "0.1.0"

from .errors import InvalidKeyError, StatsError, StorageError
from .store import MemoryStatsStore, StatsStore
from .sqlite_store import PersistentStatsStore
from .tracker import Snapshot, Tracker, TrackerState, get_tracker, init_tracker, shutdown_tracker

__all__ = [
    "StatsStore",
    "MemoryStatsStore",
    "PersistentStatsStore",
    "Tracker",
    "TrackerState",
    "Snapshot",
    "get_tracker",
    "init_tracker",
    "shutdown_tracker",
    "StatsError",
    "StorageError",
    "InvalidKeyError",
]
