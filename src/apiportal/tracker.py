"""
Request statistics tracker.

The request pipeline calls :meth:`Tracker.track` once per successful API
response; reporting endpoints call :meth:`Tracker.statistics`. Tracking is
best-effort telemetry: storage failures are logged and never reach the
caller, and reads degrade to zeroed results.
"""

import atexit
import enum
import logging
import os
import signal
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .errors import StorageError
from .keys import date_label, day_key
from .sqlite_store import PersistentStatsStore
from .store import Clock, MemoryStatsStore, StatsStore

logger = logging.getLogger(__name__)


class TrackerState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class Snapshot:
    """Aggregated, read-only view of the counters."""

    total_requests: int = 0
    today_requests: int = 0
    uptime_hours: int = 0
    top_endpoints: List[Dict] = field(default_factory=list)
    request_counts: Dict[str, int] = field(default_factory=dict)
    daily_history: List[Dict] = field(default_factory=list)
    current_date_label: str = ""
    start_time: Optional[str] = None

    @classmethod
    def empty(cls, now: Optional[datetime] = None) -> "Snapshot":
        now = now or datetime.now()
        return cls(current_date_label=date_label(now.date()))

    def to_dict(self) -> Dict:
        data = asdict(self)
        return {
            "totalRequests": data["total_requests"],
            "todayRequests": data["today_requests"],
            "uptimeHours": data["uptime_hours"],
            "topEndpoints": data["top_endpoints"],
            "requestCounts": data["request_counts"],
            "dailyHistory": data["daily_history"],
            "currentDateLabel": data["current_date_label"],
            "startTime": data["start_time"],
        }


class Tracker:
    """Facade owning the active StatsStore and its lifecycle.

    Args:
        db_path: SQLite file for persistent mode; ``None`` keeps counters in memory.
        store: Use this store instead of building one.
        clock: Callable returning the current local datetime.
        background: Apply events on a worker thread so ``track`` never blocks.
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        store: Optional[StatsStore] = None,
        clock: Optional[Clock] = None,
        background: bool = True,
    ):
        self.db_path = db_path
        self._clock = clock or datetime.now
        self._store = store
        self._background = background
        self._executor: Optional[ThreadPoolExecutor] = None
        self._state = TrackerState.UNINITIALIZED
        self._lock = threading.RLock()

    @property
    def state(self) -> TrackerState:
        return self._state

    @property
    def backend(self) -> Optional[str]:
        return self._store.backend if self._store is not None else None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> "Tracker":
        """Build the store and become READY. Safe to call repeatedly."""
        with self._lock:
            if self._state is TrackerState.READY:
                return self
            if self._state in (TrackerState.CLOSING, TrackerState.CLOSED):
                logger.warning("Tracker is %s; refusing to reopen", self._state.value)
                return self

            self._state = TrackerState.INITIALIZING
            if self._store is None:
                self._store = self._build_store()
            if self._background:
                self._executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="apiportal-tracker"
                )
            self._state = TrackerState.READY
            logger.info("Tracker ready (%s backend)", self._store.backend)
            return self

    def _build_store(self) -> StatsStore:
        if self.db_path is None:
            return MemoryStatsStore(clock=self._clock)
        try:
            return PersistentStatsStore(self.db_path, clock=self._clock)
        except StorageError as exc:
            logger.error("Persistent stats unavailable, using memory: %s", exc)
            return MemoryStatsStore(clock=self._clock)

    def _ready_store(self) -> Optional[StatsStore]:
        if self._state is TrackerState.UNINITIALIZED:
            self.start()
        if self._state is not TrackerState.READY:
            return None
        return self._store

    def shutdown(self) -> None:
        """Drain queued events and release the store. Idempotent."""
        with self._lock:
            if self._state in (TrackerState.CLOSING, TrackerState.CLOSED):
                return
            self._state = TrackerState.CLOSING
            executor, self._executor = self._executor, None

        if executor is not None:
            executor.shutdown(wait=True)
        if self._store is not None:
            try:
                self._store.close()
            except StorageError:
                logger.exception("Error closing stats store")
        self._state = TrackerState.CLOSED
        logger.info("Tracker closed")

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------
    def track(self, path: str, method: str = "GET") -> None:
        """Record one successful API call. Never raises."""
        # shutdown() swaps the executor under the same lock, so a READY
        # tracker in background mode always has a live executor here
        with self._lock:
            store = self._ready_store()
            if store is None:
                logger.debug("Tracker %s, dropping %s %s", self._state.value, method, path)
                return
            if self._executor is not None:
                self._executor.submit(self._record, store, path, method)
                return

        self._record(store, path, method)

    @staticmethod
    def _record(store: StatsStore, path: str, method: str) -> None:
        try:
            store.record_event(path, method)
        except StorageError as exc:
            logger.error("Dropped stats event %s %s: %s", method, path, exc)
        except Exception:
            logger.exception("Unexpected error recording %s %s", method, path)
        else:
            logger.debug("Request tracked: %s %s", method, path)

    def flush(self) -> None:
        """Block until every event queued so far has been applied."""
        executor = self._executor
        if executor is None:
            return
        try:
            # single worker: a no-op finishes only after earlier events
            executor.submit(lambda: None).result()
        except RuntimeError:
            pass

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------
    def _read(self, fn: Callable[[StatsStore], object], default):
        store = self._ready_store()
        if store is None:
            return default
        try:
            return fn(store)
        except StorageError as exc:
            logger.error("Stats read failed: %s", exc)
            return default

    def get_endpoint_count(self, path: str, method: str = "GET") -> int:
        return self._read(lambda s: s.get_endpoint_count(path, method), 0)

    def get_all_endpoint_counts(self) -> Dict[str, int]:
        return self._read(lambda s: s.get_all_endpoint_counts(), {})

    def get_total_requests(self) -> int:
        return self._read(lambda s: s.get_total_requests(), 0)

    def get_today_requests(self) -> int:
        return self._read(lambda s: s.get_today_count(), 0)

    def get_count_for_date(self, day) -> int:
        """Count for one day; unparseable dates count as 0."""
        try:
            key = day_key(day)
        except ValueError:
            logger.warning("Ignoring malformed date %r", day)
            return 0
        return self._read(lambda s: s.get_count_for_date(key), 0)

    def get_daily_history(self, days: int = 7) -> List[Dict]:
        return self._read(lambda s: s.get_daily_history(days), [])

    def get_top_endpoints(self, limit: int = 5) -> List[Dict]:
        return self._read(lambda s: s.get_top_endpoints(limit), [])

    def get_start_time(self) -> datetime:
        return self._read(lambda s: s.get_start_time(), self._clock())

    def reset(self) -> None:
        """Zero all counters. Failures are logged, not raised."""
        store = self._ready_store()
        if store is None:
            return
        try:
            store.reset()
        except StorageError as exc:
            logger.error("Stats reset failed: %s", exc)

    def statistics(self) -> Snapshot:
        store = self._ready_store()
        now = self._clock()
        if store is None:
            return Snapshot.empty(now)
        try:
            started = store.get_start_time()
            counts = store.get_all_endpoint_counts()
            snapshot = Snapshot(
                total_requests=store.get_total_requests(),
                today_requests=store.get_today_count(),
                uptime_hours=max(0, int((now - started).total_seconds() // 3600)),
                top_endpoints=[
                    {"endpoint": key, "count": count}
                    for key, count in list(counts.items())[:5]
                ],
                request_counts=counts,
                daily_history=store.get_daily_history(7),
                current_date_label=date_label(now.date()),
                start_time=started.isoformat(),
            )
        except StorageError as exc:
            logger.error("Stats snapshot failed: %s", exc)
            return Snapshot.empty(now)
        return snapshot


# ----------------------------------------------------------------------
# Process-wide singleton
# ----------------------------------------------------------------------
_tracker: Optional[Tracker] = None
# reentrant: the SIGTERM handler may fire while the main thread holds it
_tracker_lock = threading.RLock()
_hooks_registered = False
_previous_sigterm = None


def _handle_sigterm(signum, frame) -> None:
    logger.info("Received signal %d, closing tracker", signum)
    shutdown_tracker()

    previous = _previous_sigterm
    if callable(previous):
        previous(signum, frame)
    elif previous != signal.SIG_IGN:
        # default action: terminate with the signal
        signal.signal(signum, signal.SIG_DFL)
        os.kill(os.getpid(), signum)


def _register_shutdown_hooks() -> None:
    """Close the process tracker on normal exit and on SIGTERM."""
    global _hooks_registered, _previous_sigterm
    if _hooks_registered:
        return
    atexit.register(shutdown_tracker)
    # signal handlers can only be installed from the main thread
    if threading.current_thread() is threading.main_thread():
        _previous_sigterm = signal.getsignal(signal.SIGTERM)
        signal.signal(signal.SIGTERM, _handle_sigterm)
    else:
        logger.debug("Not in main thread; SIGTERM shutdown hook not installed")
    _hooks_registered = True


def init_tracker(db_path: Optional[str] = None, **kwargs) -> Tracker:
    """Replace the process tracker with a freshly started one."""
    global _tracker
    with _tracker_lock:
        new = Tracker(db_path=db_path, **kwargs).start()
        old, _tracker = _tracker, new
        _register_shutdown_hooks()
    if old is not None:
        old.shutdown()
    return new


def get_tracker() -> Tracker:
    """Return the process tracker, creating an in-memory one on first use."""
    global _tracker
    with _tracker_lock:
        if _tracker is None:
            _tracker = Tracker().start()
            _register_shutdown_hooks()
        return _tracker


def shutdown_tracker() -> None:
    global _tracker
    with _tracker_lock:
        tracker, _tracker = _tracker, None
    if tracker is not None:
        tracker.shutdown()
