"""
Stats stores for apiportal.

A store owns three counter families: per-endpoint lifetime counts,
per-day counts and the global total, plus the start time. The
in-memory store lives here; the SQLite one is in ``sqlite_store``.
"""

import threading
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from .keys import day_key, endpoint_key, short_label

Clock = Callable[[], datetime]


class StatsStore(ABC):
    """Interface shared by the memory and persistent backends."""

    backend = "abstract"

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or datetime.now

    def now(self) -> datetime:
        return self._clock()

    def today(self) -> date:
        return self._clock().date()

    @abstractmethod
    def record_event(self, path: str, method: str = "GET") -> None:
        """Count one call: endpoint, today's bucket and the global total."""

    @abstractmethod
    def get_endpoint_count(self, path: str, method: str = "GET") -> int:
        ...

    @abstractmethod
    def get_all_endpoint_counts(self) -> Dict[str, int]:
        """Counts keyed by endpoint, busiest first, ties in first-seen order."""

    @abstractmethod
    def get_total_requests(self) -> int:
        ...

    @abstractmethod
    def get_start_time(self) -> datetime:
        ...

    @abstractmethod
    def reset(self) -> None:
        """Zero every counter and re-stamp the start time."""

    @abstractmethod
    def _day_counts(self, days: Iterable[str]) -> Dict[str, int]:
        """Counts for the given day keys; missing days may be omitted."""

    def close(self) -> None:
        """Release backend resources."""

    def get_count_for_date(self, day) -> int:
        key = day_key(day)
        return self._day_counts([key]).get(key, 0)

    def get_today_count(self) -> int:
        return self.get_count_for_date(self.today())

    def get_daily_history(self, days: int = 7) -> List[Dict]:
        """Last ``days`` days, oldest first, zero-filled."""
        if days < 1:
            return []
        today = self.today()
        span = [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
        counts = self._day_counts([d.isoformat() for d in span])
        return [
            {
                "date": d.isoformat(),
                "count": counts.get(d.isoformat(), 0),
                "shortLabel": short_label(d),
            }
            for d in span
        ]

    def get_top_endpoints(self, limit: int = 5) -> List[Dict]:
        """Busiest endpoints first."""
        if limit < 1:
            return []
        ranked = list(self.get_all_endpoint_counts().items())[:limit]
        return [{"endpoint": key, "count": count} for key, count in ranked]

    def __repr__(self) -> str:
        return f"<{type(self).__name__} backend={self.backend}>"


class MemoryStatsStore(StatsStore):
    """Volatile store: counters live in process memory."""

    backend = "memory"

    def __init__(self, clock: Optional[Clock] = None):
        super().__init__(clock)
        self._lock = threading.Lock()
        # dicts keep insertion order, which gives first-seen tie breaking
        self._endpoints: Dict[str, int] = {}
        self._days: Dict[str, int] = {}
        self._total = 0
        self._started = self.now()

    def record_event(self, path: str, method: str = "GET") -> None:
        key = endpoint_key(path, method)
        today = day_key(self.now())
        with self._lock:
            self._endpoints[key] = self._endpoints.get(key, 0) + 1
            self._days[today] = self._days.get(today, 0) + 1
            self._total += 1

    def get_endpoint_count(self, path: str, method: str = "GET") -> int:
        key = endpoint_key(path, method)
        with self._lock:
            return self._endpoints.get(key, 0)

    def get_all_endpoint_counts(self) -> Dict[str, int]:
        with self._lock:
            items = list(self._endpoints.items())
        # sorted() is stable, so equal counts keep first-seen order
        return dict(sorted(items, key=lambda kv: kv[1], reverse=True))

    def get_total_requests(self) -> int:
        with self._lock:
            return self._total

    def get_start_time(self) -> datetime:
        with self._lock:
            return self._started

    def _day_counts(self, days: Iterable[str]) -> Dict[str, int]:
        with self._lock:
            return {d: self._days[d] for d in days if d in self._days}

    def reset(self) -> None:
        with self._lock:
            self._endpoints.clear()
            self._days.clear()
            self._total = 0
            self._started = self.now()
