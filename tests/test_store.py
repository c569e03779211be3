"""Tests shared by both StatsStore backends."""
import threading
from datetime import datetime

import pytest
from apiportal.sqlite_store import PersistentStatsStore
from apiportal.store import MemoryStatsStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path, clock):
    if request.param == "memory":
        s = MemoryStatsStore(clock=clock)
    else:
        s = PersistentStatsStore(str(tmp_path / "stats.db"), clock=clock)
    yield s
    s.close()


def test_empty_store(store):
    assert store.get_total_requests() == 0
    assert store.get_today_count() == 0
    assert store.get_endpoint_count("/weather") == 0
    assert store.get_all_endpoint_counts() == {}
    assert store.get_top_endpoints() == []


def test_weather_scenario(store):
    for _ in range(3):
        store.record_event("/weather", "GET")
    store.record_event("/weather", "POST")

    assert store.get_endpoint_count("/weather", "GET") == 3
    assert store.get_endpoint_count("/weather", "post") == 1
    assert store.get_all_endpoint_counts() == {"GET /weather": 3, "POST /weather": 1}
    assert store.get_total_requests() == 4


def test_today_count(store):
    store.record_event("/ping", "GET")
    assert store.get_today_count() == 1
    store.record_event("/ping", "GET")
    assert store.get_today_count() == 2


def test_day_rollover(store, clock):
    store.record_event("/a", "GET")
    store.record_event("/a", "GET")
    clock.advance(days=1)
    store.record_event("/a", "GET")

    assert store.get_today_count() == 1
    assert store.get_count_for_date("2026-10-18") == 2
    assert store.get_count_for_date(datetime(2026, 10, 19)) == 1
    assert store.get_count_for_date("2026-10-20") == 0
    assert store.get_total_requests() == 3


def test_daily_history_zero_filled(store, clock):
    store.record_event("/a", "GET")
    clock.advance(days=3)
    store.record_event("/a", "GET")
    store.record_event("/b", "GET")

    history = store.get_daily_history(7)
    assert len(history) == 7
    assert [h["date"] for h in history] == [
        "2026-10-15", "2026-10-16", "2026-10-17", "2026-10-18",
        "2026-10-19", "2026-10-20", "2026-10-21",
    ]
    assert [h["count"] for h in history] == [0, 0, 0, 1, 0, 0, 2]
    assert history[-1]["shortLabel"] == "Wed"


def test_daily_history_lengths(store):
    assert len(store.get_daily_history(1)) == 1
    assert len(store.get_daily_history(30)) == 30
    assert store.get_daily_history(0) == []


def test_top_endpoints_order_and_ties(store):
    store.record_event("/b", "GET")
    store.record_event("/a", "GET")
    store.record_event("/c", "GET")
    store.record_event("/c", "GET")

    top = store.get_top_endpoints(3)
    assert top == [
        {"endpoint": "GET /c", "count": 2},
        {"endpoint": "GET /b", "count": 1},
        {"endpoint": "GET /a", "count": 1},
    ]
    assert len(store.get_top_endpoints(1)) == 1
    assert store.get_top_endpoints(0) == []


def test_reset(store, clock):
    store.record_event("/a", "GET")
    clock.advance(hours=5)
    reset_at = clock()
    store.reset()

    assert store.get_total_requests() == 0
    assert store.get_today_count() == 0
    assert store.get_all_endpoint_counts() == {}
    assert store.get_start_time() >= reset_at


def test_reset_restarts_first_seen_order(store):
    store.record_event("/a", "GET")
    store.record_event("/b", "GET")
    store.reset()
    store.record_event("/b", "GET")
    store.record_event("/a", "GET")
    assert list(store.get_all_endpoint_counts()) == ["GET /b", "GET /a"]


def test_start_time_from_clock(store, clock):
    assert store.get_start_time() == clock()


def test_concurrent_records(store):
    paths = ["/a", "/b", "/c", "/d"]

    def worker(i):
        for _ in range(50):
            store.record_event(paths[i % len(paths)], "GET")

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.get_total_requests() == 400
    assert store.get_today_count() == 400
    for path in paths:
        assert store.get_endpoint_count(path) == 100


def test_reset_during_concurrent_records(store):
    stop = threading.Event()

    def writer(path):
        for _ in range(200):
            store.record_event(path, "GET")

    def resetter():
        while not stop.wait(0.001):
            store.reset()

    writers = [threading.Thread(target=writer, args=(p,)) for p in ["/a", "/b", "/c", "/d"]]
    reset_thread = threading.Thread(target=resetter)
    reset_thread.start()
    for t in writers:
        t.start()
    for t in writers:
        t.join()
    stop.set()
    reset_thread.join()

    counts = store.get_all_endpoint_counts()
    total = store.get_total_requests()
    assert all(count > 0 for count in counts.values())
    assert total == sum(counts.values()) >= 0
    assert store.get_today_count() == total
    assert total <= 800
