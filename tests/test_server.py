"""Tests for the gateway app."""
from fastapi import APIRouter, HTTPException
from fastapi.testclient import TestClient

from apiportal.server import create_app
from apiportal import tracker as tracker_module
from apiportal.tracker import Tracker, TrackerState

router = APIRouter()


@router.get("/weather", tags=["Tools"], summary="Weather", openapi_extra={"x-author": "rynn"})
async def weather():
    """Current weather."""
    return {"status": True, "result": "sunny"}


@router.post("/weather", tags=["Tools"], summary="Weather report")
async def post_weather():
    return {"status": True}


@router.get("/broken", tags=["Debug"])
async def broken():
    raise HTTPException(status_code=500, detail="boom")


@router.get("/missing")
async def missing():
    raise HTTPException(status_code=404, detail="nope")


def _client(tracker=None):
    tracker = tracker or Tracker(background=False)
    app = create_app(tracker=tracker, routers=[router])
    return TestClient(app), tracker


def test_tracks_successful_api_calls():
    client, tracker = _client()
    with client:
        for _ in range(3):
            assert client.get("/api/weather").status_code == 200
        assert client.post("/api/weather").status_code == 200

        assert tracker.get_endpoint_count("/weather", "GET") == 3
        assert tracker.get_all_endpoint_counts() == {"GET /weather": 3, "POST /weather": 1}
        assert tracker.get_total_requests() == 4


def test_errors_and_non_api_paths_not_tracked():
    client, tracker = _client()
    with client:
        assert client.get("/api/broken").status_code == 500
        assert client.get("/api/missing").status_code == 404
        assert client.get("/api/nowhere").status_code == 404
        assert client.get("/health").status_code == 200
        assert tracker.get_total_requests() == 0


def test_stats_endpoint():
    client, tracker = _client()
    with client:
        client.get("/api/weather")
        data = client.get("/api/stats").json()

    assert data["totalRequests"] == 1
    assert data["todayRequests"] == 1
    assert data["requestCounts"] == {"GET /weather": 1}
    assert len(data["dailyHistory"]) == 7
    assert "currentDateLabel" in data
    assert tracker.state is TrackerState.CLOSED


def test_info_endpoint():
    client, _ = _client()
    with client:
        client.get("/api/weather")
        client.get("/api/weather")
        data = client.get("/api/info").json()

    categories = {c["name"]: c for c in data["categories"]}
    assert set(categories) == {"Tools", "Debug", "Other"}
    items = {(i["method"], i["path"]): i for i in categories["Tools"]["items"]}
    assert items[("get", "/api/weather")]["requestCount"] == 2
    assert items[("get", "/api/weather")]["name"] == "Weather"
    assert items[("get", "/api/weather")]["desc"] == "Current weather."
    assert items[("get", "/api/weather")]["author"] == "rynn"
    assert items[("post", "/api/weather")]["author"] == ""
    assert items[("post", "/api/weather")]["requestCount"] == 0
    assert data["statistics"]["totalRequests"] == 2


def test_health_reports_backend():
    client, _ = _client()
    with client:
        data = client.get("/health").json()
    assert data == {"status": "ok", "tracker": "ready", "store": "memory"}


def test_lifespan_closes_tracker(tmp_path):
    db = str(tmp_path / "stats.db")
    app = create_app(db_path=db, routers=[router])
    with TestClient(app) as client:
        client.get("/api/weather")
    assert app.state.tracker.state is TrackerState.CLOSED

    tracker = Tracker(db_path=db, background=False).start()
    assert tracker.get_endpoint_count("/weather") == 1
    tracker.shutdown()


def test_default_app_uses_process_tracker(tmp_path):
    tracker_module.shutdown_tracker()
    app = create_app(db_path=str(tmp_path / "stats.db"))
    try:
        assert app.state.tracker is tracker_module.get_tracker()
        assert app.state.tracker.backend == "sqlite"
    finally:
        tracker_module.shutdown_tracker()
