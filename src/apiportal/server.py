"""
apiportal server — FastAPI app that serves API routers under a prefix.

Every successful (status < 400) response under the prefix is reported to
the request tracker; ``/api/stats`` and ``/api/info`` expose the counters.
"""

import logging
from contextlib import asynccontextmanager
from typing import Iterable, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.routing import APIRoute

from . import __version__
from .tracker import Tracker, init_tracker

logger = logging.getLogger(__name__)


def create_app(
    tracker: Optional[Tracker] = None,
    db_path: Optional[str] = None,
    routers: Iterable[APIRouter] = (),
    api_prefix: str = "/api",
) -> FastAPI:
    """Create the gateway FastAPI app.

    Route metadata for ``/api/info`` comes from the mounted routes: the first
    tag is the category and ``openapi_extra={"x-author": ...}`` the author.
    """

    # default to the process-wide tracker so its exit and SIGTERM hooks apply
    tracker = tracker or init_tracker(db_path)
    prefix = "/" + api_prefix.strip("/")
    stats_path = f"{prefix}/stats"
    info_path = f"{prefix}/info"

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        tracker.start()
        try:
            yield
        finally:
            tracker.shutdown()

    app = FastAPI(
        title="apiportal",
        description="API gateway with request statistics",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.tracker = tracker

    @app.middleware("http")
    async def track_requests(request: Request, call_next):
        response = await call_next(request)
        path = request.url.path
        if path.startswith(prefix + "/") and response.status_code < 400:
            tracker.track(path[len(prefix):], request.method)
        return response

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "tracker": tracker.state.value,
            "store": tracker.backend,
        }

    @app.get(stats_path)
    async def get_stats():
        return tracker.statistics().to_dict()

    @app.get(info_path)
    async def get_info():
        counts = tracker.get_all_endpoint_counts()
        categories = {}

        for route in app.routes:
            if not isinstance(route, APIRoute):
                continue
            if not route.path.startswith(prefix + "/") or route.path in (stats_path, info_path):
                continue

            base_path = route.path[len(prefix):]
            category = route.tags[0] if route.tags else "Other"
            group = categories.setdefault(category, {"name": category, "items": []})
            author = (route.openapi_extra or {}).get("x-author", "")
            for method in sorted(route.methods or ()):
                group["items"].append({
                    "name": route.summary or route.name,
                    "desc": route.description or "",
                    "author": author,
                    "path": route.path,
                    "method": method.lower(),
                    "requestCount": counts.get(f"{method.upper()} {base_path}", 0),
                })

        return {
            "categories": list(categories.values()),
            "statistics": tracker.statistics().to_dict(),
        }

    for router in routers:
        app.include_router(router, prefix=prefix)
        logger.info("Mounted router with %d routes under %s", len(router.routes), prefix)

    return app
