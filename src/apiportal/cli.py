"""
CLI entry point for apiportal.

Usage:
    apiportal start --port 4000 --db ./data/stats.db --router myapi.routes:router
    apiportal stats --url http://127.0.0.1:4000
    apiportal reset --db ./data/stats.db
"""

import argparse
import importlib
import json
import logging
import os
import sys


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="apiportal",
        description="apiportal — API gateway with request statistics",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("APIPORTAL_LOG_LEVEL", "info"),
        choices=["debug", "info", "warning", "error"],
        help="Logging level (default: info)",
    )
    subparsers = parser.add_subparsers(dest="command")

    # start command
    start_parser = subparsers.add_parser("start", help="Start the gateway")
    start_parser.add_argument(
        "--port", "-p",
        type=int,
        default=int(os.environ.get("PORT", 4000)),
        help="Port to listen on (default: $PORT or 4000)",
    )
    start_parser.add_argument(
        "--host",
        default=os.environ.get("HOST", "127.0.0.1"),
        help="Host to bind to (default: 127.0.0.1)",
    )
    start_parser.add_argument(
        "--db",
        default=os.environ.get("APIPORTAL_DB"),
        help="SQLite file for persistent stats (default: in-memory)",
    )
    start_parser.add_argument(
        "--router", "-r",
        action="append",
        default=[],
        metavar="MODULE:ATTR",
        help="APIRouter to mount under /api (repeatable)",
    )

    # stats command
    stats_parser = subparsers.add_parser("stats", help="Show stats of a running gateway")
    stats_parser.add_argument(
        "--url", "-u",
        default=f"http://127.0.0.1:{os.environ.get('PORT', 4000)}",
        help="Gateway base URL",
    )

    # reset command
    reset_parser = subparsers.add_parser("reset", help="Reset a persisted stats database")
    reset_parser.add_argument(
        "--db",
        default=os.environ.get("APIPORTAL_DB"),
        required=os.environ.get("APIPORTAL_DB") is None,
        help="SQLite file to reset",
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "start":
        _run_server(args)
    elif args.command == "stats":
        sys.exit(_show_stats(args.url))
    elif args.command == "reset":
        _reset_db(args.db)


def load_router(target: str):
    """Import ``module:attr`` and return the object."""
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise ValueError(f"router must look like module:attr, got {target!r}")
    module = importlib.import_module(module_name)
    return getattr(module, attr)


def _run_server(args):
    """Start the gateway."""
    import uvicorn
    from .server import create_app

    routers = [load_router(target) for target in args.router]
    app = create_app(db_path=args.db, routers=routers)

    print(f"""
  apiportal
  Listening:   http://{args.host}:{args.port}
  Stats store: {args.db or 'memory'}
  Routers:     {len(routers)}

  Stats: http://{args.host}:{args.port}/api/stats
  Info:  http://{args.host}:{args.port}/api/info
""")

    # uvicorn traps SIGINT/SIGTERM and runs the lifespan shutdown,
    # which closes the tracker
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level)


def _show_stats(url: str) -> int:
    import httpx

    try:
        resp = httpx.get(url.rstrip("/") + "/api/stats", timeout=10.0)
        resp.raise_for_status()
    except httpx.HTTPError as exc:
        print(f"Could not fetch stats from {url}: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(resp.json(), indent=2))
    return 0


def _reset_db(db_path: str):
    from .sqlite_store import PersistentStatsStore

    store = PersistentStatsStore(db_path)
    try:
        store.reset()
    finally:
        store.close()
    print(f"Reset stats in {db_path}")


if __name__ == "__main__":
    main()
