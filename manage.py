#!/usr/bin/env python3
"""CLI entry point for the second-screen dashboard.

Usage:
    python manage.py <command> [options]

``serve`` runs the web server. The other commands work offline on the
snapshot file; run them while the server is stopped, since a running server
overwrites the snapshot with its in-memory state.

All output is JSON — easy to parse from hooks and scripts.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import timedelta
from pathlib import Path

# Add parent dir to path so `from second_screen import ...` works
sys.path.insert(0, str(Path(__file__).parent))

from second_screen.config import DashboardSettings, load_settings, validate_settings
from second_screen.errors import DashboardError
from second_screen.persistence import load_snapshot, save_snapshot
from second_screen.store import SessionStore


def main() -> None:
    parser = argparse.ArgumentParser(description="Second screen session dashboard")
    sub = parser.add_subparsers(dest="command")

    p = sub.add_parser("serve", help="Start the dashboard server")
    p.add_argument("--host")
    p.add_argument("--port", type=int)
    p.add_argument("--data-file", type=Path)
    p.add_argument("--log-level", default="info",
                   choices=["debug", "info", "warning", "error"])

    p = sub.add_parser("list-sessions", help="Print sessions from the snapshot")
    p.add_argument("--data-file", type=Path)

    p = sub.add_parser("sweep", help="Purge expired tasks and archived sessions from the snapshot")
    p.add_argument("--data-file", type=Path)

    p = sub.add_parser("remove-session", help="Remove a session from the snapshot")
    p.add_argument("directory")
    p.add_argument("--data-file", type=Path)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        result = _dispatch(args)
    except DashboardError as e:
        result = {"error": str(e)}
    print(json.dumps(result, indent=2, ensure_ascii=False))


def _settings(args: argparse.Namespace) -> DashboardSettings:
    settings = load_settings()
    if getattr(args, "host", None):
        settings.host = args.host
    if getattr(args, "port", None):
        settings.port = args.port
    if getattr(args, "data_file", None):
        settings.data_file = args.data_file
    return validate_settings(settings)


def _dispatch(args: argparse.Namespace) -> dict | list:
    cmd = args.command
    settings = _settings(args)

    if cmd == "list-sessions":
        return [s.to_dict() for s in load_snapshot(settings.data_file)]

    if cmd == "sweep":
        store = SessionStore(load_snapshot(settings.data_file))
        tasks_before = sum(len(s.tasks) for s in store.list())
        sessions_before = len(store)
        tasks_changed = store.purge_expired_tasks(timedelta(seconds=settings.task_ttl_seconds))
        sessions_changed = store.purge_expired_sessions(
            timedelta(seconds=settings.session_archive_ttl_seconds)
        )
        if tasks_changed or sessions_changed:
            save_snapshot(settings.data_file, store.list())
        return {
            "tasks_purged": tasks_before - sum(len(s.tasks) for s in store.list()),
            "sessions_purged": sessions_before - len(store),
        }

    if cmd == "remove-session":
        store = SessionStore(load_snapshot(settings.data_file))
        removed = store.remove_session(args.directory)
        if removed:
            save_snapshot(settings.data_file, store.list())
        return {"directory": args.directory, "removed": removed}

    if cmd == "serve":
        _serve(settings, args.log_level)
        return {}  # never reached — uvicorn runs until interrupted

    return {"error": f"Unknown command: {cmd}"}


def _serve(settings: DashboardSettings, log_level: str) -> None:
    """Start the web dashboard via uvicorn.

    uvicorn turns SIGINT/SIGTERM into a lifespan shutdown, which flushes any
    pending snapshot before the process exits.
    """
    import uvicorn

    from web.app import create_app

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    print(f"Second screen dashboard: http://{settings.host}:{settings.port}", file=sys.stderr)
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=log_level,
    )


if __name__ == "__main__":
    main()
