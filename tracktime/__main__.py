"""Command line for TrackTime: python -m tracktime."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from .database.db import configure_engine, init_db
from .database.models import format_duration
from .database.seed import seed_demo
from .errors import TrackTimeError
from .log import configure_logging
from .settings import load_settings
from .timer import TimerService

log = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tracktime", description="Track time on projects and issues.")
    parser.add_argument("--user", type=int, default=1, help="user id to act as (default: 1)")
    parser.add_argument("--database", help="SQLAlchemy URL overriding the configured database")
    parser.add_argument("--json", action="store_true", help="print machine-readable output")
    parser.add_argument("-v", "--verbose", action="store_true", help="log to the console as well")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init", help="create the database tables")
    seed = sub.add_parser("seed", help="create a demo user with projects and issues")
    seed.add_argument("--name", default="Demo User")
    sub.add_parser("status", help="show the active timer")

    start = sub.add_parser("start", help="start tracking a project or issue")
    start.add_argument("trackable_type", choices=("project", "issue"))
    start.add_argument("trackable_id", type=int)
    start.add_argument("-d", "--description")

    sub.add_parser("pause", help="pause the active timer")
    sub.add_parser("resume", help="resume the paused timer")
    sub.add_parser("stop", help="stop the active timer and record the entry")

    entries = sub.add_parser("entries", help="list recent time entries")
    entries.add_argument("-n", "--limit", type=int, default=None)
    return parser


def _print_timer(record, as_json: bool) -> None:
    if as_json:
        print(json.dumps(record.to_dict() if record else None, indent=2))
    elif record is None:
        print("No active timer")
    else:
        name = record.trackable_name or f"{record.trackable_type} #{record.trackable_id}"
        print(f"{record.status:<8} {format_duration(record.elapsed_seconds):>8}  {name}")


def _print_entry(entry, as_json: bool) -> None:
    if as_json:
        print(json.dumps(entry.to_dict(), indent=2))
    else:
        print(
            f"{entry.started_at:%Y-%m-%d %H:%M}  {entry.formatted_duration:>8}  "
            f"{entry.display_name}"
        )


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings()
    configure_logging(
        settings.log_level, console=args.verbose or settings.log_console
    )
    if args.database:
        configure_engine(args.database)
    init_db()

    if args.command == "init":
        print("TrackTime database ready!")
        return 0
    if args.command == "seed":
        user_id = seed_demo(args.name)
        print(f"Demo user {args.name!r} has id {user_id}")
        return 0

    service = TimerService(settings=settings)
    try:
        if args.command == "status":
            _print_timer(service.get_active(args.user), args.json)
        elif args.command == "start":
            _print_timer(
                service.start(args.user, args.trackable_type, args.trackable_id, args.description),
                args.json,
            )
        elif args.command == "pause":
            _print_timer(service.pause(args.user), args.json)
        elif args.command == "resume":
            _print_timer(service.resume(args.user), args.json)
        elif args.command == "stop":
            _print_entry(service.stop(args.user), args.json)
        elif args.command == "entries":
            for entry in service.recent_entries(args.user, args.limit):
                _print_entry(entry, args.json)
    except TrackTimeError as exc:
        log.info("%s failed: %s", args.command, exc)
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
