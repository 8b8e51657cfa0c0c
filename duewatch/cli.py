"""
duewatch.cli
============

Command-line driver.

Examples
--------
$ duewatch init-db
$ duewatch add-entity ent-1 DE LLC 2020-03-15 --name "Acme LLC"
$ duewatch generate ent-1
$ duewatch tick --limit 1000 --shard 0/4
$ duewatch complete 42
$ duewatch dashboard --now 2024-06-15
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date, datetime
from typing import List, Optional

from .dashboard import event_to_dict
from .db import Database
from .engine import ComplianceEngine, engine_from_settings
from .errors import DuewatchError
from .models import BusinessEntity, utcnow
from .settings import settings
from .store import parse_shard

logger = logging.getLogger(__name__)


def _parse_now(text: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(text) if text else None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="duewatch", description="Compliance deadline and reminder engine")
    parser.add_argument("--db-url", default=settings.db_url, help="database URL (default from settings)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="create tables")

    p = sub.add_parser("add-entity", help="register a business entity")
    p.add_argument("entity_id")
    p.add_argument("state")
    p.add_argument("entity_type")
    p.add_argument("formation_date", type=date.fromisoformat)
    p.add_argument("--name")

    p = sub.add_parser("generate", help="create the event for an entity (idempotent)")
    p.add_argument("entity_id")
    p.add_argument("--obligation")
    p.add_argument("--period")
    p.add_argument("--now")

    p = sub.add_parser("complete", help="mark an event completed")
    p.add_argument("event_id", type=int)
    p.add_argument("--now")

    p = sub.add_parser("tick", help="run one sweep tick")
    p.add_argument("--now")
    p.add_argument("--limit", type=int)
    p.add_argument("--after", type=int, help="resume after this event id")
    p.add_argument("--backfill-after", type=int, help="resume the recurrence catch-up after this event id")
    p.add_argument("--shard", type=parse_shard, help="i/n, e.g. 0/4")

    p = sub.add_parser("dashboard", help="print the dashboard snapshot as JSON")
    p.add_argument("--now")
    return parser


def run(args: argparse.Namespace) -> dict:
    """Execute one parsed command and return its JSON-ready result."""
    with Database(args.db_url, echo=settings.db_echo) as db:
        if args.command == "init-db":
            db.create_all()
            return {"initialised": args.db_url}

        with engine_from_settings(settings, db) as engine:
            return _dispatch(args, engine)


def _dispatch(args: argparse.Namespace, engine: ComplianceEngine) -> dict:
    if args.command == "add-entity":
        ent = BusinessEntity(args.entity_id, args.state, args.entity_type, args.formation_date, name=args.name)
        engine.directory.add(ent)
        return {"added": ent.id}
    if args.command == "generate":
        event = engine.create_event(args.entity_id, args.obligation, args.period, _parse_now(args.now))
        return event_to_dict(event)
    if args.command == "complete":
        result = engine.complete_event(args.event_id, _parse_now(args.now))
        return {
            "event": event_to_dict(result.event),
            "successor": event_to_dict(result.successor) if result.successor else None,
        }
    if args.command == "tick":
        report = engine.run_sweep_tick(
            _parse_now(args.now),
            limit=args.limit,
            after_id=args.after,
            shard=args.shard,
            backfill_after=args.backfill_after,
        )
        return report.summary()
    return engine.dashboard.snapshot(_parse_now(args.now) or utcnow())


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = build_parser().parse_args(argv)
    try:
        result = run(args)
    except (DuewatchError, KeyError, ValueError) as exc:
        logger.error(f"{args.command} failed: {exc}")
        return 1
    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
