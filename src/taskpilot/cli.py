"""
Operator commands for TaskPilot automations.

Examples:
    taskpilot-automations history <rule_id> --limit 20
    taskpilot-automations prune --hours 72
    taskpilot-automations dispatch event.json --rule-id <rule_id>
"""

import argparse
import asyncio
import json
import sys
from datetime import timedelta
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from taskpilot.automations.engine.ledger import ExecutionLedger
from taskpilot.automations.engine.orchestrator import build_rule_engine
from taskpilot.automations.schemas import ExecutionRecordResponse
from taskpilot.errors import LedgerUnavailableError
from taskpilot.events.event import parse_event, utcnow
from taskpilot.platform.config import settings
from taskpilot.platform.logging import configure_logging
from taskpilot.storage import PostgresAdapter, PostgresConfig


def _connect() -> PostgresAdapter:
    db = PostgresAdapter(PostgresConfig())
    db.connect()
    if db.config.is_sqlite:
        db.create_all()
    return db


def cmd_history(args: argparse.Namespace) -> int:
    db = _connect()
    try:
        records = ExecutionLedger(db).history(args.rule_id, args.limit)
    finally:
        db.close()

    for record in records:
        print(ExecutionRecordResponse.model_validate(record).model_dump_json())
    if not records:
        print(f"No executions recorded for {args.rule_id}", file=sys.stderr)
    return 0


def cmd_prune(args: argparse.Namespace) -> int:
    db = _connect()
    try:
        cutoff = utcnow() - timedelta(hours=args.hours)
        count = ExecutionLedger(db).prune(cutoff)
    finally:
        db.close()
    print(f"Pruned {count} executions older than {cutoff.isoformat()}")
    return 0


async def _dispatch(args: argparse.Namespace) -> int:
    try:
        event = parse_event(Path(args.event_file).read_text())
    except (OSError, ValidationError) as e:
        print(f"Invalid event file {args.event_file}: {e}", file=sys.stderr)
        return 2

    db = _connect()
    engine = build_rule_engine(settings, db)
    try:
        if args.rule_id:
            outcome = await engine.fire_rule(args.rule_id, event)
        else:
            outcome = await engine.handle_event(event)
    finally:
        await engine.guard.store.close()
        db.close()

    print(json.dumps(outcome.to_dict(), indent=2, default=str))
    return 1 if outcome.errors else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taskpilot-automations",
        description="TaskPilot automation operator commands",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    history = sub.add_parser("history", help="Show recent executions of an automation")
    history.add_argument("rule_id")
    history.add_argument("--limit", type=int, default=20)
    history.set_defaults(func=cmd_history)

    prune = sub.add_parser("prune", help="Delete executions older than the retention window")
    prune.add_argument(
        "--hours",
        type=int,
        default=settings.AUTOMATION_LEDGER_RETENTION_HOURS,
        help="Retention window in hours",
    )
    prune.set_defaults(func=cmd_prune)

    dispatch = sub.add_parser("dispatch", help="Run a synthetic event (JSON file) through the engine")
    dispatch.add_argument("event_file")
    dispatch.add_argument("--rule-id", default=None, help="Only evaluate this automation")
    dispatch.set_defaults(func=lambda args: asyncio.run(_dispatch(args)))

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except LedgerUnavailableError as e:
        print(f"Execution ledger unavailable: {e}", file=sys.stderr)
        return 3


if __name__ == "__main__":
    sys.exit(main())
