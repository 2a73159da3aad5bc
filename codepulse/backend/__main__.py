"""CLI entry point: codepulse <command>

Usage:
    codepulse serve                      # Run the API + WebSocket server
    codepulse init-db                    # Create the SQLite schema
    codepulse replay 42                  # Re-run stored webhook event 42
    codepulse recompute --period WEEKLY  # Snapshot leaderboard stats
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Bare-name imports of sibling modules
sys.path.insert(0, str(Path(__file__).parent))

import database as db
from config import settings
from errors import InvalidPeriodError
from periods import canonical_period


GREY, RED, GREEN = "90", "31", "32"


def _status(colour: str, mark: str, msg: str) -> None:
    # stderr only; stdout carries command output
    print(f"\033[{colour}m  {mark} {msg}\033[0m", file=sys.stderr)


def _progress(msg: str) -> None:
    _status(GREY, "→", msg)


def _error(msg: str) -> None:
    _status(RED, "✗", msg)


def _success(msg: str) -> None:
    _status(GREEN, "✓", msg)


async def _serve(args: argparse.Namespace) -> int:
    import uvicorn
    from main import app

    config = uvicorn.Config(app, host=args.host, port=args.port, log_level=settings.LOG_LEVEL.lower())
    await uvicorn.Server(config).serve()
    return 0


async def _init_db(args: argparse.Namespace) -> int:
    await db.init_db()
    _success(f"Database ready at {db.DB_PATH}")
    return 0


async def _replay(args: argparse.Namespace) -> int:
    import ingestion

    await db.init_db()
    _progress(f"Replaying webhook event {args.event_id}")
    result = await ingestion.replay_webhook(args.event_id)
    if result is None:
        _error(f"Webhook event {args.event_id} not found")
        return 1
    print(json.dumps(result.model_dump(), indent=2))
    if not result.success:
        _error(f"Replay failed: {result.error}")
        return 1
    _success(f"Replayed as event {result.event_id}: {result.created} created, "
             f"{result.updated} updated, {result.skipped} skipped, {result.failed} failed")
    return 0


async def _recompute(args: argparse.Namespace) -> int:
    import leaderboard

    await db.init_db()
    try:
        written = await leaderboard.compute_leaderboard_stats(args.period)
    except InvalidPeriodError as e:
        _error(str(e))
        return 1
    _success(f"Computed {canonical_period(args.period)} stats for {written} engineers")
    return 0


async def main() -> int:
    parser = argparse.ArgumentParser(
        prog="codepulse",
        description="Webhook ingestion and engineering analytics for Azure DevOps and GitHub",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP and WebSocket server")
    serve.add_argument("--host", default=settings.HOST)
    serve.add_argument("--port", type=int, default=settings.PORT)
    serve.set_defaults(handler=_serve)

    init = sub.add_parser("init-db", help="Create the database schema")
    init.set_defaults(handler=_init_db)

    replay = sub.add_parser("replay", help="Re-run a stored webhook delivery")
    replay.add_argument("event_id", type=int, help="webhook_events id to replay")
    replay.set_defaults(handler=_replay)

    recompute = sub.add_parser("recompute", help="Recompute leaderboard stats")
    recompute.add_argument(
        "--period",
        default="MONTHLY",
        help="WEEKLY, MONTHLY, QUARTERLY, YEARLY (or 7d, 30d, 90d, 1y)",
    )
    recompute.set_defaults(handler=_recompute)

    args = parser.parse_args()
    return await args.handler(args)


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
