#!/usr/bin/env python3
"""
RepCoach CLI

Small operational entry points around the RepCoach runtime.

Commands:

1) serve
   - Run the HTTP API (coach + insights routes) with uvicorn.

2) history
   - Print the workout history a generator would receive as context
     for a user, from the local workout log:
       <REPCOACH_DATA_DIR>/workouts.json

3) generate
   - Run a single workout plan generation for a user against the local
     workout log and print the resulting plan as JSON. Nothing is saved.

The API can also be started directly, e.g.:

    uvicorn runtime.api.server:app --reload
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Ensure project root is on sys.path when running as a script
ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from configs.settings import settings
from core.api.openai_client import OpenAIChatBackend
from core.coach.generators import WorkoutPlanGenerator
from exceptions.exceptions import GenerationError
from runtime.store.workout_store import TIMEFRAMES, WorkoutStore


logger = logging.getLogger("repcoach.cli")


def _workout_store(data_dir: Optional[str]) -> WorkoutStore:
    return WorkoutStore(
        data_dir=data_dir or str(settings.data_dir),
        history_days=settings.history_days,
    )


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run(
        "runtime.api.server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )
    return 0


def cmd_history(args: argparse.Namespace) -> int:
    store = _workout_store(args.data_dir)
    seed = {"timeframe": args.timeframe} if args.timeframe else {}
    history = asyncio.run(store.fetch_context(args.owner_id, seed))

    print(json.dumps([w.model_dump() for w in history], indent=2, ensure_ascii=False))
    start, end = store.window_for(seed)
    print(
        f"[history] {len(history)} workout(s) for user {args.owner_id} "
        f"between {start.isoformat()} and {end.isoformat()}",
        file=sys.stderr,
    )
    return 0


def cmd_generate(args: argparse.Namespace) -> int:
    store = _workout_store(args.data_dir)
    generator = WorkoutPlanGenerator(
        OpenAIChatBackend(model=args.model, temperature=settings.temperature)
    )

    async def _run():
        history = await store.fetch_context(args.owner_id, {})
        return await generator.generate(history, {})

    try:
        plan = asyncio.run(_run())
    except GenerationError as exc:
        print(f"[generate] ERROR: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(plan.model_dump(), indent=2, ensure_ascii=False))
    print("", file=sys.stderr)
    print(generator.describe(plan), file=sys.stderr)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repcoach",
        description="RepCoach workout coach runtime.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_serve = subparsers.add_parser("serve", help="Run the HTTP API with uvicorn.")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.add_argument("--reload", action="store_true", help="Enable auto-reload.")
    p_serve.set_defaults(func=cmd_serve)

    p_history = subparsers.add_parser(
        "history", help="Print the workout history used as generation context."
    )
    p_history.add_argument("--owner-id", type=int, required=True)
    p_history.add_argument("--timeframe", choices=TIMEFRAMES, default=None)
    p_history.add_argument("--data-dir", default=None, help="Override REPCOACH_DATA_DIR.")
    p_history.set_defaults(func=cmd_history)

    p_generate = subparsers.add_parser(
        "generate", help="Generate one workout plan and print it (not saved)."
    )
    p_generate.add_argument("--owner-id", type=int, required=True)
    p_generate.add_argument("--model", default=None, help="Override REPCOACH_OPENAI_MODEL.")
    p_generate.add_argument("--data-dir", default=None, help="Override REPCOACH_DATA_DIR.")
    p_generate.set_defaults(func=cmd_generate)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
