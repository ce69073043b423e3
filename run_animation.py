# -*- coding: utf-8 -*-
"""Command line controls for the animation job; ``tick`` is meant for cron."""
from __future__ import annotations

import argparse
import json
import sys
import time
from typing import Optional, Sequence


from jobs import ConflictError, PersistenceError, StepInProgressError, StepProcessor
from observability.logger import get_logger
from orchestrate import build_processor

LOGGER = get_logger("animation.cli")


def _print(payload: object) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _follow(processor: StepProcessor) -> None:
    while processor.scheduler.is_installed():
        time.sleep(1.0)


def main(argv: Optional[Sequence[str]] = None, *, processor: Optional[StepProcessor] = None) -> int:
    parser = argparse.ArgumentParser(description="Drive the resumable scene animation job")
    sub = parser.add_subparsers(dest="command", required=True)
    start = sub.add_parser("start", help="Create a job and animate the first scene")
    start.add_argument("subject_id", help="Story folder name")
    start.add_argument("variant", help="Language code, e.g. en or bn")
    start.add_argument(
        "--follow",
        action="store_true",
        help="Stay in the foreground and keep ticking until the job ends (default: rely on cron 'tick')",
    )
    sub.add_parser("tick", help="Process the next scene of the active job")
    sub.add_parser("status", help="Show the active job snapshot")
    sub.add_parser("abort", help="Drop the active job checkpoint")
    args = parser.parse_args(argv)

    processor = processor or build_processor()

    try:
        if args.command == "start":
            try:
                snapshot = processor.start(args.subject_id, args.variant)
            except ConflictError as exc:
                _print({"error": str(exc), "status": processor.status()})
                return 2
            except (FileNotFoundError, ValueError) as exc:
                _print({"error": str(exc)})
                return 1
            if args.follow:
                _print(snapshot)
                _follow(processor)
                _print(processor.status())
            else:
                # A short-lived process cannot keep the timer alive.
                processor.scheduler.remove()
                snapshot["scheduler_installed"] = False
                _print(snapshot)
        elif args.command == "tick":
            snapshot = processor.run_next()
            _print(snapshot if snapshot is not None else processor.status())
        elif args.command == "status":
            _print(processor.status())
        elif args.command == "abort":
            try:
                aborted = processor.abort()
            except StepInProgressError as exc:
                _print({"error": str(exc)})
                return 2
            _print({"aborted": aborted})
    except PersistenceError as exc:
        LOGGER.error("cli_persistence_error", extra={"command": args.command, "error": str(exc)})
        _print({"error": str(exc)})
        return 3
    return 0


if __name__ == "__main__":
    sys.exit(main())
