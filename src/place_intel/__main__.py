"""Command line entry point: `python -m place_intel "강남역"`."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from place_intel.config import resolve_config
from place_intel.core.exceptions import PlaceIntelError
from place_intel.core.types import Disambiguation, PrecisionHint
from place_intel.events import ProgressEvent
from place_intel.executor import create_executor


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="place_intel", description="Build a commercial-district report for a place."
    )
    parser.add_argument("query", help="Place name, landmark or address")
    parser.add_argument(
        "--hint",
        choices=[h.value for h in PrecisionHint],
        help="What kind of text the query is",
    )
    parser.add_argument("--select", help="Province chosen after an ambiguous result")
    parser.add_argument("--profile", help="Configuration profile to use")
    parser.add_argument("--deadline", type=float, help="Global deadline in seconds")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def _print_progress(event: ProgressEvent) -> None:
    print(f"[{event.fraction:5.0%}] {event.stage} {event.message}", file=sys.stderr)


async def _main(args: argparse.Namespace) -> int:
    overrides = {"global_deadline_s": args.deadline} if args.deadline else None
    config = resolve_config(overrides, profile=args.profile).to_frozen()
    async with create_executor(config) as executor:
        outcome = await executor.execute(
            args.query, args.hint, selection=args.select, progress=_print_progress
        )
    if isinstance(outcome, Disambiguation):
        choices = [
            {"name": c.name, "province": c.province, "select": c.selection_key}
            for c in outcome.candidates
        ]
        print(json.dumps({"ambiguous": outcome.text, "candidates": choices}, ensure_ascii=False, indent=2))
        return 2
    print(json.dumps(outcome.to_dict(), ensure_ascii=False, indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    try:
        return asyncio.run(_main(args))
    except PlaceIntelError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
