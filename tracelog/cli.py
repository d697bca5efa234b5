#!/usr/bin/env python3
"""Parse a run log file and print the normalized result.

Usage:
  tracelog run.json
  tracelog run.json --summary
  tracelog run.json --max-bytes 2097152 --indent 0
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from tracelog import config
from tracelog.errors import LogParseError
from tracelog.parsers.formats import FORMAT_UNKNOWN
from tracelog.parsers.registry import parse_log_file
from tracelog.parsers.run_log import summarize_run

logger = logging.getLogger("tracelog")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Normalize an execution run log into steps and a run summary.")
    parser.add_argument("path", type=Path, help="Run log JSON file")
    parser.add_argument("--summary", action="store_true", help="Print step statistics instead of the full result")
    parser.add_argument(
        "--max-bytes",
        type=int,
        default=config.MAX_LOG_SIZE_BYTES,
        help="Reject files larger than this many bytes",
    )
    parser.add_argument("--indent", type=int, default=2, help="JSON indent (0 for compact output)")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=config.LOG_LEVEL, stream=sys.stderr)

    if not args.path.is_file():
        logger.error("No such file: %s", args.path)
        return 1

    try:
        result = parse_log_file(args.path, max_bytes=args.max_bytes)
    except LogParseError as exc:
        logger.error("%s: %s", exc.error_type, exc.message)
        return 1

    payload = {
        "overview": result.overview.model_dump(exclude_none=True),
        "stats": summarize_run(result).model_dump(),
    } if args.summary else result.to_dict()
    print(json.dumps(payload, indent=args.indent or None, ensure_ascii=False))
    return 0 if result.overview.format != FORMAT_UNKNOWN else 1


if __name__ == "__main__":
    raise SystemExit(main())
