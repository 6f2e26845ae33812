"""
CompScan - Command-Line Entrypoint

Configures structlog and runs one of:
    scan TEXT            identity + comps for OCR text
    scan-file PATH       same, text read from a file
    batch PATH           one capture per non-blank line, JSON lines out
    vision PATH          identity + comps from a vision JSON payload

With --usage, a final JSON line reports the run's rate limiter and cache
status.

Logs go to stderr as JSON; stdout carries only the JSON result.

Run via:
    python -m compscan.main scan "2023 Topps Chrome Jacob Wilson BDC-121 RC"
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

import structlog

from compscan.config import settings
from compscan.errors import ConfigurationMissing
from compscan.models.scan import ScanResult
from compscan.pipeline.scan import ScanPipeline, open_marketplace_client
from compscan.pipeline.scheduler import CacheSweeper
from compscan.utils.cache import ResultCache
from compscan.utils.rate_limiter import SlidingWindowRateLimiter


# ---------------------------------------------------------------------------
# Structlog Configuration
# ---------------------------------------------------------------------------


def _configure_logging(log_level: str = "INFO") -> None:
    """
    Set up structured logging with JSON output on stderr.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    # Configure stdlib logging first (for third-party libraries)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level,
    )

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Argument Parsing
# ---------------------------------------------------------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="compscan",
        description="Identify a trading card from OCR text and price it from sold comparables.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  compscan scan "2023 TOPPS CHROME JACOB WILSON BDC-121 RC"
  compscan scan "PSA 10 GEM MT 2018 Prizm Luka Doncic #280" --no-comps
  compscan scan-file capture.txt --hint "Luka Doncic | eBay"
  compscan batch captures.txt
  compscan vision identity.json
""",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help=f"Override LOG_LEVEL (default: {settings.LOG_LEVEL}).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Scan OCR text given on the command line.")
    scan.add_argument("text")

    scan_file = sub.add_parser("scan-file", help="Scan OCR text read from a file.")
    scan_file.add_argument("path", type=Path)

    batch = sub.add_parser("batch", help="Scan one capture per non-blank line of a file.")
    batch.add_argument("path", type=Path)

    vision = sub.add_parser("vision", help="Use a vision-model JSON identity payload.")
    vision.add_argument("path", type=Path)

    for command in (scan, scan_file, batch, vision):
        command.add_argument(
            "--no-comps",
            action="store_true",
            help="Resolve identity and queries only; make no marketplace calls.",
        )
        command.add_argument(
            "--usage",
            action="store_true",
            help="Finish with a JSON line of rate limiter and cache status for this run.",
        )
    for command in (scan, scan_file, batch):
        command.add_argument(
            "--hint",
            default=None,
            help="Auxiliary text (e.g. a page title) used when no player is found.",
        )
    return parser.parse_args(argv)


def _dump(result: Any) -> str:
    return result.model_dump_json(by_alias=True)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _print_usage(
    args: argparse.Namespace,
    cache: ResultCache,
    limiter: SlidingWindowRateLimiter,
) -> None:
    if args.usage:
        print(_dump(ScanPipeline(cache=cache, limiter=limiter).usage()))


async def _run_captures(
    captures: list[str],
    args: argparse.Namespace,
    cache: ResultCache,
    limiter: SlidingWindowRateLimiter,
) -> list[ScanResult]:
    if args.no_comps:
        pipeline = ScanPipeline(cache=cache, limiter=limiter)
        return [await pipeline.scan_text(c, hint=args.hint, with_comps=False) for c in captures]

    async with open_marketplace_client() as client:
        pipeline = ScanPipeline(source=client.search, cache=cache, limiter=limiter)
        return [await pipeline.scan_text(c, hint=args.hint) for c in captures]


async def run(args: argparse.Namespace) -> int:
    logger = structlog.get_logger(__name__)
    cache = ResultCache()
    limiter = SlidingWindowRateLimiter()

    if args.command == "vision":
        payload = args.path.read_text(encoding="utf-8")
        if args.no_comps:
            result = await ScanPipeline(cache=cache, limiter=limiter).scan_vision(
                payload, with_comps=False,
            )
        else:
            async with open_marketplace_client() as client:
                pipeline = ScanPipeline(source=client.search, cache=cache, limiter=limiter)
                result = await pipeline.scan_vision(payload)
        print(_dump(result))
        _print_usage(args, cache, limiter)
        return 0

    if args.command == "scan":
        captures = [args.text]
    elif args.command == "scan-file":
        captures = [args.path.read_text(encoding="utf-8")]
    else:
        captures = [
            line for line in args.path.read_text(encoding="utf-8").splitlines() if line.strip()
        ]

    sweeper = CacheSweeper(cache)
    sweeper_task = asyncio.create_task(sweeper.run())
    try:
        results = await _run_captures(captures, args, cache, limiter)
    finally:
        await sweeper.shutdown()
        await sweeper_task

    for result in results:
        print(_dump(result))
    _print_usage(args, cache, limiter)
    logger.info("compscan_run_complete", command=args.command, captures=len(captures))
    return 0


def main(argv: list[str] | None = None) -> None:
    """Console-script entrypoint."""
    args = parse_args(argv)
    _configure_logging(log_level=args.log_level or settings.LOG_LEVEL)
    logger = structlog.get_logger(__name__)

    try:
        code = asyncio.run(run(args))
    except ConfigurationMissing as e:
        logger.error("compscan_configuration_missing", missing=list(e.setting_names))
        print(f"Configuration missing: {', '.join(e.setting_names)}", file=sys.stderr)
        code = 2
    except OSError as e:
        print(f"Failed to read input: {e}", file=sys.stderr)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
