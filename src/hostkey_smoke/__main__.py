"""
CLI interface for hostkey-smoke.

Usage:
    python -m hostkey_smoke                    # Run the smoke suite
    python -m hostkey_smoke --rsa-bits 2048    # Faster RSA key generation
    python -m hostkey_smoke --events           # Print JSONL events to stderr
    python -m hostkey_smoke --event-log run.jsonl -vv
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the hostkey-smoke CLI."""
    parser = argparse.ArgumentParser(
        prog="hostkey-smoke",
        description="Smoke test key-based SSH with known_hosts host key verification",
        epilog="Example: python -m hostkey_smoke --rsa-bits 2048 -v",
    )

    parser.add_argument(
        "--rsa-bits",
        type=int,
        default=4096,
        help="Size of generated RSA client keys (default: 4096)",
    )

    parser.add_argument(
        "--timeout",
        type=float,
        default=5.0,
        help="Seconds allowed for the host key scan and each connection (default: 5)",
    )

    parser.add_argument(
        "-l", "--username",
        default="git",
        help="User to authenticate as (default: git)",
    )

    parser.add_argument(
        "-c", "--command",
        default="echo ok",
        help="Probe command to run after authenticating (default: 'echo ok')",
    )

    parser.add_argument(
        "--events",
        action="store_true",
        help="Print JSONL events to stderr after the run",
    )

    parser.add_argument(
        "--event-log",
        type=Path,
        metavar="PATH",
        help="Append JSONL events to PATH",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (-v info, -vv debug, -vvv asyncssh debug)",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Only log errors",
    )

    return parser


def configure_logging(verbose: int, quiet: bool) -> None:
    """Set up logging from -v/-q flags."""
    if quiet:
        logging.basicConfig(level=logging.ERROR, format=LOG_FORMAT, stream=sys.stderr)
        logging.getLogger("asyncssh").setLevel(logging.ERROR)
        return

    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)

    # asyncssh is chatty at INFO; only surface it at -vvv
    if verbose >= 3:
        logging.getLogger("asyncssh").setLevel(logging.DEBUG)
    else:
        logging.getLogger("asyncssh").setLevel(logging.WARNING)


async def run_command(args: argparse.Namespace) -> int:
    """
    Run the smoke suite with parsed CLI arguments.

    Returns:
        0 if every case passed, 1 otherwise, 2 for invalid arguments
    """
    from hostkey_smoke.events import EventEmitter, EventLog
    from hostkey_smoke.smoketest import SmokeConfig, run

    configure_logging(args.verbose, args.quiet)

    try:
        config = SmokeConfig(
            username=args.username,
            rsa_bits=args.rsa_bits,
            timeout=args.timeout,
            command=args.command,
            event_log_path=args.event_log,
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    event_log = EventLog() if args.events else None
    emitter = EventEmitter(event_log, jsonl_path=config.event_log_path)

    try:
        exit_code = await run(config, emitter=emitter)
    finally:
        emitter.close()
        if event_log is not None:
            for event in event_log.events:
                print(event.to_json(), file=sys.stderr)

    return exit_code


def main() -> int:
    """CLI entry point."""
    parser = create_parser()
    args = parser.parse_args()

    return asyncio.run(run_command(args))


if __name__ == "__main__":
    sys.exit(main())
