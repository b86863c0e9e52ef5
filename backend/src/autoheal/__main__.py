"""
Command line entry point.

Usage:
    python -m backend.src.autoheal                 # poll and recover until interrupted
    python -m backend.src.autoheal --once          # one poll of each monitor, JSON summary
    python -m backend.src.autoheal --monitors redis,system --log-level DEBUG
"""
import argparse
import asyncio
import json
import logging
import signal
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

from .config import AutohealConfig
from .exceptions import ConfigurationError
from .supervisor import AutohealSupervisor

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="autoheal",
        description="Classify container failures, run recovery actions and poll service health"
    )
    parser.add_argument("--once", action="store_true",
                        help="Run one poll of each monitor, print a JSON health summary and exit")
    parser.add_argument("--log-level", help="Logging level (default: AUTOHEAL_LOG_LEVEL or INFO)")
    parser.add_argument("--project-root", type=Path, help="Compose project directory")
    parser.add_argument("--monitors", help="Comma separated monitors to enable")
    parser.add_argument("--database-url", help="SQLAlchemy URL for the history archive")
    parser.add_argument("--watch-logs", action="store_true", help="Follow container logs")
    parser.add_argument("--no-recovery", action="store_true",
                        help="Classify and report only, never run recovery actions")
    return parser


def load_config(args: argparse.Namespace) -> AutohealConfig:
    config = AutohealConfig.from_env()
    overrides = {}
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.project_root:
        overrides["project_root"] = args.project_root.expanduser()
    if args.monitors:
        overrides["enabled_monitors"] = tuple(m.strip() for m in args.monitors.split(",") if m.strip())
    if args.database_url:
        overrides["database_url"] = args.database_url
    if args.watch_logs:
        overrides["watch_logs"] = True
    if args.no_recovery:
        overrides["auto_recover"] = False
    if overrides:
        config = replace(config, **overrides)
        config.validate()
    return config


async def run_once(supervisor: AutohealSupervisor) -> int:
    supervisor.wire()
    try:
        await supervisor.poll_all()
        await supervisor.engine.wait_idle()
        await supervisor.bus.drain()
        summary = await supervisor.system_health_summary()
    finally:
        supervisor.unwire()

    print(json.dumps(summary, indent=2, default=str))
    return 0 if summary["healthy"] else 1


async def run_forever(supervisor: AutohealSupervisor) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops lack signal handlers; KeyboardInterrupt still applies
            pass

    async with supervisor:
        await stop.wait()
        logger.info("Shutdown requested")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = load_config(args)
    except ConfigurationError as e:
        print(f"autoheal: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    supervisor = AutohealSupervisor(config)
    if args.once:
        return asyncio.run(run_once(supervisor))
    try:
        return asyncio.run(run_forever(supervisor))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
