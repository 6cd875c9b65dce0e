"""Entry point: back up the buddy's state and workspace to object storage.

    python -m buddyops.backup          # run now, then every BACKUP_INTERVAL_HOURS (24h)
    python -m buddyops.backup --once   # single run, exit 0/1

Without storage credentials backups are disabled and the process exits 0.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional, Sequence

from buddyops.logs import ensure_logging
from buddyops.services.backup.scheduler import BackupScheduler
from buddyops.services.config import BackupConfig
from buddyops.services.dependencies import get_backup_scheduler

logger = logging.getLogger("buddyops.backup")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Archive buddy state and workspace and upload it to a bucket.")
    parser.add_argument("--once", action="store_true", help="run a single backup and exit (0 on success, 1 on failure)")
    return parser


async def run_forever(scheduler: BackupScheduler) -> None:
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            pass

    scheduler.start()
    await stop.wait()
    logger.info("Shutdown requested")
    await scheduler.stop()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    ensure_logging()

    try:
        config = BackupConfig.from_env()
    except ValueError as exc:
        logger.error("Invalid backup configuration: %s", exc)
        return 1

    if not config.enabled:
        logger.warning("No storage key found. Backups disabled.")
        return 0

    try:
        scheduler = get_backup_scheduler(config)
        if args.once:
            result = asyncio.run(scheduler.run_once())
            return 0 if result.ok else 1
        asyncio.run(run_forever(scheduler))
    except Exception:
        logger.exception("Fatal error in backup process")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
