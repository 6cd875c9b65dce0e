"""Entry point: configure the buddy from environment variables before the server starts.

    python -m buddyops.auto_setup

Exit code 0 when setup succeeded or was skipped (disabled, already configured, missing
credentials), 1 on any fatal step.
"""

from __future__ import annotations

import asyncio
import logging
import sys

import aiohttp

from buddyops.logs import ensure_logging
from buddyops.services.config import SetupConfig
from buddyops.services.dependencies import get_setup_orchestrator
from buddyops.services.setup.orchestrator import ExitOutcome

logger = logging.getLogger("buddyops.auto_setup")


async def run(config: SetupConfig) -> ExitOutcome:
    async with aiohttp.ClientSession() as session:
        orchestrator = get_setup_orchestrator(config, session=session)
        return await orchestrator.run()


def main() -> int:
    ensure_logging()
    try:
        config = SetupConfig.from_env()
        outcome = asyncio.run(run(config))
    except Exception:
        logger.exception("Fatal error during auto-setup")
        return 1
    return outcome.exit_code


if __name__ == "__main__":
    sys.exit(main())
