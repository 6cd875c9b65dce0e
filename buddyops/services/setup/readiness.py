from __future__ import annotations

import asyncio
import logging

import aiohttp

logger = logging.getLogger(__name__)


class ReadinessTimeoutError(RuntimeError):
    def __init__(self, attempts: int) -> None:
        super().__init__(f"Server did not become ready in time ({attempts} attempts)")
        self.attempts = attempts


class ReadinessProbe:
    """Polls the target service's health endpoint until it answers with a 2xx."""

    HEALTH_PATH: str = "/setup/healthz"
    _REQUEST_TIMEOUT_SECONDS: float = 5.0

    def __init__(self, *, base_url: str, session: aiohttp.ClientSession) -> None:
        self._url = f"{base_url.rstrip('/')}{self.HEALTH_PATH}"
        self._session = session

    async def _attempt(self) -> bool:
        try:
            async with self._session.get(
                self._url,
                timeout=aiohttp.ClientTimeout(total=self._REQUEST_TIMEOUT_SECONDS),
            ) as resp:
                return 200 <= resp.status < 300
        except (aiohttp.ClientError, asyncio.TimeoutError):
            # Connection refused while the server is still booting is the normal case.
            return False

    async def wait(self, max_attempts: int = 30, interval_seconds: float = 1.0) -> bool:
        """Block until ready.

        Each failed attempt (network error or non-2xx) consumes one attempt and is
        followed by a fixed sleep, except after the last one.

        Raises:
            ReadinessTimeoutError: after ``max_attempts`` failed attempts.
        """

        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")

        for attempt in range(1, max_attempts + 1):
            if await self._attempt():
                logger.info("Server is ready (attempt %d/%d)", attempt, max_attempts)
                return True
            if attempt < max_attempts:
                await asyncio.sleep(interval_seconds)

        raise ReadinessTimeoutError(max_attempts)
