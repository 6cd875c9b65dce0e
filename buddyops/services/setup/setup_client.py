from __future__ import annotations

import asyncio
import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp
from pydantic import ValidationError

from buddyops.models.setup import ConfigPatchRequest, SetupPayload, SetupRunResponse
from buddyops.services.config import CredentialSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SetupRunResult:
    """Outcome of ``POST /setup/api/run``.

    ``reachable`` is False for transport failures, which never carry ``output``. A
    rejected configuration is ``ok=False, reachable=True`` with the server's diagnostics.
    """

    ok: bool
    reachable: bool = True
    output: Optional[str] = None


class SetupClient:
    """Client for the target service's setup API.

    Both calls authenticate with HTTP Basic, empty username and the setup password.
    """

    RUN_PATH: str = "/setup/api/run"
    CONFIG_PATH: str = "/setup/api/config"
    _DEFAULT_TIMEOUT_SECONDS: float = 120.0

    def __init__(
        self,
        *,
        base_url: str,
        session: aiohttp.ClientSession,
        timeout_seconds: float = _DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._auth: Optional[str] = None

    @staticmethod
    def _basic_auth(password: str) -> str:
        # Empty username; the password is the whole credential.
        token = base64.b64encode(f":{password}".encode("utf-8")).decode("ascii")
        return f"Basic {token}"

    async def _post_json(self, *, path: str, body: dict[str, Any], auth: str) -> tuple[int, str]:
        async with self._session.post(
            f"{self._base_url}{path}",
            json=body,
            headers={"Authorization": auth},
            timeout=self._timeout,
        ) as resp:
            # Bodies are not guaranteed to be valid UTF-8, whatever they declare.
            payload = await resp.read()
            return (resp.status, payload.decode("utf-8", errors="replace"))

    async def configure(self, credentials: CredentialSet, payload: SetupPayload) -> SetupRunResult:
        # Remembered for the follow-up set_mode call of the same flow.
        self._auth = self._basic_auth(credentials.setup_password)

        try:
            status, text = await self._post_json(path=self.RUN_PATH, body=payload.to_wire(), auth=self._auth)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error("Setup request failed: %s", exc.__class__.__name__)
            return SetupRunResult(ok=False, reachable=False)

        try:
            parsed = SetupRunResponse.model_validate(json.loads(text)) if text else SetupRunResponse()
        except (ValueError, ValidationError):
            logger.error("Setup endpoint returned a non-JSON body (HTTP %s)", status)
            return SetupRunResult(ok=False, output=text or None)

        if not parsed.ok:
            return SetupRunResult(ok=False, output=parsed.output)
        return SetupRunResult(ok=True, output=parsed.output)

    async def set_mode(self, value: str = "local", *, password: Optional[str] = None) -> bool:
        """Set ``gateway.mode`` through the config API. Any failure returns False."""

        if password is not None:
            auth = self._basic_auth(password)
        elif self._auth is not None:
            auth = self._auth
        else:
            raise ValueError("set_mode requires a password when configure() was not called first")

        body = ConfigPatchRequest(path="gateway.mode", value=value).model_dump()
        try:
            status, text = await self._post_json(path=self.CONFIG_PATH, body=body, auth=auth)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("Config API request failed: %s", exc.__class__.__name__)
            return False

        if 200 <= status < 300:
            return True

        logger.warning("Config API rejected gateway.mode update: HTTP %s %s", status, text[:200].strip())
        return False
