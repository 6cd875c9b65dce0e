from __future__ import annotations

import asyncio
import enum
import logging
from typing import Awaitable, Callable, Optional

from buddyops.models.setup import SetupPayload
from buddyops.services.config import SetupConfig
from buddyops.services.setup.config_mutator import ConfigMutator
from buddyops.services.setup.provisioning import PersistentStateProvisioner, WorkspaceTemplateInstaller
from buddyops.services.setup.readiness import ReadinessProbe, ReadinessTimeoutError
from buddyops.services.setup.setup_client import SetupClient
from buddyops.services.setup.supervisor import ServiceSpawnError, ServiceSupervisor

logger = logging.getLogger(__name__)


class ExitOutcome(str, enum.Enum):
    SKIPPED_DISABLED = "skipped_disabled"
    SKIPPED_ALREADY_CONFIGURED = "skipped_already_configured"
    SKIPPED_MISSING_CREDENTIALS = "skipped_missing_credentials"
    SUCCESS = "success"
    FATAL_SPAWN_FAILED = "fatal_spawn_failed"
    FATAL_NOT_READY = "fatal_not_ready"
    FATAL_SETUP_REJECTED = "fatal_setup_rejected"
    FATAL_SETUP_UNREACHABLE = "fatal_setup_unreachable"

    @property
    def fatal(self) -> bool:
        return self.value.startswith("fatal_")

    @property
    def exit_code(self) -> int:
        return 1 if self.fatal else 0


class SetupOrchestrator:
    """Bootstraps the target service from environment-provided credentials.

    Steps run strictly in order and each may end the flow:

    1. disabled by ``AUTO_SETUP_ENABLED=false``        -> SKIPPED_DISABLED
    2. marker file present                              -> SKIPPED_ALREADY_CONFIGURED
    3. required credentials missing                     -> SKIPPED_MISSING_CREDENTIALS
    4. spawn the service                                -> FATAL_SPAWN_FAILED
    5. wait for readiness                               -> FATAL_NOT_READY
    6. ``POST /setup/api/run``                          -> FATAL_SETUP_REJECTED / _UNREACHABLE
    7. set ``gateway.mode=local`` (API, then file)      best effort, never fatal
    8. stop the service, wait the grace period          -> SUCCESS

    The optional provisioner runs before step 1 and the template installer runs in the
    already-configured branch; both are idempotent side-setup.
    """

    GATEWAY_MODE: str = "local"

    def __init__(
        self,
        *,
        config: SetupConfig,
        supervisor: ServiceSupervisor,
        probe: ReadinessProbe,
        client: SetupClient,
        mutator: ConfigMutator,
        provisioner: Optional[PersistentStateProvisioner] = None,
        templates: Optional[WorkspaceTemplateInstaller] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._supervisor = supervisor
        self._probe = probe
        self._client = client
        self._mutator = mutator
        self._provisioner = provisioner
        self._templates = templates
        self._sleep = sleep

    def _build_payload(self) -> SetupPayload:
        creds = self._config.credentials
        return SetupPayload(
            auth_secret=creds.model_auth_secret,
            model=creds.model,
            telegram_token=creds.bot_token,
        )

    async def run(self) -> ExitOutcome:
        logger.info("Starting auto-configuration check...")

        if self._provisioner is not None:
            self._provisioner.provision()

        if not self._config.enabled:
            logger.info("Auto-setup is disabled (AUTO_SETUP_ENABLED=false), skipping")
            return ExitOutcome.SKIPPED_DISABLED

        if self._config.is_configured():
            logger.info("Already configured (config exists): %s", self._config.marker_path)
            if self._templates is not None:
                try:
                    self._templates.install()
                except (OSError, ValueError) as exc:
                    logger.error("Workspace template setup failed: %s", exc)
            logger.info("To reconfigure, delete the config or set different env vars")
            return ExitOutcome.SKIPPED_ALREADY_CONFIGURED

        missing = self._config.credentials.missing()
        if missing:
            logger.warning("Missing required environment variables: %s", ", ".join(missing))
            logger.info("Auto-setup cannot proceed. The /setup wizard will be available.")
            return ExitOutcome.SKIPPED_MISSING_CREDENTIALS

        logger.info("All required variables present, proceeding with auto-setup...")

        try:
            await self._supervisor.spawn()
        except ServiceSpawnError:
            logger.exception("Could not start the target service")
            return ExitOutcome.FATAL_SPAWN_FAILED

        try:
            outcome = await self._configure_running_service()
        finally:
            await self._supervisor.terminate()

        if outcome is not ExitOutcome.FATAL_NOT_READY:
            await self._sleep(self._config.shutdown_grace_seconds)

        if outcome is ExitOutcome.SUCCESS:
            logger.info("Auto-setup complete! Starting main server...")
        else:
            logger.error("Auto-setup failed (%s). Check logs above.", outcome.value)
        return outcome

    async def _configure_running_service(self) -> ExitOutcome:
        logger.info("Waiting for server to start...")
        try:
            await self._probe.wait(
                max_attempts=self._config.ready_attempts,
                interval_seconds=self._config.ready_interval_seconds,
            )
        except ReadinessTimeoutError as exc:
            logger.error("%s", exc)
            return ExitOutcome.FATAL_NOT_READY

        logger.info("Running automated setup...")
        creds = self._config.credentials
        result = await self._client.configure(creds, self._build_payload())

        if not result.reachable:
            logger.error("Auto-setup failed: setup API unreachable")
            return ExitOutcome.FATAL_SETUP_UNREACHABLE
        if not result.ok:
            logger.error("Setup failed. Output: %s", result.output)
            return ExitOutcome.FATAL_SETUP_REJECTED

        logger.info("Setup completed successfully (model=%s, telegram=%s...)", creds.model, creds.bot_token[:10])

        await self._ensure_gateway_mode()
        return ExitOutcome.SUCCESS

    async def _ensure_gateway_mode(self) -> bool:
        # Failure here is only logged; the run still reports SUCCESS even though the
        # gateway will not start without gateway.mode.
        logger.info("Setting gateway.mode=%s...", self.GATEWAY_MODE)
        if await self._client.set_mode(self.GATEWAY_MODE):
            logger.info("Gateway mode set to %s", self.GATEWAY_MODE)
            return True

        logger.info("API failed, setting gateway.mode directly in config file...")
        if self._mutator.set_gateway_mode_directly(self._config.service_config_path, self.GATEWAY_MODE):
            return True

        logger.error(
            "Failed to set gateway mode; the gateway may refuse to start until gateway.mode=%s is set in %s",
            self.GATEWAY_MODE,
            self._config.service_config_path,
        )
        return False
