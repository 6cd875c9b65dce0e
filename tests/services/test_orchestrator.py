"""Tests for the SetupOrchestrator state machine."""

import dataclasses
import json
import sys
from pathlib import Path
from typing import Any, Optional

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from buddyops.models.setup import SetupPayload
from buddyops.services.config import CredentialSet, SetupConfig
from buddyops.services.setup.config_mutator import ConfigMutator
from buddyops.services.setup.orchestrator import ExitOutcome, SetupOrchestrator
from buddyops.services.setup.provisioning import WorkspaceTemplateInstaller
from buddyops.services.setup.readiness import ReadinessProbe, ReadinessTimeoutError
from buddyops.services.setup.setup_client import SetupClient, SetupRunResult
from buddyops.services.setup.supervisor import ServiceSpawnError, ServiceSupervisor


class FakeSupervisor:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.spawned = 0
        self.terminated = 0

    async def spawn(self) -> None:
        self.spawned += 1
        if self.fail:
            raise ServiceSpawnError("Failed to start target service: node src/server.js")

    async def terminate(self) -> Optional[int]:
        self.terminated += 1
        return 0


class FakeProbe:
    def __init__(self, *, ready: bool = True) -> None:
        self.ready = ready
        self.calls: list[tuple[int, float]] = []

    async def wait(self, max_attempts: int = 30, interval_seconds: float = 1.0) -> bool:
        self.calls.append((max_attempts, interval_seconds))
        if not self.ready:
            raise ReadinessTimeoutError(max_attempts)
        return True


class FakeClient:
    def __init__(self, *, result: SetupRunResult, mode_ok: bool = True) -> None:
        self.result = result
        self.mode_ok = mode_ok
        self.configure_calls: list[tuple[CredentialSet, SetupPayload]] = []
        self.mode_calls: list[str] = []

    async def configure(self, credentials: CredentialSet, payload: SetupPayload) -> SetupRunResult:
        self.configure_calls.append((credentials, payload))
        return self.result

    async def set_mode(self, value: str = "local", *, password: Optional[str] = None) -> bool:
        self.mode_calls.append(value)
        return self.mode_ok


class FakeMutator:
    def __init__(self, *, ok: bool = True) -> None:
        self.ok = ok
        self.calls: list[tuple[Path, str]] = []

    def set_gateway_mode_directly(self, path: Path, value: str = "local") -> bool:
        self.calls.append((path, value))
        return self.ok


class FakeTemplates:
    def __init__(self) -> None:
        self.installed = 0

    def install(self) -> tuple[int, int]:
        self.installed += 1
        return (0, 4)


def _orchestrator(config: SetupConfig, **overrides: Any) -> tuple[SetupOrchestrator, dict[str, Any]]:
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    parts: dict[str, Any] = {
        "supervisor": FakeSupervisor(),
        "probe": FakeProbe(),
        "client": FakeClient(result=SetupRunResult(ok=True)),
        "mutator": FakeMutator(),
        "templates": FakeTemplates(),
    }
    parts.update(overrides)
    orchestrator = SetupOrchestrator(config=config, sleep=fake_sleep, **parts)
    parts["sleeps"] = sleeps
    return orchestrator, parts


def _assert_untouched(parts: dict[str, Any]) -> None:
    assert parts["supervisor"].spawned == 0
    assert parts["probe"].calls == []
    assert parts["client"].configure_calls == []
    assert parts["client"].mode_calls == []


class TestSkips:
    @pytest.mark.asyncio
    async def test_disabled(self, setup_config: SetupConfig):
        orchestrator, parts = _orchestrator(dataclasses.replace(setup_config, enabled=False))
        outcome = await orchestrator.run()
        assert outcome is ExitOutcome.SKIPPED_DISABLED
        assert outcome.exit_code == 0
        _assert_untouched(parts)

    @pytest.mark.asyncio
    async def test_marker_present_skips_everything_but_templates(self, setup_config: SetupConfig):
        setup_config.state_dir.mkdir(parents=True)
        setup_config.marker_path.write_text("{}", encoding="utf-8")

        orchestrator, parts = _orchestrator(setup_config)
        outcome = await orchestrator.run()

        assert outcome is ExitOutcome.SKIPPED_ALREADY_CONFIGURED
        assert outcome.exit_code == 0
        assert parts["templates"].installed == 1
        _assert_untouched(parts)

    @pytest.mark.asyncio
    async def test_undecodable_template_does_not_fail_configured_run(self, setup_config: SetupConfig):
        setup_config.state_dir.mkdir(parents=True)
        setup_config.marker_path.write_text("{}", encoding="utf-8")
        setup_config.templates_dir.mkdir(parents=True)
        (setup_config.templates_dir / "Bootstrap.md").write_bytes(b"\xff\xfe not utf-8")

        orchestrator, parts = _orchestrator(setup_config, templates=WorkspaceTemplateInstaller(setup_config))
        outcome = await orchestrator.run()

        assert outcome is ExitOutcome.SKIPPED_ALREADY_CONFIGURED
        assert outcome.exit_code == 0
        assert not (setup_config.workspace_dir / "Bootstrap.md").exists()
        _assert_untouched(parts)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("blank", ["setup_password", "model_auth_secret", "bot_token"])
    async def test_missing_credential_skips_before_any_http(self, setup_config: SetupConfig, blank: str):
        creds = dataclasses.replace(setup_config.credentials, **{blank: ""})
        orchestrator, parts = _orchestrator(dataclasses.replace(setup_config, credentials=creds))

        outcome = await orchestrator.run()

        assert outcome is ExitOutcome.SKIPPED_MISSING_CREDENTIALS
        assert outcome.exit_code == 0
        _assert_untouched(parts)

    @pytest.mark.asyncio
    async def test_all_credentials_missing(self, setup_config: SetupConfig):
        config = dataclasses.replace(setup_config, credentials=CredentialSet.from_env({}))
        orchestrator, parts = _orchestrator(config)
        assert await orchestrator.run() is ExitOutcome.SKIPPED_MISSING_CREDENTIALS
        _assert_untouched(parts)


class TestFatalSteps:
    @pytest.mark.asyncio
    async def test_spawn_failure(self, setup_config: SetupConfig):
        orchestrator, parts = _orchestrator(setup_config, supervisor=FakeSupervisor(fail=True))
        outcome = await orchestrator.run()
        assert outcome is ExitOutcome.FATAL_SPAWN_FAILED
        assert outcome.exit_code == 1
        assert parts["probe"].calls == []

    @pytest.mark.asyncio
    async def test_not_ready_terminates_service(self, setup_config: SetupConfig):
        orchestrator, parts = _orchestrator(setup_config, probe=FakeProbe(ready=False))
        outcome = await orchestrator.run()

        assert outcome is ExitOutcome.FATAL_NOT_READY
        assert outcome.exit_code == 1
        assert parts["probe"].calls == [(3, 0.0)]
        assert parts["supervisor"].terminated == 1
        assert parts["client"].configure_calls == []

    @pytest.mark.asyncio
    async def test_rejected_setup_still_terminates(self, setup_config: SetupConfig):
        client = FakeClient(result=SetupRunResult(ok=False, output="bad token"))
        orchestrator, parts = _orchestrator(setup_config, client=client)

        outcome = await orchestrator.run()

        assert outcome is ExitOutcome.FATAL_SETUP_REJECTED
        assert outcome.exit_code == 1
        assert parts["supervisor"].terminated == 1
        assert client.mode_calls == []

    @pytest.mark.asyncio
    async def test_unreachable_setup_api(self, setup_config: SetupConfig):
        client = FakeClient(result=SetupRunResult(ok=False, reachable=False))
        orchestrator, parts = _orchestrator(setup_config, client=client)

        assert await orchestrator.run() is ExitOutcome.FATAL_SETUP_UNREACHABLE
        assert parts["supervisor"].terminated == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_still_terminates(self, setup_config: SetupConfig):
        class BrokenClient(FakeClient):
            async def configure(self, credentials, payload):
                raise KeyError("boom")

        orchestrator, parts = _orchestrator(setup_config, client=BrokenClient(result=SetupRunResult(ok=True)))
        with pytest.raises(KeyError):
            await orchestrator.run()
        assert parts["supervisor"].terminated == 1


class TestSuccess:
    @pytest.mark.asyncio
    async def test_success_via_api(self, setup_config: SetupConfig):
        orchestrator, parts = _orchestrator(setup_config)
        outcome = await orchestrator.run()

        assert outcome is ExitOutcome.SUCCESS
        assert outcome.exit_code == 0
        creds, payload = parts["client"].configure_calls[0]
        assert payload.to_wire() == {
            "flow": "quickstart",
            "authChoice": "gemini-api-key",
            "authSecret": creds.model_auth_secret,
            "model": creds.model,
            "telegramToken": creds.bot_token,
        }
        assert parts["client"].mode_calls == ["local"]
        assert parts["mutator"].calls == []
        assert parts["supervisor"].terminated == 1
        assert parts["sleeps"] == [setup_config.shutdown_grace_seconds]

    @pytest.mark.asyncio
    async def test_mode_api_failure_uses_file_fallback(self, setup_config: SetupConfig):
        client = FakeClient(result=SetupRunResult(ok=True), mode_ok=False)
        orchestrator, parts = _orchestrator(setup_config, client=client)

        assert await orchestrator.run() is ExitOutcome.SUCCESS
        assert parts["mutator"].calls == [(setup_config.service_config_path, "local")]

    @pytest.mark.asyncio
    async def test_mode_api_and_fallback_failure_is_still_success(self, setup_config: SetupConfig):
        client = FakeClient(result=SetupRunResult(ok=True), mode_ok=False)
        mutator = FakeMutator(ok=False)
        orchestrator, parts = _orchestrator(setup_config, client=client, mutator=mutator)

        outcome = await orchestrator.run()

        assert outcome is ExitOutcome.SUCCESS
        assert outcome.exit_code == 0
        assert len(mutator.calls) == 1
        assert parts["supervisor"].terminated == 1


# A stand-in target service: healthz is up, run writes the config file, config API is broken.
SERVICE_SCRIPT = "import time\ntime.sleep(60)\n"


def _target_app(config_path: Path, hits: dict[str, int]) -> web.Application:
    async def healthz(request: web.Request) -> web.Response:
        hits["healthz"] = hits.get("healthz", 0) + 1
        return web.Response(text="ok")

    async def run(request: web.Request) -> web.Response:
        hits["run"] = hits.get("run", 0) + 1
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(json.dumps({"agents": {"model": (await request.json())["model"]}}), encoding="utf-8")
        return web.json_response({"ok": True, "output": "configured"})

    async def config(request: web.Request) -> web.Response:
        hits["config"] = hits.get("config", 0) + 1
        return web.Response(status=404)

    app = web.Application()
    app.router.add_get("/setup/healthz", healthz)
    app.router.add_post("/setup/api/run", run)
    app.router.add_post("/setup/api/config", config)
    return app


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_fallback_path_sets_gateway_mode_in_file(self, setup_config: SetupConfig):
        hits: dict[str, int] = {}
        async with TestServer(_target_app(setup_config.service_config_path, hits)) as server:
            config = dataclasses.replace(setup_config, base_url=f"http://{server.host}:{server.port}")
            supervisor = ServiceSupervisor([sys.executable, "-c", SERVICE_SCRIPT])
            async with aiohttp.ClientSession() as session:
                orchestrator = SetupOrchestrator(
                    config=config,
                    supervisor=supervisor,
                    probe=ReadinessProbe(base_url=config.base_url, session=session),
                    client=SetupClient(base_url=config.base_url, session=session),
                    mutator=ConfigMutator(),
                )
                outcome = await orchestrator.run()

        assert outcome is ExitOutcome.SUCCESS
        assert hits == {"healthz": 1, "run": 1, "config": 1}
        assert not supervisor.running
        written = json.loads(config.service_config_path.read_text(encoding="utf-8"))
        assert written["gateway"]["mode"] == "local"
        assert written["agents"]["model"] == "google/gemini-2.0-flash"
