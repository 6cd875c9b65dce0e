from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar, Mapping, Optional


def _clean(env: Mapping[str, str], name: str) -> str:
    return (env.get(name) or "").strip()


def _float_from_env(env: Mapping[str, str], name: str, default: float) -> float:
    raw = _clean(env, name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid {name}; must be a number") from exc


def _int_from_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = _clean(env, name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid {name}; must be an integer") from exc
    if value <= 0:
        raise ValueError(f"Invalid {name}; must be positive")
    return value


@dataclass(frozen=True)
class CredentialSet:
    """Inputs the target service needs for its one-shot configuration.

    The three secrets are required; an empty value (after trimming) counts as missing.
    """

    setup_password: str
    model_auth_secret: str
    bot_token: str
    model: str = "google/gemini-2.0-flash"

    DEFAULT_MODEL: ClassVar[str] = "google/gemini-2.0-flash"
    REQUIRED_ENV: ClassVar[dict[str, str]] = {
        "SETUP_PASSWORD": "setup_password",
        "GEMINI_API_KEY": "model_auth_secret",
        "TELEGRAM_BOT_TOKEN": "bot_token",
    }

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> "CredentialSet":
        env = os.environ if env is None else env
        return CredentialSet(
            setup_password=_clean(env, "SETUP_PASSWORD"),
            model_auth_secret=_clean(env, "GEMINI_API_KEY"),
            bot_token=_clean(env, "TELEGRAM_BOT_TOKEN"),
            model=_clean(env, "OPENCLAW_MODEL") or CredentialSet.DEFAULT_MODEL,
        )

    def missing(self) -> list[str]:
        """Names of the required environment variables that were absent or blank."""

        return [name for name, attr in self.REQUIRED_ENV.items() if not getattr(self, attr)]

    @property
    def complete(self) -> bool:
        return not self.missing()


@dataclass(frozen=True)
class TemplateValues:
    buddy_name: str = "Buddy"
    human: str = "Human"
    telegram_bot_username: str = "@UnknownBot"

    def placeholders(self) -> dict[str, str]:
        return {
            "{{BUDDY_NAME}}": self.buddy_name,
            "{{HUMAN}}": self.human,
            "{{TELEGRAM_BOT_USERNAME}}": self.telegram_bot_username,
        }


@dataclass(frozen=True)
class SetupConfig:
    """Runtime configuration for the auto-setup flow.

    Paths follow the deployment layout: when a volume is mounted at ``volume_path`` the
    state and workspace live on it, otherwise under the home directory and the current
    working directory. ``OPENCLAW_STATE_DIR`` / ``OPENCLAW_WORKSPACE_DIR`` win over both.
    """

    credentials: CredentialSet
    state_dir: Path
    workspace_dir: Path
    enabled: bool = True
    state_dir_overridden: bool = False
    volume_path: Path = Path("/data")
    volume_mounted: bool = False
    default_state_dir: Path = field(default_factory=lambda: Path.home() / ".openclaw")
    templates_dir: Path = field(default_factory=lambda: Path.cwd() / "templates" / "workspace")
    template_values: TemplateValues = field(default_factory=TemplateValues)
    base_url: str = "http://localhost:8080"
    server_command: tuple[str, ...] = ("node", "src/server.js")
    ready_attempts: int = 30
    ready_interval_seconds: float = 1.0
    shutdown_grace_seconds: float = 1.0

    MARKER_FILENAME: ClassVar[str] = "clawdbot.json"
    SERVICE_CONFIG_FILENAME: ClassVar[str] = "openclaw.json"

    @property
    def marker_path(self) -> Path:
        return self.state_dir / self.MARKER_FILENAME

    @property
    def service_config_path(self) -> Path:
        return self.state_dir / self.SERVICE_CONFIG_FILENAME

    @property
    def volume_state_dir(self) -> Path:
        return self.volume_path / ".openclaw"

    @property
    def volume_workspace_dir(self) -> Path:
        return self.volume_path / "workspace"

    def is_configured(self) -> bool:
        return self.marker_path.exists()

    @staticmethod
    def from_env(
        env: Optional[Mapping[str, str]] = None,
        *,
        volume_path: Path = Path("/data"),
    ) -> "SetupConfig":
        env = os.environ if env is None else env

        volume_mounted = volume_path.is_dir()
        default_state_dir = Path.home() / ".openclaw"
        default_workspace_dir = Path.cwd() / "data" / "workspace"

        state_override = _clean(env, "OPENCLAW_STATE_DIR")
        workspace_override = _clean(env, "OPENCLAW_WORKSPACE_DIR")

        if state_override:
            state_dir = Path(state_override)
        else:
            state_dir = volume_path / ".openclaw" if volume_mounted else default_state_dir

        if workspace_override:
            workspace_dir = Path(workspace_override)
        else:
            workspace_dir = volume_path / "workspace" if volume_mounted else default_workspace_dir

        command_raw = _clean(env, "AUTO_SETUP_SERVER_COMMAND")
        server_command = tuple(shlex.split(command_raw)) if command_raw else ("node", "src/server.js")

        return SetupConfig(
            credentials=CredentialSet.from_env(env),
            state_dir=state_dir,
            workspace_dir=workspace_dir,
            enabled=_clean(env, "AUTO_SETUP_ENABLED").lower() != "false",
            state_dir_overridden=bool(state_override),
            volume_path=volume_path,
            volume_mounted=volume_mounted,
            default_state_dir=default_state_dir,
            template_values=TemplateValues(
                buddy_name=env.get("BUDDY_NAME") or "Buddy",
                human=env.get("BUDDY_HUMAN") or "Human",
                telegram_bot_username=env.get("TELEGRAM_BOT_USERNAME") or "@UnknownBot",
            ),
            base_url=(_clean(env, "AUTO_SETUP_BASE_URL") or "http://localhost:8080").rstrip("/"),
            server_command=server_command,
            ready_attempts=_int_from_env(env, "AUTO_SETUP_READY_ATTEMPTS", 30),
            ready_interval_seconds=_float_from_env(env, "AUTO_SETUP_READY_INTERVAL_SECONDS", 1.0),
            shutdown_grace_seconds=_float_from_env(env, "AUTO_SETUP_SHUTDOWN_GRACE_SECONDS", 1.0),
        )
