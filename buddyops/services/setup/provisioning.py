from __future__ import annotations

import logging
import shutil
from pathlib import Path

from buddyops.services.config import SetupConfig

logger = logging.getLogger(__name__)


class PersistentStateProvisioner:
    """Points the service's default state dir at the mounted volume.

    Pairing data and config must survive redeploys, so when a volume is mounted the
    default ``~/.openclaw`` becomes a symlink to ``<volume>/.openclaw``. Every failure is
    logged and tolerated; the service then simply runs on ephemeral storage.
    """

    def __init__(self, config: SetupConfig) -> None:
        self._config = config

    def provision(self) -> bool:
        """Returns True when the state is backed by the volume."""

        config = self._config
        if not config.volume_mounted:
            logger.info("No volume mounted at %s, using ephemeral storage", config.volume_path)
            return False

        logger.info("Setting up persistent state on volume...")
        volume_state = config.volume_state_dir
        volume_workspace = config.volume_workspace_dir

        try:
            if not volume_state.exists():
                volume_state.mkdir(mode=0o700, parents=True)
                logger.info("Created %s (mode 700)", volume_state)
            else:
                volume_state.chmod(0o700)
            if not volume_workspace.exists():
                volume_workspace.mkdir(mode=0o755, parents=True)
                logger.info("Created %s", volume_workspace)
        except OSError as exc:
            logger.error("Could not create volume directories: %s", exc)
            logger.info("Falling back to ephemeral storage")
            return False

        if not config.state_dir_overridden:
            try:
                self._link_default_state_dir(config.default_state_dir, volume_state)
            except OSError as exc:
                logger.error("Could not create state symlink: %s", exc)

        logger.info("Persistent state setup complete")
        return True

    @staticmethod
    def _link_default_state_dir(default_dir: Path, volume_state: Path) -> None:
        if default_dir.is_symlink():
            return

        if default_dir.exists():
            if any(default_dir.iterdir()):
                logger.info("Migrating existing state to volume...")
                shutil.copytree(default_dir, volume_state, dirs_exist_ok=True)
            shutil.rmtree(default_dir)

        default_dir.parent.mkdir(parents=True, exist_ok=True)
        default_dir.symlink_to(volume_state, target_is_directory=True)
        logger.info("Symlinked %s -> %s", default_dir, volume_state)


class WorkspaceTemplateInstaller:
    """Seeds the workspace with persona templates, never overwriting existing files."""

    TEMPLATES: tuple[str, ...] = ("Bootstrap.md", "Identity.md", "Soul.md", "Memory.md")

    def __init__(self, config: SetupConfig) -> None:
        self._config = config

    def install(self) -> tuple[int, int]:
        """Returns ``(added, skipped)``."""

        workspace_dir = self._config.workspace_dir
        templates_dir = self._config.templates_dir

        logger.info("Checking workspace templates...")
        if not workspace_dir.exists():
            workspace_dir.mkdir(parents=True)
            logger.info("Created workspace directory: %s", workspace_dir)

        if not templates_dir.is_dir():
            logger.warning("Templates directory not found, skipping workspace template setup: %s", templates_dir)
            return (0, 0)

        placeholders = self._config.template_values.placeholders()
        added = 0
        skipped = 0
        for name in self.TEMPLATES:
            dest = workspace_dir / name
            if dest.exists():
                skipped += 1
                continue

            source = templates_dir / name
            if not source.is_file():
                logger.warning("Template not found: %s", name)
                continue

            content = source.read_text(encoding="utf-8")
            for placeholder, value in placeholders.items():
                content = content.replace(placeholder, value)
            dest.write_text(content, encoding="utf-8")
            logger.info("Added %s to workspace", name)
            added += 1

        logger.info("Workspace templates: %d added, %d already exist", added, skipped)
        return (added, skipped)
