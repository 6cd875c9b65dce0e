from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class ConfigMutator:
    """Direct read-modify-write of the target service's JSON config file.

    Used only when the config API is unreachable. The new content is written to a
    temporary file in the same directory and renamed over the target, so readers never
    see a partial file. There is no lock: a concurrent external writer can still lose
    its update; real multi-writer safety needs a lock file or a single-writer guarantee
    from the caller.
    """

    def set_value(self, path: Path, key_path: str, value: Any) -> bool:
        keys = [k for k in key_path.split(".") if k]
        if not keys:
            raise ValueError("key_path must be provided")

        if not path.is_file():
            # The API path is what creates the file; nothing to patch.
            logger.error("Config file not found, cannot set %s: %s", key_path, path)
            return False

        try:
            config = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.error("Failed to read config file %s: %s", path, exc)
            return False

        if not isinstance(config, dict):
            logger.error("Config file %s does not contain a JSON object", path)
            return False

        node = config
        for key in keys[:-1]:
            child = node.get(key)
            if not isinstance(child, dict):
                if child is not None:
                    logger.warning("Replacing non-object value at %r in %s", key, path)
                child = {}
                node[key] = child
            node = child
        node[keys[-1]] = value

        try:
            self._write_atomic(path, json.dumps(config, indent=2))
        except OSError as exc:
            logger.error("Failed to write config file %s: %s", path, exc)
            return False

        return True

    def set_gateway_mode_directly(self, path: Path, value: str = "local") -> bool:
        ok = self.set_value(path, "gateway.mode", value)
        if ok:
            logger.info("Gateway mode set to %s (direct file update)", value)
        return ok

    @staticmethod
    def _write_atomic(path: Path, content: str) -> None:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(content)
                fh.flush()
                os.fsync(fh.fileno())
            try:
                os.chmod(tmp_name, path.stat().st_mode & 0o777)
            except OSError:
                pass
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
