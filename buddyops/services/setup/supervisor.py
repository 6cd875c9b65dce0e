from __future__ import annotations

import asyncio
import logging
import os
from collections import deque
from pathlib import Path
from typing import Callable, Optional, Sequence

logger = logging.getLogger(__name__)

# Output of the supervised service goes through its own logger so it can be filtered.
service_logger = logging.getLogger("buddyops.target_service")


class ServiceSpawnError(RuntimeError):
    pass


class ServiceSupervisor:
    """Runs the target service as a child process for the duration of the setup flow.

    stdout is retained (bounded) and only lines that look important are forwarded to the
    log; stderr is always forwarded.
    """

    _TERMINATE_TIMEOUT_SECONDS: float = 5.0
    _MAX_RETAINED_LINES: int = 500
    _READ_CHUNK_BYTES: int = 65536
    _MAX_LINE_BYTES: int = 8192

    def __init__(
        self,
        command: Sequence[str],
        *,
        cwd: Optional[Path] = None,
        env: Optional[dict[str, str]] = None,
    ) -> None:
        if not command:
            raise ValueError("command must be provided")
        self._command = list(command)
        self._cwd = cwd
        self._env = env
        self._process: Optional[asyncio.subprocess.Process] = None
        self._drains: list[asyncio.Task[None]] = []
        self._stdout_lines: deque[str] = deque(maxlen=self._MAX_RETAINED_LINES)

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def output(self) -> str:
        return "\n".join(self._stdout_lines)

    @staticmethod
    def _is_important(line: str) -> bool:
        return "[wrapper]" in line or "ERROR" in line or "error" in line

    async def spawn(self) -> None:
        if self.running:
            raise ServiceSpawnError("Target service is already running")

        try:
            self._process = await asyncio.create_subprocess_exec(
                *self._command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self._cwd) if self._cwd else None,
                env={**os.environ, **self._env} if self._env else None,
            )
        except OSError as exc:
            raise ServiceSpawnError(f"Failed to start target service: {' '.join(self._command)}") from exc

        logger.info("Started target service (pid=%s)", self._process.pid)
        self._drains = [
            asyncio.create_task(self._drain_stdout(self._process.stdout)),
            asyncio.create_task(self._drain_stderr(self._process.stderr)),
        ]

    @classmethod
    async def _read_lines(cls, stream: asyncio.StreamReader, on_line: Callable[[str], None]) -> None:
        # Reads raw chunks rather than lines: StreamReader's line API fails on lines
        # longer than its 64 KiB limit, and a dead drain would leave the pipe full.
        pending = b""
        while True:
            chunk = await stream.read(cls._READ_CHUNK_BYTES)
            if not chunk:
                break
            pending += chunk
            *lines, pending = pending.split(b"\n")
            if len(pending) > cls._MAX_LINE_BYTES:
                lines.append(pending)
                pending = b""
            for raw in lines:
                on_line(raw[: cls._MAX_LINE_BYTES].decode("utf-8", errors="replace").rstrip())
        if pending:
            on_line(pending[: cls._MAX_LINE_BYTES].decode("utf-8", errors="replace").rstrip())

    def _on_stdout_line(self, line: str) -> None:
        self._stdout_lines.append(line)
        if self._is_important(line):
            service_logger.info("%s", line)

    @staticmethod
    def _on_stderr_line(line: str) -> None:
        service_logger.warning("%s", line)

    async def _drain_stdout(self, stream: Optional[asyncio.StreamReader]) -> None:
        if stream is None:
            return
        await self._read_lines(stream, self._on_stdout_line)

    async def _drain_stderr(self, stream: Optional[asyncio.StreamReader]) -> None:
        if stream is None:
            return
        await self._read_lines(stream, self._on_stderr_line)

    async def terminate(self) -> Optional[int]:
        """Stop the child (SIGTERM, then SIGKILL after a timeout). Returns its exit code."""

        proc = self._process
        if proc is None:
            return None

        if proc.returncode is None:
            try:
                proc.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(proc.wait(), timeout=self._TERMINATE_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                logger.warning("Target service did not exit after SIGTERM, killing (pid=%s)", proc.pid)
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()

        if self._drains:
            await asyncio.gather(*self._drains, return_exceptions=True)
            self._drains = []

        logger.info("Target service stopped (pid=%s, returncode=%s)", proc.pid, proc.returncode)
        return proc.returncode
