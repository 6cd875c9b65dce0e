from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

from buddyops.services.backup.archive_service import ArchiveBuilder
from buddyops.services.backup.uploader import ArchiveUploader
from buddyops.services.config import BackupConfig

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def archive_timestamp(now: datetime) -> str:
    """ISO-8601 UTC with milliseconds, made filesystem safe (``:`` and ``.`` -> ``-``)."""

    now = now.astimezone(timezone.utc)
    iso = now.strftime("%Y-%m-%dT%H:%M:%S") + f".{now.microsecond // 1000:03d}Z"
    return iso.replace(":", "-").replace(".", "-")


@dataclass(frozen=True)
class BackupCycleResult:
    ok: bool
    skipped: bool = False
    key: Optional[str] = None
    byte_count: Optional[int] = None
    error: Optional[str] = None
    finished_at: datetime = field(default_factory=_utcnow)


class BackupScheduler:
    """Runs archive cycles now and then every ``cadence``.

    A tick is armed independently of the previous cycle's completion, so a slow cycle may
    overlap the next one. Cycles never share state: each builds in its own temp dir and
    uploads under a timestamp-unique key. A failing cycle is logged and recorded; it
    never stops the schedule.
    """

    def __init__(
        self,
        *,
        config: BackupConfig,
        builder: ArchiveBuilder,
        uploader: ArchiveUploader,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._builder = builder
        self._uploader = uploader
        self._clock = clock
        self._stop = asyncio.Event()
        self._loop_task: Optional[asyncio.Task[None]] = None
        self._inflight: set[asyncio.Task[BackupCycleResult]] = set()
        self._cycles_run = 0
        self._last_result: Optional[BackupCycleResult] = None
        self._last_stamp: Optional[datetime] = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def cycles_run(self) -> int:
        return self._cycles_run

    @property
    def last_result(self) -> Optional[BackupCycleResult]:
        return self._last_result

    def archive_name(self, now: datetime) -> str:
        return f"{self._config.label}-{archive_timestamp(now)}.tar.gz"

    def _next_stamp(self) -> datetime:
        # Keys have millisecond resolution; overlapping cycles must still get distinct ones.
        now = self._clock().astimezone(timezone.utc)
        now = now.replace(microsecond=now.microsecond // 1000 * 1000)
        if self._last_stamp is not None and now <= self._last_stamp:
            now = self._last_stamp + timedelta(milliseconds=1)
        self._last_stamp = now
        return now

    async def run_cycle(self) -> BackupCycleResult:
        """One archive cycle. Errors propagate; use ``run_once`` for the isolated version."""

        config = self._config
        logger.info("Starting backup for %s...", config.label)

        if not config.volume_path.exists():
            logger.warning("Volume %s not found. Nothing to backup.", config.volume_path)
            return BackupCycleResult(ok=True, skipped=True)

        archive_name = self.archive_name(self._next_stamp())
        key = config.object_key(archive_name)

        config.tmp_dir.mkdir(parents=True, exist_ok=True)
        work_dir = Path(tempfile.mkdtemp(prefix="buddy-backup-", dir=str(config.tmp_dir)))
        local_path = work_dir / archive_name

        try:
            result = await self._builder.build(
                config.source_dirs,
                local_path,
                arcnames=list(config.SOURCE_DIRS),
            )
        except BaseException:
            shutil.rmtree(work_dir, ignore_errors=True)
            raise

        await self._uploader.upload(local_path, config.bucket_name, key)
        shutil.rmtree(work_dir, ignore_errors=True)

        return BackupCycleResult(ok=True, key=key, byte_count=result.byte_count)

    async def run_once(self, *, propagate: bool = False) -> BackupCycleResult:
        """Run and record one cycle.

        A failure is logged and recorded as ``ok=False``; with ``propagate`` it is then
        re-raised, for callers that report it themselves.
        """

        try:
            result = await self.run_cycle()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Backup cycle failed")
            failed = BackupCycleResult(ok=False, error=str(exc) or exc.__class__.__name__)
            self._record(failed)
            if propagate:
                raise
            return failed

        self._record(result)
        return result

    def _record(self, result: BackupCycleResult) -> None:
        self._cycles_run += 1
        self._last_result = result

    def _spawn_cycle(self) -> asyncio.Task[BackupCycleResult]:
        task = asyncio.create_task(self.run_once())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _loop(self, cadence_seconds: float) -> None:
        while not self._stop.is_set():
            self._spawn_cycle()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=cadence_seconds)
            except asyncio.TimeoutError:
                continue

    def start(self, cadence: Optional[timedelta] = None) -> asyncio.Task[None]:
        """Run one cycle now, then one every ``cadence`` (default: the configured cadence)."""

        if self.running:
            raise RuntimeError("Backup scheduler already started")

        effective = cadence or self._config.cadence
        seconds = effective.total_seconds()
        if seconds <= 0:
            raise ValueError("cadence must be positive")

        self._stop.clear()
        logger.info("Backup scheduler started (every %s)", effective)
        self._loop_task = asyncio.create_task(self._loop(seconds))
        return self._loop_task

    async def stop(self) -> None:
        """Stop arming new cycles and wait for in-flight ones to finish."""

        self._stop.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        logger.info("Backup scheduler stopped")
