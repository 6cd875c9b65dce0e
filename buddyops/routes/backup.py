from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request

from buddyops.models.backup import BackupCycleResponse, BackupStatusResponse
from buddyops.services.backup.scheduler import BackupCycleResult, BackupScheduler
from buddyops.services.config import BackupConfig
from buddyops.services.dependencies import get_backup_config_from_request, get_backup_scheduler_from_request

router = APIRouter(prefix="/backup", tags=["backup"])


def _cycle_response(result: BackupCycleResult) -> BackupCycleResponse:
    return BackupCycleResponse(
        ok=result.ok,
        skipped=result.skipped,
        key=result.key,
        byte_count=result.byte_count,
        error=result.error,
        finished_at=result.finished_at,
    )


@router.get("/status", response_model=BackupStatusResponse)
async def backup_status(
    request: Request,
    config: BackupConfig = Depends(get_backup_config_from_request),
) -> BackupStatusResponse:
    scheduler: Optional[BackupScheduler] = getattr(request.app.state, "backup_scheduler", None)
    if scheduler is None:
        return BackupStatusResponse(enabled=False, running=False, label=config.label)

    return BackupStatusResponse(
        enabled=True,
        running=scheduler.running,
        label=config.label,
        bucket=config.bucket_name,
        cadence_seconds=config.cadence.total_seconds(),
        cycles_run=scheduler.cycles_run,
        last_result=_cycle_response(scheduler.last_result) if scheduler.last_result else None,
    )


@router.post("/run", response_model=BackupCycleResponse)
async def run_backup(
    scheduler: BackupScheduler = Depends(get_backup_scheduler_from_request),
) -> BackupCycleResponse:
    """Run one cycle now. Storage failures surface as 502, the result is still recorded."""

    return _cycle_response(await scheduler.run_once(propagate=True))
