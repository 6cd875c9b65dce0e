from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class BackupCycleResponse(BaseModel):
    ok: bool
    skipped: bool = False
    key: Optional[str] = Field(default=None, description="Object key of the uploaded archive")
    byte_count: Optional[int] = None
    error: Optional[str] = None
    finished_at: Optional[datetime] = None


class BackupStatusResponse(BaseModel):
    enabled: bool
    running: bool
    label: str
    bucket: Optional[str] = None
    cadence_seconds: Optional[float] = None
    cycles_run: int = 0
    last_result: Optional[BackupCycleResponse] = None
