from __future__ import annotations

from pathlib import Path
from typing import Optional, Protocol


class StorageServiceError(RuntimeError):
    """Base for object storage failures; the HTTP layer maps it to 502."""


class ObjectStorage(Protocol):
    SCHEME: str

    async def upload_local_file(
        self,
        *,
        path: Path,
        key: str,
        bucket: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> str: ...
