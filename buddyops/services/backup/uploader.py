from __future__ import annotations

import logging
from pathlib import Path

from buddyops.services.storage import ObjectStorage

logger = logging.getLogger(__name__)


class ArchiveUploader:
    def __init__(self, *, storage: ObjectStorage) -> None:
        self._storage = storage

    async def upload(self, local_path: Path, bucket: str, key: str) -> None:
        """Upload the archive, then delete the local copy.

        On failure the local file is kept for inspection and the StorageServiceError propagates.
        """

        await self._storage.upload_local_file(path=local_path, key=key, bucket=bucket, content_type="application/gzip")
        logger.info("Uploaded to %s://%s/%s", self._storage.SCHEME, bucket, key)
        local_path.unlink(missing_ok=True)
