from __future__ import annotations

import io
import logging
import mimetypes
from pathlib import Path
from typing import Optional

from gcloud.aio.storage import Storage

from buddyops.services.config import ServiceAccountKey
from buddyops.services.storage import StorageServiceError

logger = logging.getLogger(__name__)


class GcsServiceError(StorageServiceError):
    pass


class GcsService:
    """Uploads to a Google Cloud Storage bucket with a service-account key."""

    SCHEME: str = "gs"
    _UPLOAD_TIMEOUT_SECONDS: int = 600

    def __init__(self, *, bucket_name: str, key: ServiceAccountKey) -> None:
        self._bucket_name = bucket_name
        self._service_file = key.model_dump_json()

    @property
    def bucket_name(self) -> str:
        return self._bucket_name

    def _client(self) -> Storage:
        # The token reads the key once, at construction.
        return Storage(service_file=io.StringIO(self._service_file))

    async def upload_local_file(
        self,
        *,
        path: Path,
        key: str,
        bucket: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> str:
        target_bucket = bucket or self._bucket_name
        try:
            if not key:
                raise ValueError("'key' must be provided")
            if not path.exists() or not path.is_file():
                raise FileNotFoundError(str(path))

            effective_content_type = content_type or mimetypes.guess_type(str(path))[0]

            storage = self._client()
            try:
                await storage.upload_from_filename(
                    target_bucket,
                    key,
                    str(path),
                    content_type=effective_content_type,
                    timeout=self._UPLOAD_TIMEOUT_SECONDS,
                )
            finally:
                await storage.close()

            return key
        except Exception as exc:
            logger.exception("GCS upload_local_file failed")
            raise GcsServiceError(f"Failed to upload local file to GCS (bucket={target_bucket}, key={key})") from exc
