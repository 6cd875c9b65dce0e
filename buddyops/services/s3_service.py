from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import aioboto3

from buddyops.services.config import S3Credentials
from buddyops.services.storage import StorageServiceError


logger = logging.getLogger(__name__)


class S3ServiceError(StorageServiceError):
    pass


@dataclass(frozen=True)
class S3Config:
    bucket_name: str
    credentials: S3Credentials

    @property
    def region_name(self) -> Optional[str]:
        return self.credentials.region_name

    @property
    def endpoint_url(self) -> Optional[str]:
        return self.credentials.endpoint_url


class S3Service:
    """Thin async wrapper over an S3-compatible bucket (AWS S3, GCS interop, MinIO)."""

    SCHEME: str = "s3"

    def __init__(self, config: S3Config) -> None:
        self._config = config
        creds = config.credentials
        self._session = aioboto3.Session(
            aws_access_key_id=creds.access_key_id,
            aws_secret_access_key=creds.secret_access_key,
            aws_session_token=creds.session_token,
            region_name=creds.region_name,
        )

    @property
    def bucket_name(self) -> str:
        return self._config.bucket_name

    def _client(self) -> Any:
        return self._session.client(
            "s3",
            region_name=self._config.region_name,
            endpoint_url=self._config.endpoint_url,
        )

    async def upload_local_file(
        self,
        *,
        path: Path,
        key: str,
        bucket: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> str:
        """Upload a local file to S3, streaming it from disk.

        Args:
            path: Local file path.
            key: Destination S3 object key.
            bucket: Bucket override; defaults to the configured bucket.
            content_type: Optional content type override.

        Returns:
            The uploaded object key.
        """

        target_bucket = bucket or self._config.bucket_name
        try:
            if not key:
                raise ValueError("'key' must be provided")
            if not path.exists() or not path.is_file():
                raise FileNotFoundError(str(path))

            effective_content_type = content_type
            if effective_content_type is None:
                guessed, _ = mimetypes.guess_type(str(path))
                effective_content_type = guessed

            extra_args: dict[str, Any] = {}
            if effective_content_type:
                extra_args["ContentType"] = effective_content_type

            s3_client: Any = self._client()
            async with s3_client as s3:
                await s3.upload_file(
                    Filename=str(path),
                    Bucket=target_bucket,
                    Key=key,
                    ExtraArgs=extra_args or None,
                )

            return key
        except Exception as exc:
            logger.exception("S3 upload_local_file failed")
            raise S3ServiceError(f"Failed to upload local file to S3 (bucket={target_bucket}, key={key})") from exc
