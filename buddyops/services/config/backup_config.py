from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import ClassVar, Literal, Mapping, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError


class S3Credentials(BaseModel):
    """Access keys for an S3-compatible bucket.

    Also covers GCS HMAC interoperability keys, with ``endpoint_url`` set to
    ``https://storage.googleapis.com``.
    """

    access_key_id: str = Field(validation_alias=AliasChoices("access_key_id", "aws_access_key_id"))
    secret_access_key: str = Field(validation_alias=AliasChoices("secret_access_key", "aws_secret_access_key"))
    session_token: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("session_token", "aws_session_token")
    )
    region_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("region_name", "region"))
    endpoint_url: Optional[str] = None
    project_id: Optional[str] = None


class ServiceAccountKey(BaseModel):
    """A Google Cloud service-account JSON key, as downloaded from the console.

    Unlisted fields (``private_key_id``, ``token_uri``, ...) are kept so the key can be
    handed to the GCS client unchanged.
    """

    model_config = ConfigDict(extra="allow")

    type: Literal["service_account"] = "service_account"
    project_id: Optional[str] = None
    private_key: str
    client_email: str


StorageCredentials = Union[S3Credentials, ServiceAccountKey]


def parse_storage_credentials(raw: str) -> StorageCredentials:
    """Parse a credential blob into S3 keys or a GCS service-account key.

    Raises:
        ValueError: if the blob is not a JSON object or matches neither shape.
    """

    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise ValueError("Failed to parse storage credentials: not valid JSON") from exc
    if not isinstance(data, dict):
        raise ValueError("Failed to parse storage credentials: expected a JSON object")

    model: type[BaseModel] = ServiceAccountKey if ("type" in data or "private_key" in data) else S3Credentials
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ValueError(
            f"Failed to parse storage credentials as {model.__name__}: {exc.error_count()} error(s)"
        ) from exc


@dataclass(frozen=True)
class BackupConfig:
    """Runtime configuration for the backup pipeline.

    ``storage`` is None when no credential blob was supplied; that disables backups
    entirely and is not an error.
    """

    storage: Optional[StorageCredentials]
    label: str = "unknown-buddy"
    bucket_name: str = "mybuddy-backups"
    volume_path: Path = Path("/data")
    cadence: timedelta = timedelta(hours=24)
    tmp_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    key_prefix: str = "daily"

    CREDENTIAL_ENV: ClassVar[tuple[str, ...]] = ("BACKUP_STORAGE_KEY", "GCS_MAGICIAN_KEY", "GCS_BUDDY_KEY")
    SOURCE_DIRS: ClassVar[tuple[str, ...]] = (".openclaw", "workspace")

    @property
    def enabled(self) -> bool:
        return self.storage is not None

    @property
    def source_dirs(self) -> list[Path]:
        return [self.volume_path / name for name in self.SOURCE_DIRS]

    def object_key(self, archive_name: str) -> str:
        return f"{self.key_prefix}/{self.label}/{archive_name}"

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> "BackupConfig":
        """Load backup config.

        Raises:
            ValueError: if a credential blob is present but is not valid JSON credentials,
                or BACKUP_INTERVAL_HOURS is not a positive number.
        """

        env = os.environ if env is None else env

        raw_key = next((env[name] for name in BackupConfig.CREDENTIAL_ENV if (env.get(name) or "").strip()), None)
        storage = parse_storage_credentials(raw_key) if raw_key is not None else None

        interval_raw = (env.get("BACKUP_INTERVAL_HOURS") or "").strip()
        cadence = timedelta(hours=24)
        if interval_raw:
            try:
                hours = float(interval_raw)
            except ValueError as exc:
                raise ValueError("Invalid BACKUP_INTERVAL_HOURS; must be a number") from exc
            if hours <= 0:
                raise ValueError("Invalid BACKUP_INTERVAL_HOURS; must be positive")
            cadence = timedelta(hours=hours)

        tmp_raw = (env.get("BACKUP_TMP_DIR") or "").strip()

        return BackupConfig(
            storage=storage,
            label=(env.get("BUDDY_NAME") or "").strip() or "unknown-buddy",
            bucket_name=(env.get("BACKUP_BUCKET") or "").strip() or "mybuddy-backups",
            volume_path=Path((env.get("BACKUP_VOLUME_PATH") or "").strip() or "/data"),
            cadence=cadence,
            tmp_dir=Path(tmp_raw) if tmp_raw else Path(tempfile.gettempdir()),
        )
