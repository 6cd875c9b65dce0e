"""Configuration package (Facade).

Re-exports the public config types so callers import from a single, stable path:

	from buddyops.services.config import SetupConfig, BackupConfig

Every config object is an immutable value built once at the entry point (``from_env``)
and passed down to the services. Nothing below the entry point reads the environment.
"""

from buddyops.services.config.backup_config import (
    BackupConfig,
    S3Credentials,
    ServiceAccountKey,
    StorageCredentials,
    parse_storage_credentials,
)
from buddyops.services.config.setup_config import CredentialSet, SetupConfig, TemplateValues

__all__ = [
    "BackupConfig",
    "CredentialSet",
    "S3Credentials",
    "ServiceAccountKey",
    "SetupConfig",
    "StorageCredentials",
    "TemplateValues",
    "parse_storage_credentials",
]
