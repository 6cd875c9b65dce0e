from __future__ import annotations

from typing import Union

import aiohttp
from fastapi import HTTPException, Request
from starlette import status

from buddyops.services.backup.archive_service import ArchiveBuilder
from buddyops.services.backup.scheduler import BackupScheduler
from buddyops.services.backup.uploader import ArchiveUploader
from buddyops.services.config import BackupConfig, S3Credentials, SetupConfig
from buddyops.services.gcs_service import GcsService
from buddyops.services.s3_service import S3Config, S3Service
from buddyops.services.setup.config_mutator import ConfigMutator
from buddyops.services.setup.orchestrator import SetupOrchestrator
from buddyops.services.setup.provisioning import PersistentStateProvisioner, WorkspaceTemplateInstaller
from buddyops.services.setup.readiness import ReadinessProbe
from buddyops.services.setup.setup_client import SetupClient
from buddyops.services.setup.supervisor import ServiceSupervisor


def get_storage_service(config: BackupConfig) -> Union[S3Service, GcsService]:
    """S3 keys go through aioboto3, a service-account key through the GCS JSON API."""

    if config.storage is None:
        raise ValueError("Backups are disabled: no storage credentials")
    if isinstance(config.storage, S3Credentials):
        return S3Service(S3Config(bucket_name=config.bucket_name, credentials=config.storage))
    return GcsService(bucket_name=config.bucket_name, key=config.storage)


def get_backup_scheduler(config: BackupConfig) -> BackupScheduler:
    """Wire the archive -> upload pipeline. Requires an enabled config."""

    return BackupScheduler(
        config=config,
        builder=ArchiveBuilder(),
        uploader=ArchiveUploader(storage=get_storage_service(config)),
    )


def get_setup_orchestrator(config: SetupConfig, *, session: aiohttp.ClientSession) -> SetupOrchestrator:
    return SetupOrchestrator(
        config=config,
        supervisor=ServiceSupervisor(config.server_command),
        probe=ReadinessProbe(base_url=config.base_url, session=session),
        client=SetupClient(base_url=config.base_url, session=session),
        mutator=ConfigMutator(),
        provisioner=PersistentStateProvisioner(config),
        templates=WorkspaceTemplateInstaller(config),
    )


def get_backup_config_from_request(request: Request) -> BackupConfig:
    config = getattr(request.app.state, "backup_config", None)
    if not isinstance(config, BackupConfig):
        raise RuntimeError("Backup config not initialized (app.state.backup_config)")
    return config


def get_backup_scheduler_from_request(request: Request) -> BackupScheduler:
    scheduler = getattr(request.app.state, "backup_scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Backups are disabled")
    return scheduler
