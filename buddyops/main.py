from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette import status

from buddyops.logs import ensure_logging
from buddyops.routes.backup import router as backup_router
from buddyops.services.backup.archive_service import ArchiveBuildError
from buddyops.services.config import BackupConfig
from buddyops.services.dependencies import get_backup_scheduler
from buddyops.services.storage import StorageServiceError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_logging()
    config = BackupConfig.from_env()
    app.state.backup_config = config
    app.state.backup_scheduler = None

    if config.enabled:
        scheduler = get_backup_scheduler(config)
        app.state.backup_scheduler = scheduler
        scheduler.start()
    else:
        logger.warning("No storage key found. Backups disabled.")

    try:
        yield
    finally:
        if app.state.backup_scheduler is not None:
            await app.state.backup_scheduler.stop()


app = FastAPI(lifespan=lifespan)

app.include_router(backup_router)


@app.exception_handler(StorageServiceError)
async def storage_service_error_handler(request: Request, exc: StorageServiceError) -> JSONResponse:
    """Map S3/GCS upload failures to a consistent HTTP response.

    Returns:
        502 Bad Gateway with a JSON body: {"detail": "..."}
    """
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": str(exc)},
    )


@app.exception_handler(ArchiveBuildError)
async def archive_build_error_handler(request: Request, exc: ArchiveBuildError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc)},
    )


@app.get("/")
async def root():
    return {"message": "Buddy backup service is running."}
