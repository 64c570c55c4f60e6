"""FileVault FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from app import __version__
from app.config import settings
from app.database import engine, init_db
from app.exceptions import FileVaultError, ValidationError
from app.services import init_services, shutdown_services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    # === STARTUP ===
    _setup_logging()

    if settings.storage_backend == "local":
        Path(settings.storage_dir).mkdir(parents=True, exist_ok=True)

    await init_db()
    await init_services(engine)
    logger.info("FileVault v%s started — listening on %s:%s", __version__, settings.host, settings.port)

    try:
        yield
    finally:
        # === SHUTDOWN ===
        await shutdown_services()
        await engine.dispose()
        logger.info("FileVault shutting down")


def _setup_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # Quieten noisy third-party loggers
    for noisy in ("aiosqlite", "botocore", "boto3", "s3transfer", "apscheduler", "redis"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


async def _filevault_error_handler(request: Request, exc: FileVaultError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed requests get the same single-message error body as everything else."""
    fields = [str((err.get("loc") or ("",))[-1]) for err in exc.errors()]
    if "file" in fields:
        message = "File is required"
    else:
        message = f"Invalid request: {', '.join(fields)}"
    return await _filevault_error_handler(request, ValidationError(message))


def create_app() -> FastAPI:
    """Application factory."""
    from app.api.routes import api_router

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        debug=settings.debug,
        lifespan=_lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(FileVaultError, _filevault_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)

    # Mount API routes
    app.include_router(api_router, prefix=settings.api_prefix)

    # Locally stored blobs are served back under the public base URL
    if settings.storage_backend == "local" and settings.serve_local_blobs:
        mount_path = urlparse(settings.public_base_url).path.rstrip("/") or "/blobs"
        Path(settings.storage_dir).mkdir(parents=True, exist_ok=True)
        app.mount(mount_path, StaticFiles(directory=settings.storage_dir), name="blobs")
        logger.info("Serving local blobs from %s at %s", settings.storage_dir, mount_path)

    return app


app = create_app()


def run(**kwargs: Any) -> None:
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        **kwargs,
    )


if __name__ == "__main__":
    run()
