"""Entry point for the patch mirror server."""

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional, Union

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from common.logging_config import setup_logging
from patcher import config
from patcher.exceptions import (
    PatcherException,
    ChunkNotFoundError,
    RateLimitedError,
    InvalidWebhookKeyError,
    ScratchUnavailableError
)
from patcher.routes.webhook_routes import router as webhook_router
from patcher.routes.zip_chunk_routes import router as zip_chunk_router
from patcher.services.zip_chunk_service import ZipChunkService
from patcher.source_sync import SourceMirror
from patcher.static_mirror import BrowsableStaticFiles

logger = setup_logging('patcher')

CLIENT_ERRORS = {
    ChunkNotFoundError: (status.HTTP_404_NOT_FOUND, "CHUNK_NOT_FOUND"),
    RateLimitedError: (status.HTTP_429_TOO_MANY_REQUESTS, "RATE_LIMITED"),
    InvalidWebhookKeyError: (status.HTTP_401_UNAUTHORIZED, "INVALID_WEBHOOK_KEY"),
}

SERVER_ERRORS = {
    ScratchUnavailableError: (status.HTTP_500_INTERNAL_SERVER_ERROR, "SCRATCH_UNAVAILABLE"),
    PatcherException: (status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR"),
}


async def log_requests(request: Request, call_next):
    """
    Middleware to log all HTTP requests and responses.
    """
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()
    client_host = request.client.host if request.client else "unknown"

    logger.info(
        f"Request started: {request.method} {request.url.path} [request_id={request_id}] [client={client_host}]"
    )

    response = await call_next(request)

    duration = time.time() - start_time

    logger.info(
        f"Request completed: {request.method} {request.url.path} "
        f"status={response.status_code} duration={duration:.3f}s [request_id={request_id}]"
    )

    response.headers["X-Request-ID"] = request_id

    return response


def _error_handler(status_code: int, code: str, server_error: bool):
    async def handler(request: Request, exc: Exception):
        request_id = getattr(request.state, 'request_id', 'unknown')
        message = f"{type(exc).__name__}: {exc} [request_id={request_id}] path={request.url.path}"
        if server_error:
            logger.error(message, exc_info=exc)
        else:
            logger.warning(message)
        return JSONResponse(
            status_code=status_code,
            content={"detail": str(exc), "code": code}
        )
    return handler


async def validation_error_handler(request: Request, exc: RequestValidationError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Invalid request body [request_id={request_id}] path={request.url.path}: {exc.errors()}"
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Invalid JSON payload", "code": "INVALID_REQUEST"}
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map the exception hierarchy onto JSON error responses."""
    for exc_class, (status_code, code) in CLIENT_ERRORS.items():
        app.add_exception_handler(exc_class, _error_handler(status_code, code, server_error=False))
    for exc_class, (status_code, code) in SERVER_ERRORS.items():
        app.add_exception_handler(exc_class, _error_handler(status_code, code, server_error=True))
    app.add_exception_handler(RequestValidationError, validation_error_handler)


def create_app(
    root_dir: Union[str, Path] = config.ROOT_DIR,
    scratch_dir: Union[str, Path] = config.SCRATCH_DIR,
    repo_url: str = config.REPO_URL,
    webhook_key: str = config.WEBHOOK_KEY,
    trust_proxy_headers: bool = config.TRUST_PROXY_HEADERS,
    zip_chunks: Optional[ZipChunkService] = None,
    mirror: Optional[SourceMirror] = None,
    serve_static: bool = True,
) -> FastAPI:
    """
    Build the application with its own chunk state and mirror.

    Args:
        root_dir: Directory of the synced mirror
        scratch_dir: Directory for temporary zip archives
        repo_url: Upstream repository; empty disables git syncing
        webhook_key: Shared secret for the update webhook
        trust_proxy_headers: Identify clients by X-Forwarded-For
        zip_chunks: Preconfigured chunk service (default: built from root_dir and scratch_dir)
        mirror: Preconfigured source mirror (default: the chunk service root and repo_url)
        serve_static: Mount the mirror root as browsable static files

    Returns:
        Configured FastAPI application
    """
    zip_chunks = zip_chunks or ZipChunkService(root_dir, scratch_dir)
    mirror = mirror or SourceMirror(zip_chunks.root, repo_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Patch mirror starting up...")

        if mirror.enabled:
            await asyncio.to_thread(mirror.sync)
            logger.info("Initial repository sync complete")
        else:
            logger.info(f"No upstream repository configured - serving {mirror.root} as-is")

        await zip_chunks.start()
        logger.info("Expiry janitor started")

        yield

        logger.info("Patch mirror shutting down...")
        await mirror.stop()
        await zip_chunks.stop()
        logger.info("Background tasks stopped")

    app = FastAPI(
        title="Patch Mirror",
        description="Mirrors a patch repository and serves it as on-demand zip chunks",
        version="1.0.0",
        lifespan=lifespan
    )

    app.state.zip_chunks = zip_chunks
    app.state.mirror = mirror
    app.state.webhook_key = webhook_key
    app.state.trust_proxy_headers = trust_proxy_headers

    app.middleware("http")(log_requests)
    register_exception_handlers(app)

    app.include_router(zip_chunk_router)
    app.include_router(webhook_router)

    @app.get("/health")
    async def health_check():
        """
        Health check endpoint for Docker healthcheck.
        """
        return {"status": "healthy", "service": "patcher"}

    if serve_static:
        app.mount("/", BrowsableStaticFiles(directory=str(zip_chunks.root), check_dir=False), name="mirror")

    return app


app = create_app()


def main() -> None:
    """
    Start the FastAPI server with uvicorn.
    """
    uvicorn.run(
        "patcher.main:app",
        host=config.PATCHER_HOST,
        port=config.PATCHER_PORT
    )


if __name__ == "__main__":
    main()
