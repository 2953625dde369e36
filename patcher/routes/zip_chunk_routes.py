"""Zip chunk planning and download routes."""

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from common.constants import ZIP_CHUNKS_PREFIX
from patcher.archive_materializer import OpenArchive
from patcher.dependencies import enforce_rate_limit, get_zip_chunk_service
from patcher.schemas.common import ErrorResponse
from patcher.schemas.chunks import (
    ChunkInfoResponse,
    InitChunksRequest,
    InitChunksResponse
)
from patcher.services.zip_chunk_service import ZipChunkService

router = APIRouter(prefix=ZIP_CHUNKS_PREFIX, tags=["Zip Chunks"])


class ArchiveResponse(StreamingResponse):
    """
    Streams an open chunk archive.

    The archive is closed once the response is finished, whether the body
    was sent in full, cut short, or never started.
    """
    media_type = "application/zip"

    def __init__(self, archive: OpenArchive):
        self.archive = archive
        super().__init__(
            archive.iter_bytes(),
            headers={
                "Content-Disposition": f'attachment; filename="{archive.handle}.zip"',
                "Content-Length": str(archive.size),
            }
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            self.archive.close()


@router.post(
    "/init",
    response_model=InitChunksResponse,
    dependencies=[Depends(enforce_rate_limit)],
    responses={400: {"model": ErrorResponse}, 429: {"model": ErrorResponse}}
)
async def init_chunks(
    request: InitChunksRequest,
    service: ZipChunkService = Depends(get_zip_chunk_service)
):
    """
    Plan size-bounded zip chunks for a list of files.

    Parameters:
        - files: Paths relative to the mirror root
        - max_chunk_size: Maximum uncompressed bytes per chunk (default 30 MiB)

    Returns:
        - chunks: url, file_count and total_size_uncompressed for each chunk

    Raises:
        - 400: Malformed request body
        - 429: Rate limit exceeded
    """
    planned = await service.plan_chunks(request.files, request.max_chunk_size)

    return InitChunksResponse(
        chunks=[
            ChunkInfoResponse(
                url=f"{ZIP_CHUNKS_PREFIX}/{chunk.handle}",
                file_count=chunk.file_count,
                total_size_uncompressed=chunk.total_size,
            )
            for chunk in planned
        ]
    )


@router.get("/{handle}", responses={404: {"model": ErrorResponse}})
async def download_chunk(
    handle: str,
    service: ZipChunkService = Depends(get_zip_chunk_service)
):
    """
    Download the zip archive of a planned chunk.

    Parameters:
        - handle: Chunk handle from a previous init call

    Returns:
        - ArchiveResponse streaming application/zip data

    Raises:
        - 404: Chunk not found or expired
        - 500: Scratch storage unavailable
    """
    archive = await service.open_chunk(handle)

    return ArchiveResponse(archive)
