"""Service layer for chunk planning and archive delivery."""

from patcher.services.zip_chunk_service import PlannedChunk, ZipChunkService

__all__ = [
    "PlannedChunk",
    "ZipChunkService",
]
