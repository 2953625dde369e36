"""Pydantic schemas for API requests and responses."""

from patcher.schemas.chunks import (
    InitChunksRequest,
    ChunkInfoResponse,
    InitChunksResponse
)
from patcher.schemas.common import ErrorResponse, MessageResponse

__all__ = [
    "InitChunksRequest",
    "ChunkInfoResponse",
    "InitChunksResponse",
    "ErrorResponse",
    "MessageResponse"
]
