"""Pydantic schemas for zip chunk endpoints."""

from typing import List, Optional
from pydantic import BaseModel


class InitChunksRequest(BaseModel):
    """Request model for planning zip chunks."""
    files: List[str]
    max_chunk_size: Optional[int] = None


class ChunkInfoResponse(BaseModel):
    """One planned chunk."""
    url: str
    file_count: int
    total_size_uncompressed: int


class InitChunksResponse(BaseModel):
    """Response model for chunk planning."""
    chunks: List[ChunkInfoResponse]
