"""FastAPI dependencies resolving per-application state."""

from fastapi import Depends, Request

from patcher.services.zip_chunk_service import ZipChunkService
from patcher.source_sync import SourceMirror


def get_zip_chunk_service(request: Request) -> ZipChunkService:
    """Return the ZipChunkService owned by the running application."""
    return request.app.state.zip_chunks


def get_source_mirror(request: Request) -> SourceMirror:
    """Return the SourceMirror owned by the running application."""
    return request.app.state.mirror


def get_client_identity(request: Request) -> str:
    """
    Identify the client for rate limiting.

    Uses the first X-Forwarded-For hop when the application trusts proxy
    headers, and the peer address otherwise.
    """
    if request.app.state.trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    if request.client is None:
        return "unknown"
    return request.client.host


async def enforce_rate_limit(
    identity: str = Depends(get_client_identity),
    service: ZipChunkService = Depends(get_zip_chunk_service),
) -> None:
    """
    Consume one planning token for the calling client.

    Raises:
        RateLimitedError: If the client has exhausted its budget
    """
    service.check_rate_limit(identity)
