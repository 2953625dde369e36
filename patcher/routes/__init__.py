"""API routes package."""

from patcher.routes.webhook_routes import router as webhook_router
from patcher.routes.zip_chunk_routes import router as zip_chunk_router

__all__ = ["webhook_router", "zip_chunk_router"]
