"""Upstream update webhook."""

import hmac

from fastapi import APIRouter, Depends, Query, Request

from common.logging_config import get_logger
from patcher.dependencies import get_source_mirror
from patcher.exceptions import InvalidWebhookKeyError
from patcher.schemas.common import ErrorResponse, MessageResponse
from patcher.source_sync import SourceMirror

logger = get_logger(__name__)

router = APIRouter(tags=["Webhook"])


def verify_webhook_key(provided: str, expected: str) -> bool:
    """Constant-time key comparison; an unset expected key rejects everything."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


@router.post("/gh-update", response_model=MessageResponse, responses={401: {"model": ErrorResponse}})
async def trigger_update(
    request: Request,
    key: str = Query(""),
    mirror: SourceMirror = Depends(get_source_mirror)
):
    """
    Trigger a debounced pull of the upstream repository.

    Parameters:
        - key: Shared webhook secret (query string)

    Returns:
        - message: Acknowledgement

    Raises:
        - 401: Invalid or missing key
    """
    if not verify_webhook_key(key, request.app.state.webhook_key):
        raise InvalidWebhookKeyError("Invalid or missing key.")

    if mirror.enabled:
        mirror.request_resync()
    else:
        logger.warning("Update webhook called but no upstream repository is configured")

    return MessageResponse(message="Update triggered.")
