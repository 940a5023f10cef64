"""
Notifications API — Trigger push notifications for a ticket event.

Called by the ticketing app whenever a ticket is created, updated,
assigned, resolved, verified or closed. Runs one dispatch and returns
its aggregate counts; individual send failures are reported as counts,
never as errors.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from ticket_push.core.config import API_V1_PREFIX
from ticket_push.core.errors import (
    AuthError,
    ConfigurationError,
    DispatchError,
    NotFoundError,
)
from ticket_push.core.security import get_current_user_id
from ticket_push.models.notifications import (
    NotificationDispatchRequest,
    NotificationDispatchResponse,
)
from ticket_push.pipeline.dispatch import open_dispatch_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_V1_PREFIX}/notifications", tags=["notifications"])


def _http_status_for(exc: DispatchError) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, AuthError):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@router.post(
    "/dispatch",
    status_code=status.HTTP_200_OK,
    response_model=NotificationDispatchResponse,
)
async def dispatch_notification(
    payload: NotificationDispatchRequest,
    user_id: str = Depends(get_current_user_id),
) -> NotificationDispatchResponse:
    """
    Send push notifications for a ticket event.

    Returns:
        200: Dispatch finished (including zero-recipient no-ops).
        401: Missing or invalid authentication token.
        404: Ticket not found.
        422: Invalid payload.
        500: FCM not configured, or a store lookup failed.
        502: The OAuth2 token endpoint rejected the service account.
    """
    logger.info(
        "Dispatch requested by user %s: ticket=%s, type=%s",
        user_id[:8],
        payload.ticket_id,
        payload.notification_type.value,
    )

    try:
        async with open_dispatch_orchestrator() as orchestrator:
            result = await orchestrator.dispatch(
                payload.ticket_id, payload.notification_type,
            )
    except DispatchError as exc:
        if isinstance(exc, ConfigurationError):
            logger.error("FCM not configured: %s", exc)
        raise HTTPException(
            status_code=_http_status_for(exc),
            detail={"error": exc.message, "stage": exc.stage},
        )

    return NotificationDispatchResponse.from_result(result)
