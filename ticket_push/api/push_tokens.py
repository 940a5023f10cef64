"""
Push Tokens API — Register and unregister FCM device tokens.

POST stores (or refreshes) the caller's token after the app obtains one
from FCM; DELETE removes it on sign-out. Tokens FCM later reports as
invalid are pruned by the dispatch pipeline.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from ticket_push.core.config import API_V1_PREFIX
from ticket_push.core.errors import StoreError
from ticket_push.core.security import get_current_user_id
from ticket_push.db.supabase_client import get_service_client
from ticket_push.models.notifications import (
    PushTokenDeleteRequest,
    PushTokenDeleteResponse,
    PushTokenRequest,
    PushTokenResponse,
)
from ticket_push.services.stores import SupabaseDeviceTokenStore
from ticket_push.services.token_lifecycle import TokenLifecycleManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_V1_PREFIX}/push-tokens", tags=["push-tokens"])


def get_token_lifecycle() -> TokenLifecycleManager:
    """FastAPI dependency wiring the lifecycle manager to Supabase."""
    return TokenLifecycleManager(SupabaseDeviceTokenStore(get_service_client()))


@router.post(
    "",
    status_code=status.HTTP_200_OK,
    response_model=PushTokenResponse,
)
async def register_push_token(
    payload: PushTokenRequest,
    user_id: str = Depends(get_current_user_id),
    lifecycle: TokenLifecycleManager = Depends(get_token_lifecycle),
) -> PushTokenResponse:
    """
    Register or refresh the caller's push token.

    Returns:
        200: Token stored.
        401: Missing or invalid authentication token.
        422: Invalid payload (empty token, unknown platform).
        500: Database error.
    """
    try:
        device = lifecycle.register(user_id, payload.token, payload.platform)
    except StoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save token",
        ) from exc

    return PushTokenResponse(token=device.token, platform=device.platform)


@router.delete(
    "",
    status_code=status.HTTP_200_OK,
    response_model=PushTokenDeleteResponse,
)
async def unregister_push_token(
    payload: PushTokenDeleteRequest,
    user_id: str = Depends(get_current_user_id),
    lifecycle: TokenLifecycleManager = Depends(get_token_lifecycle),
) -> PushTokenDeleteResponse:
    """
    Remove the caller's push token. Removing an unknown token is not an error.

    Returns:
        200: Token removed (or was already absent).
        401: Missing or invalid authentication token.
        500: Database error.
    """
    try:
        removed = lifecycle.unregister(user_id, payload.token)
    except StoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to remove token",
        ) from exc

    return PushTokenDeleteResponse(removed=removed)
