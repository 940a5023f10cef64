"""
Push Token Lifecycle — Register, unregister and prune device tokens.

Registration is an upsert on (user_id, token). Pruning deletes every row
whose token value FCM reported as permanently invalid, regardless of
owner. Deletes are idempotent, so pruning the same tokens twice (or
tokens that were never stored) is a no-op.
"""

import logging
from typing import Iterable

from ticket_push.models.tickets import DeviceToken, Platform
from ticket_push.services.stores import DeviceTokenStore

logger = logging.getLogger(__name__)


class TokenLifecycleManager:
    def __init__(self, token_store: DeviceTokenStore):
        self._tokens = token_store

    def prune(self, invalid_tokens: Iterable[str]) -> int:
        """Delete the given token values. Returns the number of rows removed."""
        tokens = sorted({t for t in invalid_tokens if t})
        if not tokens:
            return 0

        logger.info("Removing invalid push tokens: %d", len(tokens))
        removed = self._tokens.delete_tokens(tokens)
        if removed < len(tokens):
            logger.debug(
                "%d of %d invalid tokens were already absent",
                len(tokens) - removed,
                len(tokens),
            )
        return removed

    def register(self, user_id: str, token: str, platform: Platform | str) -> DeviceToken:
        """Store (or refresh) ``token`` for ``user_id``."""
        device = self._tokens.upsert_token(user_id, token, Platform(platform))
        logger.info(
            "Push token registered for user %s (platform=%s, token=%s...)",
            user_id[:8],
            device.platform.value,
            token[:16],
        )
        return device

    def unregister(self, user_id: str, token: str) -> int:
        """Remove ``token`` from ``user_id``'s devices. Returns rows removed."""
        removed = self._tokens.delete_user_token(user_id, token)
        logger.info(
            "Push token unregistered for user %s (removed=%d)", user_id[:8], removed,
        )
        return removed
