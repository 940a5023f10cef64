"""
Audience Resolution — Decide which devices hear about a ticket.

Role rules, in precedence order:
1. Admins and maintenance staff are always notified.
2. Safety-related tickets also go to safety officers.
3. Supplies/tools categories go to admins only, overriding rule 2.

Users holding any audience role are collected, then their push tokens
are fetched and deduplicated by token value.
"""

import logging
from typing import Optional

from ticket_push.models.tickets import DeviceToken, Ticket
from ticket_push.services.stores import DeviceTokenStore, RoleStore

logger = logging.getLogger(__name__)

BASE_AUDIENCE_ROLES = frozenset({"admin", "maintenance"})
SAFETY_ROLE = "safety_officer"
SUPPLY_AUDIENCE_ROLES = frozenset({"admin"})

# Matched against the lowercased category name ("Tarvikud", "Töövahendid", ...)
SUPPLY_CATEGORY_KEYWORDS = ("tarvik", "töövahend")


def is_supply_category(category_name: str) -> bool:
    name = (category_name or "").casefold()
    return any(keyword in name for keyword in SUPPLY_CATEGORY_KEYWORDS)


def resolve_audience_roles(ticket: Ticket) -> frozenset[str]:
    """Return the set of roles that should be notified about ``ticket``."""
    if is_supply_category(ticket.category_name):
        return SUPPLY_AUDIENCE_ROLES

    roles = set(BASE_AUDIENCE_ROLES)
    if ticket.is_safety_related:
        roles.add(SAFETY_ROLE)
    return frozenset(roles)


class TargetResolver:
    """Computes the device tokens a ticket notification is delivered to."""

    def __init__(self, role_store: RoleStore, token_store: DeviceTokenStore):
        self._roles = role_store
        self._tokens = token_store

    def resolve_user_ids(self, roles: frozenset[str]) -> set[str]:
        memberships = self._roles.memberships_for_roles(roles)
        return {m.user_id for m in memberships if m.roles & roles}

    def resolve(
        self,
        ticket: Ticket,
        roles: Optional[frozenset[str]] = None,
    ) -> list[DeviceToken]:
        """
        Resolve the device tokens for ``ticket``.

        ``roles`` defaults to resolve_audience_roles(ticket).

        Returns an empty list when no user holds an audience role or no
        audience member has a registered device.
        """
        if roles is None:
            roles = resolve_audience_roles(ticket)
        logger.info("Ticket %s target roles: %s", ticket.id, sorted(roles))

        user_ids = self.resolve_user_ids(roles)
        logger.info("Ticket %s target user count: %d", ticket.id, len(user_ids))
        if not user_ids:
            return []

        unique: dict[str, DeviceToken] = {}
        for device in self._tokens.tokens_for_users(user_ids):
            unique.setdefault(device.token, device)

        logger.info("Ticket %s push token count: %d", ticket.id, len(unique))
        return list(unique.values())
