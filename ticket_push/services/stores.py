"""
Collaborator Stores — Supabase-backed access to tickets, roles and push tokens.

The dispatch components depend on the small Protocols below rather than
on a Supabase client, so any store (or a test fake) can be injected.
The Supabase implementations wrap every query failure in StoreError.

Tables:
- tickets (with embedded categories / problem_types)
- user_roles (user_id, role)
- push_tokens (user_id, token, platform, created_at, updated_at)
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, Iterator, Optional, Protocol

from supabase import Client

from ticket_push.core.errors import StoreError
from ticket_push.models.tickets import DeviceToken, Platform, RoleMembership, Ticket

logger = logging.getLogger(__name__)

# PostgREST encodes `in` filters into the query string; keep them short.
IN_FILTER_CHUNK_SIZE = 100

# Postgres SQLSTATE for a malformed literal, e.g. a non-UUID id
INVALID_TEXT_REPRESENTATION = "22P02"

TICKET_COLUMNS = (
    "id, ticket_number, location, is_safety_related, status, "
    "category:categories(id, name), "
    "problem_type:problem_types(id, name)"
)


def _chunked(values: list[str], size: int) -> Iterator[list[str]]:
    for i in range(0, len(values), size):
        yield values[i:i + size]


# ===================================================================
# Store interfaces
# ===================================================================

class TicketStore(Protocol):
    def get_ticket(self, ticket_id: str) -> Optional[Ticket]: ...


class RoleStore(Protocol):
    def memberships_for_roles(self, roles: Iterable[str]) -> list[RoleMembership]: ...


class DeviceTokenStore(Protocol):
    def tokens_for_users(self, user_ids: Iterable[str]) -> list[DeviceToken]: ...

    def delete_tokens(self, tokens: Iterable[str]) -> int: ...

    def upsert_token(self, user_id: str, token: str, platform: Platform) -> DeviceToken: ...

    def delete_user_token(self, user_id: str, token: str) -> int: ...


# ===================================================================
# Supabase implementations
# ===================================================================

class SupabaseTicketStore:
    def __init__(self, client: Client):
        self._client = client

    def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        try:
            result = (
                self._client.table("tickets")
                .select(TICKET_COLUMNS)
                .eq("id", ticket_id)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            if getattr(exc, "code", None) == INVALID_TEXT_REPRESENTATION:
                # Not a UUID, so no such ticket
                logger.info("Ticket id %r is not a valid identifier", ticket_id)
                return None
            logger.error("Failed to load ticket %s: %s", ticket_id, exc)
            raise StoreError(f"Failed to load ticket: {exc}", stage="loading_ticket") from exc

        if not result.data:
            return None
        return Ticket.from_row(result.data[0])


class SupabaseRoleStore:
    def __init__(self, client: Client):
        self._client = client

    def memberships_for_roles(self, roles: Iterable[str]) -> list[RoleMembership]:
        """Return one RoleMembership per user holding any of ``roles``."""
        role_list = sorted(set(roles))
        if not role_list:
            return []

        try:
            result = (
                self._client.table("user_roles")
                .select("user_id, role")
                .in_("role", role_list)
                .execute()
            )
        except Exception as exc:
            logger.error("Failed to fetch user roles %s: %s", role_list, exc)
            raise StoreError(f"Failed to fetch users: {exc}", stage="resolving_audience") from exc

        memberships: dict[str, RoleMembership] = {}
        for row in result.data or []:
            user_id = str(row["user_id"])
            membership = memberships.setdefault(user_id, RoleMembership(user_id=user_id))
            membership.roles.add(row["role"])
        return list(memberships.values())


class SupabaseDeviceTokenStore:
    def __init__(self, client: Client):
        self._client = client

    def tokens_for_users(self, user_ids: Iterable[str]) -> list[DeviceToken]:
        id_list = sorted(set(user_ids))
        tokens: list[DeviceToken] = []
        for chunk in _chunked(id_list, IN_FILTER_CHUNK_SIZE):
            try:
                result = (
                    self._client.table("push_tokens")
                    .select("token, platform, user_id, created_at, updated_at")
                    .in_("user_id", chunk)
                    .execute()
                )
            except Exception as exc:
                logger.error("Failed to fetch push tokens: %s", exc)
                raise StoreError(
                    f"Failed to fetch tokens: {exc}", stage="resolving_audience"
                ) from exc
            tokens.extend(DeviceToken.from_row(row) for row in result.data or [])
        return tokens

    def delete_tokens(self, tokens: Iterable[str]) -> int:
        """Delete rows by token value, for any owner. Returns rows removed."""
        token_list = sorted(set(tokens))
        removed = 0
        for chunk in _chunked(token_list, IN_FILTER_CHUNK_SIZE):
            try:
                result = (
                    self._client.table("push_tokens")
                    .delete()
                    .in_("token", chunk)
                    .execute()
                )
            except Exception as exc:
                logger.error("Failed to delete %d push tokens: %s", len(chunk), exc)
                raise StoreError(f"Failed to delete tokens: {exc}", stage="pruning") from exc
            removed += len(result.data or [])
        return removed

    def upsert_token(self, user_id: str, token: str, platform: Platform) -> DeviceToken:
        row = {
            "user_id": user_id,
            "token": token,
            "platform": Platform(platform).value,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            result = (
                self._client.table("push_tokens")
                .upsert(row, on_conflict="user_id,token")
                .execute()
            )
        except Exception as exc:
            logger.error("Failed to save push token for user %s: %s", user_id[:8], exc)
            raise StoreError(f"Failed to save token: {exc}", stage="registering") from exc

        return DeviceToken.from_row(result.data[0] if result.data else row)

    def delete_user_token(self, user_id: str, token: str) -> int:
        try:
            result = (
                self._client.table("push_tokens")
                .delete()
                .eq("user_id", user_id)
                .eq("token", token)
                .execute()
            )
        except Exception as exc:
            logger.error("Failed to remove push token for user %s: %s", user_id[:8], exc)
            raise StoreError(f"Failed to remove token: {exc}", stage="unregistering") from exc
        return len(result.data or [])
