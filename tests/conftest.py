"""
Shared fixtures: a throwaway RSA service-account key and in-memory
stores standing in for the Supabase tables.
"""

from datetime import datetime, timezone
from typing import Iterable, Optional

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ticket_push.models.push import ServiceAccountCredential
from ticket_push.models.tickets import DeviceToken, Platform, RoleMembership, Ticket


# ---------------------------------------------------------------------------
# In-memory stores
# ---------------------------------------------------------------------------

class InMemoryTicketStore:
    def __init__(self, tickets: Iterable[Ticket] = ()):
        self.tickets = {t.id: t for t in tickets}
        self.calls: list[str] = []

    def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        self.calls.append(ticket_id)
        return self.tickets.get(ticket_id)


class InMemoryRoleStore:
    def __init__(self, roles_by_user: dict[str, set[str]] | None = None):
        self.roles_by_user = roles_by_user or {}

    def memberships_for_roles(self, roles: Iterable[str]) -> list[RoleMembership]:
        wanted = set(roles)
        return [
            RoleMembership(user_id=user_id, roles=set(user_roles))
            for user_id, user_roles in self.roles_by_user.items()
            if user_roles & wanted
        ]


class InMemoryTokenStore:
    def __init__(self, devices: Iterable[DeviceToken] = ()):
        self.rows: list[DeviceToken] = list(devices)
        self.delete_calls: list[list[str]] = []

    def tokens_for_users(self, user_ids: Iterable[str]) -> list[DeviceToken]:
        ids = set(user_ids)
        return [row for row in self.rows if row.user_id in ids]

    def delete_tokens(self, tokens: Iterable[str]) -> int:
        doomed = set(tokens)
        self.delete_calls.append(sorted(doomed))
        before = len(self.rows)
        self.rows = [row for row in self.rows if row.token not in doomed]
        return before - len(self.rows)

    def upsert_token(self, user_id: str, token: str, platform: Platform) -> DeviceToken:
        now = datetime.now(timezone.utc)
        for i, row in enumerate(self.rows):
            if row.user_id == user_id and row.token == token:
                updated = row.model_copy(update={"platform": platform, "updated_at": now})
                self.rows[i] = updated
                return updated
        device = DeviceToken(
            token=token, platform=platform, user_id=user_id, created_at=now, updated_at=now,
        )
        self.rows.append(device)
        return device

    def delete_user_token(self, user_id: str, token: str) -> int:
        before = len(self.rows)
        self.rows = [r for r in self.rows if not (r.user_id == user_id and r.token == token)]
        return before - len(self.rows)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def rsa_private_key():
    """A fresh 2048-bit RSA key (never a real service account)."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_private_key_pem(rsa_private_key) -> str:
    return rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture
def credential(rsa_private_key_pem) -> ServiceAccountCredential:
    return ServiceAccountCredential(
        client_email="push-sender@maintenance-app.iam.gserviceaccount.com",
        private_key=rsa_private_key_pem,
        project_id="maintenance-app",
        token_uri="https://oauth2.googleapis.com/token",
    )


@pytest.fixture
def ticket_store_factory():
    return InMemoryTicketStore


@pytest.fixture
def role_store_factory():
    return InMemoryRoleStore


@pytest.fixture
def token_store_factory():
    return InMemoryTokenStore
