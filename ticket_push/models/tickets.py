"""
Ticket Models — Read-only views of the ticketing tables used by dispatch.

The ticket store, role memberships and push tokens are owned by the
CRUD layer. The dispatch engine only reads them (and deletes push
tokens the provider reports as permanently invalid).
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class NotificationType(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    ASSIGNED = "assigned"
    RESOLVED = "resolved"
    VERIFIED = "verified"
    CLOSED = "closed"


class Platform(str, Enum):
    ANDROID = "android"
    IOS = "ios"
    WEB = "web"


class Ticket(BaseModel):
    """A ticket joined with its category and problem-type names."""

    id: str
    ticket_number: Optional[int] = None
    category_name: str = ""
    problem_type_name: str = ""
    location: str = ""
    is_safety_related: bool = False
    status: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Ticket":
        """
        Build a Ticket from a PostgREST row with embedded relations.

        ``category`` and ``problem_type`` arrive as nested objects (or
        None when the foreign key is unset).
        """
        category = row.get("category") or {}
        problem_type = row.get("problem_type") or {}
        return cls(
            id=str(row["id"]),
            ticket_number=row.get("ticket_number"),
            category_name=category.get("name") or "",
            problem_type_name=problem_type.get("name") or "",
            location=row.get("location") or "",
            is_safety_related=bool(row.get("is_safety_related")),
            status=row.get("status"),
        )


class DeviceToken(BaseModel):
    """A registered push token. ``(user_id, token)`` is unique."""

    token: str
    platform: Platform
    user_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "DeviceToken":
        return cls(
            token=row["token"],
            platform=row.get("platform") or Platform.ANDROID,
            user_id=str(row["user_id"]),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


class RoleMembership(BaseModel):
    """Role labels held by one user."""

    user_id: str
    roles: set[str] = Field(default_factory=set)
