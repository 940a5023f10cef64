"""
Notification API Models — Pydantic schemas for the dispatch and token endpoints.

- POST /api/v1/notifications/dispatch
- POST /api/v1/push-tokens
- DELETE /api/v1/push-tokens
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ticket_push.models.push import DispatchResult
from ticket_push.models.tickets import NotificationType, Platform


class NotificationDispatchRequest(BaseModel):
    """
    Payload sent when a ticket event occurs.

    Accepts the camelCase keys used by the ticketing frontend
    (``ticketId``, ``notificationType``) as well as snake_case.
    """

    model_config = ConfigDict(populate_by_name=True)

    ticket_id: str = Field(
        ...,
        alias="ticketId",
        min_length=1,
        description="UUID of the ticket the event belongs to.",
    )
    notification_type: NotificationType = Field(
        ...,
        alias="notificationType",
        description="created, updated, assigned, resolved, verified or closed.",
    )


class NotificationDispatchResponse(BaseModel):
    """Aggregate outcome of a dispatch."""

    attempted: int = Field(..., description="Number of device tokens a send was attempted for.")
    success: int = Field(..., description="Sends FCM accepted.")
    failure: int = Field(..., description="Sends that failed (transient or permanent).")
    invalid_tokens: list[str] = Field(
        default_factory=list,
        description="Tokens FCM reported as permanently invalid.",
    )
    pruned: int = Field(default=0, description="Push token rows deleted.")
    deadline_exceeded: bool = Field(
        default=False,
        description="Whether the dispatch deadline cut the send phase short.",
    )
    message: str = Field(default="", description="Human-readable summary.")

    @classmethod
    def from_result(cls, result: DispatchResult) -> "NotificationDispatchResponse":
        if result.attempted == 0:
            message = "No target devices found"
        else:
            message = f"Sent to {result.success} of {result.attempted} devices"
        return cls(**result.model_dump(), message=message)


class PushTokenRequest(BaseModel):
    """Payload for POST /api/v1/push-tokens."""

    token: str = Field(
        ...,
        min_length=1,
        max_length=4096,
        description="FCM registration token.",
    )
    platform: Platform = Field(..., description="android, ios or web.")

    @field_validator("token")
    @classmethod
    def validate_token(cls, v: str) -> str:
        """Strip whitespace and validate non-empty."""
        v = v.strip()
        if not v:
            raise ValueError("Token cannot be empty.")
        return v


class PushTokenResponse(BaseModel):
    status: str = Field(default="registered")
    token: str
    platform: Platform


class PushTokenDeleteRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=4096)


class PushTokenDeleteResponse(BaseModel):
    status: str = Field(default="unregistered")
    removed: int = Field(default=0, description="Rows deleted (0 if the token was not stored).")
