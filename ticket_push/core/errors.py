"""
Dispatch Errors — Fatal error taxonomy for the push dispatch engine.

Every fatal error carries the pipeline stage it was raised in, so the
caller (and the logs) can tell which step of a dispatch failed.
Per-device send failures are NOT exceptions; they are folded into the
DispatchResult counts by the MessageDispatcher.
"""

from typing import Optional


class DispatchError(Exception):
    """Base class for errors that abort a whole dispatch."""

    default_stage = "unknown"

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage or self.default_stage

    def __str__(self) -> str:
        return f"[{self.stage}] {self.message}"


class ConfigurationError(DispatchError):
    """Service-account credential is missing or malformed. No send is attempted."""

    default_stage = "configuration"


class AuthError(DispatchError):
    """The OAuth2 token endpoint rejected the JWT assertion."""

    default_stage = "authenticating"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: str = "",
        stage: Optional[str] = None,
    ):
        super().__init__(message, stage)
        self.status_code = status_code
        self.body = body


class NotFoundError(DispatchError):
    """The ticket identifier does not resolve to a ticket."""

    default_stage = "loading_ticket"

    def __init__(self, ticket_id: str, stage: Optional[str] = None):
        super().__init__(f"Ticket {ticket_id} not found", stage)
        self.ticket_id = ticket_id


class StoreError(DispatchError):
    """A collaborator store (tickets, roles, push tokens) call failed."""

    default_stage = "store"
