"""
Dispatch State Schema — Pydantic state for the LangGraph dispatch pipeline.

Defines the state that flows through the dispatch graph:
1. load_ticket — Read the ticket (fails with NotFoundError)
2. resolve_audience — Compute audience roles and device tokens
3. authenticate — Mint an FCM access token (fails with AuthError)
4. send — Deliver one message per device token
5. prune — Delete tokens FCM reported as permanently invalid
6. done — Finalize the DispatchResult
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from ticket_push.models.push import DispatchResult
from ticket_push.models.tickets import DeviceToken, NotificationType, Ticket


class DispatchStage(str, Enum):
    LOADING_TICKET = "loading_ticket"
    RESOLVING_AUDIENCE = "resolving_audience"
    AUTHENTICATING = "authenticating"
    SENDING = "sending"
    PRUNING = "pruning"
    DONE = "done"
    FAILED = "failed"


class DispatchState(BaseModel):
    """
    Complete state for one dispatch.

    Inputs are ticket_id, notification_type and the optional send
    deadline (a ``time.monotonic()`` value). Each node fills in the
    fields for its stage.
    """

    # --- Inputs ---
    ticket_id: str
    notification_type: NotificationType
    deadline: Optional[float] = None

    # --- Progress ---
    stage: DispatchStage = DispatchStage.LOADING_TICKET

    # --- Populated by load_ticket / resolve_audience ---
    ticket: Optional[Ticket] = None
    audience_roles: list[str] = Field(default_factory=list)
    device_tokens: list[DeviceToken] = Field(default_factory=list)

    # --- Populated by authenticate ---
    access_token: Optional[str] = Field(default=None, repr=False)

    # --- Populated by send / prune / done ---
    result: Optional[DispatchResult] = None
