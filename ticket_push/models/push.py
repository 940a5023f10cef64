"""
Push Models — Credential, access token, and delivery result schemas.

Defines the in-memory types that flow between the dispatch components:
- ServiceAccountCredential: immutable FCM service-account configuration
- AccessToken: short-lived OAuth2 bearer token minted per dispatch
- ProviderError: tagged classification of a failed FCM send
- SendOutcome: the result of one per-device send
- DispatchResult: aggregate counts returned by a dispatch
"""

import time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"


class ServiceAccountCredential(BaseModel):
    """
    FCM service-account configuration.

    Supplied by environment or a service-account JSON file and never
    persisted. ``identity`` is the cache key used by the optional
    AccessTokenCache.
    """

    model_config = ConfigDict(frozen=True)

    client_email: str
    private_key: str = Field(..., repr=False)
    project_id: str
    token_uri: str = DEFAULT_TOKEN_URI

    @property
    def identity(self) -> tuple[str, str]:
        return (self.client_email, self.token_uri)


class AccessToken(BaseModel):
    """An OAuth2 bearer token and the epoch second it expires at."""

    token: str = Field(..., repr=False)
    expires_at: float

    def is_valid(self, margin: float = 0.0) -> bool:
        return time.time() + margin < self.expires_at


class ProviderErrorKind(str, Enum):
    PERMANENT = "permanent"
    TRANSIENT = "transient"
    UNKNOWN = "unknown"


class ProviderError(BaseModel):
    """
    Classified FCM error for a single send.

    PERMANENT means the registration is gone for good and the device token
    must be pruned. TRANSIENT and UNKNOWN failures are counted but never
    pruned.
    """

    kind: ProviderErrorKind
    code: Optional[str] = None
    status_code: Optional[int] = None
    message: str = ""

    @property
    def is_permanent(self) -> bool:
        return self.kind is ProviderErrorKind.PERMANENT


class SendOutcome(BaseModel):
    """Outcome of one per-device send, attributed to its token."""

    token: str
    success: bool
    error: Optional[ProviderError] = None


class DispatchResult(BaseModel):
    """Aggregate counts for one dispatch. ``success + failure == attempted``."""

    attempted: int = 0
    success: int = 0
    failure: int = 0
    invalid_tokens: list[str] = Field(default_factory=list)
    pruned: int = 0
    deadline_exceeded: bool = False

    @classmethod
    def from_outcomes(
        cls,
        outcomes: list[SendOutcome],
        deadline_exceeded: bool = False,
    ) -> "DispatchResult":
        invalid: list[str] = []
        success = 0
        for outcome in outcomes:
            if outcome.success:
                success += 1
            elif outcome.error and outcome.error.is_permanent and outcome.token not in invalid:
                invalid.append(outcome.token)
        return cls(
            attempted=len(outcomes),
            success=success,
            failure=len(outcomes) - success,
            invalid_tokens=invalid,
            deadline_exceeded=deadline_exceeded,
        )
