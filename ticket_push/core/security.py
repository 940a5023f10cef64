"""
Security — Caller authentication for the dispatch API.

Validates Bearer tokens against Supabase Auth and extracts the
authenticated user's ID. Both the dispatch trigger and push-token
registration are called by signed-in users of the ticketing app.

Usage in route handlers:
    from ticket_push.core.security import get_current_user_id

    @router.post("/protected")
    async def protected_route(user_id: str = Depends(get_current_user_id)):
        return {"user_id": user_id}
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import httpx

from ticket_push.core.config import SUPABASE_URL, SUPABASE_ANON_KEY

# auto_error=False so a missing header yields 401 instead of FastAPI's 403.
_bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> str:
    """
    FastAPI dependency that validates the Supabase JWT and returns the user ID.

    Sends the Bearer token to Supabase Auth's /auth/v1/user endpoint and
    returns the authenticated user's UUID.

    Raises:
        HTTPException(401): If the token is missing, invalid, or expired.
    """
    if credentials is None:
        raise _unauthorized(
            "Missing authentication token. Provide a Bearer token in the Authorization header."
        )

    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(
                f"{SUPABASE_URL}/auth/v1/user",
                headers={
                    "Authorization": f"Bearer {credentials.credentials}",
                    "apikey": SUPABASE_ANON_KEY,
                },
                timeout=10.0,
            )
    except httpx.RequestError as exc:
        raise _unauthorized("Authentication service unavailable. Please try again.") from exc

    if response.status_code != 200:
        raise _unauthorized("Invalid or expired authentication token.")

    try:
        user_id = response.json().get("id")
    except ValueError:
        raise _unauthorized("Authentication service returned an invalid response.")

    if not user_id:
        raise _unauthorized("Invalid authentication token: no user ID found.")

    return user_id
