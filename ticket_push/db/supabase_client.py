"""
Supabase Client

One shared service-role client for the dispatch stores and the
push-token endpoints. Dispatch reads tickets, role memberships and
push tokens of every user, and deletes tokens it does not own, so it
runs with the key that bypasses Row Level Security. Writes on behalf of
a caller are always scoped by the user_id taken from their verified JWT.
"""

from supabase import Client, create_client

from ticket_push.core import config

_service_client: Client | None = None


def get_service_client() -> Client:
    """
    Return the process-wide service-role client, creating it on first use.

    Raises:
        EnvironmentError: If the Supabase URL or keys are not configured.
    """
    global _service_client
    if _service_client is None:
        config.validate_supabase_config()
        _service_client = create_client(config.SUPABASE_URL, config.SUPABASE_SERVICE_ROLE_KEY)
    return _service_client


def reset_service_client() -> None:
    """Drop the cached client so the next call re-reads configuration."""
    global _service_client
    _service_client = None
