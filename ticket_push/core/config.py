"""
Application Configuration

Loads environment variables and provides typed settings
for the dispatch service. Uses python-dotenv to load from .env file.
"""

import json
import os
from pathlib import Path
from dotenv import load_dotenv

from ticket_push.core.errors import ConfigurationError
from ticket_push.models.push import DEFAULT_TOKEN_URI, ServiceAccountCredential

# Load .env file from the project root
_env_path = Path(__file__).resolve().parent.parent.parent / ".env"
load_dotenv(dotenv_path=_env_path)

# --- App Settings ---
API_V1_PREFIX = "/api/v1"
PROJECT_NAME = "Ticket Push"

# --- Supabase ---
SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
SUPABASE_ANON_KEY: str = os.getenv("SUPABASE_ANON_KEY", "")
SUPABASE_SERVICE_ROLE_KEY: str = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

# --- FCM service account ---
FCM_PROJECT_ID: str = os.getenv("FCM_PROJECT_ID", "")
FCM_CLIENT_EMAIL: str = os.getenv("FCM_CLIENT_EMAIL", "")
FCM_PRIVATE_KEY: str = os.getenv("FCM_PRIVATE_KEY", "")
FCM_TOKEN_URI: str = os.getenv("FCM_TOKEN_URI", DEFAULT_TOKEN_URI)
# Alternative to the discrete variables above: path to the JSON key file
# downloaded from the Firebase console.
FCM_SERVICE_ACCOUNT_FILE: str = os.getenv("FCM_SERVICE_ACCOUNT_FILE", "")

# --- Dispatch tuning ---
FCM_BATCH_SIZE: int = int(os.getenv("FCM_BATCH_SIZE", "500"))
FCM_SEND_CONCURRENCY: int = int(os.getenv("FCM_SEND_CONCURRENCY", "10"))
FCM_REQUEST_TIMEOUT: float = float(os.getenv("FCM_REQUEST_TIMEOUT", "10"))
DISPATCH_DEADLINE_SECONDS: float = float(os.getenv("DISPATCH_DEADLINE_SECONDS", "45"))
ACCESS_TOKEN_CACHE_ENABLED: bool = (
    os.getenv("ACCESS_TOKEN_CACHE_ENABLED", "false").lower() in ("1", "true", "yes")
)


def validate_supabase_config() -> bool:
    """Check that all required Supabase credentials are present and non-empty."""
    missing = []
    if not SUPABASE_URL:
        missing.append("SUPABASE_URL")
    if not SUPABASE_ANON_KEY:
        missing.append("SUPABASE_ANON_KEY")
    if not SUPABASE_SERVICE_ROLE_KEY:
        missing.append("SUPABASE_SERVICE_ROLE_KEY")
    if missing:
        raise EnvironmentError(
            f"Missing required Supabase environment variables: {', '.join(missing)}. "
            f"Please fill in your .env file at: {_env_path}"
        )
    return True


def is_fcm_configured() -> bool:
    """
    Check if FCM credentials are available without raising exceptions.

    Either the service-account file or all three discrete variables
    must be set.
    """
    if FCM_SERVICE_ACCOUNT_FILE:
        return True
    return bool(FCM_PROJECT_ID and FCM_CLIENT_EMAIL and FCM_PRIVATE_KEY)


def _normalize_private_key(value: str) -> str:
    # Keys pasted into .env files usually carry literal "\n" sequences.
    return value.replace("\\n", "\n").strip()


def _load_service_account_file(path: str) -> dict:
    key_path = Path(path)
    if not key_path.exists():
        raise ConfigurationError(
            f"FCM service account file not found: {path}"
        )
    try:
        return json.loads(key_path.read_text())
    except ValueError as exc:
        raise ConfigurationError(
            f"FCM service account file is not valid JSON: {exc}"
        ) from exc


def load_service_account_credential() -> ServiceAccountCredential:
    """
    Build the ServiceAccountCredential from configuration.

    FCM_SERVICE_ACCOUNT_FILE takes precedence; discrete FCM_* variables
    are used otherwise (and may override FCM_PROJECT_ID from the file).

    Raises:
        ConfigurationError: If any required value is missing.
    """
    values = {
        "client_email": FCM_CLIENT_EMAIL,
        "private_key": FCM_PRIVATE_KEY,
        "project_id": FCM_PROJECT_ID,
        "token_uri": FCM_TOKEN_URI,
    }

    if FCM_SERVICE_ACCOUNT_FILE:
        data = _load_service_account_file(FCM_SERVICE_ACCOUNT_FILE)
        values = {
            "client_email": data.get("client_email", ""),
            "private_key": data.get("private_key", ""),
            "project_id": FCM_PROJECT_ID or data.get("project_id", ""),
            "token_uri": data.get("token_uri") or FCM_TOKEN_URI,
        }

    missing = [name for name in ("client_email", "private_key", "project_id") if not values[name]]
    if missing:
        raise ConfigurationError(
            f"Missing FCM service account values: {', '.join(missing)}. "
            f"Set FCM_SERVICE_ACCOUNT_FILE or FCM_CLIENT_EMAIL, "
            f"FCM_PRIVATE_KEY and FCM_PROJECT_ID in your .env file at: {_env_path}"
        )

    return ServiceAccountCredential(
        client_email=values["client_email"],
        private_key=_normalize_private_key(values["private_key"]),
        project_id=values["project_id"],
        token_uri=values["token_uri"],
    )
