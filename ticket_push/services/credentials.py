"""
FCM Credentials — OAuth2 JWT-bearer exchange for a Google access token.

FCM HTTP v1 requires an OAuth2 access token. It is obtained by:
1. Signing a JWT assertion (RS256) with the service-account private key
2. POSTing it to the token endpoint with the jwt-bearer grant type
3. Using the returned access_token as a Bearer credential for one hour

Each dispatch mints its own token unless ACCESS_TOKEN_CACHE_ENABLED is
set, in which case tokens are reused until shortly before they expire.
"""

import logging
import time
from typing import Optional

import httpx
import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from ticket_push.core.errors import AuthError, ConfigurationError
from ticket_push.models.push import AccessToken, ServiceAccountCredential

logger = logging.getLogger(__name__)

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
JWT_BEARER_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME = 3600  # seconds; the maximum Google accepts

# Reuse cached tokens until 10 minutes before expiry
TOKEN_REFRESH_MARGIN = 10 * 60


# ===================================================================
# Assertion building
# ===================================================================

def _load_private_key(pem: str) -> RSAPrivateKey:
    """
    Parse the PEM-encoded PKCS8 service-account key.

    Raises:
        ConfigurationError: If the key cannot be parsed or is not RSA.
    """
    try:
        key = serialization.load_pem_private_key(pem.encode(), password=None)
    except (ValueError, TypeError) as exc:
        raise ConfigurationError(
            f"Service account private key could not be parsed: {exc}",
            stage="authenticating",
        ) from exc
    if not isinstance(key, RSAPrivateKey):
        raise ConfigurationError(
            "Service account private key is not an RSA key",
            stage="authenticating",
        )
    return key


def build_assertion(
    credential: ServiceAccountCredential,
    now: Optional[int] = None,
) -> str:
    """
    Build the signed JWT assertion for the jwt-bearer grant.

    Header: {"alg": "RS256", "typ": "JWT"}
    Claims: iss (client email), scope, aud (token endpoint), iat, exp = iat + 3600

    Returns:
        The compact ``header.payload.signature`` string.
    """
    issued_at = int(time.time()) if now is None else now
    claims = {
        "iss": credential.client_email,
        "scope": FCM_SCOPE,
        "aud": credential.token_uri,
        "iat": issued_at,
        "exp": issued_at + ASSERTION_LIFETIME,
    }
    key = _load_private_key(credential.private_key)
    return jwt.encode(claims, key, algorithm="RS256", headers={"typ": "JWT"})


# ===================================================================
# Token cache
# ===================================================================

class AccessTokenCache:
    """
    Process-local cache of access tokens keyed by credential identity.

    Entries are served until TOKEN_REFRESH_MARGIN seconds before expiry.
    """

    def __init__(self, refresh_margin: float = TOKEN_REFRESH_MARGIN):
        self.refresh_margin = refresh_margin
        self._tokens: dict[tuple[str, str], AccessToken] = {}

    def get(self, credential: ServiceAccountCredential) -> Optional[AccessToken]:
        token = self._tokens.get(credential.identity)
        if token and token.is_valid(self.refresh_margin):
            return token
        return None

    def put(self, credential: ServiceAccountCredential, token: AccessToken) -> None:
        self._tokens[credential.identity] = token


# Shared by every dispatch in this process when caching is enabled
token_cache = AccessTokenCache()


# ===================================================================
# Minting
# ===================================================================

class CredentialMinter:
    """Exchanges a service-account credential for a bearer access token."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        cache: Optional[AccessTokenCache] = None,
    ):
        self._http = http_client
        self._cache = cache

    async def mint(self, credential: ServiceAccountCredential) -> AccessToken:
        """
        Return a bearer access token for ``credential``.

        Raises:
            ConfigurationError: If the private key is unusable.
            AuthError: If the token endpoint does not return HTTP 200 with
                an access_token, or cannot be reached.
        """
        if self._cache is not None:
            cached = self._cache.get(credential)
            if cached is not None:
                logger.debug("Reusing cached access token for %s", credential.client_email)
                return cached

        assertion = build_assertion(credential)

        try:
            response = await self._http.post(
                credential.token_uri,
                data={
                    "grant_type": JWT_BEARER_GRANT_TYPE,
                    "assertion": assertion,
                },
            )
        except httpx.HTTPError as exc:
            logger.error("Token endpoint unreachable (%s): %s", credential.token_uri, exc)
            raise AuthError(f"Token endpoint request failed: {exc}") from exc

        if response.status_code != 200:
            logger.error(
                "Token endpoint rejected assertion: status=%d, body=%s",
                response.status_code,
                response.text[:500],
            )
            raise AuthError(
                f"Token endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            body = response.json()
            token = body["access_token"]
        except (ValueError, KeyError, TypeError) as exc:
            raise AuthError(
                "Token endpoint response has no access_token",
                status_code=response.status_code,
                body=response.text,
            ) from exc

        expires_in = body.get("expires_in") or ASSERTION_LIFETIME
        access_token = AccessToken(token=token, expires_at=time.time() + float(expires_in))

        if self._cache is not None:
            self._cache.put(credential, access_token)

        logger.info(
            "Minted FCM access token for %s (expires_in=%ss)",
            credential.client_email,
            expires_in,
        )
        return access_token
