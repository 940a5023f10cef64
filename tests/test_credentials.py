"""
CredentialMinter Verification: OAuth2 JWT-bearer exchange

Tests that:
1. build_assertion produces an RS256 JWT with the service-account claims
2. The assertion is valid for exactly 3600 seconds and verifies with the public key
3. Unparseable or non-RSA keys raise ConfigurationError
4. mint() POSTs the jwt-bearer grant and returns the access token
5. Non-200 responses, missing access_token and network errors raise AuthError
6. The optional AccessTokenCache reuses tokens until they near expiry

Run with: pytest tests/test_credentials.py -v
"""

import time
from urllib.parse import parse_qs

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from ticket_push.core.errors import AuthError, ConfigurationError
from ticket_push.models.push import AccessToken
from ticket_push.services.credentials import (
    ASSERTION_LIFETIME,
    FCM_SCOPE,
    JWT_BEARER_GRANT_TYPE,
    AccessTokenCache,
    CredentialMinter,
    build_assertion,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _token_endpoint(status_code: int = 200, body: dict | None = None, requests: list | None = None):
    """MockTransport handler emulating the Google OAuth2 token endpoint."""
    if body is None:
        body = {"access_token": "ya29.test-token", "expires_in": 3599, "token_type": "Bearer"}

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return httpx.Response(status_code, json=body)

    return handler


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ===================================================================
# Test Class: build_assertion
# ===================================================================

class TestBuildAssertion:

    def test_header_uses_rs256(self, credential):
        header = jwt.get_unverified_header(build_assertion(credential))
        assert header["alg"] == "RS256"
        assert header["typ"] == "JWT"

    def test_validity_window_is_one_hour(self, credential):
        claims = jwt.decode(build_assertion(credential), options={"verify_signature": False})
        assert claims["exp"] - claims["iat"] == 3600
        assert ASSERTION_LIFETIME == 3600

    def test_claims_identify_service_account(self, credential):
        claims = jwt.decode(
            build_assertion(credential, now=1_700_000_000),
            options={"verify_signature": False},
        )
        assert claims["iss"] == credential.client_email
        assert claims["scope"] == FCM_SCOPE
        assert claims["aud"] == credential.token_uri
        assert claims["iat"] == 1_700_000_000
        assert claims["exp"] == 1_700_003_600

    def test_signature_verifies_with_public_key(self, credential, rsa_private_key):
        assertion = build_assertion(credential)
        claims = jwt.decode(
            assertion,
            rsa_private_key.public_key(),
            algorithms=["RS256"],
            audience=credential.token_uri,
        )
        assert claims["iss"] == credential.client_email

    def test_compact_form_has_no_padding(self, credential):
        assertion = build_assertion(credential)
        assert assertion.count(".") == 2
        assert "=" not in assertion

    def test_garbage_key_raises_configuration_error(self, credential):
        broken = credential.model_copy(update={"private_key": "not a pem key"})
        with pytest.raises(ConfigurationError) as exc_info:
            build_assertion(broken)
        assert exc_info.value.stage == "authenticating"

    def test_non_rsa_key_raises_configuration_error(self, credential):
        ec_pem = ec.generate_private_key(ec.SECP256R1()).private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode()
        with pytest.raises(ConfigurationError):
            build_assertion(credential.model_copy(update={"private_key": ec_pem}))


# ===================================================================
# Test Class: CredentialMinter.mint
# ===================================================================

class TestMint:

    @pytest.mark.asyncio
    async def test_successful_exchange_returns_access_token(self, credential):
        requests: list[httpx.Request] = []
        async with _client(_token_endpoint(requests=requests)) as http:
            token = await CredentialMinter(http).mint(credential)

        assert token.token == "ya29.test-token"
        assert token.expires_at > time.time() + 3000
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_posts_form_encoded_jwt_bearer_grant(self, credential, rsa_private_key):
        requests: list[httpx.Request] = []
        async with _client(_token_endpoint(requests=requests)) as http:
            await CredentialMinter(http).mint(credential)

        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == credential.token_uri
        assert request.headers["content-type"].startswith("application/x-www-form-urlencoded")

        form = parse_qs(request.content.decode())
        assert form["grant_type"] == [JWT_BEARER_GRANT_TYPE]
        claims = jwt.decode(
            form["assertion"][0],
            rsa_private_key.public_key(),
            algorithms=["RS256"],
            audience=credential.token_uri,
        )
        assert claims["iss"] == credential.client_email

    @pytest.mark.asyncio
    async def test_http_401_raises_auth_error_with_status_and_body(self, credential):
        body = {"error": "invalid_grant", "error_description": "Invalid JWT Signature."}
        async with _client(_token_endpoint(401, body)) as http:
            with pytest.raises(AuthError) as exc_info:
                await CredentialMinter(http).mint(credential)

        assert exc_info.value.status_code == 401
        assert "invalid_grant" in exc_info.value.body
        assert exc_info.value.stage == "authenticating"

    @pytest.mark.asyncio
    async def test_missing_access_token_raises_auth_error(self, credential):
        async with _client(_token_endpoint(200, {"token_type": "Bearer"})) as http:
            with pytest.raises(AuthError):
                await CredentialMinter(http).mint(credential)

    @pytest.mark.asyncio
    async def test_network_error_raises_auth_error(self, credential):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as http:
            with pytest.raises(AuthError) as exc_info:
                await CredentialMinter(http).mint(credential)
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_expires_in_defaults_to_one_hour(self, credential):
        async with _client(_token_endpoint(200, {"access_token": "abc"})) as http:
            token = await CredentialMinter(http).mint(credential)
        assert 3590 < token.expires_at - time.time() <= 3600

    @pytest.mark.asyncio
    async def test_each_mint_calls_endpoint_without_cache(self, credential):
        requests: list[httpx.Request] = []
        async with _client(_token_endpoint(requests=requests)) as http:
            minter = CredentialMinter(http)
            await minter.mint(credential)
            await minter.mint(credential)
        assert len(requests) == 2


# ===================================================================
# Test Class: AccessTokenCache
# ===================================================================

class TestAccessTokenCache:

    @pytest.mark.asyncio
    async def test_cached_token_is_reused(self, credential):
        requests: list[httpx.Request] = []
        cache = AccessTokenCache()
        async with _client(_token_endpoint(requests=requests)) as http:
            minter = CredentialMinter(http, cache=cache)
            first = await minter.mint(credential)
            second = await minter.mint(credential)

        assert first.token == second.token
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_token_near_expiry_is_refreshed(self, credential):
        requests: list[httpx.Request] = []
        cache = AccessTokenCache(refresh_margin=600)
        cache.put(credential, AccessToken(token="stale", expires_at=time.time() + 300))

        async with _client(_token_endpoint(requests=requests)) as http:
            token = await CredentialMinter(http, cache=cache).mint(credential)

        assert token.token == "ya29.test-token"
        assert len(requests) == 1

    def test_cache_is_keyed_by_credential_identity(self, credential):
        cache = AccessTokenCache()
        cache.put(credential, AccessToken(token="a", expires_at=time.time() + 3600))
        other = credential.model_copy(update={"client_email": "other@example.iam.gserviceaccount.com"})

        assert cache.get(credential).token == "a"
        assert cache.get(other) is None

    @pytest.mark.asyncio
    async def test_failed_mint_is_not_cached(self, credential):
        cache = AccessTokenCache()
        async with _client(_token_endpoint(500, {"error": "internal"})) as http:
            with pytest.raises(AuthError):
                await CredentialMinter(http, cache=cache).mint(credential)
        assert cache.get(credential) is None
