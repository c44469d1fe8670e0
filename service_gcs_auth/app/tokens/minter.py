"""
OAuth2 JWT-bearer token minting for service accounts.
"""

import time
from typing import Any, Callable, Dict, Optional

import httpx
import jwt
from cryptography.exceptions import UnsupportedAlgorithm

from shared.config import GCSAuthConfig
from shared.errors import (
    HttpError,
    InvalidTokenResponseError,
    JwtGenerationError,
    RequestFailedError,
    StorageAuthException,
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from shared.tracing import traced_operation
from ..credentials.models import Credentials
from .models import AccessToken


JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"


class TokenMinter:
    """Builds signed JWT assertions and exchanges them for access tokens.

    The minter holds no token state; every ``mint`` call performs a full
    assertion + exchange round-trip.
    """

    def __init__(
        self,
        config: GCSAuthConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        *,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.http_client = http_client
        self.metrics = metrics or get_metrics_collector()
        self.clock = clock
        self.logger = get_logger("gcs_auth.minter")

    def build_assertion(self, credentials: Credentials, now: Optional[int] = None) -> str:
        """Build the RS256-signed JWT assertion for ``credentials``."""
        issued_at = int(now if now is not None else self.clock())
        payload = {
            "iss": credentials.identity,
            "scope": self.config.scope,
            "aud": self.config.token_uri,
            "iat": issued_at,
            "exp": issued_at + self.config.token_lifetime_seconds,
        }

        try:
            signing_key = credentials.signing_key()
            return jwt.encode(payload, signing_key, algorithm="RS256", headers={"typ": "JWT"})
        except (ValueError, TypeError, UnsupportedAlgorithm, jwt.PyJWTError) as e:
            self.logger.error("JWT generation failed", identity=credentials.identity, error=str(e))
            raise JwtGenerationError(str(e)) from e

    async def exchange(self, assertion: str) -> AccessToken:
        """Exchange a JWT assertion for an access token at the token endpoint."""
        requested_at = self.clock()
        data = {"grant_type": JWT_BEARER_GRANT, "assertion": assertion}

        try:
            if self.http_client is not None:
                response = await self.http_client.post(self.config.token_uri, data=data)
            else:
                async with httpx.AsyncClient(timeout=self.config.http_timeout_seconds) as client:
                    response = await client.post(self.config.token_uri, data=data)
        except httpx.HTTPError as e:
            self.logger.warning("Token request failed", token_uri=self.config.token_uri, error=str(e))
            raise RequestFailedError(str(e) or type(e).__name__) from e

        body = _decode_body(response)
        if response.status_code != 200:
            self.logger.warning(
                "Token endpoint returned error",
                status_code=response.status_code,
                body=body,
            )
            raise HttpError(response.status_code, body)

        if not isinstance(body, dict) or not isinstance(body.get("access_token"), str):
            raise InvalidTokenResponseError(body)

        return AccessToken(
            token=body["access_token"],
            issued_at=requested_at,
            expires_at=requested_at + self._lifetime(body),
        )

    async def mint(self, credentials: Credentials) -> AccessToken:
        """Mint a fresh access token for ``credentials``."""
        with traced_operation("gcs_auth.mint", {"gcs.identity": credentials.identity}):
            try:
                with self.metrics.measure_time("token_fetch_duration_seconds"):
                    assertion = self.build_assertion(credentials)
                    token = await self.exchange(assertion)
            except StorageAuthException as e:
                self.metrics.increment_counter("token_fetch_total", outcome=e.code.lower())
                raise

        self.metrics.increment_counter("token_fetch_total", outcome="success")
        self.logger.debug(
            "Access token minted",
            identity=credentials.identity,
            expires_at=token.expires_at,
        )
        return token

    def _lifetime(self, body: Dict[str, Any]) -> float:
        """Prefer the provider's expires_in; fall back to the configured lifetime."""
        expires_in = body.get("expires_in")
        if isinstance(expires_in, (int, float)) and not isinstance(expires_in, bool) and expires_in > 0:
            return float(expires_in)
        if isinstance(expires_in, str) and expires_in.isdigit() and int(expires_in) > 0:
            return float(expires_in)
        return float(self.config.token_lifetime_seconds)


def _decode_body(response: httpx.Response) -> Any:
    """Decode a JSON body, falling back to raw text."""
    try:
        return response.json()
    except ValueError:
        return response.text
