"""
GCS auth service entry points for the storage library.

``GCSAuthService`` wires the credential store, token registry and request
signer together and exposes result-returning calls for the storage backend:

- ``get_access_token`` for the Authorization header of direct API calls
- ``sign_url`` for pre-signed upload/download links
"""

from datetime import datetime
from typing import Dict, Mapping, Optional, Union

import httpx
from pydantic import BaseModel, ValidationError

from shared.config import GCSAuthConfig, get_config
from shared.errors import ErrorResponse, NotFoundError, SignedUrlGenerationError, StorageAuthException
from shared.logging import get_logger, set_request_id
from shared.metrics import MetricsCollector, get_metrics_collector
from .credentials.models import Credentials, LocationConfig, SignedURLOptions
from .credentials.store import get_credentials
from .signing.signer import RequestSigner
from .tokens.minter import TokenMinter
from .tokens.models import AccessToken
from .tokens.registry import TokenRegistry


class AccessTokenResult(BaseModel):
    """Outcome of an access token lookup."""
    ok: bool
    token: Optional[str] = None
    expires_at: Optional[float] = None
    error: Optional[ErrorResponse] = None


class SignedURLResult(BaseModel):
    """Outcome of a signed URL request."""
    ok: bool
    url: Optional[str] = None
    location_key: Optional[str] = None
    error: Optional[ErrorResponse] = None


class GCSAuthService:
    """Token and signed URL provider for the GCS storage backend."""

    def __init__(
        self,
        locations: Optional[Mapping[str, LocationConfig]] = None,
        config: Optional[GCSAuthConfig] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        minter: Optional[TokenMinter] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config or get_config()
        self.locations: Dict[str, LocationConfig] = dict(locations or {})
        self.metrics = metrics or get_metrics_collector()
        self.logger = get_logger("gcs_auth.service")

        self.minter = minter or TokenMinter(self.config, http_client, metrics=self.metrics)
        self.signer = RequestSigner(self.config, metrics=self.metrics)
        self.registry = TokenRegistry(self.minter, self.config, metrics=self.metrics)
        self._started = False

    async def __aenter__(self) -> "GCSAuthService":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def start(self) -> None:
        """Load credentials and start a token cache for every configured location.

        Raises ConfigurationError when any location's credentials are unusable.
        """
        if self._started:
            return
        for location_key, location in self.locations.items():
            self.registry.register(location_key, get_credentials(location, location_key))
        self._started = True
        self.logger.info("GCS auth service started", locations=sorted(self.locations))

    async def close(self) -> None:
        await self.registry.close()
        self._started = False
        self.logger.info("GCS auth service stopped")

    async def get_access_token(self, identity_key: Optional[str]) -> AccessTokenResult:
        """Access token for a registered location key or credential fingerprint."""
        set_request_id()
        try:
            token = await self.registry.get_token(identity_key)
        except StorageAuthException as e:
            self.logger.warning("Access token unavailable", identity_key=identity_key, error_code=e.code)
            return AccessTokenResult(ok=False, error=e.to_response())
        return _token_result(token)

    async def get_access_token_for_credentials(self, credentials: Credentials) -> AccessTokenResult:
        """Access token for ad-hoc credentials, cached under their fingerprint."""
        set_request_id()
        try:
            token = await self.registry.resolve_credentials(credentials).get_token()
        except StorageAuthException as e:
            self.logger.warning("Access token unavailable", identity=credentials.identity, error_code=e.code)
            return AccessTokenResult(ok=False, error=e.to_response())
        return _token_result(token)

    async def authorization_header(self, identity_key: str) -> Dict[str, str]:
        """Authorization header for direct API calls. Raises on failure."""
        token = await self.registry.get_token(identity_key)
        return {"Authorization": token.authorization_header}

    def sign_url(
        self,
        credentials: Union[Credentials, Mapping[str, str]],
        bucket: str,
        object_path: str,
        options: Optional[SignedURLOptions] = None,
        *,
        now: Optional[datetime] = None,
    ) -> SignedURLResult:
        """Pre-signed URL for one object, signed directly with ``credentials``."""
        options = options or SignedURLOptions(expires_in=self.config.signed_url_default_expires)
        try:
            url = self.signer.sign(
                credentials,
                bucket,
                object_path,
                verb=options.verb,
                expires_in=options.expires_in,
                extra_headers=options.headers,
                now=now,
            )
        except StorageAuthException as e:
            self.logger.warning("Signed URL generation failed", bucket=bucket, error_code=e.code)
            return SignedURLResult(ok=False, error=e.to_response())
        return SignedURLResult(ok=True, url=url)

    def sign_url_for_location(
        self,
        location_key: str,
        remote_path: str,
        *,
        now: Optional[datetime] = None,
        **overrides,
    ) -> SignedURLResult:
        """Pre-signed URL for a path within a configured location.

        The location's path prefix is applied and its ``signed_url`` defaults
        are merged with ``overrides`` (verb, expires_in, headers).
        """
        try:
            location = self.locations.get(location_key)
            if location is None:
                raise NotFoundError(location_key)
            credentials = get_credentials(location, location_key)
        except StorageAuthException as e:
            return SignedURLResult(ok=False, location_key=location_key, error=e.to_response())

        try:
            options = SignedURLOptions.model_validate({**location.signed_url.model_dump(), **overrides})
        except ValidationError as e:
            problems = [f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors()]
            error = SignedUrlGenerationError("invalid signed URL options", details={"errors": problems})
            return SignedURLResult(ok=False, location_key=location_key, error=error.to_response())

        result = self.sign_url(credentials, location.bucket, location.object_path(remote_path), options, now=now)
        result.location_key = location_key
        return result


def _token_result(token: AccessToken) -> AccessTokenResult:
    return AccessTokenResult(ok=True, token=token.token, expires_at=token.expires_at)
