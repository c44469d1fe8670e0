"""
Tests for the GCS auth service facade.
"""

import time
from datetime import datetime, timezone
from unittest.mock import AsyncMock
from urllib.parse import parse_qs, urlsplit

import pytest
from prometheus_client import CollectorRegistry

from service_gcs_auth.app.credentials import LocationConfig, SignedURLOptions
from service_gcs_auth.app.main import GCSAuthService
from service_gcs_auth.app.tokens import AccessToken
from shared.config import get_config
from shared.errors import MissingCredentialsError, NotFoundError, RequestFailedError
from shared.metrics import MetricsCollector
from shared.test_helpers import StubMinter, TestDataFactory


NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestGCSAuthService:
    """Tests for token and signed URL results."""

    @pytest.fixture
    def account(self):
        return TestDataFactory.create_service_account("svc@example.com")

    @pytest.fixture
    def locations(self, account):
        return {
            "uploads": LocationConfig(
                bucket="uploads-bucket",
                path="incoming",
                service_account_credentials=account.to_json(),
                signed_url={"verb": "PUT", "expires_in": 600},
            ),
            "media": LocationConfig(bucket="media-bucket", service_account_credentials=account.to_json()),
        }

    @pytest.fixture
    def minter(self):
        return StubMinter()

    @pytest.fixture
    def service(self, locations, minter):
        metrics = MetricsCollector(registry=CollectorRegistry())
        return GCSAuthService(locations, get_config(), minter=minter, metrics=metrics)

    @pytest.mark.asyncio
    async def test_get_access_token(self, service, minter):
        async with service:
            result = await service.get_access_token("uploads")
            again = await service.get_access_token("uploads")

        assert result.ok is True
        assert result.token == "ya29.stub-1"
        assert result.expires_at is not None
        assert result.error is None
        assert again.token == result.token
        assert minter.calls == 1

    @pytest.mark.asyncio
    async def test_unknown_identity_key(self, service):
        async with service:
            result = await service.get_access_token("nowhere")

        assert result.ok is False
        assert result.token is None
        assert result.error.code == "AUTH_SERVER_NOT_FOUND"
        assert result.error.kind == "configuration"
        assert result.error.details == {"identity_key": "nowhere"}

    @pytest.mark.asyncio
    async def test_missing_identity_key(self, service):
        async with service:
            result = await service.get_access_token(None)

        assert result.ok is False
        assert result.error.code == "LOCATION_KEY_MISSING"

    @pytest.mark.asyncio
    async def test_token_failure_is_reported(self, service, minter):
        minter.outcomes.append(RequestFailedError("connection reset"))

        async with service:
            result = await service.get_access_token("media")

        assert result.ok is False
        assert result.error.code == "REQUEST_FAILED"
        assert result.error.kind == "transient_network"
        assert "connection reset" in result.error.message

    @pytest.mark.asyncio
    async def test_authorization_header(self, service):
        async with service:
            header = await service.authorization_header("media")

            with pytest.raises(NotFoundError):
                await service.authorization_header("nowhere")

        assert header == {"Authorization": "Bearer ya29.stub-1"}

    @pytest.mark.asyncio
    async def test_access_token_for_adhoc_credentials(self, service, minter, account):
        async with service:
            first = await service.get_access_token_for_credentials(account.credentials())
            second = await service.get_access_token_for_credentials(account.credentials())

        assert first.ok and second.ok
        assert first.token == second.token
        assert minter.calls == 1

    @pytest.mark.asyncio
    async def test_close_stops_every_cache(self, service):
        async with service:
            await service.get_access_token("uploads")
            caches = [service.registry.resolve(key) for key in service.registry.keys()]

        assert all(cache.closed for cache in caches)

    def test_start_fails_fast_on_bad_location(self, minter):
        locations = {"broken": LocationConfig(bucket="bucket")}
        service = GCSAuthService(
            locations, get_config(), minter=minter, metrics=MetricsCollector(registry=CollectorRegistry())
        )

        with pytest.raises(MissingCredentialsError):
            service.start()

    def test_sign_url(self, service, account):
        result = service.sign_url(
            account.credentials(),
            "my-bucket",
            "a/b c.jpg",
            SignedURLOptions(verb="put", expires_in=120),
            now=NOW,
        )

        assert result.ok is True
        assert result.url.startswith("https://storage.googleapis.com/my-bucket/a%2Fb%20c.jpg?")
        assert "X-Goog-Expires=120" in result.url
        assert result.error is None

    def test_sign_url_defaults(self, service, account):
        result = service.sign_url(account.credentials(), "my-bucket", "a.jpg", now=NOW)

        assert result.ok is True
        assert "X-Goog-Expires=3600" in result.url

    def test_sign_url_failure(self, service):
        account = TestDataFactory.create_invalid_service_account()

        result = service.sign_url(account.credentials(), "my-bucket", "a.jpg", now=NOW)

        assert result.ok is False
        assert result.url is None
        assert result.error.code == "SIGNING_FAILED"
        assert result.error.kind == "signing"

    def test_sign_url_for_location_applies_prefix_and_defaults(self, service):
        result = service.sign_url_for_location("uploads", "2024/photo.jpg", now=NOW)

        assert result.ok is True
        assert result.location_key == "uploads"
        url = urlsplit(result.url)
        assert url.path == "/uploads-bucket/incoming%2F2024%2Fphoto.jpg"
        assert parse_qs(url.query)["X-Goog-Expires"] == ["600"]

    def test_sign_url_for_location_overrides(self, service):
        result = service.sign_url_for_location("media", "clip.mp4", verb="GET", expires_in=30, now=NOW)

        assert result.ok is True
        assert urlsplit(result.url).path == "/media-bucket/clip.mp4"
        assert "X-Goog-Expires=30" in result.url

    def test_sign_url_for_location_rejects_unknown_override(self, service):
        result = service.sign_url_for_location("uploads", "a.jpg", expires=60, now=NOW)

        assert result.ok is False
        assert result.url is None
        assert result.location_key == "uploads"
        assert result.error.code == "SIGNED_URL_GENERATION_FAILED"
        assert result.error.kind == "signing"
        assert any(problem.startswith("expires:") for problem in result.error.details["errors"])

    def test_sign_url_for_location_rejects_invalid_override(self, service):
        result = service.sign_url_for_location("media", "a.jpg", expires_in=0, now=NOW)

        assert result.ok is False
        assert result.error.code == "SIGNED_URL_GENERATION_FAILED"

    def test_sign_url_for_unknown_location(self, service):
        result = service.sign_url_for_location("nowhere", "a.jpg", now=NOW)

        assert result.ok is False
        assert result.location_key == "nowhere"
        assert result.error.code == "AUTH_SERVER_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_token_from_injected_minter(self, locations):
        now = time.time()
        minter = AsyncMock()
        minter.mint.return_value = AccessToken(token="ya29.injected", issued_at=now, expires_at=now + 3600)
        service = GCSAuthService(
            locations, get_config(), minter=minter, metrics=MetricsCollector(registry=CollectorRegistry())
        )

        async with service:
            result = await service.get_access_token("media")

        assert result.token == "ya29.injected"
        assert result.expires_at == now + 3600
        minter.mint.assert_awaited_once()
        assert minter.mint.await_args.args[0].identity == "svc@example.com"
