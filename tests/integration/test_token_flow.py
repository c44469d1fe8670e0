"""
Integration tests for the token flow against the mock OAuth2 server.
"""

import asyncio

import httpx
import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry

from mocks.google_oauth.server import MockGoogleOAuthServer
from service_gcs_auth.app.credentials import LocationConfig
from service_gcs_auth.app.main import GCSAuthService
from shared.config import get_config
from shared.metrics import MetricsCollector
from shared.test_helpers import TestDataFactory, generate_private_key_pem, public_key_for


class TestTokenFlow:
    """Integration tests for the complete assertion + exchange + cache flow."""

    @pytest.fixture
    def oauth_server(self):
        return MockGoogleOAuthServer()

    @pytest.fixture
    def account(self, oauth_server):
        account = TestDataFactory.create_service_account("uploader@example.iam.gserviceaccount.com")
        oauth_server.register_public_key(account.client_email, public_key_for(account.private_key))
        return account

    @pytest.fixture
    def locations(self, account, tmp_path):
        path = TestDataFactory.write_credentials_file(tmp_path, account)
        return {"uploads": LocationConfig(bucket="uploads-bucket", service_account_path=str(path))}

    @pytest_asyncio.fixture
    async def http_client(self, oauth_server):
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=oauth_server.app)) as client:
            yield client

    @pytest.fixture
    def service(self, locations, oauth_server, http_client):
        config = get_config(token_uri=oauth_server.token_uri)
        metrics = MetricsCollector(registry=CollectorRegistry())
        return GCSAuthService(locations, config, http_client=http_client, metrics=metrics)

    @pytest.mark.asyncio
    async def test_complete_token_flow(self, service, oauth_server):
        async with service:
            result = await service.get_access_token("uploads")
            header = await service.authorization_header("uploads")

        assert result.ok is True
        assert result.token in oauth_server.issued
        assert header == {"Authorization": f"Bearer {result.token}"}
        assert oauth_server.call_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_exchange(self, service, oauth_server):
        async with service:
            results = await asyncio.gather(*(service.get_access_token("uploads") for _ in range(20)))

        assert all(result.ok for result in results)
        assert len({result.token for result in results}) == 1
        assert oauth_server.call_count == 1

    @pytest.mark.asyncio
    async def test_server_error_then_recovery(self, service, oauth_server):
        oauth_server.fail_next(503)

        async with service:
            failed = await service.get_access_token("uploads")
            recovered = await service.get_access_token("uploads")

        assert failed.ok is False
        assert failed.error.code == "HTTP_ERROR"
        assert failed.error.details["status"] == 503
        assert failed.error.details["body"]["error"] == "backend_error"
        assert recovered.ok is True
        assert oauth_server.call_count == 2

    @pytest.mark.asyncio
    async def test_response_without_access_token(self, service, oauth_server):
        oauth_server.omit_access_token = True

        async with service:
            result = await service.get_access_token("uploads")

        assert result.ok is False
        assert result.error.code == "INVALID_TOKEN_RESPONSE"

    @pytest.mark.asyncio
    async def test_assertion_signed_with_wrong_key_is_rejected(self, service, oauth_server, account):
        oauth_server.register_public_key(account.client_email, public_key_for(generate_private_key_pem(1)))

        async with service:
            result = await service.get_access_token("uploads")

        assert result.ok is False
        assert result.error.code == "HTTP_ERROR"
        assert result.error.details["status"] == 400

    @pytest.mark.asyncio
    async def test_expires_in_drives_token_expiry(self, service, oauth_server):
        oauth_server.expires_in = 1200

        async with service:
            result = await service.get_access_token("uploads")
            cache = service.registry.resolve("uploads")
            token = cache.token

        assert result.ok is True
        assert token.expires_at - token.issued_at == 1200
