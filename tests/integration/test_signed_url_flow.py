"""
Integration tests for signed URL generation from configured locations.
"""

import json
from datetime import datetime, timezone
from urllib.parse import parse_qs, unquote, urlsplit

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from prometheus_client import CollectorRegistry

import gcs_auth_cli
from service_gcs_auth.app.credentials import LocationConfig
from service_gcs_auth.app.main import GCSAuthService
from service_gcs_auth.app.signing.signer import build_canonical_request, build_string_to_sign
from shared.config import get_config
from shared.metrics import MetricsCollector
from shared.test_helpers import TestDataFactory, public_key_for


NOW = datetime(2024, 3, 15, 8, 30, 0, tzinfo=timezone.utc)


def _verify(url: str, verb: str, headers: dict, public_key) -> None:
    """Rebuild the string-to-sign from a signed URL and check its signature."""
    parts = urlsplit(url)
    bucket, _, encoded_object = parts.path.lstrip("/").partition("/")
    query = {key: values[0] for key, values in parse_qs(parts.query).items()}
    signature = bytes.fromhex(query.pop("X-Goog-Signature"))

    timestamp = query["X-Goog-Date"]
    scope = query["X-Goog-Credential"].split("/", 1)[1]
    canonical_request = build_canonical_request(verb, bucket, unquote(encoded_object), query, headers)
    string_to_sign = build_string_to_sign(timestamp, scope, canonical_request)

    public_key.verify(signature, string_to_sign.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())


class TestSignedUrlFlow:
    """Integration tests for location-based signing."""

    @pytest.fixture
    def account(self):
        return TestDataFactory.create_service_account("media@example.iam.gserviceaccount.com")

    @pytest.fixture
    def service(self, account, tmp_path):
        path = TestDataFactory.write_credentials_file(tmp_path, account)
        locations = {
            "uploads": LocationConfig(
                bucket="upload-bucket",
                path="users/42",
                service_account_path=str(path),
                signed_url={"verb": "PUT", "expires_in": 900, "headers": {"Content-Type": "image/png"}},
            ),
            "public": LocationConfig(bucket="public-bucket", service_account_credentials=account.to_json()),
        }
        metrics = MetricsCollector(registry=CollectorRegistry())
        return GCSAuthService(locations, get_config(), metrics=metrics)

    def test_upload_url_verifies(self, service, account):
        result = service.sign_url_for_location("uploads", "avatar 1.png", now=NOW)

        assert result.ok is True
        parts = urlsplit(result.url)
        assert parts.netloc == "storage.googleapis.com"
        assert parts.path == "/upload-bucket/users%2F42%2Favatar%201.png"

        query = parse_qs(parts.query)
        assert query["X-Goog-Credential"] == [
            "media@example.iam.gserviceaccount.com/20240315/auto/storage/goog4_request"
        ]
        assert query["X-Goog-Date"] == ["20240315T083000Z"]
        assert query["X-Goog-Expires"] == ["900"]
        assert query["X-Goog-SignedHeaders"] == ["content-type;host"]

        _verify(
            result.url,
            "PUT",
            {"host": "storage.googleapis.com", "content-type": "image/png"},
            public_key_for(account.private_key),
        )

    def test_download_url_verifies(self, service, account):
        result = service.sign_url_for_location("public", "reports/2024/q1.pdf", now=NOW)

        assert result.ok is True
        _verify(result.url, "GET", {"host": "storage.googleapis.com"}, public_key_for(account.private_key))

    def test_signing_needs_no_token(self, service):
        result = service.sign_url_for_location("public", "a.txt", now=NOW)

        assert result.ok is True
        assert service.registry.keys() == []


class TestGcsAuthCli:
    """Tests for the command-line helper."""

    @pytest.fixture
    def credentials_path(self, tmp_path):
        account = TestDataFactory.create_service_account("cli@example.iam.gserviceaccount.com")
        return str(TestDataFactory.write_credentials_file(tmp_path, account))

    def test_sign(self, credentials_path, capsys):
        exit_code = gcs_auth_cli.main([
            "--credentials", credentials_path,
            "sign",
            "--bucket", "my-bucket",
            "--object", "a/b.jpg",
            "--verb", "put",
            "--expires-in", "60",
            "--header", "Content-Type=image/jpeg",
        ])

        assert exit_code == 0
        output = json.loads(capsys.readouterr().out)
        assert output["ok"] is True
        assert output["url"].startswith("https://storage.googleapis.com/my-bucket/a%2Fb.jpg?")
        assert "X-Goog-Expires=60" in output["url"]
        assert "X-Goog-SignedHeaders=content-type%3Bhost" in output["url"]

    def test_sign_with_unreadable_credentials(self, tmp_path, capsys):
        exit_code = gcs_auth_cli.main([
            "--credentials", str(tmp_path / "missing.json"),
            "sign",
            "--bucket", "my-bucket",
            "--object", "a.jpg",
        ])

        assert exit_code == 1
        assert "FILE_READ_ERROR" in capsys.readouterr().err

    def test_bad_header(self, credentials_path):
        with pytest.raises(SystemExit) as exc_info:
            gcs_auth_cli.main([
                "--credentials", credentials_path,
                "sign",
                "--bucket", "my-bucket",
                "--object", "a.jpg",
                "--header", "no-separator",
            ])

        assert exc_info.value.code == 2
