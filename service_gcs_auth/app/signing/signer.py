"""
GOOG4-RSA-SHA256 (V4) signed URL generation for Google Cloud Storage.

The canonical request, the string-to-sign and the final URL are all built
from the same ``percent_encode`` function; any divergence between the bytes
that are signed and the bytes that are sent makes the signature invalid.
"""

import hashlib
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional, Tuple, Union
from urllib.parse import quote, urlparse

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding

from shared.config import GCSAuthConfig
from shared.errors import (
    SignedUrlGenerationError,
    SigningFailedError,
    StorageAuthException,
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from shared.tracing import traced_operation
from ..credentials.models import Credentials
from ..credentials.store import validate_credentials


ALGORITHM = "GOOG4-RSA-SHA256"
SCOPE_SUFFIX = "auto/storage/goog4_request"
EMPTY_PAYLOAD_HASH = hashlib.sha256(b"").hexdigest()


def percent_encode(value: str) -> str:
    """RFC 3986 encoding: everything except ``A-Z a-z 0-9 - _ . ~`` is escaped, ``/`` included."""
    return quote(value, safe="")


def format_timestamp(moment: datetime) -> str:
    """Compact ISO-8601 basic UTC timestamp, e.g. ``20240101T120000Z``."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def canonical_query_string(params: Mapping[str, str]) -> str:
    return "&".join(
        f"{percent_encode(key)}={percent_encode(value)}"
        for key, value in sorted(params.items())
    )


def canonical_headers(headers: Mapping[str, str]) -> Tuple[str, str]:
    """Return the canonical headers block and the signed-headers list."""
    normalized: Dict[str, str] = {}
    for name, value in headers.items():
        normalized[name.strip().lower()] = str(value).strip()

    block = "".join(f"{name}:{normalized[name]}\n" for name in sorted(normalized))
    signed = ";".join(sorted(normalized))
    return block, signed


def canonical_uri(bucket: str, object_path: str) -> str:
    return f"/{percent_encode(bucket)}/{percent_encode(object_path)}"


def build_canonical_request(
    verb: str,
    bucket: str,
    object_path: str,
    query_params: Mapping[str, str],
    headers: Mapping[str, str],
) -> str:
    headers_block, signed_headers = canonical_headers(headers)
    return "\n".join([
        verb,
        canonical_uri(bucket, object_path),
        canonical_query_string(query_params),
        headers_block,
        signed_headers,
        EMPTY_PAYLOAD_HASH,
    ])


def build_string_to_sign(request_timestamp: str, credential_scope: str, canonical_request: str) -> str:
    canonical_hash = hashlib.sha256(canonical_request.encode("utf-8")).hexdigest()
    return "\n".join([ALGORITHM, request_timestamp, credential_scope, canonical_hash])


def sign_string(string_to_sign: str, credentials: Credentials) -> str:
    """RSA-SHA256 sign ``string_to_sign``; lower-case hex signature."""
    try:
        key = credentials.signing_key()
        signature = key.sign(string_to_sign.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise SigningFailedError(str(e)) from e
    return signature.hex()


class RequestSigner:
    """Produces V4 pre-signed URLs from service-account credentials."""

    def __init__(self, config: GCSAuthConfig, *, metrics: Optional[MetricsCollector] = None):
        self.config = config
        self.metrics = metrics or get_metrics_collector()
        self.logger = get_logger("gcs_auth.signer")
        self.host = urlparse(config.storage_host).netloc

    def sign(
        self,
        credentials: Union[Credentials, Mapping[str, str]],
        bucket: str,
        object_path: str,
        verb: str = "GET",
        expires_in: Optional[int] = None,
        extra_headers: Optional[Mapping[str, str]] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Return a signed URL granting ``verb`` on ``bucket/object_path``.

        Raises SigningFailedError for unusable key material and
        SignedUrlGenerationError for anything else.
        """
        verb = (verb or "").strip().upper()
        if expires_in is None:
            expires_in = self.config.signed_url_default_expires

        with traced_operation("gcs_auth.sign_url", {"gcs.bucket": bucket, "gcs.verb": verb}):
            try:
                url = self._sign(credentials, bucket, object_path, verb, expires_in, extra_headers, now)
            except SigningFailedError as e:
                self.metrics.increment_counter("signed_urls_total", verb=verb, outcome="signing_failed")
                self.logger.error("Signing failed", bucket=bucket, error=e.message)
                raise
            except StorageAuthException as e:
                self.metrics.increment_counter("signed_urls_total", verb=verb, outcome="error")
                raise SignedUrlGenerationError(e.message, details=e.details) from e
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                self.metrics.increment_counter("signed_urls_total", verb=verb, outcome="error")
                raise SignedUrlGenerationError(str(e)) from e

        self.metrics.increment_counter("signed_urls_total", verb=verb, outcome="success")
        return url

    def _sign(
        self,
        credentials: Union[Credentials, Mapping[str, str]],
        bucket: str,
        object_path: str,
        verb: str,
        expires_in: int,
        extra_headers: Optional[Mapping[str, str]],
        now: Optional[datetime],
    ) -> str:
        if not isinstance(credentials, Credentials):
            credentials = validate_credentials(credentials)
        self._validate_request(bucket, object_path, verb, expires_in)

        request_timestamp = format_timestamp(now or datetime.now(timezone.utc))
        date_stamp = request_timestamp[:8]
        credential_scope = f"{date_stamp}/{SCOPE_SUFFIX}"
        credential = f"{credentials.identity}/{credential_scope}"

        headers = {"host": self.host}
        for name, value in (extra_headers or {}).items():
            headers[name.strip().lower()] = value
        _, signed_headers = canonical_headers(headers)

        query_params = {
            "X-Goog-Algorithm": ALGORITHM,
            "X-Goog-Credential": credential,
            "X-Goog-Date": request_timestamp,
            "X-Goog-Expires": str(expires_in),
            "X-Goog-SignedHeaders": signed_headers,
        }

        canonical_request = build_canonical_request(verb, bucket, object_path, query_params, headers)
        string_to_sign = build_string_to_sign(request_timestamp, credential_scope, canonical_request)
        signature = sign_string(string_to_sign, credentials)

        return (
            f"{self.config.storage_host.rstrip('/')}{canonical_uri(bucket, object_path)}"
            f"?{canonical_query_string(query_params)}&X-Goog-Signature={signature}"
        )

    def _validate_request(self, bucket: str, object_path: str, verb: str, expires_in: int) -> None:
        if not bucket:
            raise ValueError("bucket is required")
        if not object_path:
            raise ValueError("object_path is required")
        if not verb.isalpha():
            raise ValueError(f"invalid HTTP verb {verb!r}")
        if isinstance(expires_in, bool) or not isinstance(expires_in, int):
            raise TypeError("expires_in must be an integer number of seconds")
        if not 1 <= expires_in <= self.config.signed_url_max_expires:
            raise ValueError(
                f"expires_in must be between 1 and {self.config.signed_url_max_expires} seconds"
            )
