"""
Shared error handling for the GCS storage auth layer.

Every exception carries a stable ``code``, a taxonomy ``kind`` and contextual
``details`` so callers can branch on the failure without parsing messages.
"""

from typing import Dict, Any, List, Optional
from pydantic import BaseModel
from opentelemetry import trace


KIND_CONFIGURATION = "configuration"
KIND_TRANSIENT_NETWORK = "transient_network"
KIND_SIGNING = "signing"
KIND_INTERNAL = "internal"


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    kind: str
    message: str
    details: Dict[str, Any] = {}


class StorageAuthException(Exception):
    """Base exception for the storage auth layer."""

    kind: str = KIND_INTERNAL
    retryable: bool = False

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        # Get trace ID from current span
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            kind=self.kind,
            message=self.message,
            details=self.details
        )


# Configuration errors: fail fast, never retried.

class ConfigurationError(StorageAuthException):
    """Missing or invalid configuration or credential material."""

    kind = KIND_CONFIGURATION

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None,
                 code: str = "CONFIGURATION_ERROR"):
        super().__init__(code, message, details)


class FileReadError(ConfigurationError):
    """Credentials file could not be read."""

    def __init__(self, path: str, reason: str):
        super().__init__(
            f"Unable to read credentials file {path}: {reason}",
            details={"path": path, "reason": reason},
            code="FILE_READ_ERROR",
        )
        self.path = path
        self.reason = reason


class JsonDecodeError(ConfigurationError):
    """Credentials content is not a valid JSON object."""

    def __init__(self, reason: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Invalid credentials JSON: {reason}",
            details={"reason": reason, **(details or {})},
            code="JSON_DECODE_ERROR",
        )
        self.reason = reason


class MissingFieldsError(ConfigurationError):
    """One or more required credential fields are absent."""

    def __init__(self, fields: List[str]):
        super().__init__(
            f"Missing required credential fields: {', '.join(fields)}",
            details={"fields": list(fields)},
            code="MISSING_FIELDS",
        )
        self.fields = list(fields)


class MissingCredentialsError(ConfigurationError):
    """A location config names neither a credentials path nor inline credentials."""

    def __init__(self, location_key: Optional[str] = None):
        super().__init__(
            "Location config must set service_account_path or service_account_credentials",
            details={"location_key": location_key},
            code="MISSING_CREDENTIALS",
        )


class LocationKeyMissingError(ConfigurationError):
    """A caller's config carries no location key for the auth lookup."""

    def __init__(self):
        super().__init__(
            "Config must include a location key for auth lookup",
            code="LOCATION_KEY_MISSING",
        )


class NotFoundError(ConfigurationError):
    """No token cache is registered under the given identity key."""

    def __init__(self, identity_key: str):
        super().__init__(
            f"No token cache registered for {identity_key}",
            details={"identity_key": identity_key},
            code="AUTH_SERVER_NOT_FOUND",
        )
        self.identity_key = identity_key


class TokenCacheClosedError(ConfigurationError):
    """The token cache was closed and can no longer serve tokens."""

    def __init__(self, identity_key: str):
        super().__init__(
            f"Token cache for {identity_key} is closed",
            details={"identity_key": identity_key},
            code="TOKEN_CACHE_CLOSED",
        )


# Token exchange errors: retried in the background, surfaced to synchronous callers.

class TokenExchangeError(StorageAuthException):
    """OAuth2 token exchange failed."""

    kind = KIND_TRANSIENT_NETWORK
    retryable = True

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)


class HttpError(TokenExchangeError):
    """Token endpoint answered with a non-200 status."""

    def __init__(self, status: int, body: Any):
        super().__init__(
            "HTTP_ERROR",
            f"Token endpoint returned HTTP {status}",
            details={"status": status, "body": body},
        )
        self.status = status
        self.body = body
        self.retryable = status >= 500 or status == 429


class RequestFailedError(TokenExchangeError):
    """Network-level failure talking to the token endpoint."""

    def __init__(self, reason: str):
        super().__init__(
            "REQUEST_FAILED",
            f"Token request failed: {reason}",
            details={"reason": reason},
        )
        self.reason = reason


class InvalidTokenResponseError(TokenExchangeError):
    """Token endpoint answered 200 without an access_token."""

    retryable = False

    def __init__(self, response: Any):
        super().__init__(
            "INVALID_TOKEN_RESPONSE",
            "Token endpoint response did not contain an access_token",
            details={"response": response},
        )
        self.response = response


# Signing errors: setup defects, never retried.

class SigningError(StorageAuthException):
    """Key material could not be used for signing."""

    kind = KIND_SIGNING

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)


class JwtGenerationError(SigningError):
    """JWT assertion could not be built from the credentials."""

    def __init__(self, reason: str):
        super().__init__(
            "JWT_GENERATION_FAILED",
            f"JWT generation failed: {reason}",
            details={"reason": reason},
        )


class SigningFailedError(SigningError):
    """String-to-sign could not be signed with the private key."""

    def __init__(self, reason: str):
        super().__init__(
            "SIGNING_FAILED",
            f"Signing failed: {reason}",
            details={"reason": reason},
        )


class SignedUrlGenerationError(StorageAuthException):
    """Signed URL could not be produced for a reason other than key material."""

    kind = KIND_SIGNING

    def __init__(self, reason: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "SIGNED_URL_GENERATION_FAILED",
            f"Signed URL generation failed: {reason}",
            details={"reason": reason, **(details or {})},
        )
