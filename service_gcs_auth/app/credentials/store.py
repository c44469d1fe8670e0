"""
Loading and validation of service-account credentials.

All functions here are pure over their inputs apart from the single file read
in ``load_credentials`` and are safe to call concurrently.
"""

import json
from typing import Any, Mapping, Optional

from shared.errors import (
    FileReadError,
    JsonDecodeError,
    MissingCredentialsError,
)
from shared.logging import get_logger
from .models import Credentials, LocationConfig


logger = get_logger("gcs_auth.credentials")

# Credentials attribute -> key in the service-account JSON document
REQUIRED_FIELDS = {
    "identity": "client_email",
    "private_key": "private_key",
}


def load_credentials(path: str) -> Credentials:
    """Load and validate credentials from a service-account JSON file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except (OSError, UnicodeDecodeError) as e:
        reason = e.strerror if isinstance(e, OSError) and e.strerror else str(e)
        logger.warning("Failed to read credentials file", path=path, error=reason)
        raise FileReadError(path, reason) from e

    return parse_credentials(text)


def parse_credentials(text: str) -> Credentials:
    """Parse and validate credentials from a JSON string."""
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise JsonDecodeError(e.msg, details={"line": e.lineno, "column": e.colno}) from e

    if not isinstance(document, dict):
        raise JsonDecodeError(f"expected a JSON object, got {type(document).__name__}")

    return validate_credentials(document)


def validate_credentials(document: Mapping[str, Any]) -> Credentials:
    """Build Credentials, reporting every missing or empty required field at once."""
    return Credentials(
        identity=document.get(REQUIRED_FIELDS["identity"]),
        private_key=document.get(REQUIRED_FIELDS["private_key"]),
        project_id=document.get("project_id"),
    )


def get_credentials(location: LocationConfig, location_key: Optional[str] = None) -> Credentials:
    """Resolve credentials for a location, preferring a file path over inline JSON."""
    if location.service_account_path:
        return load_credentials(location.service_account_path)

    if location.service_account_credentials:
        return parse_credentials(location.service_account_credentials)

    raise MissingCredentialsError(location_key)
