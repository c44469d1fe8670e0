"""
Service-account credential package.

Credentials are read once, validated for the required fields, and then passed
by value to the token minter and the request signer. The private key is only
parsed when something signs with it.
"""

from .models import Credentials, LocationConfig, SignedURLOptions
from .store import get_credentials, load_credentials, parse_credentials, validate_credentials

__all__ = [
    "Credentials",
    "LocationConfig",
    "SignedURLOptions",
    "get_credentials",
    "load_credentials",
    "parse_credentials",
    "validate_credentials",
]
