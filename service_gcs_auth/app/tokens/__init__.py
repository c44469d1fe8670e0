"""
Access token package.

Contains the OAuth2 JWT-bearer minter, the per-identity token cache and the
registry that owns one cache per location or credential fingerprint.

Key points:
- One in-flight mint per identity; concurrent callers share its result.
- Tokens are refreshed ahead of expiry on a timer, and again after a backoff
  when a refresh fails.
- A failed refresh never discards a token that has not expired yet.
"""

from .cache import TokenCache, TokenCacheState
from .minter import TokenMinter
from .models import AccessToken
from .registry import TokenRegistry, fingerprint

__all__ = [
    "AccessToken",
    "TokenCache",
    "TokenCacheState",
    "TokenMinter",
    "TokenRegistry",
    "fingerprint",
]
