"""
Registry of token caches keyed by location key or credential fingerprint.
"""

import asyncio
import hashlib
import time
from typing import Callable, Dict, List, Mapping, Optional

from shared.config import GCSAuthConfig
from shared.errors import ConfigurationError, LocationKeyMissingError, NotFoundError
from shared.logging import get_logger, set_location_context
from shared.metrics import MetricsCollector, get_metrics_collector
from ..credentials.models import Credentials, LocationConfig
from ..credentials.store import get_credentials
from .cache import TokenCache
from .minter import TokenMinter
from .models import AccessToken


def fingerprint(credentials: Credentials) -> str:
    """Stable cache key for a set of credentials.

    Derived from the identity and a hash of the private key, so identical
    credentials share one cache and different keys never collide.
    """
    key_hash = hashlib.sha256(credentials.private_key.encode("utf-8")).hexdigest().upper()
    material = f"{credentials.identity}:{key_hash}"
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest().upper()
    return f"GCS_{digest[:16]}"


class TokenRegistry:
    """Owns one TokenCache per identity key.

    Credentials are retained per key so that a cache which has been closed
    can be started again on the next lookup.
    """

    def __init__(
        self,
        minter: TokenMinter,
        config: GCSAuthConfig,
        *,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.minter = minter
        self.config = config
        self.metrics = metrics or get_metrics_collector()
        self.clock = clock
        self.logger = get_logger("gcs_auth.registry")

        self._caches: Dict[str, TokenCache] = {}
        self._credentials: Dict[str, Credentials] = {}

    @classmethod
    def from_locations(
        cls,
        locations: Mapping[str, LocationConfig],
        minter: TokenMinter,
        config: GCSAuthConfig,
        **kwargs,
    ) -> "TokenRegistry":
        """Start one cache per location, loading every location's credentials up front."""
        registry = cls(minter, config, **kwargs)
        for location_key, location in locations.items():
            registry.register(location_key, get_credentials(location, location_key))
        return registry

    fingerprint = staticmethod(fingerprint)

    def keys(self) -> List[str]:
        return list(self._credentials)

    def register(self, identity_key: str, credentials: Credentials) -> TokenCache:
        """Retain credentials under ``identity_key`` and start its cache."""
        if not identity_key:
            raise LocationKeyMissingError()

        known = self._credentials.get(identity_key)
        if known is not None and known != credentials:
            raise ConfigurationError(
                f"Identity key {identity_key} is already registered with different credentials",
                details={"identity_key": identity_key},
                code="IDENTITY_KEY_CONFLICT",
            )

        cache = self._caches.get(identity_key)
        if cache is not None and not cache.closed:
            return cache

        self._credentials[identity_key] = credentials
        return self._start(identity_key)

    def resolve(self, identity_key: str, credentials: Optional[Credentials] = None) -> TokenCache:
        """Return the running cache for ``identity_key``.

        A known key whose cache has closed is restarted from its retained
        credentials. An unknown key is registered when ``credentials`` are
        given and is otherwise a NotFoundError.
        """
        if not identity_key:
            raise LocationKeyMissingError()

        cache = self._caches.get(identity_key)
        if cache is not None and not cache.closed:
            return cache

        if identity_key in self._credentials:
            self.logger.warning("Restarting closed token cache", identity_key=identity_key)
            return self._start(identity_key)

        if credentials is not None:
            return self.register(identity_key, credentials)

        raise NotFoundError(identity_key)

    def resolve_credentials(self, credentials: Credentials) -> TokenCache:
        """Return the cache shared by every caller holding these credentials."""
        return self.resolve(fingerprint(credentials), credentials)

    async def get_token(self, identity_key: Optional[str]) -> AccessToken:
        """Fetch a token through the cache registered for ``identity_key``."""
        if not identity_key:
            raise LocationKeyMissingError()
        set_location_context(identity_key)
        return await self.resolve(identity_key).get_token()

    async def close(self) -> None:
        """Close every cache. Retained credentials are dropped as well."""
        caches = list(self._caches.values())
        self._caches.clear()
        self._credentials.clear()
        await asyncio.gather(*(cache.close() for cache in caches))

    def _start(self, identity_key: str) -> TokenCache:
        cache = TokenCache(
            identity_key,
            self._credentials[identity_key],
            self.minter,
            self.config,
            metrics=self.metrics,
            clock=self.clock,
        )
        self._caches[identity_key] = cache
        self.logger.info("Token cache started", identity_key=identity_key)
        return cache
