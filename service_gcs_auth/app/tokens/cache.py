"""
Per-identity access token cache with single-flight, proactive refresh.
"""

import asyncio
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

from shared.config import GCSAuthConfig
from shared.errors import StorageAuthException, TokenCacheClosedError
from shared.logging import get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from shared.retry import RetryConfig, calculate_delay
from ..credentials.models import Credentials
from .minter import TokenMinter
from .models import AccessToken


class TokenCacheState(str, Enum):
    """Token cache lifecycle states."""
    UNINITIALIZED = "uninitialized"
    VALID = "valid"
    REFRESHING = "refreshing"
    FAILED = "failed"
    CLOSED = "closed"


class TokenCache:
    """Holds the current access token for one service-account identity.

    All methods must be called from the event loop the cache is used on.
    Concurrent callers that find the token missing or stale share a single
    in-flight mint and all receive its outcome, so at most one token request
    per identity is on the wire at any time.

    After every successful mint a timer is armed to refresh the token
    ``refresh_margin_seconds`` before it expires, or at half its lifetime
    when the token lives less than twice the margin. A failed refresh keeps the
    previous token (while it has not hard-expired) and re-arms the timer with
    the configured backoff.
    """

    def __init__(
        self,
        identity_key: str,
        credentials: Credentials,
        minter: TokenMinter,
        config: GCSAuthConfig,
        *,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.identity_key = identity_key
        self.credentials = credentials
        self.minter = minter
        self.config = config
        self.metrics = metrics or get_metrics_collector()
        self.clock = clock
        self.logger = get_logger("gcs_auth.token_cache").bind(
            identity_key=identity_key,
            identity=credentials.identity,
        )
        self.retry_config = RetryConfig(
            base_delay=config.refresh_retry_seconds,
            max_delay=config.refresh_retry_max_seconds,
            exponential_base=config.refresh_retry_exponential_base,
            jitter=config.refresh_retry_jitter,
            backoff_strategy=config.refresh_retry_strategy,
        )

        self.last_error: Optional[StorageAuthException] = None
        self._state = TokenCacheState.UNINITIALIZED
        self._token: Optional[AccessToken] = None
        self._inflight: Optional[asyncio.Future] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._background: Optional[asyncio.Task] = None
        self._retry_attempt = 0

        self.metrics.adjust_gauge("token_caches_active", 1)

    @property
    def state(self) -> TokenCacheState:
        return self._state

    @property
    def token(self) -> Optional[AccessToken]:
        return self._token

    @property
    def closed(self) -> bool:
        return self._state is TokenCacheState.CLOSED

    @property
    def refresh_scheduled(self) -> bool:
        return self._timer is not None

    async def get_token(self) -> AccessToken:
        """Return a fresh token, minting one if missing or within the refresh margin.

        Raises the mint error only when no unexpired token is available.
        """
        self._ensure_open()
        token = self._token
        if token is not None and not token.is_stale(self.clock(), self._refresh_margin(token)):
            return token

        try:
            return await self._refresh_once("demand")
        except StorageAuthException as e:
            token = self._token
            if token is not None and not token.is_expired(self.clock()):
                self.logger.warning(
                    "Token refresh failed, serving cached token",
                    error_code=e.code,
                    expires_at=token.expires_at,
                )
                return token
            raise

    async def refresh(self) -> AccessToken:
        """Force a refresh now. Raises the mint error on failure."""
        self._ensure_open()
        return await self._refresh_once("forced")

    async def close(self) -> None:
        """Stop scheduled refreshes. An in-flight mint is left to finish."""
        if self.closed:
            return

        self._state = TokenCacheState.CLOSED
        self._cancel_timer()
        background = self._background
        self._background = None
        if background is not None and not background.done():
            background.cancel()
            await asyncio.gather(background, return_exceptions=True)

        self.metrics.adjust_gauge("token_caches_active", -1)
        self.logger.info("Token cache closed")

    def status(self) -> Dict[str, Any]:
        """Snapshot of the cache state for diagnostics."""
        return {
            "identity_key": self.identity_key,
            "identity": self.credentials.identity,
            "state": self._state.value,
            "expires_at": self._token.expires_at if self._token else None,
            "refresh_scheduled": self.refresh_scheduled,
            "last_error": self.last_error.code if self.last_error else None,
        }

    def _ensure_open(self) -> None:
        if self.closed:
            raise TokenCacheClosedError(self.identity_key)

    def _refresh_margin(self, token: AccessToken) -> float:
        # Tokens shorter-lived than twice the margin refresh at half-life
        return min(self.config.refresh_margin_seconds, token.lifetime / 2)

    async def _refresh_once(self, trigger: str) -> AccessToken:
        """Join the in-flight mint, starting one if none is running."""
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._fetch_new_token(trigger))
            # Outcome may go unobserved when every waiter was cancelled
            self._inflight.add_done_callback(_consume_exception)
        return await asyncio.shield(self._inflight)

    async def _fetch_new_token(self, trigger: str) -> AccessToken:
        if not self.closed:
            self._state = TokenCacheState.REFRESHING
        try:
            token = await self.minter.mint(self.credentials)
        except Exception as e:
            self._on_refresh_failed(e, trigger)
            raise
        finally:
            self._inflight = None

        self._token = token
        self.last_error = None
        self._retry_attempt = 0
        self.metrics.increment_counter("token_refresh_total", trigger=trigger, outcome="success")
        if self.closed:
            return token

        self._state = TokenCacheState.VALID
        floor = min(token.lifetime / 2, self.config.refresh_retry_seconds)
        refresh_in = max(floor, token.expires_at - self._refresh_margin(token) - self.clock())
        self._schedule_refresh(refresh_in)
        self.logger.debug("Token refreshed", trigger=trigger, expires_at=token.expires_at, refresh_in=refresh_in)
        return token

    def _on_refresh_failed(self, error: Exception, trigger: str) -> None:
        self.metrics.increment_counter("token_refresh_total", trigger=trigger, outcome="failure")
        if isinstance(error, StorageAuthException):
            self.last_error = error
        if self.closed:
            return

        self._state = TokenCacheState.FAILED
        retry_in = None
        # A caller that never had a token sees the error directly; nothing to keep fresh.
        if trigger == "timer" or self._token is not None:
            self._retry_attempt += 1
            retry_in = calculate_delay(self._retry_attempt, self.retry_config)
            self._schedule_refresh(retry_in)

        self.logger.error(
            "Failed to refresh token",
            trigger=trigger,
            error=str(error),
            error_code=getattr(error, "code", type(error).__name__),
            retry_in=retry_in,
            attempt=self._retry_attempt,
        )

    def _schedule_refresh(self, delay: float) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self._on_refresh_timer)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_refresh_timer(self) -> None:
        self._timer = None
        if self.closed:
            return
        self._background = asyncio.ensure_future(self._background_refresh())

    async def _background_refresh(self) -> None:
        try:
            await self._refresh_once("timer")
        except Exception:
            # Logged and rescheduled by _on_refresh_failed
            pass


def _consume_exception(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()
