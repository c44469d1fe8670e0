"""
Backoff policy for retrying failed background operations.
"""

import random

from shared.logging import get_logger


logger = get_logger("gcs_auth.retry")


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 base_delay: float = 30.0,
                 max_delay: float = 300.0,
                 exponential_base: float = 2.0,
                 jitter: bool = False,
                 backoff_strategy: str = "fixed"):
        if backoff_strategy not in ("exponential", "linear", "fixed"):
            logger.warning("Unknown backoff strategy, using fixed", strategy=backoff_strategy)
            backoff_strategy = "fixed"
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.backoff_strategy = backoff_strategy


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay before retry number ``attempt`` (1-based)."""
    if config.backoff_strategy == "exponential":
        delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    elif config.backoff_strategy == "linear":
        delay = config.base_delay * attempt
    else:
        delay = config.base_delay

    # Apply max delay cap
    delay = min(delay, config.max_delay)

    # Add jitter if enabled
    if config.jitter:
        jitter_amount = delay * 0.1  # 10% jitter
        delay += random.uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)
