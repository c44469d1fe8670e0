"""
Token data model.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class AccessToken:
    """A bearer access token and its absolute expiry (epoch seconds)."""

    token: str = field(repr=False)
    expires_at: float
    issued_at: float

    def __post_init__(self):
        if self.expires_at <= self.issued_at:
            raise ValueError("expires_at must be after issued_at")

    def is_stale(self, now: float, refresh_margin: float) -> bool:
        """True once within ``refresh_margin`` seconds of expiry."""
        return now >= self.expires_at - refresh_margin

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    @property
    def lifetime(self) -> float:
        return self.expires_at - self.issued_at

    @property
    def authorization_header(self) -> str:
        return f"Bearer {self.token}"
