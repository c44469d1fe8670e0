"""
Credential and location models.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from pydantic import BaseModel, ConfigDict, Field, field_validator

from shared.errors import MissingFieldsError


@dataclass(frozen=True)
class Credentials:
    """Service-account identity and its PEM private key.

    The key is not parsed here; it is validated on the first signing attempt.
    """

    identity: str
    private_key: str = field(repr=False)
    project_id: Optional[str] = None

    def __post_init__(self):
        missing = [
            name
            for name in ("identity", "private_key")
            if not isinstance(getattr(self, name), str) or not getattr(self, name).strip()
        ]
        if missing:
            raise MissingFieldsError(missing)

    def signing_key(self) -> RSAPrivateKey:
        """Parse the PEM private key. Raises ValueError or TypeError for bad material."""
        key = serialization.load_pem_private_key(self.private_key.encode("utf-8"), password=None)
        if not isinstance(key, RSAPrivateKey):
            raise TypeError(f"expected an RSA private key, got {type(key).__name__}")
        return key


class SignedURLOptions(BaseModel):
    """Options for a pre-signed URL."""

    model_config = ConfigDict(extra="forbid")

    verb: str = "GET"
    expires_in: int = Field(default=3600, ge=1, le=604800)
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("verb")
    @classmethod
    def _upper_verb(cls, value: str) -> str:
        return value.strip().upper()


class LocationConfig(BaseModel):
    """A named GCS storage location."""

    bucket: str
    path: Optional[str] = None
    service_account_path: Optional[str] = None
    service_account_credentials: Optional[str] = None
    signed_url: SignedURLOptions = Field(default_factory=SignedURLOptions)

    def object_path(self, remote_path: str) -> str:
        """Join the location's path prefix with a remote object path."""
        if not self.path:
            return remote_path
        return f"{self.path.strip('/')}/{remote_path.lstrip('/')}"
