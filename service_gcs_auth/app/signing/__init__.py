"""
Signed URL package.

Builds GOOG4-RSA-SHA256 pre-signed URLs directly from service-account
credentials. No access token is involved.
"""

from .signer import RequestSigner, percent_encode

__all__ = ["RequestSigner", "percent_encode"]
