"""
GCS auth service package for the storage library.

This package obtains bearer tokens for service accounts and produces
pre-signed URLs for single objects. It is intentionally small and focused:

- app.main: Service facade used by the storage backend.
- app.credentials: Loading and validation of service-account credentials.
- app.tokens: JWT-bearer minting, per-identity token caches and their registry.
- app.signing: V4 canonical request signing for pre-signed URLs.

Design notes:
- Module import must not perform network calls or start timers. All IO
  happens in explicit calls or in ``GCSAuthService.start``.
- Use the shared/ utilities for logging, metrics, tracing, and errors.
- Configuration is passed in explicitly; nothing here reads global state.
"""
