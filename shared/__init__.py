"""
Shared utilities for the GCS storage auth layer.

This package aggregates the common building blocks used by the auth service:

- config: Settings via pydantic-settings
- logging: Structured logging with trace correlation
- metrics: Prometheus metrics helpers
- tracing: OpenTelemetry span helpers
- errors: Canonical error types and responses
- retry: Backoff policy for background retries

Runtime modules here must not import from service_gcs_auth; only
test_helpers does, to build fixtures.
"""
