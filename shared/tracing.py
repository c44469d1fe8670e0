"""Tracing helpers built on the OpenTelemetry API.

Spans are no-ops until the host application installs a tracer provider.
"""

from contextlib import contextmanager
from typing import Any, Dict, Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode


def get_tracer(name: str = "gcs_auth"):
    """Return a tracer from the globally configured provider."""
    return trace.get_tracer(name)


@contextmanager
def traced_operation(name: str, attributes: Optional[Dict[str, Any]] = None):
    """Run a block inside a span, recording exceptions and error status."""
    tracer = get_tracer()
    with tracer.start_as_current_span(
        name, record_exception=False, set_status_on_exception=False
    ) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        try:
            yield span
        except Exception as exc:
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            raise
