"""
Observability utilities for deskmigrate.

Tracing is composition-based: components accept an optional ``Tracer`` and
fall back to ``create_tracer(__name__, enable_tracing)``.

Note:
    Without a configured OpenTelemetry SDK, spans are non-recording and
    cost next to nothing. Pass ``enable_tracing=False`` for a NullTracer.
"""

from deskmigrate.observability.attributes import (
    ATTR_COMPONENT,
    ATTR_COMPONENT_COUNT,
    ATTR_DB_SYSTEM,
    ATTR_ERROR_CODE,
    ATTR_JOB_ID,
    ATTR_JOB_STATUS,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_SYSTEM,
    ATTR_PROGRESS_PERCENT,
    ATTR_RECORD_COUNT,
    ATTR_SNAPSHOT_ID,
    ATTR_SOURCE_INSTANCE,
    ATTR_SOURCE_RECORD_ID,
    ATTR_SOURCE_TYPE,
    ATTR_TARGET_INSTANCE,
)
from deskmigrate.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)

__all__ = [
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    "ATTR_COMPONENT",
    "ATTR_COMPONENT_COUNT",
    "ATTR_DB_SYSTEM",
    "ATTR_ERROR_CODE",
    "ATTR_JOB_ID",
    "ATTR_JOB_STATUS",
    "ATTR_MESSAGING_DESTINATION",
    "ATTR_MESSAGING_SYSTEM",
    "ATTR_PROGRESS_PERCENT",
    "ATTR_RECORD_COUNT",
    "ATTR_SNAPSHOT_ID",
    "ATTR_SOURCE_INSTANCE",
    "ATTR_SOURCE_RECORD_ID",
    "ATTR_SOURCE_TYPE",
    "ATTR_TARGET_INSTANCE",
]
