"""
Standard span and metric attributes for deskmigrate.

Attribute names are shared by the tracer spans and the metric instruments so
dashboards can join on them.
"""

# =============================================================================
# Job Attributes
# =============================================================================

ATTR_JOB_ID = "deskmigrate.job.id"
"""Opaque migration job identifier."""

ATTR_JOB_STATUS = "deskmigrate.job.status"
"""Current JobStatus value."""

ATTR_SOURCE_TYPE = "deskmigrate.source.type"
"""'snapshot' or 'live'."""

ATTR_SOURCE_INSTANCE = "deskmigrate.source.instance"
"""Subdomain of the source instance."""

ATTR_TARGET_INSTANCE = "deskmigrate.target.instance"
"""Subdomain of the target instance."""

ATTR_SNAPSHOT_ID = "deskmigrate.snapshot.id"
"""Snapshot identifier for snapshot-sourced jobs."""

ATTR_PROGRESS_PERCENT = "deskmigrate.job.progress_percent"
"""Job progress, 0-100."""

ATTR_COMPONENT_COUNT = "deskmigrate.job.component_count"
"""Number of components the job will migrate."""

# =============================================================================
# Component Attributes
# =============================================================================

ATTR_COMPONENT = "deskmigrate.component"
"""Entity type name (e.g., 'macros')."""

ATTR_RECORD_COUNT = "deskmigrate.component.record_count"
"""Number of source records fetched for a component."""

ATTR_SOURCE_RECORD_ID = "deskmigrate.record.source_id"
"""Source-instance id of the record being processed."""

# =============================================================================
# Error Attributes
# =============================================================================

ATTR_ERROR_CODE = "deskmigrate.error.code"
"""MigrationError.error_code of a failure."""

# =============================================================================
# Database Attributes (OpenTelemetry semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier."""

# =============================================================================
# Messaging Attributes (OpenTelemetry semantic conventions)
# =============================================================================

ATTR_MESSAGING_SYSTEM = "messaging.system"
"""Messaging system identifier (e.g., 'redis')."""

ATTR_MESSAGING_DESTINATION = "messaging.destination.name"
"""Queue or stream name."""


__all__ = [
    "ATTR_JOB_ID",
    "ATTR_JOB_STATUS",
    "ATTR_SOURCE_TYPE",
    "ATTR_SOURCE_INSTANCE",
    "ATTR_TARGET_INSTANCE",
    "ATTR_SNAPSHOT_ID",
    "ATTR_PROGRESS_PERCENT",
    "ATTR_COMPONENT_COUNT",
    "ATTR_COMPONENT",
    "ATTR_RECORD_COUNT",
    "ATTR_SOURCE_RECORD_ID",
    "ATTR_ERROR_CODE",
    "ATTR_DB_SYSTEM",
    "ATTR_MESSAGING_SYSTEM",
    "ATTR_MESSAGING_DESTINATION",
]
