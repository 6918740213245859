"""
Collaborator interfaces and in-memory implementations.

Example:
    >>> from deskmigrate.adapters import (
    ...     AdapterRegistry,
    ...     InMemorySourceAdapter,
    ...     InMemoryTargetAdapter,
    ... )
    >>> registry = AdapterRegistry(
    ...     default_source=InMemorySourceAdapter(),
    ...     default_target=InMemoryTargetAdapter(),
    ... )
"""

from deskmigrate.adapters.in_memory import (
    CreatedEntity,
    InMemoryAuditSink,
    InMemorySnapshotStore,
    InMemorySourceAdapter,
    InMemoryTargetAdapter,
    LoggingJobReporter,
    RecordingJobReporter,
)
from deskmigrate.adapters.interface import (
    AuditSink,
    JobReporter,
    SnapshotStore,
    SourceAdapter,
    TargetAdapter,
)
from deskmigrate.adapters.registry import AdapterRegistry

__all__ = [
    # Protocols
    "SourceAdapter",
    "TargetAdapter",
    "SnapshotStore",
    "AuditSink",
    "JobReporter",
    # Registry
    "AdapterRegistry",
    # In-memory implementations
    "InMemorySnapshotStore",
    "InMemorySourceAdapter",
    "InMemoryTargetAdapter",
    "CreatedEntity",
    "InMemoryAuditSink",
    "RecordingJobReporter",
    "LoggingJobReporter",
]
