"""
deskmigrate - Helpdesk configuration migration engine.

This library provides:
- A fixed, ordered catalog of helpdesk configuration components
- Snapshot validation before any component runs
- An identifier translator rewriting references from source to target ids
- A component migrator (fetch, translate, create, record)
- A job orchestrator with progress, logs and fail-fast results
- Redis Streams job queue, worker and reporter
- SQLAlchemy audit sink for identifier mappings
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("deskmigrate")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from deskmigrate.adapters import (
    AdapterRegistry,
    AuditSink,
    InMemoryAuditSink,
    InMemorySnapshotStore,
    InMemorySourceAdapter,
    InMemoryTargetAdapter,
    JobReporter,
    LoggingJobReporter,
    RecordingJobReporter,
    SnapshotStore,
    SourceAdapter,
    TargetAdapter,
)
from deskmigrate.catalog import (
    DEFAULT_CATALOG,
    ComponentCatalog,
    ComponentType,
    OrderViolation,
    ReferenceField,
)
from deskmigrate.exceptions import (
    AdapterError,
    CancellationError,
    DuplicateMappingError,
    ErrorClassification,
    ErrorHandler,
    ErrorRecoverability,
    ErrorSeverity,
    InvalidStatusTransitionError,
    MigrationError,
    RetryConfig,
    SnapshotError,
    SnapshotErrorReason,
    SnapshotLockedError,
    SnapshotMalformedError,
    SnapshotMissingComponentsError,
    SnapshotNotFoundError,
    TranslationError,
    UnknownError,
    ValidationError,
    classify_exception,
)
from deskmigrate.intake import accepted_response, new_job_id, parse_job
from deskmigrate.migrator import ComponentMigrator
from deskmigrate.models import (
    ComponentBreakdown,
    ComponentMigrationState,
    ComponentStatus,
    IdMapping,
    InstanceRef,
    JobError,
    JobResult,
    JobStatus,
    MigrationConfig,
    MigrationJob,
    Snapshot,
    SourceSpec,
    SourceType,
    TargetSpec,
    TranslatorScope,
)
from deskmigrate.orchestrator import JobOrchestrator
from deskmigrate.translator import IdentifierTranslator, TranslatorProvider
from deskmigrate.validation import SnapshotValidator, ValidationOutcome

__all__ = [
    "__version__",
    # Catalog
    "ComponentCatalog",
    "ComponentType",
    "ReferenceField",
    "OrderViolation",
    "DEFAULT_CATALOG",
    # Models
    "SourceType",
    "JobStatus",
    "ComponentStatus",
    "TranslatorScope",
    "MigrationConfig",
    "InstanceRef",
    "ComponentBreakdown",
    "Snapshot",
    "SourceSpec",
    "TargetSpec",
    "IdMapping",
    "ComponentMigrationState",
    "MigrationJob",
    "JobError",
    "JobResult",
    # Engine
    "SnapshotValidator",
    "ValidationOutcome",
    "IdentifierTranslator",
    "TranslatorProvider",
    "ComponentMigrator",
    "JobOrchestrator",
    # Intake
    "parse_job",
    "new_job_id",
    "accepted_response",
    # Adapters
    "SourceAdapter",
    "TargetAdapter",
    "SnapshotStore",
    "AuditSink",
    "JobReporter",
    "AdapterRegistry",
    "InMemorySnapshotStore",
    "InMemorySourceAdapter",
    "InMemoryTargetAdapter",
    "InMemoryAuditSink",
    "RecordingJobReporter",
    "LoggingJobReporter",
    # Exceptions
    "MigrationError",
    "ValidationError",
    "SnapshotError",
    "SnapshotErrorReason",
    "SnapshotNotFoundError",
    "SnapshotMalformedError",
    "SnapshotMissingComponentsError",
    "SnapshotLockedError",
    "TranslationError",
    "DuplicateMappingError",
    "AdapterError",
    "CancellationError",
    "InvalidStatusTransitionError",
    "UnknownError",
    "ErrorSeverity",
    "ErrorRecoverability",
    "ErrorClassification",
    "RetryConfig",
    "ErrorHandler",
    "classify_exception",
]
