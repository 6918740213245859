"""
Exceptions for the deskmigrate orchestration engine.

Exception Hierarchy:
    MigrationError (base)
    +-- ValidationError
    +-- SnapshotError
    |   +-- SnapshotNotFoundError
    |   +-- SnapshotMalformedError
    |   +-- SnapshotMissingComponentsError
    |   +-- SnapshotLockedError
    +-- TranslationError
    +-- DuplicateMappingError
    +-- AdapterError
    +-- CancellationError
    +-- InvalidStatusTransitionError
    +-- UnknownError

Error Classification System:
    - ErrorSeverity: CRITICAL, ERROR, WARNING, INFO levels
    - ErrorRecoverability: RECOVERABLE, TRANSIENT, FATAL categories
    - ErrorClassification: Rich metadata for each error type
    - ErrorHandler: Automatic retry for transient adapter errors

ValidationError and SnapshotError are raised before any component runs.
TranslationError and AdapterError abort the running component and the job.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable, Coroutine, Sequence
from dataclasses import asdict, dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from deskmigrate.models import JobStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorSeverity(Enum):
    """How loudly a failure is logged; see ``log_level``."""

    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @property
    def log_level(self) -> int:
        return logging.getLevelName(self.name)


class ErrorRecoverability(Enum):
    """
    Recoverability classification for migration errors.

    Attributes:
        RECOVERABLE: Fixable by the operator; resubmit the job afterwards.
        TRANSIENT: Temporary error that may resolve on retry.
        FATAL: Unrecoverable for this job.
    """

    RECOVERABLE = "recoverable"
    TRANSIENT = "transient"
    FATAL = "fatal"

    @property
    def should_retry(self) -> bool:
        """True only for TRANSIENT errors."""
        return self == ErrorRecoverability.TRANSIENT


@dataclass(frozen=True)
class RetryConfig:
    """
    Backoff policy for one adapter call (fetch of a component, create of a record).

    The delay before retry ``n`` is ``base_delay_ms * exponential_base ** n``
    plus up to ``jitter_factor`` of itself, capped at ``max_delay_ms``.
    ``max_attempts`` counts the first call, so 1 means no retries.
    """

    max_attempts: int = 3
    base_delay_ms: float = 100.0
    max_delay_ms: float = 30000.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.1

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay_ms < 0:
            raise ValueError(f"base_delay_ms must be >= 0, got {self.base_delay_ms}")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError(
                f"max_delay_ms ({self.max_delay_ms}) must be >= "
                f"base_delay_ms ({self.base_delay_ms})"
            )
        if self.exponential_base < 1.0:
            raise ValueError(f"exponential_base must be >= 1.0, got {self.exponential_base}")
        if not 0.0 <= self.jitter_factor <= 1.0:
            raise ValueError(f"jitter_factor must be between 0.0 and 1.0, got {self.jitter_factor}")

    def get_delay_ms(self, attempt: int) -> float:
        """Milliseconds to wait after the zero-based ``attempt`` failed."""
        backoff = self.base_delay_ms * self.exponential_base**attempt
        backoff *= 1.0 + self.jitter_factor * random.random()  # nosec B311
        return min(backoff, self.max_delay_ms)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


NO_RETRY_CONFIG = RetryConfig(max_attempts=1, base_delay_ms=0.0, max_delay_ms=0.0)

ADAPTER_RETRY_CONFIG = RetryConfig(
    max_attempts=4,
    base_delay_ms=250.0,
    max_delay_ms=10000.0,
    exponential_base=2.0,
    jitter_factor=0.2,
)


@dataclass(frozen=True)
class ErrorClassification:
    """
    Rich metadata for error classification.

    Attributes:
        severity: The severity level of the error.
        recoverability: How the error can be recovered from.
        error_code: Unique error code for programmatic handling.
        category: Error category for grouping related errors.
        suggested_action: Human-readable guidance for operators.
        retry_config: Configuration for automatic retry (if applicable).
    """

    severity: ErrorSeverity
    recoverability: ErrorRecoverability
    error_code: str
    category: str
    suggested_action: str
    retry_config: RetryConfig | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "severity": self.severity.value,
            "recoverability": self.recoverability.value,
            "error_code": self.error_code,
            "category": self.category,
            "suggested_action": self.suggested_action,
        }
        if self.retry_config:
            result["retry_config"] = self.retry_config.to_dict()
        return result


class MigrationError(Exception):
    """
    Base exception for all migration errors.

    Attributes:
        message: Human-readable error description.
        job_id: The job that raised the error, if known.
        component: The component being migrated, if any.
        suggested_action: Suggested action for recovery.
        classification: Rich error classification metadata.
    """

    _default_classification: ErrorClassification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="MIGRATION_ERROR",
        category="general",
        suggested_action="Review migration logs and contact support if issue persists",
    )

    def __init__(
        self,
        message: str,
        *,
        job_id: str | None = None,
        component: str | None = None,
        suggested_action: str | None = None,
    ) -> None:
        self.message = message
        self.job_id = job_id
        self.component = component
        self.suggested_action = suggested_action
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.component:
            parts.append(f"component={self.component}")
        if self.job_id:
            parts.append(f"job_id={self.job_id}")
        return " ".join(parts)

    @property
    def classification(self) -> ErrorClassification:
        return self._default_classification

    @property
    def severity(self) -> ErrorSeverity:
        return self.classification.severity

    @property
    def recoverability_type(self) -> ErrorRecoverability:
        return self.classification.recoverability

    @property
    def error_code(self) -> str:
        return self.classification.error_code

    @property
    def retry_config(self) -> RetryConfig | None:
        return self.classification.retry_config

    def to_dict(self) -> dict[str, Any]:
        """Convert the exception to a dictionary for job results and logs."""
        return {
            "message": self.message,
            "job_id": self.job_id,
            "component": self.component,
            "error_code": self.error_code,
            "classification": self.classification.to_dict(),
        }


class ValidationError(MigrationError):
    """
    Raised for a malformed job or an unrecognised component name.

    Attributes:
        unknown_components: Component names the catalog does not know.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="VALIDATION_ERROR",
        category="validation",
        suggested_action="Fix the job description and submit it again",
    )

    def __init__(
        self,
        message: str,
        *,
        unknown_components: Sequence[str] = (),
        job_id: str | None = None,
    ) -> None:
        self.unknown_components = list(unknown_components)
        super().__init__(message, job_id=job_id)


class SnapshotErrorReason(Enum):
    """Why a snapshot cannot be used as a migration source."""

    NOT_FOUND = "not_found"
    MALFORMED = "malformed"
    MISSING_COMPONENTS = "missing_components"
    LOCKED = "locked"


class SnapshotError(MigrationError):
    """
    Base exception for unusable snapshots.

    Attributes:
        snapshot_id: The snapshot that was checked.
        reason: Which check failed.
    """

    reason: SnapshotErrorReason = SnapshotErrorReason.MALFORMED

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="SNAPSHOT_ERROR",
        category="snapshot",
        suggested_action="Choose another snapshot or take a new one",
    )

    def __init__(self, message: str, snapshot_id: str | None) -> None:
        self.snapshot_id = snapshot_id
        super().__init__(message)


class SnapshotNotFoundError(SnapshotError):
    """Raised when a snapshot id does not resolve."""

    reason = SnapshotErrorReason.NOT_FOUND

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="SNAPSHOT_NOT_FOUND",
        category="snapshot",
        suggested_action="Verify the snapshot id",
    )

    def __init__(self, snapshot_id: str | None) -> None:
        super().__init__(f"Snapshot {snapshot_id} not found", snapshot_id)


class SnapshotMalformedError(SnapshotError):
    """Raised when a snapshot has no breakdown section."""

    reason = SnapshotErrorReason.MALFORMED

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="SNAPSHOT_MALFORMED",
        category="snapshot",
        suggested_action="The snapshot is incomplete; take a new one",
    )

    def __init__(self, snapshot_id: str | None) -> None:
        super().__init__(f"Snapshot {snapshot_id} breakdown is missing", snapshot_id)


class SnapshotMissingComponentsError(SnapshotError):
    """
    Raised when required components are absent from the breakdown.

    Attributes:
        missing_components: Every required component that is absent.
    """

    reason = SnapshotErrorReason.MISSING_COMPONENTS

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="SNAPSHOT_MISSING_COMPONENTS",
        category="snapshot",
        suggested_action="Ignore the missing components or use a fuller snapshot",
    )

    def __init__(self, snapshot_id: str | None, missing_components: Sequence[str]) -> None:
        self.missing_components = list(missing_components)
        super().__init__(
            f"Snapshot {snapshot_id} missing required components: "
            f"{', '.join(self.missing_components)}",
            snapshot_id,
        )


class SnapshotLockedError(SnapshotError):
    """Raised when a locked snapshot is used as a migration source."""

    reason = SnapshotErrorReason.LOCKED

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="SNAPSHOT_LOCKED",
        category="snapshot",
        suggested_action="Locked snapshots are reserved; unlock it or pick another",
    )

    def __init__(self, snapshot_id: str | None) -> None:
        super().__init__(
            f"Cannot use locked snapshot {snapshot_id} for migration",
            snapshot_id,
        )


class TranslationError(MigrationError):
    """
    Raised when a foreign reference cannot be rewritten to a target id.

    Attributes:
        field: Record field holding the reference.
        referenced_type: Component type the field points at.
        referenced_id: The unresolved source id.
        record_id: Source id of the record carrying the reference.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="TRANSLATION_ERROR",
        category="translation",
        suggested_action=(
            "Include the referenced component in the job or migrate it first "
            "into the same target"
        ),
    )

    def __init__(
        self,
        message: str,
        *,
        component: str | None = None,
        field: str | None = None,
        referenced_type: str | None = None,
        referenced_id: str | None = None,
        record_id: str | None = None,
    ) -> None:
        self.field = field
        self.referenced_type = referenced_type
        self.referenced_id = referenced_id
        self.record_id = record_id
        super().__init__(message, component=component)

    def __str__(self) -> str:
        text = super().__str__()
        if self.record_id is not None:
            text = f"{text} source_id={self.record_id}"
        return text


class DuplicateMappingError(MigrationError):
    """
    Raised when an (entity type, source id) pair is recorded twice.

    Attributes:
        entity_type: Component type of the mapping.
        source_id: Source id that already has a mapping.
        existing_target_id: The target id recorded first.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="DUPLICATE_MAPPING",
        category="translation",
        suggested_action="Use a fresh job id or reset the translator scope before rerunning",
    )

    def __init__(self, entity_type: str, source_id: str, existing_target_id: str) -> None:
        self.entity_type = entity_type
        self.source_id = source_id
        self.existing_target_id = existing_target_id
        super().__init__(
            f"Mapping for {entity_type}:{source_id} already exists "
            f"(target id {existing_target_id})",
            component=entity_type,
        )


class AdapterError(MigrationError):
    """
    Raised when a source fetch or target create fails.

    Attributes:
        operation: "fetch" or "create".
        source_id: Source id of the offending record, where available.
        transient: Whether the failure may succeed on retry.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="ADAPTER_ERROR",
        category="adapter",
        suggested_action="Check the instance credentials and API availability",
    )

    _transient_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="ADAPTER_TRANSIENT_ERROR",
        category="adapter",
        suggested_action="The instance API was temporarily unavailable; retrying",
        retry_config=ADAPTER_RETRY_CONFIG,
    )

    def __init__(
        self,
        message: str,
        *,
        component: str | None = None,
        operation: str = "create",
        source_id: str | None = None,
        transient: bool = False,
    ) -> None:
        self.operation = operation
        self.source_id = source_id
        self.transient = transient
        super().__init__(message, component=component)

    def __str__(self) -> str:
        text = super().__str__()
        if self.source_id is not None:
            text = f"{text} source_id={self.source_id}"
        return text

    @property
    def classification(self) -> ErrorClassification:
        if self.transient:
            return self._transient_classification
        return self._default_classification


class CancellationError(MigrationError):
    """Raised at the next component boundary after a job is cancelled."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.INFO,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="JOB_CANCELLED",
        category="state",
        suggested_action="Submit a new job to migrate the remaining components",
    )

    def __init__(self, job_id: str, next_component: str | None = None) -> None:
        self.next_component = next_component
        message = f"Job {job_id} was cancelled"
        if next_component:
            message = f"{message} before {next_component}"
        super().__init__(message, job_id=job_id)


class InvalidStatusTransitionError(MigrationError):
    """Raised when the job state machine is asked for an illegal move."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="INVALID_STATUS_TRANSITION",
        category="state",
        suggested_action="Jobs are single-use; submit a new job",
    )

    def __init__(self, job_id: str, current: JobStatus, target: JobStatus) -> None:
        self.current_status = current
        self.target_status = target
        super().__init__(
            f"Invalid status transition: {current.value} -> {target.value}",
            job_id=job_id,
        )


class UnknownError(MigrationError):
    """
    Wraps any uncategorised failure with its original message.

    Attributes:
        original: The wrapped exception.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="UNKNOWN_ERROR",
        category="unknown",
        suggested_action="An unexpected error occurred. Review logs and contact support.",
    )

    def __init__(self, original: BaseException, *, component: str | None = None) -> None:
        self.original = original
        message = str(original) or type(original).__name__
        super().__init__(message, component=component)
        self.__cause__ = original


class ErrorHandler:
    """
    Retries transient adapter errors with exponential backoff.

    Non-transient errors are re-raised immediately; the caller's fail-fast
    policy decides what happens next.

    Usage:
        >>> handler = ErrorHandler(retry_config=RetryConfig(max_attempts=3))
        >>> target_id = await handler.execute_with_retry(
        ...     lambda: adapter.create("macros", record, target),
        ...     operation_name="create macros",
        ... )
    """

    def __init__(
        self,
        retry_config: RetryConfig | None = None,
        sleep: Callable[[float], Coroutine[Any, Any, None]] | None = None,
    ) -> None:
        self.retry_config = retry_config or NO_RETRY_CONFIG
        self._sleep = sleep or asyncio.sleep

    async def execute_with_retry(
        self,
        operation: Callable[[], Coroutine[Any, Any, T]],
        operation_name: str,
        *,
        on_retry: Callable[[int, Exception, float], None] | None = None,
    ) -> T:
        """
        Execute an operation with automatic retry for transient errors.

        Args:
            operation: Async callable to execute.
            operation_name: Name for logging.
            on_retry: Callback invoked on each retry (attempt, exception, delay_ms).

        Returns:
            The result of the operation.
        """
        config = self.retry_config
        attempt = 0
        while True:
            try:
                result = await operation()
            except MigrationError as e:
                if not e.recoverability_type.should_retry or attempt + 1 >= config.max_attempts:
                    if attempt > 0:
                        logger.error(
                            "Giving up on '%s' after %d attempts: %s",
                            operation_name,
                            attempt + 1,
                            e.message,
                        )
                    raise

                delay_ms = config.get_delay_ms(attempt)
                logger.warning(
                    "Retryable error in '%s' (attempt %d/%d): %s. Retrying in %.1fs",
                    operation_name,
                    attempt + 1,
                    config.max_attempts,
                    e.message,
                    delay_ms / 1000.0,
                )
                if on_retry:
                    on_retry(attempt, e, delay_ms)
                await self._sleep(delay_ms / 1000.0)
                attempt += 1
            else:
                if attempt > 0:
                    logger.info(
                        "Operation '%s' succeeded after %d retries",
                        operation_name,
                        attempt,
                    )
                return result


def classify_exception(exc: BaseException) -> ErrorClassification:
    """
    Classify any exception and return its error classification.

    For MigrationError subclasses, returns their specific classification.
    For other exceptions, returns the UnknownError classification.
    """
    if isinstance(exc, MigrationError):
        return exc.classification
    return UnknownError._default_classification


def as_migration_error(exc: BaseException, *, component: str | None = None) -> MigrationError:
    """Return ``exc`` unchanged if categorised, otherwise wrap it in UnknownError."""
    if isinstance(exc, MigrationError):
        if component and exc.component is None:
            exc.component = component
        return exc
    return UnknownError(exc, component=component)


__all__ = [
    "ErrorSeverity",
    "ErrorRecoverability",
    "ErrorClassification",
    "RetryConfig",
    "NO_RETRY_CONFIG",
    "ADAPTER_RETRY_CONFIG",
    "MigrationError",
    "ValidationError",
    "SnapshotErrorReason",
    "SnapshotError",
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
    "ErrorHandler",
    "classify_exception",
    "as_migration_error",
]
