"""
Data models for the migration orchestration engine.

Enums:
    - SourceType: Where source records come from
    - JobStatus: Job lifecycle states
    - ComponentStatus: Per-component migration stages
    - TranslatorScope: Lifetime of the identifier translation table

Configuration:
    - MigrationConfig: Engine configuration, immutable

Core Models:
    - InstanceRef: A helpdesk instance (credentials never printed)
    - ComponentBreakdown / Snapshot: Point-in-time capture of an instance
    - SourceSpec / TargetSpec: Where a job reads from and writes to
    - IdMapping: One row of the identifier translation table
    - ComponentMigrationState: Progress of one component within a job
    - MigrationJob: A job, mutated only by the orchestrator
    - JobError / JobResult: Terminal outcome reported to the queue layer
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from deskmigrate.exceptions import (
    NO_RETRY_CONFIG,
    MigrationError,
    RetryConfig,
    as_migration_error,
)


class SourceType(Enum):
    """Where a job's source records come from."""

    SNAPSHOT = "snapshot"
    LIVE = "live"


class JobStatus(Enum):
    """
    Job lifecycle states.

    State machine transitions:
        QUEUED -> VALIDATING -> MIGRATING -> COMPLETED
        Any non-terminal state ---------> FAILED
    """

    QUEUED = "queued"
    VALIDATING = "validating"
    MIGRATING = "migrating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """COMPLETED and FAILED are final."""
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    def can_transition_to(self, target: JobStatus) -> bool:
        """
        Check if transition to target status is valid.

        Args:
            target: The status to move to.

        Returns:
            True if the transition is valid.
        """
        if self.is_terminal:
            return False

        if target == JobStatus.FAILED:
            return True

        valid_transitions: dict[JobStatus, list[JobStatus]] = {
            JobStatus.QUEUED: [JobStatus.VALIDATING],
            JobStatus.VALIDATING: [JobStatus.MIGRATING],
            JobStatus.MIGRATING: [JobStatus.COMPLETED],
        }
        return target in valid_transitions.get(self, [])


class ComponentStatus(Enum):
    """
    Stages of a single component migration.

    PENDING -> FETCHING -> TRANSLATING -> CREATING -> SUCCEEDED, and any
    non-terminal stage may move to FAILED.
    """

    PENDING = "pending"
    FETCHING = "fetching"
    TRANSLATING = "translating"
    CREATING = "creating"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ComponentStatus.SUCCEEDED, ComponentStatus.FAILED)

    def can_transition_to(self, target: ComponentStatus) -> bool:
        if self.is_terminal:
            return False
        if target == ComponentStatus.FAILED:
            return True
        order = _COMPONENT_STAGE_ORDER
        return order.index(target) == order.index(self) + 1


_COMPONENT_STAGE_ORDER = [
    ComponentStatus.PENDING,
    ComponentStatus.FETCHING,
    ComponentStatus.TRANSLATING,
    ComponentStatus.CREATING,
    ComponentStatus.SUCCEEDED,
]


class TranslatorScope(Enum):
    """
    Lifetime of an identifier translation table.

    Attributes:
        JOB: A fresh table per job run.
        TARGET_INSTANCE: One table per target instance, shared by every run
            into that instance within the process.
    """

    JOB = "job"
    TARGET_INSTANCE = "target_instance"


@dataclass(frozen=True)
class MigrationConfig:
    """
    Configuration for the orchestration engine.

    This class is immutable (frozen) and is passed to the orchestrator at
    construction time.

    Attributes:
        translator_scope: Lifetime of the identifier table (default JOB).
        adapter_retry: Retry policy for transient adapter errors on a single
            fetch or create call (default: no retry).
        strict_catalog: Reject catalogs whose declared references point
            forward in the order (default True).
        record_log_every: Emit a job log line every N created records of a
            component; 0 disables (default 0).

    Example:
        >>> config = MigrationConfig(translator_scope=TranslatorScope.TARGET_INSTANCE)
        >>> config.translator_scope.value
        'target_instance'
    """

    translator_scope: TranslatorScope = TranslatorScope.JOB
    adapter_retry: RetryConfig = NO_RETRY_CONFIG
    strict_catalog: bool = True
    record_log_every: int = 0

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.record_log_every < 0:
            raise ValueError(f"record_log_every must be >= 0, got {self.record_log_every}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "translator_scope": self.translator_scope.value,
            "adapter_retry": self.adapter_retry.to_dict(),
            "strict_catalog": self.strict_catalog,
            "record_log_every": self.record_log_every,
        }


@dataclass(frozen=True)
class InstanceRef:
    """
    A helpdesk instance.

    ``credentials`` is an opaque secret bundle. It is excluded from repr,
    equality and ``to_dict`` so it never reaches logs or job results.
    """

    id: str
    name: str
    subdomain: str
    tags: frozenset[str] = frozenset()
    credentials: Mapping[str, str] = field(default_factory=dict, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "subdomain": self.subdomain,
            "tags": sorted(self.tags),
        }


@dataclass(frozen=True)
class ComponentBreakdown:
    """Per-component metadata stored in a snapshot."""

    record_count: int
    byte_size: int
    storage_location: str


@dataclass(frozen=True)
class Snapshot:
    """
    Immutable capture of a source instance, partitioned by component.

    ``breakdown`` is None when the snapshot metadata is incomplete.
    """

    id: str
    name: str
    parent_id: str | None = None
    locked: bool = False
    created_at: datetime | None = None
    breakdown: Mapping[str, ComponentBreakdown] | None = None
    tags: frozenset[str] = frozenset()

    def component(self, name: str) -> ComponentBreakdown | None:
        if not self.breakdown:
            return None
        return self.breakdown.get(name)


@dataclass(frozen=True)
class SourceSpec:
    """
    Where a job reads source records from.

    For snapshot sources the orchestrator attaches the resolved ``snapshot``
    after validation, so adapters can find each component's storage location.
    """

    type: SourceType
    instance: InstanceRef
    snapshot_id: str | None = None
    snapshot: Snapshot | None = None

    def __post_init__(self) -> None:
        if self.type == SourceType.SNAPSHOT and not self.snapshot_id:
            raise ValueError("snapshot sources require a snapshot_id")

    @property
    def is_snapshot(self) -> bool:
        return self.type == SourceType.SNAPSHOT

    def storage_location(self, component: str) -> str | None:
        """Storage location of a component's blob, for snapshot sources."""
        if self.snapshot is None:
            return None
        entry = self.snapshot.component(component)
        return entry.storage_location if entry else None

    def with_snapshot(self, snapshot: Snapshot) -> SourceSpec:
        return replace(self, snapshot=snapshot)


@dataclass(frozen=True)
class TargetSpec:
    """Where a job creates entities."""

    instance: InstanceRef


@dataclass(frozen=True)
class IdMapping:
    """
    One row of the identifier translation table.

    Mappings are never updated; ``(entity_type, source_id)`` is unique within
    a translator scope.
    """

    entity_type: str
    source_id: str
    target_id: str
    metadata: Mapping[str, Any] = field(default_factory=dict)
    job_id: str | None = None
    recorded_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def key(self) -> tuple[str, str]:
        return (self.entity_type, self.source_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entityType": self.entity_type,
            "sourceId": self.source_id,
            "targetId": self.target_id,
            "metadata": dict(self.metadata),
        }


@dataclass
class ComponentMigrationState:
    """
    Progress of one component within a job.

    Created when the orchestrator reaches the component; frozen in practice
    once SUCCEEDED or FAILED (further ``advance`` calls raise ValueError).
    """

    component: str
    status: ComponentStatus = ComponentStatus.PENDING
    source_record_count: int = 0
    created_count: int = 0
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def advance(self, status: ComponentStatus, *, error: str | None = None) -> None:
        if not self.status.can_transition_to(status):
            raise ValueError(
                f"Invalid component transition for {self.component}: "
                f"{self.status.value} -> {status.value}"
            )
        now = datetime.now(UTC)
        if self.started_at is None:
            self.started_at = now
        self.status = status
        if status.is_terminal:
            self.completed_at = now
        if error is not None:
            self.error = error

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "component": self.component,
            "status": self.status.value,
            "sourceRecordCount": self.source_record_count,
            "createdCount": self.created_count,
        }
        if self.error:
            result["error"] = self.error
        return result


@dataclass(frozen=True)
class JobError:
    """Failure details carried by a FAILED job result."""

    error_code: str
    message: str
    component: str | None = None
    details: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: BaseException, *, component: str | None = None) -> JobError:
        error: MigrationError = as_migration_error(exc, component=component)
        return cls(
            error_code=error.error_code,
            message=str(error),
            component=error.component or component,
            details=error.classification.to_dict(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.error_code,
            "message": self.message,
            "component": self.component,
        }


@dataclass
class MigrationJob:
    """
    A migration job.

    Created at intake; mutated only by the orchestrator; terminal once
    COMPLETED or FAILED.

    ``components`` is the explicit requested set. When it is None the job
    requests the whole catalog minus ``ignored_items``.
    """

    id: str
    source: SourceSpec
    target: TargetSpec
    components: tuple[str, ...] | None = None
    ignored_items: tuple[str, ...] = ()
    status: JobStatus = JobStatus.QUEUED
    progress_percent: float = 0.0
    component_states: list[ComponentMigrationState] = field(default_factory=list)
    error: JobError | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def component_state(self, component: str) -> ComponentMigrationState | None:
        for state in self.component_states:
            if state.component == component:
                return state
        return None

    @property
    def succeeded_components(self) -> list[str]:
        return [
            s.component for s in self.component_states if s.status == ComponentStatus.SUCCEEDED
        ]


@dataclass(frozen=True)
class JobResult:
    """
    Terminal outcome of a job.

    ``to_dict`` produces the result surface consumed by the queue and
    dashboard layer: ``{status, jobId, idMappings?, error?}``.
    """

    job_id: str
    status: JobStatus
    progress_percent: float
    id_mappings: tuple[IdMapping, ...] = ()
    components: tuple[ComponentMigrationState, ...] = ()
    error: JobError | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "status": self.status.value,
            "jobId": self.job_id,
            "progress": self.progress_percent,
            "components": [c.to_dict() for c in self.components],
        }
        if self.status == JobStatus.COMPLETED:
            result["idMappings"] = [m.to_dict() for m in self.id_mappings]
        if self.error is not None:
            result["error"] = self.error.to_dict()
        return result


__all__ = [
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
    "JobError",
    "MigrationJob",
    "JobResult",
]
