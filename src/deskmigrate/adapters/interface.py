"""
Protocols for the collaborators the orchestration engine talks to.

The engine never speaks a helpdesk wire protocol itself. Fetching source
records, creating target entities, resolving snapshots, persisting audit rows
and reporting job progress all go through these narrow interfaces.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from deskmigrate.models import IdMapping, JobResult, Snapshot, SourceSpec, TargetSpec


@runtime_checkable
class SourceAdapter(Protocol):
    """Reads the records of one component from a snapshot or a live instance."""

    async def fetch(self, component: str, source: SourceSpec) -> Sequence[Mapping[str, Any]]:
        """
        Fetch every record of ``component``.

        For snapshot sources ``source.storage_location(component)`` names the
        blob to read. Each record must carry its source id under ``"id"``.

        Args:
            component: Component name.
            source: Where to read from.

        Returns:
            The component's records, in source order.
        """
        ...


@runtime_checkable
class TargetAdapter(Protocol):
    """Creates entities in the target instance."""

    async def create(
        self,
        component: str,
        record: Mapping[str, Any],
        target: TargetSpec,
    ) -> str | int:
        """
        Create one entity from a translated record.

        The record still carries its source id under ``"id"``; implementations
        must not send it as the new entity's id.

        Returns:
            The id the target assigned to the new entity.
        """
        ...


@runtime_checkable
class SnapshotStore(Protocol):
    """Looks up snapshot metadata."""

    async def resolve(self, snapshot_id: str) -> Snapshot | None:
        """Return the snapshot, or None when the id is unknown."""
        ...


@runtime_checkable
class AuditSink(Protocol):
    """
    Durable, append-only log of IdMappings.

    Rows are partitioned by job id so concurrent jobs never interfere.
    """

    async def append(
        self,
        job_id: str,
        mapping: IdMapping,
        *,
        target_instance_id: str | None = None,
    ) -> None: ...


@runtime_checkable
class JobReporter(Protocol):
    """Progress, log and result surface of the job queue."""

    async def progress(self, job_id: str, percent: float) -> None: ...

    async def log(self, job_id: str, line: str) -> None: ...

    async def result(self, job_id: str, result: JobResult) -> None: ...


__all__ = [
    "SourceAdapter",
    "TargetAdapter",
    "SnapshotStore",
    "AuditSink",
    "JobReporter",
]
