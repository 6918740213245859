"""
In-memory adapter implementations.

Simple collaborators for development and testing. All data lives in process
memory and is lost when the process ends. Each class uses an asyncio.Lock so
concurrent jobs in one event loop see consistent state.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import defaultdict
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from deskmigrate.models import IdMapping, JobResult, Snapshot, SourceSpec, TargetSpec

logger = logging.getLogger(__name__)

Record = Mapping[str, Any]


class InMemorySnapshotStore:
    """
    Snapshot metadata held in a dictionary.

    Example:
        >>> store = InMemorySnapshotStore([Snapshot(id="snap-1", name="nightly")])
        >>> snapshot = await store.resolve("snap-1")
    """

    def __init__(self, snapshots: Sequence[Snapshot] = ()) -> None:
        self._snapshots: dict[str, Snapshot] = {s.id: s for s in snapshots}
        self._lock = asyncio.Lock()

    async def add(self, snapshot: Snapshot) -> None:
        async with self._lock:
            self._snapshots[snapshot.id] = snapshot

    async def resolve(self, snapshot_id: str) -> Snapshot | None:
        async with self._lock:
            return self._snapshots.get(snapshot_id)


class InMemorySourceAdapter:
    """
    Serves component records from memory.

    Records can be registered three ways, checked in this order:
        - per snapshot storage location (snapshot sources)
        - per live instance id and component (live sources)
        - per component, regardless of source

    Every fetch returns fresh copies, so callers may not alter stored data.
    """

    def __init__(self, records: Mapping[str, Sequence[Record]] | None = None) -> None:
        self._records: dict[str, list[Record]] = {
            component: list(items) for component, items in (records or {}).items()
        }
        self._by_location: dict[str, list[Record]] = {}
        self._by_instance: dict[tuple[str, str], list[Record]] = {}
        self._failures: dict[str, BaseException] = {}
        self.fetch_calls: list[tuple[str, SourceSpec]] = []

    def add_records(self, component: str, records: Sequence[Record]) -> None:
        self._records[component] = list(records)

    def add_snapshot_blob(self, storage_location: str, records: Sequence[Record]) -> None:
        self._by_location[storage_location] = list(records)

    def add_live_records(
        self, instance_id: str, component: str, records: Sequence[Record]
    ) -> None:
        self._by_instance[(instance_id, component)] = list(records)

    def fail_on(self, component: str, error: BaseException | None = None) -> None:
        """Make every fetch of ``component`` raise ``error``."""
        self._failures[component] = error or RuntimeError(f"simulated fetch failure: {component}")

    async def fetch(self, component: str, source: SourceSpec) -> list[dict[str, Any]]:
        self.fetch_calls.append((component, source))
        if component in self._failures:
            raise self._failures[component]

        records: list[Record] | None = None
        if source.is_snapshot:
            location = source.storage_location(component)
            if location is not None:
                records = self._by_location.get(location)
        else:
            records = self._by_instance.get((source.instance.id, component))

        if records is None:
            records = self._records.get(component, [])
        return [dict(record) for record in records]

    @property
    def fetched_components(self) -> list[str]:
        return [component for component, _ in self.fetch_calls]


@dataclass(frozen=True)
class CreatedEntity:
    """An entity created by InMemoryTargetAdapter."""

    component: str
    target_id: str
    record: Mapping[str, Any]
    target_instance_id: str


class InMemoryTargetAdapter:
    """
    Mints sequential target ids and remembers what it created.

    ``fail_on(component, nth)`` makes the n-th create (1-based) of a
    component raise, which is how tests simulate a target API rejecting a
    record part way through a component.

    Args:
        id_prefix: Prepended to every minted id.
        start: First numeric id.
    """

    def __init__(self, *, id_prefix: str = "t-", start: int = 1) -> None:
        self._id_prefix = id_prefix
        self._ids = itertools.count(start)
        self._create_counts: dict[str, int] = defaultdict(int)
        self._failures: dict[tuple[str, int], BaseException] = {}
        self._lock = asyncio.Lock()
        self.created: list[CreatedEntity] = []

    def fail_on(self, component: str, nth: int, error: BaseException | None = None) -> None:
        if nth < 1:
            raise ValueError(f"nth must be >= 1, got {nth}")
        self._failures[(component, nth)] = error or RuntimeError(
            f"simulated create failure: {component} #{nth}"
        )

    async def create(self, component: str, record: Record, target: TargetSpec) -> str:
        async with self._lock:
            self._create_counts[component] += 1
            failure = self._failures.get((component, self._create_counts[component]))
            if failure is not None:
                raise failure

            target_id = f"{self._id_prefix}{next(self._ids)}"
            self.created.append(
                CreatedEntity(
                    component=component,
                    target_id=target_id,
                    record=dict(record),
                    target_instance_id=target.instance.id,
                )
            )
            return target_id

    def created_for(self, component: str) -> list[CreatedEntity]:
        return [entity for entity in self.created if entity.component == component]

    @property
    def created_components(self) -> list[str]:
        return list(dict.fromkeys(entity.component for entity in self.created))


class InMemoryAuditSink:
    """Audit rows kept per job id."""

    def __init__(self) -> None:
        self._rows: dict[str, list[IdMapping]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def append(
        self,
        job_id: str,
        mapping: IdMapping,
        *,
        target_instance_id: str | None = None,
    ) -> None:
        async with self._lock:
            self._rows[job_id].append(mapping)

    async def get_by_job(self, job_id: str) -> list[IdMapping]:
        async with self._lock:
            return list(self._rows.get(job_id, []))

    async def count_by_job(self, job_id: str) -> int:
        async with self._lock:
            return len(self._rows.get(job_id, []))

    def clear(self) -> None:
        self._rows.clear()


class RecordingJobReporter:
    """
    Keeps every progress update, log line and result for later inspection.

    ``events`` holds ``(kind, job_id, value)`` tuples in call order.
    """

    def __init__(self) -> None:
        self.events: list[tuple[str, str, Any]] = []

    async def progress(self, job_id: str, percent: float) -> None:
        self.events.append(("progress", job_id, percent))

    async def log(self, job_id: str, line: str) -> None:
        self.events.append(("log", job_id, line))

    async def result(self, job_id: str, result: JobResult) -> None:
        self.events.append(("result", job_id, result))

    def progress_updates(self, job_id: str) -> list[float]:
        return [v for kind, jid, v in self.events if kind == "progress" and jid == job_id]

    def logs(self, job_id: str) -> list[str]:
        return [v for kind, jid, v in self.events if kind == "log" and jid == job_id]

    def results(self, job_id: str) -> list[JobResult]:
        return [v for kind, jid, v in self.events if kind == "result" and jid == job_id]


class LoggingJobReporter:
    """Writes the job surface to Python logging only."""

    def __init__(self, logger_name: str = "deskmigrate.jobs") -> None:
        self._logger = logging.getLogger(logger_name)

    async def progress(self, job_id: str, percent: float) -> None:
        self._logger.info("[%s] progress %.2f%%", job_id, percent)

    async def log(self, job_id: str, line: str) -> None:
        self._logger.info("[%s] %s", job_id, line)

    async def result(self, job_id: str, result: JobResult) -> None:
        if result.error is not None:
            self._logger.error(
                "[%s] %s: %s", job_id, result.status.value, result.error.message
            )
        else:
            self._logger.info(
                "[%s] %s with %d id mappings",
                job_id,
                result.status.value,
                len(result.id_mappings),
            )


__all__ = [
    "InMemorySnapshotStore",
    "InMemorySourceAdapter",
    "InMemoryTargetAdapter",
    "CreatedEntity",
    "InMemoryAuditSink",
    "RecordingJobReporter",
    "LoggingJobReporter",
]
