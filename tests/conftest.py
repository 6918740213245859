"""
Shared pytest fixtures for the deskmigrate tests.

This module provides:
- Instance and snapshot fixtures (source_instance, target_instance, snapshot)
- In-memory collaborators (source_adapter, target_adapter, snapshot_store,
  audit_sink, reporter, registry)
- Job fixtures (make_job factory, submission payload factory)
- An orchestrator wired to all of the above with a MockTracer
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

import pytest

from deskmigrate.adapters import (
    AdapterRegistry,
    InMemoryAuditSink,
    InMemorySnapshotStore,
    InMemorySourceAdapter,
    InMemoryTargetAdapter,
    RecordingJobReporter,
)
from deskmigrate.catalog import DEFAULT_CATALOG
from deskmigrate.models import (
    ComponentBreakdown,
    InstanceRef,
    MigrationConfig,
    MigrationJob,
    Snapshot,
    SourceSpec,
    SourceType,
    TargetSpec,
)
from deskmigrate.observability import MockTracer
from deskmigrate.orchestrator import JobOrchestrator

# ============================================================================
# Sample records
# ============================================================================

SAMPLE_RECORDS: dict[str, list[dict[str, Any]]] = {
    "custom_statuses": [{"id": 500, "name": "Waiting on vendor"}],
    "groups": [
        {"id": 1, "name": "Support"},
        {"id": 2, "name": "Billing"},
    ],
    "ticket_fields": [
        {"id": 10, "title": "Priority"},
        {"id": 11, "title": "Product"},
        {"id": 12, "title": "Region"},
    ],
    "ticket_forms": [
        {"id": 100, "name": "Default form", "ticket_field_ids": [10, 11]},
    ],
    "macros": [
        {"id": "m1", "title": "Close and thank", "group_ids": [1]},
        {"id": "m2", "title": "Escalate to billing", "group_ids": [2]},
    ],
}


def make_instance(instance_id: str, name: str, subdomain: str | None = None) -> InstanceRef:
    return InstanceRef(
        id=instance_id,
        name=name,
        subdomain=subdomain or name.lower().replace(" ", "-"),
        tags=frozenset({"test"}),
        credentials={"token": f"secret-{instance_id}", "email": "admin@example.com"},
    )


def make_snapshot(
    components: Iterable[str] | None = None,
    *,
    snapshot_id: str = "snap-1",
    locked: bool = False,
) -> Snapshot:
    names = DEFAULT_CATALOG.names if components is None else tuple(components)
    return Snapshot(
        id=snapshot_id,
        name=f"Nightly {snapshot_id}",
        locked=locked,
        breakdown={
            name: ComponentBreakdown(
                record_count=len(SAMPLE_RECORDS.get(name, [])),
                byte_size=1024,
                storage_location=f"snapshots/{snapshot_id}/{name}.json",
            )
            for name in names
        },
    )


def make_payload(
    *,
    source_type: str = "snapshot",
    snapshot_id: int | None = 1,
    components: list[str] | None = None,
    ignored_items: list[str] | None = None,
) -> dict[str, Any]:
    """Build a submission payload in the endpoint's camelCase shape."""

    def instance_info(instance_id: int, name: str) -> dict[str, Any]:
        return {
            "id": instance_id,
            "name": name,
            "subdomain": name.lower(),
            "tags": ["prod"],
            "credentials": {"token": f"token-{instance_id}", "email": "ops@example.com"},
        }

    source: dict[str, Any] = {"type": source_type, "instanceInfo": instance_info(1, "Acme")}
    if snapshot_id is not None:
        source["snapshotId"] = snapshot_id
    payload: dict[str, Any] = {
        "source": source,
        "target": {"instanceInfo": instance_info(2, "Globex")},
    }
    if components is not None:
        payload["components"] = components
    if ignored_items is not None:
        payload["ignoredItems"] = ignored_items
    return payload


# ============================================================================
# Instance and snapshot fixtures
# ============================================================================


@pytest.fixture
def source_instance() -> InstanceRef:
    return make_instance("src-1", "Acme")


@pytest.fixture
def target_instance() -> InstanceRef:
    return make_instance("tgt-1", "Globex")


@pytest.fixture
def snapshot() -> Snapshot:
    return make_snapshot()


# ============================================================================
# In-memory collaborators
# ============================================================================


@pytest.fixture
def source_adapter() -> InMemorySourceAdapter:
    return InMemorySourceAdapter(SAMPLE_RECORDS)


@pytest.fixture
def target_adapter() -> InMemoryTargetAdapter:
    return InMemoryTargetAdapter()


@pytest.fixture
def snapshot_store(snapshot: Snapshot) -> InMemorySnapshotStore:
    return InMemorySnapshotStore(
        [
            snapshot,
            make_snapshot(snapshot_id="snap-locked", locked=True),
            make_snapshot(["groups", "ticket_fields"], snapshot_id="snap-partial"),
            Snapshot(id="snap-empty", name="Broken", breakdown=None),
        ]
    )


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def reporter() -> RecordingJobReporter:
    return RecordingJobReporter()


@pytest.fixture
def registry(
    source_adapter: InMemorySourceAdapter,
    target_adapter: InMemoryTargetAdapter,
) -> AdapterRegistry:
    return AdapterRegistry(default_source=source_adapter, default_target=target_adapter)


@pytest.fixture
def mock_tracer() -> MockTracer:
    return MockTracer()


# ============================================================================
# Jobs and orchestrator
# ============================================================================


@pytest.fixture
def make_job(
    source_instance: InstanceRef,
    target_instance: InstanceRef,
) -> Callable[..., MigrationJob]:
    """
    Factory fixture for jobs.

    Defaults to a snapshot source on ``snap-1``.
    """
    counter = iter(range(1, 1000))

    def factory(
        components: Iterable[str] | None = None,
        *,
        ignored: Iterable[str] = (),
        source_type: SourceType = SourceType.SNAPSHOT,
        snapshot_id: str | None = "snap-1",
        job_id: str | None = None,
        target: InstanceRef | None = None,
    ) -> MigrationJob:
        return MigrationJob(
            id=job_id or f"migration-test-{next(counter)}",
            source=SourceSpec(
                type=source_type,
                instance=source_instance,
                snapshot_id=snapshot_id if source_type == SourceType.SNAPSHOT else None,
            ),
            target=TargetSpec(instance=target or target_instance),
            components=tuple(components) if components is not None else None,
            ignored_items=tuple(ignored),
        )

    return factory


@pytest.fixture
def config() -> MigrationConfig:
    return MigrationConfig()


@pytest.fixture
def orchestrator(
    registry: AdapterRegistry,
    snapshot_store: InMemorySnapshotStore,
    reporter: RecordingJobReporter,
    audit_sink: InMemoryAuditSink,
    mock_tracer: MockTracer,
    config: MigrationConfig,
) -> JobOrchestrator:
    return JobOrchestrator(
        DEFAULT_CATALOG,
        registry,
        snapshot_store,
        config=config,
        reporter=reporter,
        audit_sink=audit_sink,
        tracer=mock_tracer,
        enable_metrics=False,
    )


# ============================================================================
# Factory fixtures for test modules
# ============================================================================


@pytest.fixture
def sample_records() -> dict[str, list[dict[str, Any]]]:
    return {component: [dict(r) for r in records] for component, records in SAMPLE_RECORDS.items()}


@pytest.fixture
def snapshot_factory() -> Callable[..., Snapshot]:
    return make_snapshot


@pytest.fixture
def instance_factory() -> Callable[..., InstanceRef]:
    return make_instance


@pytest.fixture
def payload_factory() -> Callable[..., dict[str, Any]]:
    return make_payload
