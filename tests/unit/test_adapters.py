"""
Unit tests for the adapter registry and in-memory adapters.

Tests cover:
- Registry defaults, overrides and missing-adapter checks
- Protocol conformance of the in-memory implementations
- InMemorySourceAdapter record resolution and copying
- InMemoryTargetAdapter id minting and injected failures
- Reporters
"""

import logging

import pytest

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
from deskmigrate.exceptions import ValidationError
from deskmigrate.models import IdMapping, JobResult, JobStatus, SourceSpec, SourceType, TargetSpec


class TestProtocols:
    """The in-memory classes satisfy the runtime protocols."""

    def test_conformance(self):
        assert isinstance(InMemorySourceAdapter(), SourceAdapter)
        assert isinstance(InMemoryTargetAdapter(), TargetAdapter)
        assert isinstance(InMemorySnapshotStore(), SnapshotStore)
        assert isinstance(InMemoryAuditSink(), AuditSink)
        assert isinstance(RecordingJobReporter(), JobReporter)
        assert isinstance(LoggingJobReporter(), JobReporter)


class TestAdapterRegistry:
    """Tests for AdapterRegistry."""

    def test_defaults_used(self, source_adapter, target_adapter):
        registry = AdapterRegistry(default_source=source_adapter, default_target=target_adapter)

        assert registry.source_for("groups") is source_adapter
        assert registry.target_for("apps") is target_adapter
        assert registry.has("apps")

    def test_override_per_component(self, source_adapter, target_adapter):
        apps_target = InMemoryTargetAdapter(id_prefix="app-")
        registry = AdapterRegistry(default_source=source_adapter, default_target=target_adapter)

        registry.register("apps", target=apps_target)

        assert registry.target_for("apps") is apps_target
        assert registry.source_for("apps") is source_adapter
        assert registry.target_for("groups") is target_adapter

    def test_register_requires_an_adapter(self):
        with pytest.raises(ValueError):
            AdapterRegistry().register("apps")

    def test_missing_adapter(self, source_adapter):
        registry = AdapterRegistry(default_source=source_adapter)

        with pytest.raises(ValidationError, match="No target adapter for component: groups"):
            registry.target_for("groups")

    def test_check_names_every_missing_component(self, source_adapter, target_adapter):
        registry = AdapterRegistry()
        registry.register("groups", source=source_adapter, target=target_adapter)
        registry.register("macros", source=source_adapter)

        with pytest.raises(ValidationError) as exc_info:
            registry.check(["groups", "macros", "views"])

        assert exc_info.value.unknown_components == ["macros", "views"]


class TestInMemorySourceAdapter:
    """Tests for InMemorySourceAdapter."""

    @pytest.mark.asyncio
    async def test_returns_copies(self, make_job, source_adapter):
        job = make_job(["groups"])

        first = await source_adapter.fetch("groups", job.source)
        first[0]["name"] = "changed"
        second = await source_adapter.fetch("groups", job.source)

        assert second[0]["name"] == "Support"

    @pytest.mark.asyncio
    async def test_unknown_component_is_empty(self, make_job, source_adapter):
        job = make_job(["apps"])

        assert await source_adapter.fetch("apps", job.source) == []

    @pytest.mark.asyncio
    async def test_snapshot_blob_preferred(self, source_instance, snapshot, source_adapter):
        source_adapter.add_snapshot_blob("snapshots/snap-1/groups.json", [{"id": 50}])
        source = SourceSpec(
            type=SourceType.SNAPSHOT,
            instance=source_instance,
            snapshot_id="snap-1",
            snapshot=snapshot,
        )

        assert await source_adapter.fetch("groups", source) == [{"id": 50}]

    @pytest.mark.asyncio
    async def test_injected_failure(self, make_job, source_adapter):
        source_adapter.fail_on("groups")

        with pytest.raises(RuntimeError, match="simulated fetch failure"):
            await source_adapter.fetch("groups", make_job(["groups"]).source)

        assert source_adapter.fetched_components == ["groups"]


class TestInMemoryTargetAdapter:
    """Tests for InMemoryTargetAdapter."""

    @pytest.mark.asyncio
    async def test_sequential_ids(self, target_instance):
        adapter = InMemoryTargetAdapter(id_prefix="z-", start=10)
        target = TargetSpec(target_instance)

        first = await adapter.create("groups", {"id": 1}, target)
        second = await adapter.create("brands", {"id": 1}, target)

        assert (first, second) == ("z-10", "z-11")
        assert adapter.created_components == ["groups", "brands"]
        assert adapter.created[0].target_instance_id == target_instance.id

    @pytest.mark.asyncio
    async def test_fail_on_nth_create(self, target_instance):
        adapter = InMemoryTargetAdapter()
        adapter.fail_on("macros", 2)
        target = TargetSpec(target_instance)

        await adapter.create("macros", {"id": "m1"}, target)
        with pytest.raises(RuntimeError, match="macros #2"):
            await adapter.create("macros", {"id": "m2"}, target)

        assert len(adapter.created_for("macros")) == 1

    def test_fail_on_validates_nth(self):
        with pytest.raises(ValueError):
            InMemoryTargetAdapter().fail_on("macros", 0)


class TestInMemoryStores:
    """Tests for the snapshot store and audit sink."""

    @pytest.mark.asyncio
    async def test_snapshot_store(self, snapshot_factory):
        store = InMemorySnapshotStore()
        await store.add(snapshot_factory(snapshot_id="snap-9"))

        assert (await store.resolve("snap-9")).id == "snap-9"
        assert await store.resolve("snap-0") is None

    @pytest.mark.asyncio
    async def test_audit_sink(self):
        sink = InMemoryAuditSink()
        await sink.append("job-a", IdMapping("groups", "1", "t-1"))

        assert await sink.count_by_job("job-a") == 1
        sink.clear()
        assert await sink.get_by_job("job-a") == []


class TestReporters:
    """Tests for the reporters."""

    @pytest.mark.asyncio
    async def test_recording_reporter_filters_by_job(self):
        reporter = RecordingJobReporter()

        await reporter.progress("job-a", 50.0)
        await reporter.log("job-b", "hello")
        await reporter.log("job-a", "world")

        assert reporter.progress_updates("job-a") == [50.0]
        assert reporter.logs("job-a") == ["world"]
        assert reporter.results("job-a") == []

    @pytest.mark.asyncio
    async def test_logging_reporter(self, caplog):
        reporter = LoggingJobReporter()
        result = JobResult(job_id="job-a", status=JobStatus.COMPLETED, progress_percent=100.0)

        with caplog.at_level(logging.INFO, logger="deskmigrate.jobs"):
            await reporter.log("job-a", "Starting migration of groups")
            await reporter.result("job-a", result)

        assert "[job-a] Starting migration of groups" in caplog.text
        assert "[job-a] completed with 0 id mappings" in caplog.text
