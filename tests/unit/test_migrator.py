"""
Unit tests for ComponentMigrator.

Tests cover:
- Fetch, translate, create and record for a single component
- Reference translation for scalar and list fields
- Fail-fast behaviour on fetch, translate and create errors
- Audit sink and reporter side effects
- Retry of transient adapter errors
"""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from deskmigrate.adapters import AdapterRegistry
from deskmigrate.catalog import DEFAULT_CATALOG
from deskmigrate.exceptions import (
    AdapterError,
    ErrorHandler,
    RetryConfig,
    TranslationError,
    ValidationError,
)
from deskmigrate.migrator import ComponentMigrator, wrap_adapter_error
from deskmigrate.models import ComponentStatus, MigrationConfig, SourceType
from deskmigrate.translator import IdentifierTranslator


@pytest.fixture
def migrator(registry, audit_sink, mock_tracer) -> ComponentMigrator:
    return ComponentMigrator(
        DEFAULT_CATALOG,
        registry,
        audit_sink=audit_sink,
        tracer=mock_tracer,
    )


@pytest.fixture
def translator() -> IdentifierTranslator:
    return IdentifierTranslator("test")


async def migrate(migrator, component, job, translator, migrated=(), **kwargs):
    return await migrator.migrate(
        component,
        job=job,
        source=job.source,
        translator=translator,
        migrated_components=list(migrated),
        **kwargs,
    )


class TestMigrateComponent:
    """Tests for a successful component migration."""

    @pytest.mark.asyncio
    async def test_creates_every_record(self, migrator, make_job, translator, target_adapter):
        job = make_job(["groups"])

        state = await migrate(migrator, "groups", job, translator)

        assert state.status == ComponentStatus.SUCCEEDED
        assert state.source_record_count == 2
        assert state.created_count == 2
        assert [e.target_id for e in target_adapter.created_for("groups")] == ["t-1", "t-2"]
        assert job.component_states == [state]

    @pytest.mark.asyncio
    async def test_records_one_mapping_per_create(self, migrator, make_job, translator):
        job = make_job(["groups"])

        await migrate(migrator, "groups", job, translator)

        assert translator.resolve("groups", 1) == "t-1"
        assert translator.resolve("groups", 2) == "t-2"
        mapping = translator.mappings("groups")[0]
        assert mapping.metadata == {"name": "Support"}
        assert mapping.job_id == job.id

    @pytest.mark.asyncio
    async def test_appends_to_audit_sink(self, migrator, make_job, translator, audit_sink):
        job = make_job(["groups"])

        await migrate(migrator, "groups", job, translator)

        rows = await audit_sink.get_by_job(job.id)
        assert [(m.entity_type, m.source_id, m.target_id) for m in rows] == [
            ("groups", "1", "t-1"),
            ("groups", "2", "t-2"),
        ]

    @pytest.mark.asyncio
    async def test_empty_component_succeeds(self, migrator, make_job, translator, source_adapter):
        source_adapter.add_records("webhooks", [])
        job = make_job(["webhooks"])

        state = await migrate(migrator, "webhooks", job, translator)

        assert state.status == ComponentStatus.SUCCEEDED
        assert state.created_count == 0

    @pytest.mark.asyncio
    async def test_stage_callback_sees_every_stage(self, migrator, make_job, translator):
        job = make_job(["groups"])
        seen = []

        async def on_stage(state):
            seen.append(state.status)

        await migrate(migrator, "groups", job, translator, on_stage=on_stage)

        assert seen == [
            ComponentStatus.FETCHING,
            ComponentStatus.TRANSLATING,
            ComponentStatus.CREATING,
            ComponentStatus.SUCCEEDED,
        ]

    @pytest.mark.asyncio
    async def test_spans(self, migrator, make_job, translator, mock_tracer):
        job = make_job(["groups"])

        await migrate(migrator, "groups", job, translator)

        assert mock_tracer.span_names == [
            "deskmigrate.migrator.migrate",
            "deskmigrate.migrator.fetch",
            "deskmigrate.migrator.create",
            "deskmigrate.migrator.create",
        ]

    @pytest.mark.asyncio
    async def test_reads_snapshot_blob(
        self, migrator, make_job, translator, source_adapter, snapshot, target_adapter
    ):
        source_adapter.add_snapshot_blob(
            "snapshots/snap-1/groups.json", [{"id": 99, "name": "From snapshot"}]
        )
        job = make_job(["groups"])

        await migrator.migrate(
            "groups",
            job=job,
            source=job.source.with_snapshot(snapshot),
            translator=translator,
            migrated_components=[],
        )

        assert [e.record["name"] for e in target_adapter.created] == ["From snapshot"]

    @pytest.mark.asyncio
    async def test_reads_live_records(
        self, migrator, make_job, translator, source_adapter, source_instance, target_adapter
    ):
        source_adapter.add_live_records(source_instance.id, "groups", [{"id": 5, "name": "Live"}])
        job = make_job(["groups"], source_type=SourceType.LIVE)

        await migrate(migrator, "groups", job, translator)

        assert translator.resolve("groups", 5) == "t-1"


class TestTranslation:
    """Tests for reference rewriting."""

    @pytest.mark.asyncio
    async def test_list_references_rewritten(
        self, migrator, make_job, translator, target_adapter
    ):
        job = make_job(["ticket_fields", "ticket_forms"])
        await migrate(migrator, "ticket_fields", job, translator)

        await migrate(migrator, "ticket_forms", job, translator, migrated=["ticket_fields"])

        form = target_adapter.created_for("ticket_forms")[0]
        assert form.record["ticket_field_ids"] == [
            translator.resolve("ticket_fields", 10),
            translator.resolve("ticket_fields", 11),
        ]
        assert form.record["id"] == 100

    @pytest.mark.asyncio
    async def test_scalar_reference_rewritten(
        self, migrator, make_job, translator, source_adapter, target_adapter
    ):
        source_adapter.add_records("views", [{"id": "v1", "title": "Mine", "group_id": 2}])
        translator.record("groups", 2, "g-200")
        job = make_job(["views"])

        await migrate(migrator, "views", job, translator, migrated=["groups"])

        assert target_adapter.created_for("views")[0].record["group_id"] == "g-200"

    @pytest.mark.asyncio
    async def test_source_records_not_modified(
        self, migrator, make_job, translator, source_adapter
    ):
        job = make_job(["ticket_fields", "ticket_forms"])
        await migrate(migrator, "ticket_fields", job, translator)

        await migrate(migrator, "ticket_forms", job, translator, migrated=["ticket_fields"])

        refetched = await source_adapter.fetch("ticket_forms", job.source)
        assert refetched[0]["ticket_field_ids"] == [10, 11]

    @pytest.mark.asyncio
    async def test_absent_and_null_references_left_alone(
        self, migrator, make_job, translator, source_adapter, target_adapter
    ):
        source_adapter.add_records(
            "views",
            [{"id": "v1", "title": "No group"}, {"id": "v2", "title": "Null", "group_id": None}],
        )
        job = make_job(["views"])

        state = await migrate(migrator, "views", job, translator)

        assert state.created_count == 2
        assert "group_id" not in target_adapter.created_for("views")[0].record

    @pytest.mark.asyncio
    async def test_unmigrated_referenced_component(
        self, migrator, make_job, translator, target_adapter
    ):
        job = make_job(["ticket_forms"])

        with pytest.raises(TranslationError) as exc_info:
            await migrate(migrator, "ticket_forms", job, translator)

        error = exc_info.value
        assert error.component == "ticket_forms"
        assert error.field == "ticket_field_ids"
        assert error.referenced_type == "ticket_fields"
        assert error.record_id == "100"
        assert "has not been migrated" in str(error)
        assert target_adapter.created == []
        assert job.component_state("ticket_forms").status == ComponentStatus.FAILED

    @pytest.mark.asyncio
    async def test_unmapped_id_of_migrated_component(
        self, migrator, make_job, translator, source_adapter
    ):
        source_adapter.add_records("ticket_forms", [{"id": 101, "ticket_field_ids": [10, 404]}])
        job = make_job(["ticket_fields", "ticket_forms"])
        await migrate(migrator, "ticket_fields", job, translator)

        with pytest.raises(TranslationError) as exc_info:
            await migrate(migrator, "ticket_forms", job, translator, migrated=["ticket_fields"])

        assert exc_info.value.referenced_id == "404"
        assert "has no mapping" in str(exc_info.value)


class TestFailures:
    """Tests for fail-fast behaviour."""

    @pytest.mark.asyncio
    async def test_fetch_failure_wrapped(self, migrator, make_job, translator, source_adapter):
        source_adapter.fail_on("groups", ConnectionError("timeout"))
        job = make_job(["groups"])

        with pytest.raises(AdapterError) as exc_info:
            await migrate(migrator, "groups", job, translator)

        error = exc_info.value
        assert error.operation == "fetch"
        assert error.component == "groups"
        assert "timeout" in str(error)
        assert isinstance(error.__cause__, ConnectionError)
        assert job.component_state("groups").status == ComponentStatus.FAILED

    @pytest.mark.asyncio
    async def test_record_without_id(self, migrator, make_job, translator, source_adapter):
        source_adapter.add_records("groups", [{"name": "No id"}])
        job = make_job(["groups"])

        with pytest.raises(AdapterError, match="Record 0 of groups has no id"):
            await migrate(migrator, "groups", job, translator)

    @pytest.mark.asyncio
    async def test_create_failure_stops_component(
        self, migrator, make_job, translator, target_adapter, audit_sink
    ):
        target_adapter.fail_on("groups", 2)
        job = make_job(["groups"])

        with pytest.raises(AdapterError) as exc_info:
            await migrate(migrator, "groups", job, translator)

        assert exc_info.value.source_id == "2"
        assert exc_info.value.operation == "create"
        state = job.component_state("groups")
        assert state.status == ComponentStatus.FAILED
        assert state.created_count == 1
        assert translator.resolve("groups", 1) == "t-1"
        assert translator.resolve("groups", 2) is None
        assert await audit_sink.count_by_job(job.id) == 1

    @pytest.mark.asyncio
    async def test_target_returning_no_id(self, make_job, translator, source_adapter):
        target = MagicMock()
        target.create = AsyncMock(return_value=None)
        migrator = ComponentMigrator(
            DEFAULT_CATALOG,
            AdapterRegistry(default_source=source_adapter, default_target=target),
            enable_tracing=False,
        )
        job = make_job(["groups"])

        with pytest.raises(AdapterError, match="Target returned no id"):
            await migrate(migrator, "groups", job, translator)

    @pytest.mark.asyncio
    async def test_audit_failure_only_logged(
        self, registry, make_job, translator, caplog
    ):
        sink = MagicMock()
        sink.append = AsyncMock(side_effect=RuntimeError("db down"))
        migrator = ComponentMigrator(
            DEFAULT_CATALOG, registry, audit_sink=sink, enable_tracing=False
        )
        job = make_job(["groups"])

        with caplog.at_level(logging.ERROR, logger="deskmigrate.migrator"):
            state = await migrate(migrator, "groups", job, translator)

        assert state.status == ComponentStatus.SUCCEEDED
        assert len(translator) == 2
        assert "Audit sink failed" in caplog.text

    @pytest.mark.asyncio
    async def test_unknown_component(self, migrator, make_job, translator):
        job = make_job(["groups"])

        with pytest.raises(ValidationError):
            await migrate(migrator, "tickets", job, translator)

        assert job.component_state("tickets").status == ComponentStatus.FAILED


class TestRetry:
    """Tests for transient adapter errors."""

    @pytest.mark.asyncio
    async def test_transient_create_error_retried(self, make_job, translator, source_adapter):
        target = MagicMock()
        target.create = AsyncMock(
            side_effect=[AdapterError("429", transient=True), "x-1", "x-2"]
        )
        sleep = AsyncMock()
        migrator = ComponentMigrator(
            DEFAULT_CATALOG,
            AdapterRegistry(default_source=source_adapter, default_target=target),
            error_handler=ErrorHandler(RetryConfig(max_attempts=3), sleep=sleep),
            enable_tracing=False,
        )
        job = make_job(["groups"])

        state = await migrate(migrator, "groups", job, translator)

        assert state.created_count == 2
        assert translator.resolve("groups", 1) == "x-1"
        assert target.create.await_count == 3
        sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_config_retry_policy_used(self, make_job, translator, source_adapter):
        target = MagicMock()
        target.create = AsyncMock(side_effect=AdapterError("503", transient=True))
        migrator = ComponentMigrator(
            DEFAULT_CATALOG,
            AdapterRegistry(default_source=source_adapter, default_target=target),
            config=MigrationConfig(adapter_retry=RetryConfig(max_attempts=2, base_delay_ms=0.0)),
            enable_tracing=False,
        )
        job = make_job(["groups"])

        with pytest.raises(AdapterError):
            await migrate(migrator, "groups", job, translator)

        assert target.create.await_count == 2


class TestRecordLogging:
    """Tests for per-record log lines."""

    @pytest.mark.asyncio
    async def test_record_log_every(self, registry, reporter, make_job, translator):
        migrator = ComponentMigrator(
            DEFAULT_CATALOG,
            registry,
            config=MigrationConfig(record_log_every=2),
            reporter=reporter,
            enable_tracing=False,
        )
        job = make_job(["ticket_fields"])

        await migrate(migrator, "ticket_fields", job, translator)

        assert reporter.logs(job.id) == [
            "ticket_fields: created 2/3",
            "ticket_fields: created 3/3",
        ]

    @pytest.mark.asyncio
    async def test_disabled_by_default(self, registry, reporter, make_job, translator):
        migrator = ComponentMigrator(
            DEFAULT_CATALOG, registry, reporter=reporter, enable_tracing=False
        )
        job = make_job(["groups"])

        await migrate(migrator, "groups", job, translator)

        assert reporter.logs(job.id) == []


class TestWrapAdapterError:
    """Tests for wrap_adapter_error()."""

    def test_wraps_foreign_exception(self):
        original = ValueError("422 Unprocessable")

        error = wrap_adapter_error(original, component="macros", operation="create", source_id="7")

        assert error.message == "create failed: 422 Unprocessable"
        assert error.source_id == "7"
        assert error.__cause__ is original

    def test_fills_missing_context_on_adapter_error(self):
        original = AdapterError("boom", transient=True)

        error = wrap_adapter_error(original, component="macros", operation="create", source_id="7")

        assert error is original
        assert error.component == "macros"
        assert error.source_id == "7"
        assert error.transient

    def test_empty_message_uses_type_name(self):
        error = wrap_adapter_error(TimeoutError(), component="groups", operation="fetch")

        assert error.message == "fetch failed: TimeoutError"
