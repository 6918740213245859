"""
ComponentMigrator - Moves every record of one component into the target.

A component migration runs four stages:

    1. Fetch: read the component's records through its SourceAdapter.
    2. Translate: rewrite every declared reference field from source ids to
       target ids through the IdentifierTranslator. Records are copied; the
       fetched records are never modified.
    3. Create: create each translated record through the TargetAdapter.
    4. Record: immediately after each successful create, record the mapping
       and append it to the audit sink.

The first failing record aborts the component (fail-fast). Entities already
created stay in the target and their mappings stay recorded.

Usage:
    >>> migrator = ComponentMigrator(DEFAULT_CATALOG, registry)
    >>> state = await migrator.migrate(
    ...     "groups",
    ...     job=job,
    ...     source=job.source,
    ...     translator=translator,
    ...     migrated_components={"custom_statuses"},
    ... )
    >>> state.status
    <ComponentStatus.SUCCEEDED: 'succeeded'>
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Collection, Mapping, Sequence
from typing import Any

from deskmigrate.adapters.interface import (
    AuditSink,
    JobReporter,
    SourceAdapter,
    TargetAdapter,
)
from deskmigrate.adapters.registry import AdapterRegistry
from deskmigrate.catalog import ComponentCatalog, ComponentType, ReferenceField
from deskmigrate.exceptions import (
    AdapterError,
    ErrorHandler,
    TranslationError,
    as_migration_error,
)
from deskmigrate.metrics import JobMetrics
from deskmigrate.models import (
    ComponentMigrationState,
    ComponentStatus,
    IdMapping,
    MigrationConfig,
    MigrationJob,
    SourceSpec,
    TargetSpec,
)
from deskmigrate.observability import Tracer, create_tracer
from deskmigrate.observability.attributes import (
    ATTR_COMPONENT,
    ATTR_JOB_ID,
    ATTR_SOURCE_RECORD_ID,
)
from deskmigrate.translator import IdentifierTranslator

logger = logging.getLogger(__name__)

StageCallback = Callable[[ComponentMigrationState], Awaitable[None]]

# Record fields copied into IdMapping metadata when present.
_METADATA_FIELDS = ("name", "title", "key")


def wrap_adapter_error(
    exc: BaseException,
    *,
    component: str,
    operation: str,
    source_id: str | None = None,
) -> AdapterError:
    """Return ``exc`` as an AdapterError carrying component and source id."""
    if isinstance(exc, AdapterError):
        if exc.component is None:
            exc.component = component
        if exc.source_id is None:
            exc.source_id = source_id
        return exc
    error = AdapterError(
        f"{operation} failed: {str(exc) or type(exc).__name__}",
        component=component,
        operation=operation,
        source_id=source_id,
    )
    error.__cause__ = exc
    return error


class ComponentMigrator:
    """
    Runs fetch, translate, create and record for one component at a time.

    Args:
        catalog: Component catalog, for the reference declarations.
        adapters: Source and target adapters per component.
        config: Engine configuration (retry policy, record log cadence).
        audit_sink: Optional durable log of IdMappings.
        reporter: Optional job reporter for per-record log lines.
        error_handler: Retry wrapper for adapter calls; built from
            ``config.adapter_retry`` when omitted.
        tracer: Optional custom Tracer instance.
        enable_tracing: Whether to enable OpenTelemetry tracing.
    """

    def __init__(
        self,
        catalog: ComponentCatalog,
        adapters: AdapterRegistry,
        *,
        config: MigrationConfig | None = None,
        audit_sink: AuditSink | None = None,
        reporter: JobReporter | None = None,
        error_handler: ErrorHandler | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._catalog = catalog
        self._adapters = adapters
        self._config = config or MigrationConfig()
        self._audit_sink = audit_sink
        self._reporter = reporter
        self._error_handler = error_handler or ErrorHandler(self._config.adapter_retry)

    async def migrate(
        self,
        component: str,
        *,
        job: MigrationJob,
        source: SourceSpec,
        translator: IdentifierTranslator,
        migrated_components: Collection[str],
        on_stage: StageCallback | None = None,
        metrics: JobMetrics | None = None,
    ) -> ComponentMigrationState:
        """
        Migrate every record of ``component``.

        The component's state is appended to ``job.component_states`` before
        the first stage, so it is visible to the caller even on failure.

        Args:
            component: Component name.
            job: The running job.
            source: Source spec, with the resolved snapshot attached for
                snapshot sources.
            translator: Identifier table for this job.
            migrated_components: Components already migrated by this job.
            on_stage: Awaited after every stage change.
            metrics: Optional job metrics.

        Returns:
            The SUCCEEDED component state.

        Raises:
            TranslationError: A reference could not be rewritten.
            AdapterError: A fetch or create failed.
            MigrationError: Any other failure, uncategorised ones wrapped
                in UnknownError.
        """
        state = ComponentMigrationState(component=component)
        job.component_states.append(state)

        async def advance(status: ComponentStatus, error: str | None = None) -> None:
            state.advance(status, error=error)
            if on_stage is not None:
                await on_stage(state)

        with self._tracer.span(
            "deskmigrate.migrator.migrate",
            {ATTR_JOB_ID: job.id, ATTR_COMPONENT: component},
        ):
            try:
                component_type = self._catalog.get(component)
                source_adapter = self._adapters.source_for(component)
                target_adapter = self._adapters.target_for(component)

                await advance(ComponentStatus.FETCHING)
                records = await self._fetch(source_adapter, component, source, job)
                state.source_record_count = len(records)

                await advance(ComponentStatus.TRANSLATING)
                translated = [
                    self._translate(component_type, record, translator, migrated_components)
                    for record in records
                ]

                await advance(ComponentStatus.CREATING)
                for record in translated:
                    await self._create_and_record(
                        target_adapter,
                        component,
                        record,
                        job=job,
                        target=job.target,
                        translator=translator,
                        state=state,
                        metrics=metrics,
                    )

                await advance(ComponentStatus.SUCCEEDED)
                return state

            except Exception as e:
                error = as_migration_error(e, component=component)
                if not state.status.is_terminal:
                    await advance(ComponentStatus.FAILED, str(error))
                if error is e:
                    raise
                raise error from e

    async def _fetch(
        self,
        adapter: SourceAdapter,
        component: str,
        source: SourceSpec,
        job: MigrationJob,
    ) -> list[Mapping[str, Any]]:
        async def operation() -> Sequence[Mapping[str, Any]]:
            try:
                return await adapter.fetch(component, source)
            except Exception as e:
                raise wrap_adapter_error(e, component=component, operation="fetch")

        with self._tracer.span(
            "deskmigrate.migrator.fetch",
            {ATTR_JOB_ID: job.id, ATTR_COMPONENT: component},
        ):
            records = list(
                await self._error_handler.execute_with_retry(
                    operation, f"fetch {component}"
                )
            )

        for index, record in enumerate(records):
            if not isinstance(record, Mapping) or record.get("id") is None:
                raise AdapterError(
                    f"Record {index} of {component} has no id",
                    component=component,
                    operation="fetch",
                )

        logger.debug("Fetched %d %s records for job %s", len(records), component, job.id)
        return records

    def _translate(
        self,
        component_type: ComponentType,
        record: Mapping[str, Any],
        translator: IdentifierTranslator,
        migrated_components: Collection[str],
    ) -> dict[str, Any]:
        """Return a copy of ``record`` with every declared reference rewritten."""
        translated = dict(record)
        for ref in component_type.references:
            value = translated.get(ref.field)
            if value is None:
                continue
            if isinstance(value, list | tuple):
                translated[ref.field] = [
                    self._resolve_reference(
                        component_type.name, ref, item, record, translator, migrated_components
                    )
                    for item in value
                ]
            else:
                translated[ref.field] = self._resolve_reference(
                    component_type.name, ref, value, record, translator, migrated_components
                )
        return translated

    def _resolve_reference(
        self,
        component: str,
        ref: ReferenceField,
        value: Any,
        record: Mapping[str, Any],
        translator: IdentifierTranslator,
        migrated_components: Collection[str],
    ) -> str:
        target_id = translator.resolve(ref.component, value)
        if target_id is not None:
            return target_id

        if ref.component in migrated_components or translator.mappings(ref.component):
            message = f"{ref.field} references {ref.component} {value}, which has no mapping"
        else:
            message = (
                f"{ref.field} references {ref.component} {value}, "
                f"but {ref.component} has not been migrated to this target"
            )
        raise TranslationError(
            message,
            component=component,
            field=ref.field,
            referenced_type=ref.component,
            referenced_id=str(value),
            record_id=str(record["id"]),
        )

    async def _create_and_record(
        self,
        adapter: TargetAdapter,
        component: str,
        record: Mapping[str, Any],
        *,
        job: MigrationJob,
        target: TargetSpec,
        translator: IdentifierTranslator,
        state: ComponentMigrationState,
        metrics: JobMetrics | None,
    ) -> IdMapping:
        source_id = str(record["id"])

        async def operation() -> str | int:
            try:
                target_id = await adapter.create(component, record, target)
            except Exception as e:
                raise wrap_adapter_error(
                    e, component=component, operation="create", source_id=source_id
                )
            if target_id is None or target_id == "":
                raise AdapterError(
                    "Target returned no id",
                    component=component,
                    operation="create",
                    source_id=source_id,
                )
            return target_id

        with self._tracer.span(
            "deskmigrate.migrator.create",
            {ATTR_JOB_ID: job.id, ATTR_COMPONENT: component, ATTR_SOURCE_RECORD_ID: source_id},
        ):
            target_id = await self._error_handler.execute_with_retry(
                operation, f"create {component} {source_id}"
            )

        metadata = {key: record[key] for key in _METADATA_FIELDS if key in record}
        mapping = translator.record(component, source_id, target_id, metadata, job_id=job.id)
        state.created_count += 1
        if metrics is not None:
            metrics.record_created(component)

        await self._append_audit(job, mapping)
        await self._log_record_progress(job, state)
        return mapping

    async def _append_audit(self, job: MigrationJob, mapping: IdMapping) -> None:
        if self._audit_sink is None:
            return
        try:
            await self._audit_sink.append(
                job.id, mapping, target_instance_id=job.target.instance.id
            )
        except Exception:
            logger.exception(
                "Audit sink failed for %s:%s in job %s",
                mapping.entity_type,
                mapping.source_id,
                job.id,
            )

    async def _log_record_progress(self, job: MigrationJob, state: ComponentMigrationState) -> None:
        every = self._config.record_log_every
        if not every or self._reporter is None:
            return
        if state.created_count % every == 0 or state.created_count == state.source_record_count:
            await self._reporter.log(
                job.id,
                f"{state.component}: created {state.created_count}/{state.source_record_count}",
            )


__all__ = ["ComponentMigrator", "StageCallback", "wrap_adapter_error"]
