"""
JobOrchestrator - Drives a migration job from QUEUED to a terminal status.

The orchestrator is the single owner of a job while it runs. It validates the
job, walks the requested components in catalog order, delegates each one to
the ComponentMigrator, and reports progress, log lines and the final result.

Lifecycle:
    QUEUED -> VALIDATING -> MIGRATING -> COMPLETED
    Any non-terminal status --------> FAILED

Responsibilities:
    - Compute the ordered component list once per job
    - Check adapters and (for snapshot sources) the snapshot before any
      component runs
    - Run components strictly sequentially, in catalog order
    - Report non-decreasing progress after each completed component
    - Fail fast: the first error ends the job, nothing is rolled back
    - Honour cancellation at component boundaries

Usage:
    >>> orchestrator = JobOrchestrator(
    ...     DEFAULT_CATALOG,
    ...     registry,
    ...     snapshot_store,
    ...     reporter=reporter,
    ... )
    >>> result = await orchestrator.run(job)
    >>> result.to_dict()["status"]
    'completed'
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any

from deskmigrate.adapters.in_memory import LoggingJobReporter
from deskmigrate.adapters.interface import AuditSink, JobReporter, SnapshotStore
from deskmigrate.adapters.registry import AdapterRegistry
from deskmigrate.catalog import ComponentCatalog
from deskmigrate.exceptions import (
    CancellationError,
    InvalidStatusTransitionError,
    as_migration_error,
)
from deskmigrate.metrics import JobMetrics
from deskmigrate.migrator import ComponentMigrator
from deskmigrate.models import (
    ComponentMigrationState,
    ComponentStatus,
    IdMapping,
    JobError,
    JobResult,
    JobStatus,
    MigrationConfig,
    MigrationJob,
    SourceSpec,
)
from deskmigrate.observability import Tracer, create_tracer
from deskmigrate.observability.attributes import (
    ATTR_COMPONENT,
    ATTR_JOB_ID,
    ATTR_PROGRESS_PERCENT,
    ATTR_SNAPSHOT_ID,
    ATTR_SOURCE_INSTANCE,
    ATTR_SOURCE_TYPE,
    ATTR_TARGET_INSTANCE,
)
from deskmigrate.translator import IdentifierTranslator, TranslatorProvider
from deskmigrate.validation import SnapshotValidator

logger = logging.getLogger(__name__)

MetricsFactory = Callable[[MigrationJob], JobMetrics]


class JobOrchestrator:
    """
    Runs migration jobs end to end.

    ``run`` never raises for job failures: validation, snapshot, translation
    and adapter errors all produce a FAILED JobResult. Only an attempt to
    run a job that is not QUEUED raises InvalidStatusTransitionError.

    Args:
        catalog: Component catalog defining order and references.
        adapters: Source and target adapters per component.
        snapshot_store: Resolves snapshot ids for snapshot sources.
        config: Engine configuration.
        reporter: Progress, log and result surface (defaults to logging).
        audit_sink: Optional durable log of IdMappings.
        translators: Translator provider; built from
            ``config.translator_scope`` when omitted.
        metrics_factory: Builds the JobMetrics for each job.
        tracer: Optional custom Tracer instance.
        enable_tracing: Whether to enable OpenTelemetry tracing.
        enable_metrics: Whether to report OpenTelemetry metrics.
    """

    def __init__(
        self,
        catalog: ComponentCatalog,
        adapters: AdapterRegistry,
        snapshot_store: SnapshotStore,
        *,
        config: MigrationConfig | None = None,
        reporter: JobReporter | None = None,
        audit_sink: AuditSink | None = None,
        translators: TranslatorProvider | None = None,
        metrics_factory: MetricsFactory | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
        enable_metrics: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._config = config or MigrationConfig()
        if self._config.strict_catalog:
            catalog.validate()

        self._catalog = catalog
        self._adapters = adapters
        self._snapshot_store = snapshot_store
        self._reporter: JobReporter = reporter or LoggingJobReporter()
        self._translators = translators or TranslatorProvider(self._config.translator_scope)
        self._validator = SnapshotValidator()
        self._migrator = ComponentMigrator(
            catalog,
            adapters,
            config=self._config,
            audit_sink=audit_sink,
            reporter=self._reporter,
            tracer=self._tracer,
        )
        self._metrics_factory = metrics_factory or (
            lambda job: JobMetrics(job.id, job.target.instance.id, enable_metrics)
        )
        self._running: dict[str, MigrationJob] = {}
        self._cancelled: set[str] = set()

    @property
    def config(self) -> MigrationConfig:
        return self._config

    @property
    def reporter(self) -> JobReporter:
        return self._reporter

    @property
    def catalog(self) -> ComponentCatalog:
        return self._catalog

    @property
    def running_jobs(self) -> list[str]:
        return list(self._running)

    def cancel(self, job_id: str) -> bool:
        """
        Request cancellation of a job.

        Takes effect before the job's next component starts; the component
        in flight is allowed to finish. Ids of jobs that are not running on
        this orchestrator are ignored.

        Returns:
            True if the job is currently running and will be cancelled.
        """
        if job_id not in self._running:
            logger.info("Ignoring cancellation of job %s: not running", job_id)
            return False
        self._cancelled.add(job_id)
        logger.info("Cancellation requested for job %s", job_id)
        return True

    async def run(self, job: MigrationJob) -> JobResult:
        """
        Run a QUEUED job to completion or failure.

        Args:
            job: The job to run. It is mutated in place.

        Returns:
            The terminal JobResult, also sent to the reporter.

        Raises:
            InvalidStatusTransitionError: If the job is not QUEUED.
        """
        source = job.source
        attributes: dict[str, Any] = {
            ATTR_JOB_ID: job.id,
            ATTR_SOURCE_TYPE: source.type.value,
            ATTR_SOURCE_INSTANCE: source.instance.id,
            ATTR_TARGET_INSTANCE: job.target.instance.id,
        }
        if source.snapshot_id:
            attributes[ATTR_SNAPSHOT_ID] = source.snapshot_id

        with self._tracer.span("deskmigrate.orchestrator.run", attributes):
            self._transition(job, JobStatus.VALIDATING)
            job.started_at = datetime.now(UTC)
            self._running[job.id] = job

            metrics = self._metrics_factory(job)
            translator: IdentifierTranslator | None = None
            current: str | None = None
            failure: Exception | None = None

            logger.info(
                "Starting job %s: %s source %s -> target %s",
                job.id,
                source.type.value,
                source.instance.name,
                job.target.instance.name,
            )

            try:
                await self._log(job, f"Initializing migration job {job.id}")
                ordered, source = await self._validate(job)

                async with self._translators.acquire(job) as translator:
                    self._transition(job, JobStatus.MIGRATING)
                    await self._log(
                        job, f"Migrating components: {', '.join(ordered) or '(none)'}"
                    )

                    if not ordered:
                        await self._set_progress(job, 100.0)

                    migrated: list[str] = []
                    for component in ordered:
                        if job.id in self._cancelled:
                            raise CancellationError(job.id, component)

                        current = component
                        await self._migrate_component(
                            job, component, source, translator, migrated, metrics
                        )
                        current = None
                        migrated.append(component)
                        await self._set_progress(job, 100.0 * len(migrated) / len(ordered))

            except Exception as e:
                failure = e

            finally:
                self._running.pop(job.id, None)
                self._cancelled.discard(job.id)

            mappings = translator.mappings(job_id=job.id) if translator is not None else []
            if failure is None:
                return await self._complete_job(job, mappings, metrics)
            return await self._fail_job(job, failure, current, mappings, metrics)

    async def _validate(self, job: MigrationJob) -> tuple[list[str], SourceSpec]:
        """
        Compute the ordered component list and check the job can run.

        Returns:
            The ordered list and the source spec to migrate from, with the
            resolved snapshot attached for snapshot sources.
        """
        with self._tracer.span("deskmigrate.orchestrator.validate", {ATTR_JOB_ID: job.id}):
            ordered = self._catalog.resolve_components(job.components, job.ignored_items)
            self._adapters.check(ordered)

            source = job.source
            if not source.is_snapshot:
                return ordered, source

            await self._log(job, f"Fetching snapshot {source.snapshot_id}")
            snapshot = await self._snapshot_store.resolve(source.snapshot_id or "")
            if snapshot is not None:
                await self._log(job, f"Validating snapshot {snapshot.name}")

            snapshot = self._validator.validate(snapshot, ordered, snapshot_id=source.snapshot_id)
            await self._log(job, "Snapshot validation successful")
            return ordered, source.with_snapshot(snapshot)

    async def _migrate_component(
        self,
        job: MigrationJob,
        component: str,
        source: SourceSpec,
        translator: IdentifierTranslator,
        migrated: Sequence[str],
        metrics: JobMetrics,
    ) -> ComponentMigrationState:
        async def on_stage(state: ComponentMigrationState) -> None:
            if state.status == ComponentStatus.FETCHING:
                await self._log(job, self._fetch_line(component, source))
            elif state.status == ComponentStatus.CREATING:
                await self._log(
                    job,
                    f"Creating {state.source_record_count} {component} in target "
                    f"instance {job.target.instance.subdomain}",
                )

        with self._tracer.span(
            "deskmigrate.orchestrator.component",
            {
                ATTR_JOB_ID: job.id,
                ATTR_COMPONENT: component,
                ATTR_PROGRESS_PERCENT: job.progress_percent,
            },
        ):
            await self._log(job, f"Starting migration of {component}")
            with metrics.time_component(component):
                state = await self._migrator.migrate(
                    component,
                    job=job,
                    source=source,
                    translator=translator,
                    migrated_components=migrated,
                    on_stage=on_stage,
                    metrics=metrics,
                )

        metrics.record_component_completed(component)
        await self._log(job, f"Completed {component}: {state.created_count} created")
        logger.info(
            "Job %s migrated %s (%d records)",
            job.id,
            component,
            state.created_count,
        )
        return state

    def _fetch_line(self, component: str, source: SourceSpec) -> str:
        if source.is_snapshot and source.snapshot is not None:
            entry = source.snapshot.component(component)
            size = entry.byte_size if entry else 0
            return f"Fetching {component} from snapshot (size: {size} bytes)"
        return f"Fetching {component} from live instance {source.instance.subdomain}"

    async def _set_progress(self, job: MigrationJob, percent: float) -> None:
        percent = max(job.progress_percent, round(percent, 2))
        job.progress_percent = percent
        await self._reporter.progress(job.id, percent)

    async def _complete_job(
        self,
        job: MigrationJob,
        mappings: Sequence[IdMapping],
        metrics: JobMetrics,
    ) -> JobResult:
        """Mark the job COMPLETED and report its result."""
        self._transition(job, JobStatus.COMPLETED)
        job.completed_at = datetime.now(UTC)
        metrics.record_job_finished(job.status.value)

        result = self._build_result(job, mappings)
        await self._report_outcome(
            job, result, f"Migration completed with {len(mappings)} id mappings"
        )

        logger.info(
            "Job %s completed: %d components, %d id mappings",
            job.id,
            len(job.component_states),
            len(mappings),
        )
        return result

    async def _fail_job(
        self,
        job: MigrationJob,
        exc: Exception,
        component: str | None,
        mappings: Sequence[IdMapping],
        metrics: JobMetrics,
    ) -> JobResult:
        """
        Mark the job FAILED and report its result.

        Entities created before the failure stay in the target; their
        mappings are kept on the result for inspection.
        """
        error = as_migration_error(exc, component=component)

        if component is not None:
            state = job.component_state(component)
            if state is not None and not state.status.is_terminal:
                state.advance(ComponentStatus.FAILED, error=str(error))
            metrics.record_component_failed(component, error.error_code)

        job.error = JobError.from_exception(error, component=component)
        self._transition(job, JobStatus.FAILED)
        job.completed_at = datetime.now(UTC)
        metrics.record_job_finished(job.status.value)

        logger.log(
            error.severity.log_level,
            "Job %s failed [%s]: %s",
            job.id,
            error.error_code,
            error,
            exc_info=error.error_code == "UNKNOWN_ERROR",
        )

        if component is not None:
            line = f"Error processing {component}: {error}"
        else:
            line = f"Migration job failed: {error.message}"

        result = self._build_result(job, mappings)
        await self._report_outcome(job, result, line)
        return result

    async def _report_outcome(self, job: MigrationJob, result: JobResult, line: str) -> None:
        """Send the last log line and the result; the job is already terminal."""
        try:
            await self._log(job, line)
            await self._reporter.result(job.id, result)
        except Exception:
            logger.exception("Could not report the %s result of job %s", job.status.value, job.id)

    def _build_result(self, job: MigrationJob, mappings: Sequence[IdMapping]) -> JobResult:
        return JobResult(
            job_id=job.id,
            status=job.status,
            progress_percent=job.progress_percent,
            id_mappings=tuple(mappings),
            components=tuple(job.component_states),
            error=job.error,
        )

    def _transition(self, job: MigrationJob, target: JobStatus) -> None:
        if not job.status.can_transition_to(target):
            raise InvalidStatusTransitionError(job.id, job.status, target)
        logger.debug("Job %s: %s -> %s", job.id, job.status.value, target.value)
        job.status = target

    async def _log(self, job: MigrationJob, line: str) -> None:
        await self._reporter.log(job.id, line)


__all__ = ["JobOrchestrator", "MetricsFactory"]
