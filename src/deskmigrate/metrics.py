"""
OpenTelemetry metrics for migration jobs.

Tracks records created, components completed or failed, component durations
and finished jobs. Every instrument carries ``job_id`` and
``target_instance`` attributes for filtering.

When metrics are disabled the instruments come from OpenTelemetry's
``NoOpMeter``, so call sites never branch.

Example:
    >>> from deskmigrate.metrics import JobMetrics
    >>>
    >>> metrics = JobMetrics("migration-1700000000000", "target-1")
    >>> with metrics.time_component("groups"):
    ...     metrics.record_created("groups", 3)
    >>> metrics.get_snapshot().records_created
    {'groups': 3}

Metrics Exposed:
    - deskmigrate.records.created (Counter): Entities created in the target
    - deskmigrate.components.completed (Counter): Components that succeeded
    - deskmigrate.components.failed (Counter): Components that failed
    - deskmigrate.component.duration (Histogram): Seconds spent per component
    - deskmigrate.jobs.finished (Counter): Jobs reaching a terminal status
"""

from __future__ import annotations

import time
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from opentelemetry import metrics
from opentelemetry.metrics import Meter, NoOpMeter

# Module-level meter instance
_meter: Meter | None = None


def _get_meter() -> Meter:
    global _meter
    if _meter is None:
        _meter = metrics.get_meter("deskmigrate", version="1.0.0")
    return _meter


def reset_meter() -> None:
    """
    Reset the global meter instance.

    Useful for testing to pick up a freshly installed MeterProvider.
    """
    global _meter
    _meter = None


@dataclass(frozen=True)
class JobMetricSnapshot:
    """
    Accumulated metric values for one job, for tests and debugging.

    Attributes:
        records_created: Created entity count per component.
        components_completed: Number of components that succeeded.
        components_failed: Number of components that failed.
        component_durations: Seconds spent per component.
        final_status: Terminal job status, once recorded.
    """

    records_created: dict[str, int] = field(default_factory=dict)
    components_completed: int = 0
    components_failed: int = 0
    component_durations: dict[str, float] = field(default_factory=dict)
    final_status: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "records_created": dict(self.records_created),
            "components_completed": self.components_completed,
            "components_failed": self.components_failed,
            "component_durations": dict(self.component_durations),
            "final_status": self.final_status,
        }


@dataclass
class JobMetrics:
    """
    Metric instruments bound to one job.

    Attributes:
        job_id: Job identifier for metric labels.
        target_instance: Target instance id for metric labels.
        enable_metrics: Whether to report to OpenTelemetry (default True).
        meter: Meter to create instruments on (defaults to the global one).
    """

    job_id: str
    target_instance: str
    enable_metrics: bool = True
    meter: Meter | None = field(default=None, repr=False)

    _records_counter: Any = field(default=None, init=False, repr=False)
    _completed_counter: Any = field(default=None, init=False, repr=False)
    _failed_counter: Any = field(default=None, init=False, repr=False)
    _duration_histogram: Any = field(default=None, init=False, repr=False)
    _jobs_counter: Any = field(default=None, init=False, repr=False)

    _records_created: dict[str, int] = field(default_factory=dict, init=False, repr=False)
    _completed: int = field(default=0, init=False, repr=False)
    _failed: int = field(default=0, init=False, repr=False)
    _durations: dict[str, float] = field(default_factory=dict, init=False, repr=False)
    _final_status: str | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if not self.enable_metrics:
            meter: Meter = NoOpMeter("deskmigrate")
        else:
            meter = self.meter or _get_meter()

        self._records_counter = meter.create_counter(
            name="deskmigrate.records.created",
            unit="records",
            description="Entities created in the target instance",
        )
        self._completed_counter = meter.create_counter(
            name="deskmigrate.components.completed",
            unit="components",
            description="Components migrated successfully",
        )
        self._failed_counter = meter.create_counter(
            name="deskmigrate.components.failed",
            unit="components",
            description="Components whose migration failed",
        )
        self._duration_histogram = meter.create_histogram(
            name="deskmigrate.component.duration",
            unit="s",
            description="Time spent migrating a component in seconds",
        )
        self._jobs_counter = meter.create_counter(
            name="deskmigrate.jobs.finished",
            unit="jobs",
            description="Jobs that reached a terminal status",
        )

    def _base_attributes(self) -> dict[str, str]:
        return {
            "job_id": self.job_id,
            "target_instance": self.target_instance,
        }

    def record_created(self, component: str, count: int = 1) -> None:
        self._records_counter.add(count, {**self._base_attributes(), "component": component})
        self._records_created[component] = self._records_created.get(component, 0) + count

    def record_component_completed(self, component: str) -> None:
        self._completed_counter.add(1, {**self._base_attributes(), "component": component})
        self._completed += 1

    def record_component_failed(self, component: str, error_code: str) -> None:
        attrs = {**self._base_attributes(), "component": component, "error_code": error_code}
        self._failed_counter.add(1, attrs)
        self._failed += 1

    def record_component_duration(self, component: str, duration_seconds: float) -> None:
        self._duration_histogram.record(
            duration_seconds, {**self._base_attributes(), "component": component}
        )
        self._durations[component] = self._durations.get(component, 0.0) + duration_seconds

    def record_job_finished(self, status: str) -> None:
        self._jobs_counter.add(1, {**self._base_attributes(), "status": status})
        self._final_status = status

    @contextmanager
    def time_component(self, component: str) -> Generator[None, None, None]:
        """
        Time a component migration and record its duration on exit.

        The duration is recorded whether or not the block raises.
        """
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_component_duration(component, time.perf_counter() - start)

    def get_snapshot(self) -> JobMetricSnapshot:
        return JobMetricSnapshot(
            records_created=dict(self._records_created),
            components_completed=self._completed,
            components_failed=self._failed,
            component_durations=dict(self._durations),
            final_status=self._final_status,
        )


__all__ = ["JobMetrics", "JobMetricSnapshot", "reset_meter"]
