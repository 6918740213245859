"""
Job intake: turns a submitted or queued payload into a MigrationJob.

Payloads use the submission shape of the migration endpoint::

    {
        "source": {"type": "snapshot" | "live", "instanceInfo": {...}, "snapshotId": 42},
        "target": {"instanceInfo": {...}},
        "components": ["groups", "macros"],      # or
        "ignoredItems": ["apps"]                  # against the full catalog
    }

Queued payloads may carry ``jobId`` or a nested ``job: {id, components}``.

Example:
    >>> job = parse_job(payload, job_id=new_job_id())
    >>> accepted_response(job)["status"]
    'queued'
"""

from __future__ import annotations

import logging
import time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from deskmigrate.catalog import DEFAULT_CATALOG, ComponentCatalog
from deskmigrate.exceptions import ValidationError
from deskmigrate.models import InstanceRef, MigrationJob, SourceSpec, SourceType, TargetSpec

logger = logging.getLogger(__name__)

ACCEPTED_MESSAGE = "Migration job has been queued"


class CredentialsPayload(BaseModel):
    """Helpdesk API credentials. Extra keys are kept and passed through."""

    model_config = ConfigDict(extra="allow", hide_input_in_errors=True)

    token: str = Field(..., min_length=1, repr=False)
    email: str = Field(..., min_length=1)


class InstanceInfoPayload(BaseModel):
    model_config = ConfigDict(hide_input_in_errors=True)

    id: int | str
    name: str = Field(..., min_length=1)
    subdomain: str = Field(..., min_length=1)
    tags: list[str] = Field(default_factory=list)
    credentials: CredentialsPayload = Field(..., repr=False)

    def to_instance_ref(self) -> InstanceRef:
        return InstanceRef(
            id=str(self.id),
            name=self.name,
            subdomain=self.subdomain,
            tags=frozenset(self.tags),
            credentials={k: str(v) for k, v in self.credentials.model_dump().items()},
        )


class SourcePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, hide_input_in_errors=True)

    type: Literal["snapshot", "live"]
    instance_info: InstanceInfoPayload = Field(..., alias="instanceInfo")
    snapshot_id: int | str | None = Field(default=None, alias="snapshotId")

    @model_validator(mode="after")
    def _snapshot_needs_id(self) -> SourcePayload:
        if self.type == "snapshot" and self.snapshot_id in (None, ""):
            raise ValueError("snapshot sources require snapshotId")
        return self


class TargetPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, hide_input_in_errors=True)

    instance_info: InstanceInfoPayload = Field(..., alias="instanceInfo")


class QueuedJobInfo(BaseModel):
    id: str | None = None
    components: list[str] | None = None


class MigrationRequest(BaseModel):
    """A migration submission, as posted to the endpoint or read off the queue."""

    model_config = ConfigDict(populate_by_name=True, hide_input_in_errors=True)

    source: SourcePayload
    target: TargetPayload
    components: list[str] | None = None
    ignored_items: list[str] = Field(default_factory=list, alias="ignoredItems")
    job_id: str | None = Field(default=None, alias="jobId")
    job: QueuedJobInfo | None = None

    @model_validator(mode="after")
    def _merge_queued_job_info(self) -> MigrationRequest:
        if self.job is not None:
            if self.components is None:
                self.components = self.job.components
            if self.job_id is None:
                self.job_id = self.job.id
        return self


def new_job_id() -> str:
    """Return a job id of the form ``migration-<epoch millis>``."""
    return f"migration-{int(time.time() * 1000)}"


def _format_pydantic_error(error: PydanticValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"]) or "payload"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def parse_request(payload: dict[str, Any]) -> MigrationRequest:
    """
    Validate a payload's shape.

    Raises:
        ValidationError: If the payload does not match the submission shape.
    """
    try:
        return MigrationRequest.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid migration request: {_format_pydantic_error(e)}") from e


def parse_job(
    payload: dict[str, Any],
    *,
    job_id: str | None = None,
    catalog: ComponentCatalog = DEFAULT_CATALOG,
) -> MigrationJob:
    """
    Build a QUEUED MigrationJob from a payload.

    Args:
        payload: Submission or queued payload.
        job_id: Job id to use; falls back to the payload's id, then a new one.
        catalog: Catalog the component names are checked against.

    Raises:
        ValidationError: On a malformed payload or unknown component names.
    """
    request = parse_request(payload)
    resolved_id = job_id or request.job_id or new_job_id()

    try:
        catalog.resolve_components(request.components, request.ignored_items)
    except ValidationError as e:
        e.job_id = resolved_id
        raise

    source = SourceSpec(
        type=SourceType(request.source.type),
        instance=request.source.instance_info.to_instance_ref(),
        snapshot_id=(
            str(request.source.snapshot_id) if request.source.snapshot_id is not None else None
        ),
    )
    job = MigrationJob(
        id=resolved_id,
        source=source,
        target=TargetSpec(instance=request.target.instance_info.to_instance_ref()),
        components=tuple(request.components) if request.components is not None else None,
        ignored_items=tuple(request.ignored_items),
    )
    logger.debug("Parsed job %s (%s source)", job.id, source.type.value)
    return job


def accepted_response(job: MigrationJob) -> dict[str, Any]:
    """
    Build the response returned when a job is queued.

    Echoes the normalised input. Credentials are never included.
    """
    source_details: dict[str, Any] = {
        "name": job.source.instance.name,
        "type": job.source.type.value,
    }
    if job.source.snapshot_id is not None:
        source_details["snapshotId"] = job.source.snapshot_id

    details: dict[str, Any] = {
        "source": source_details,
        "target": {"name": job.target.instance.name},
        "components": list(job.components) if job.components is not None else None,
    }
    if job.ignored_items:
        details["ignoredItems"] = list(job.ignored_items)

    return {
        "jobId": job.id,
        "status": "queued",
        "message": ACCEPTED_MESSAGE,
        "details": details,
    }


__all__ = [
    "MigrationRequest",
    "parse_request",
    "parse_job",
    "new_job_id",
    "accepted_response",
    "ACCEPTED_MESSAGE",
]
