"""
IdentifierTranslator - Maps source-instance ids to target-instance ids.

Every entity created in the target gets a new id. Later components refer to
earlier ones by their *source* ids, so each successful create records a
mapping here and each later reference is rewritten through it.

Responsibilities:
    - Record one mapping per successful create
    - Resolve (entity type, source id) pairs synchronously, without I/O
    - Refuse to overwrite an existing mapping
    - Hand out tables per job or per target instance

Usage:
    >>> translator = IdentifierTranslator(scope_key="migration-1")
    >>> mapping = translator.record("groups", 7, "g-100")
    >>> translator.resolve("groups", "7")
    'g-100'
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterator, Mapping
from contextlib import asynccontextmanager
from typing import Any

from deskmigrate.exceptions import DuplicateMappingError, TranslationError
from deskmigrate.models import IdMapping, MigrationJob, TranslatorScope

logger = logging.getLogger(__name__)


class IdentifierTranslator:
    """
    Append-only table of IdMappings keyed by (entity type, source id).

    Ids are normalised to ``str`` on the way in, so ``7`` and ``"7"`` are the
    same source id.

    Args:
        scope_key: Job id or target instance id this table belongs to.
    """

    def __init__(self, scope_key: str | None = None) -> None:
        self.scope_key = scope_key
        self._by_key: dict[tuple[str, str], IdMapping] = {}
        self._ordered: list[IdMapping] = []

    def record(
        self,
        entity_type: str,
        source_id: Any,
        target_id: Any,
        metadata: Mapping[str, Any] | None = None,
        *,
        job_id: str | None = None,
    ) -> IdMapping:
        """
        Record that ``source_id`` became ``target_id`` in the target.

        Raises:
            DuplicateMappingError: If the pair is already mapped.
        """
        key = (entity_type, str(source_id))
        existing = self._by_key.get(key)
        if existing is not None:
            raise DuplicateMappingError(entity_type, key[1], existing.target_id)

        mapping = IdMapping(
            entity_type=entity_type,
            source_id=key[1],
            target_id=str(target_id),
            metadata=dict(metadata or {}),
            job_id=job_id,
        )
        self._by_key[key] = mapping
        self._ordered.append(mapping)
        logger.debug(
            "Recorded mapping %s:%s -> %s",
            entity_type,
            mapping.source_id,
            mapping.target_id,
        )
        return mapping

    def resolve(self, entity_type: str, source_id: Any) -> str | None:
        """Return the target id for a source id, or None when unmapped."""
        mapping = self._by_key.get((entity_type, str(source_id)))
        return mapping.target_id if mapping else None

    def require(
        self,
        entity_type: str,
        source_id: Any,
        *,
        component: str | None = None,
        field: str | None = None,
    ) -> str:
        """
        Like ``resolve`` but raising when the id is unmapped.

        Raises:
            TranslationError: If no mapping exists.
        """
        target_id = self.resolve(entity_type, source_id)
        if target_id is None:
            raise TranslationError(
                f"No {entity_type} mapping for source id {source_id}",
                component=component,
                field=field,
                referenced_type=entity_type,
                referenced_id=str(source_id),
            )
        return target_id

    def contains(self, entity_type: str, source_id: Any) -> bool:
        return (entity_type, str(source_id)) in self._by_key

    def __len__(self) -> int:
        return len(self._ordered)

    def __iter__(self) -> Iterator[IdMapping]:
        return iter(self._ordered)

    def mappings(
        self,
        entity_type: str | None = None,
        *,
        job_id: str | None = None,
    ) -> list[IdMapping]:
        """All mappings in insertion order, optionally for one entity type or job."""
        return [
            m
            for m in self._ordered
            if (entity_type is None or m.entity_type == entity_type)
            and (job_id is None or m.job_id == job_id)
        ]

    def marker(self) -> int:
        """Position to pass to ``mappings_since`` later."""
        return len(self._ordered)

    def mappings_since(self, marker: int) -> list[IdMapping]:
        return list(self._ordered[marker:])

    def __repr__(self) -> str:
        return f"IdentifierTranslator(scope_key={self.scope_key!r}, mappings={len(self)})"


class TranslatorProvider:
    """
    Hands out translators according to a TranslatorScope.

    JOB scope returns a fresh table for every call. TARGET_INSTANCE scope
    keeps one table per target instance id for the life of the provider, so
    later jobs can reference entities migrated by earlier ones. Jobs holding
    a shared table through ``acquire`` run one at a time per target.
    """

    def __init__(self, scope: TranslatorScope = TranslatorScope.JOB) -> None:
        self.scope = scope
        self._tables: dict[str, IdentifierTranslator] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def for_job(self, job: MigrationJob) -> IdentifierTranslator:
        if self.scope == TranslatorScope.JOB:
            return IdentifierTranslator(scope_key=job.id)

        key = job.target.instance.id
        translator = self._tables.get(key)
        if translator is None:
            translator = IdentifierTranslator(scope_key=key)
            self._tables[key] = translator
            logger.info("Created translator for target instance %s", key)
        return translator

    @asynccontextmanager
    async def acquire(self, job: MigrationJob) -> AsyncIterator[IdentifierTranslator]:
        """
        Hold the job's translator for the duration of a run.

        In TARGET_INSTANCE scope a second job into the same target waits
        until the first one releases the table.
        """
        if self.scope == TranslatorScope.JOB:
            yield self.for_job(job)
            return

        key = job.target.instance.id
        lock = self._locks.setdefault(key, asyncio.Lock())
        if lock.locked():
            logger.info("Job %s waiting for target instance %s", job.id, key)
        async with lock:
            yield self.for_job(job)

    def reset(self, key: str) -> bool:
        """Drop the table for a target instance id. Returns True if one existed."""
        return self._tables.pop(key, None) is not None


__all__ = ["IdentifierTranslator", "TranslatorProvider", "TranslatorScope"]
