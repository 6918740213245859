"""
SQLAlchemyAuditSink - Durable audit log of identifier mappings.

Every mapping recorded during a job is appended to the ``id_mapping_audit``
table. Rows are partitioned by job id and target instance id, so concurrent
jobs never interfere, and each (job, entity type, source id) appears once.

Works with any SQLAlchemy async driver (asyncpg for PostgreSQL, aiosqlite for
SQLite).

Usage:
    >>> engine = create_async_engine("sqlite+aiosqlite:///audit.db")
    >>> await create_tables(engine)
    >>> sink = SQLAlchemyAuditSink(engine)
    >>> orchestrator = JobOrchestrator(catalog, registry, store, audit_sink=sink)
    >>> ...
    >>> rows = await sink.get_by_job("migration-1700000000000")
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from deskmigrate._connection import execute_with_connection
from deskmigrate.models import IdMapping
from deskmigrate.observability import Tracer, create_tracer
from deskmigrate.observability.attributes import (
    ATTR_COMPONENT,
    ATTR_DB_SYSTEM,
    ATTR_JOB_ID,
)

audit_metadata = MetaData()

id_mapping_audit = Table(
    "id_mapping_audit",
    audit_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("job_id", String(255), nullable=False),
    Column("target_instance_id", String(255), nullable=True),
    Column("entity_type", String(100), nullable=False),
    Column("source_id", String(255), nullable=False),
    Column("target_id", String(255), nullable=False),
    Column("mapping_metadata", Text, nullable=True),
    Column("recorded_at", String(64), nullable=False),
    UniqueConstraint("job_id", "entity_type", "source_id", name="uq_id_mapping_audit_key"),
    Index("ix_id_mapping_audit_job", "job_id"),
    Index("ix_id_mapping_audit_target", "target_instance_id", "entity_type"),
)


async def create_tables(conn: AsyncConnection | AsyncEngine) -> None:
    """Create the audit table and its indexes if they do not exist."""
    async with execute_with_connection(conn, transactional=True) as connection:
        await connection.run_sync(audit_metadata.create_all)


class SQLAlchemyAuditSink:
    """
    AuditSink writing to ``id_mapping_audit`` through SQLAlchemy async.

    Args:
        conn: Database connection or engine.
        db_system: Value for the ``db.system`` span attribute.
        tracer: Optional custom Tracer instance.
        enable_tracing: Whether to enable OpenTelemetry tracing.
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        *,
        db_system: str | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._conn = conn
        self._db_system = db_system or conn.dialect.name

    async def append(
        self,
        job_id: str,
        mapping: IdMapping,
        *,
        target_instance_id: str | None = None,
    ) -> None:
        """
        Append one mapping row.

        Raises:
            sqlalchemy.exc.IntegrityError: If the job already logged this
                (entity type, source id).
        """
        with self._tracer.span(
            "deskmigrate.audit.append",
            {
                ATTR_JOB_ID: job_id,
                ATTR_COMPONENT: mapping.entity_type,
                ATTR_DB_SYSTEM: self._db_system,
            },
        ):
            query = text("""
                INSERT INTO id_mapping_audit (
                    job_id, target_instance_id, entity_type, source_id,
                    target_id, mapping_metadata, recorded_at
                ) VALUES (
                    :job_id, :target_instance_id, :entity_type, :source_id,
                    :target_id, :mapping_metadata, :recorded_at
                )
            """)
            params = {
                "job_id": job_id,
                "target_instance_id": target_instance_id,
                "entity_type": mapping.entity_type,
                "source_id": mapping.source_id,
                "target_id": mapping.target_id,
                "mapping_metadata": json.dumps(dict(mapping.metadata)) if mapping.metadata else None,
                "recorded_at": mapping.recorded_at.isoformat(),
            }

            async with execute_with_connection(self._conn, transactional=True) as conn:
                await conn.execute(query, params)

    async def get_by_job(
        self,
        job_id: str,
        entity_type: str | None = None,
    ) -> list[IdMapping]:
        """
        Get the mappings a job logged, in the order they were written.

        Args:
            job_id: The job to query.
            entity_type: Optional filter by component.
        """
        with self._tracer.span(
            "deskmigrate.audit.get_by_job",
            {ATTR_JOB_ID: job_id, ATTR_DB_SYSTEM: self._db_system},
        ):
            conditions = ["job_id = :job_id"]
            params: dict[str, Any] = {"job_id": job_id}
            if entity_type:
                conditions.append("entity_type = :entity_type")
                params["entity_type"] = entity_type

            where_clause = " AND ".join(conditions)
            query = text(f"""
                SELECT job_id, entity_type, source_id, target_id,
                       mapping_metadata, recorded_at
                FROM id_mapping_audit
                WHERE {where_clause}
                ORDER BY id ASC
            """)  # nosec B608 - conditions are fixed strings

            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query, params)
                rows = result.fetchall()

            return [self._row_to_mapping(row) for row in rows]

    async def count_by_job(self, job_id: str) -> int:
        with self._tracer.span(
            "deskmigrate.audit.count_by_job",
            {ATTR_JOB_ID: job_id, ATTR_DB_SYSTEM: self._db_system},
        ):
            query = text("SELECT COUNT(*) FROM id_mapping_audit WHERE job_id = :job_id")
            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query, {"job_id": job_id})
                return int(result.scalar_one())

    def _row_to_mapping(self, row: Any) -> IdMapping:
        metadata = row[4]
        if isinstance(metadata, str):
            metadata = json.loads(metadata)
        return IdMapping(
            entity_type=row[1],
            source_id=row[2],
            target_id=row[3],
            metadata=metadata or {},
            job_id=row[0],
            recorded_at=datetime.fromisoformat(row[5]),
        )


__all__ = [
    "SQLAlchemyAuditSink",
    "create_tables",
    "id_mapping_audit",
    "audit_metadata",
]
