"""
Queue consumer that feeds jobs to the orchestrator.

Jobs are submitted as payloads (see ``deskmigrate.intake``), queued, and
picked up by a MigrationWorker, which parses each payload, runs it through
the JobOrchestrator and acknowledges the message once the job is terminal.

Queues:
    - InMemoryJobQueue: asyncio.Queue, for development and tests
    - RedisJobQueue: Redis Streams with a consumer group (durable,
      at-least-once delivery, one stream entry per job)

Reporting:
    - RedisJobReporter: progress and result in a per-job hash, log lines on
      a per-job list, for the dashboard layer to read

Example:
    >>> config = RedisJobQueueConfig(redis_url="redis://localhost:6379")
    >>> queue = RedisJobQueue(config)
    >>> await queue.connect()
    >>> reporter = RedisJobReporter(queue.client, config)
    >>> orchestrator = JobOrchestrator(DEFAULT_CATALOG, registry, store, reporter=reporter)
    >>> worker = MigrationWorker(queue, orchestrator)
    >>> response = await submit_job(queue, payload)
    >>> await worker.run()
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import socket
import uuid
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import redis.asyncio as aioredis
from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from deskmigrate.catalog import DEFAULT_CATALOG, ComponentCatalog
from deskmigrate.exceptions import MigrationError
from deskmigrate.intake import accepted_response, new_job_id, parse_job
from deskmigrate.models import JobError, JobResult, JobStatus
from deskmigrate.observability import Tracer, create_tracer
from deskmigrate.observability.attributes import (
    ATTR_JOB_ID,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_SYSTEM,
)
from deskmigrate.orchestrator import JobOrchestrator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueuedJob:
    """
    A job read off a queue.

    ``ack`` must be awaited once the job has been handled; unacknowledged
    jobs may be redelivered.
    """

    job_id: str
    payload: dict[str, Any]
    ack: Callable[[], Awaitable[None]] = field(repr=False)
    message_id: str | None = None


@runtime_checkable
class JobQueue(Protocol):
    """A durable queue of job payloads."""

    async def enqueue(self, payload: Mapping[str, Any], *, job_id: str | None = None) -> str:
        """Queue a payload and return its job id."""
        ...

    def consume(self) -> AsyncIterator[QueuedJob]:
        """Yield queued jobs until the queue is stopped."""
        ...

    async def stop(self) -> None:
        """Make ``consume`` finish."""
        ...


class InMemoryJobQueue:
    """
    asyncio.Queue-backed JobQueue.

    ``acked`` lists the job ids acknowledged so far, in order.
    """

    _STOP = object()

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self.acked: list[str] = []

    async def enqueue(self, payload: Mapping[str, Any], *, job_id: str | None = None) -> str:
        job_id = job_id or payload.get("jobId") or new_job_id()
        await self._queue.put((job_id, dict(payload)))
        return job_id

    async def consume(self) -> AsyncIterator[QueuedJob]:
        while True:
            item = await self._queue.get()
            if item is self._STOP:
                return
            job_id, payload = item
            yield QueuedJob(job_id=job_id, payload=payload, ack=self._acker(job_id))

    def _acker(self, job_id: str) -> Callable[[], Awaitable[None]]:
        async def ack() -> None:
            self.acked.append(job_id)

        return ack

    async def stop(self) -> None:
        await self._queue.put(self._STOP)

    def qsize(self) -> int:
        return self._queue.qsize()


@dataclass
class RedisJobQueueConfig:
    """
    Configuration for the Redis job queue and reporter.

    Attributes:
        redis_url: Redis connection URL.
        key_prefix: Prefix for every key (default "deskmigrate").
        consumer_group: Consumer group shared by all workers.
        consumer_name: Name of this worker (auto-generated if None).
        batch_size: Jobs read per XREADGROUP call (default 1).
        block_ms: Milliseconds to block waiting for a job (default 5000).
        result_ttl_seconds: Expiry of per-job status and log keys once a
            result is written; 0 keeps them forever.
        socket_timeout: Socket timeout in seconds.
        socket_connect_timeout: Socket connection timeout in seconds.
        single_connection_client: Use a single connection instead of a pool.
        enable_tracing: Enable OpenTelemetry tracing if available.
    """

    redis_url: str = "redis://localhost:6379"
    key_prefix: str = "deskmigrate"
    consumer_group: str = "migration-workers"
    consumer_name: str | None = None
    batch_size: int = 1
    block_ms: int = 5000
    result_ttl_seconds: int = 7 * 24 * 3600
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0
    single_connection_client: bool = False
    enable_tracing: bool = True

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.block_ms < 0:
            raise ValueError(f"block_ms must be >= 0, got {self.block_ms}")
        if self.result_ttl_seconds < 0:
            raise ValueError(f"result_ttl_seconds must be >= 0, got {self.result_ttl_seconds}")
        if self.consumer_name is None:
            self.consumer_name = f"{socket.gethostname()}-{str(uuid.uuid4())[:8]}"

    @property
    def stream_name(self) -> str:
        return f"{self.key_prefix}:jobs"

    def job_key(self, job_id: str) -> str:
        return f"{self.key_prefix}:job:{job_id}"

    def log_key(self, job_id: str) -> str:
        return f"{self.key_prefix}:job:{job_id}:logs"


class RedisJobQueue:
    """
    JobQueue on a Redis Stream with a consumer group.

    Each job is one stream entry with ``job_id`` and JSON ``payload`` fields.
    Entries are acknowledged with XACK after the job is handled.

    Args:
        config: Queue configuration.
        client: Optional pre-built Redis client (decode_responses=True).
        tracer: Optional custom Tracer instance.
    """

    def __init__(
        self,
        config: RedisJobQueueConfig | None = None,
        *,
        client: Redis | None = None,
        tracer: Tracer | None = None,
    ) -> None:
        self._config = config or RedisJobQueueConfig()
        self._redis: Redis | None = client
        self._owns_client = client is None
        self._consuming = False
        self._tracer = tracer or create_tracer(__name__, self._config.enable_tracing)
        self._enable_tracing = self._tracer.enabled

    @property
    def config(self) -> RedisJobQueueConfig:
        return self._config

    @property
    def client(self) -> Redis:
        if self._redis is None:
            raise RuntimeError("RedisJobQueue is not connected")
        return self._redis

    async def connect(self) -> None:
        """Connect to Redis and create the consumer group if needed."""
        if self._redis is None:
            self._redis = aioredis.from_url(
                self._config.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=self._config.socket_timeout,
                socket_connect_timeout=self._config.socket_connect_timeout,
                single_connection_client=self._config.single_connection_client,
            )
        await self._redis.ping()
        logger.info(
            "Connected to Redis",
            extra={"redis_url": self._config.redis_url, "stream": self._config.stream_name},
        )
        await self._ensure_consumer_group_exists()

    async def close(self) -> None:
        self._consuming = False
        if self._redis is not None and self._owns_client:
            await self._redis.aclose()
            self._redis = None
            logger.info("Disconnected from Redis")

    async def _ensure_consumer_group_exists(self) -> None:
        try:
            await self.client.xgroup_create(
                name=self._config.stream_name,
                groupname=self._config.consumer_group,
                id="0",
                mkstream=True,
            )
            logger.info(
                "Created consumer group '%s' on stream '%s'",
                self._config.consumer_group,
                self._config.stream_name,
            )
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
            logger.debug("Consumer group '%s' already exists", self._config.consumer_group)

    async def enqueue(self, payload: Mapping[str, Any], *, job_id: str | None = None) -> str:
        job_id = job_id or payload.get("jobId") or new_job_id()
        with self._tracer.span(
            "deskmigrate.queue.enqueue",
            {
                ATTR_JOB_ID: job_id,
                ATTR_MESSAGING_SYSTEM: "redis",
                ATTR_MESSAGING_DESTINATION: self._config.stream_name,
            },
        ):
            message_id = await self.client.xadd(
                self._config.stream_name,
                {"job_id": job_id, "payload": json.dumps(dict(payload))},
            )
            await self.client.hset(self._config.job_key(job_id), mapping={"status": "queued"})
        logger.info("Queued job %s as stream entry %s", job_id, message_id)
        return job_id

    async def consume(self) -> AsyncIterator[QueuedJob]:
        """
        Yield jobs delivered to this consumer until ``stop`` is called.

        Connection errors are logged and retried after a short pause.
        """
        self._consuming = True
        logger.info(
            "Starting job consumer %s",
            self._config.consumer_name,
            extra={
                "stream": self._config.stream_name,
                "consumer_group": self._config.consumer_group,
            },
        )
        while self._consuming:
            try:
                messages = await self.client.xreadgroup(
                    groupname=self._config.consumer_group,
                    consumername=self._config.consumer_name or "",
                    streams={self._config.stream_name: ">"},
                    count=self._config.batch_size,
                    block=self._config.block_ms,
                )
            except RedisConnectionError as e:
                logger.error("Redis connection error in job consumer: %s", e, exc_info=True)
                await asyncio.sleep(1)
                continue

            for _stream, entries in messages or []:
                for message_id, fields in entries:
                    yield self._to_queued_job(message_id, fields)

        logger.info("Job consumer stopped")

    def _to_queued_job(self, message_id: str, fields: Mapping[str, str]) -> QueuedJob:
        job_id = fields.get("job_id") or message_id
        try:
            payload = json.loads(fields.get("payload", "{}"))
        except json.JSONDecodeError:
            logger.error("Stream entry %s for job %s has an unreadable payload", message_id, job_id)
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        async def ack() -> None:
            await self.client.xack(
                self._config.stream_name, self._config.consumer_group, message_id
            )

        return QueuedJob(job_id=job_id, payload=payload, ack=ack, message_id=message_id)

    async def stop(self) -> None:
        self._consuming = False


class RedisJobReporter:
    """
    JobReporter writing to Redis.

    Keys:
        ``<prefix>:job:<id>``: hash with ``status``, ``progress`` and the
        JSON ``result``.
        ``<prefix>:job:<id>:logs``: list of log lines, oldest first.
    """

    def __init__(self, client: Redis, config: RedisJobQueueConfig | None = None) -> None:
        self._redis = client
        self._config = config or RedisJobQueueConfig()

    async def progress(self, job_id: str, percent: float) -> None:
        await self._redis.hset(
            self._config.job_key(job_id),
            mapping={"progress": f"{percent:g}", "status": JobStatus.MIGRATING.value},
        )

    async def log(self, job_id: str, line: str) -> None:
        await self._redis.rpush(self._config.log_key(job_id), line)

    async def result(self, job_id: str, result: JobResult) -> None:
        key = self._config.job_key(job_id)
        await self._redis.hset(
            key,
            mapping={
                "status": result.status.value,
                "progress": f"{result.progress_percent:g}",
                "result": json.dumps(result.to_dict()),
            },
        )
        if self._config.result_ttl_seconds:
            await self._redis.expire(key, self._config.result_ttl_seconds)
            await self._redis.expire(self._config.log_key(job_id), self._config.result_ttl_seconds)

    async def get_status(self, job_id: str) -> dict[str, Any]:
        data = await self._redis.hgetall(self._config.job_key(job_id))
        status: dict[str, Any] = dict(data)
        if "result" in status:
            status["result"] = json.loads(status["result"])
        if "progress" in status:
            status["progress"] = float(status["progress"])
        return status

    async def get_logs(self, job_id: str) -> list[str]:
        return list(await self._redis.lrange(self._config.log_key(job_id), 0, -1))


async def submit_job(
    queue: JobQueue,
    payload: Mapping[str, Any],
    *,
    catalog: ComponentCatalog = DEFAULT_CATALOG,
) -> dict[str, Any]:
    """
    Validate and queue a submission, returning the accepted response.

    Raises:
        ValidationError: If the payload is malformed or names unknown
            components. Nothing is queued in that case.
    """
    job = parse_job(dict(payload), job_id=new_job_id(), catalog=catalog)
    await queue.enqueue({**payload, "jobId": job.id}, job_id=job.id)
    return accepted_response(job)


class MigrationWorker:
    """
    Pulls jobs off a queue and runs them through the orchestrator.

    Each job runs in its own task; ``max_concurrent_jobs`` bounds how many
    run at once (default 1). Every message is acknowledged once its job is
    terminal, including payloads that fail to parse, which are reported as
    FAILED results.

    Args:
        queue: Where jobs come from.
        orchestrator: Runs each job.
        catalog: Catalog payloads are parsed against (defaults to the
            orchestrator's).
        max_concurrent_jobs: Upper bound on concurrently running jobs.
        history_size: How many recent results ``processed`` keeps.
    """

    def __init__(
        self,
        queue: JobQueue,
        orchestrator: JobOrchestrator,
        *,
        catalog: ComponentCatalog | None = None,
        max_concurrent_jobs: int = 1,
        history_size: int = 100,
    ) -> None:
        if max_concurrent_jobs < 1:
            raise ValueError(f"max_concurrent_jobs must be >= 1, got {max_concurrent_jobs}")
        if history_size < 0:
            raise ValueError(f"history_size must be >= 0, got {history_size}")
        self._queue = queue
        self._orchestrator = orchestrator
        self._catalog = catalog or orchestrator.catalog
        self._max_concurrent_jobs = max_concurrent_jobs
        self._slots = asyncio.Semaphore(max_concurrent_jobs)
        self._tasks: set[asyncio.Task[None]] = set()
        self._running = False
        self.processed: deque[JobResult] = deque(maxlen=history_size)

    @property
    def is_running(self) -> bool:
        return self._running

    async def run(self) -> None:
        """
        Consume jobs until the queue finishes or ``stop`` is called.

        Waits for in-flight jobs before returning.
        """
        self._running = True
        jobs = self._queue.consume().__aiter__()
        logger.info("Migration worker started (max_concurrent_jobs=%d)", self._max_concurrent_jobs)
        try:
            while self._running:
                await self._slots.acquire()
                try:
                    queued = await anext(jobs)
                except StopAsyncIteration:
                    self._slots.release()
                    break

                task = asyncio.create_task(self._process(queued), name=f"job-{queued.job_id}")
                self._tasks.add(task)
                task.add_done_callback(self._on_task_done)
        finally:
            self._running = False
            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)
            aclose = getattr(jobs, "aclose", None)
            if aclose is not None:
                with contextlib.suppress(RuntimeError):
                    await aclose()
            logger.info("Migration worker stopped")

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        self._slots.release()

    async def _process(self, queued: QueuedJob) -> None:
        try:
            result = await self._handle(queued)
            self.processed.append(result)
        except Exception:
            logger.exception("Unexpected error while handling job %s", queued.job_id)
        finally:
            await queued.ack()

    async def _handle(self, queued: QueuedJob) -> JobResult:
        try:
            job = parse_job(queued.payload, job_id=queued.job_id, catalog=self._catalog)
        except MigrationError as e:
            logger.warning("Rejected job %s: %s", queued.job_id, e)
            result = JobResult(
                job_id=queued.job_id,
                status=JobStatus.FAILED,
                progress_percent=0.0,
                error=JobError.from_exception(e),
            )
            await self._orchestrator.reporter.log(queued.job_id, f"Invalid job: {e.message}")
            await self._orchestrator.reporter.result(queued.job_id, result)
            return result

        return await self._orchestrator.run(job)

    async def stop(self, *, cancel_running: bool = False) -> None:
        """
        Stop taking new jobs.

        Args:
            cancel_running: Also cancel running jobs at their next
                component boundary.
        """
        self._running = False
        if cancel_running:
            for job_id in self._orchestrator.running_jobs:
                self._orchestrator.cancel(job_id)
        await self._queue.stop()


__all__ = [
    "QueuedJob",
    "JobQueue",
    "InMemoryJobQueue",
    "RedisJobQueueConfig",
    "RedisJobQueue",
    "RedisJobReporter",
    "MigrationWorker",
    "submit_job",
]
