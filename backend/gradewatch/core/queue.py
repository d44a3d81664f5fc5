from __future__ import annotations

import uuid

import redis
from rq import Queue, Retry

from gradewatch.core.config import settings


def is_async_queue_enabled() -> bool:
    return bool(settings.ASYNC_QUEUE_ENABLED)


def _get_redis_connection() -> redis.Redis:
    return redis.from_url(settings.REDIS_URL)


def _get_queue() -> Queue:
    return Queue(
        name=settings.RQ_QUEUE_NAME,
        connection=_get_redis_connection(),
        default_timeout=int(settings.RQ_JOB_TIMEOUT_SECONDS),
    )


def enqueue_snapshot_analysis(*, snapshot_id: uuid.UUID) -> str:
    queue = _get_queue()
    job = queue.enqueue(
        "gradewatch.tasks.analyze_snapshot_job",
        str(snapshot_id),
        retry=Retry(max=int(settings.RQ_JOB_RETRY_MAX)),
        job_timeout=int(settings.RQ_JOB_TIMEOUT_SECONDS),
    )
    return str(job.id)
