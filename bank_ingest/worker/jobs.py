"""
RQ job functions for statement imports.
These are the entry points that the RQ worker calls.
"""

import asyncio
import uuid

import structlog
from redis import Redis
from rq import Queue

from bank_ingest.config import settings

logger = structlog.get_logger(__name__)


def get_queue() -> Queue:
    """Get the import job queue."""
    conn = Redis.from_url(settings.REDIS_URL)
    return Queue(settings.QUEUE_NAME, connection=conn)


def enqueue_import(job_id: str) -> str:
    """
    Enqueue an import job for processing.
    Returns the RQ job ID.
    """
    q = get_queue()
    rq_job = q.enqueue(
        process_import_job_task,
        job_id,
        job_timeout=settings.JOB_TIMEOUT_SECONDS,
        result_ttl=86400,  # Keep results for 24 hours
        failure_ttl=604800,  # Keep failures for 7 days
    )
    logger.info("import_enqueued", job_id=job_id, rq_job_id=rq_job.id)
    return rq_job.id


def process_import_job_task(job_id: str) -> dict:
    """
    Settle one import job inside the RQ worker process.
    Job failures are recorded on the ImportJob row, not raised to RQ.
    """
    logger.info("rq_job_started", job_id=job_id)
    outcome = asyncio.run(_process_import_job_async(uuid.UUID(job_id)))
    logger.info("rq_job_completed", job_id=job_id, status=outcome.get("status"))
    return outcome


async def _process_import_job_async(job_id: uuid.UUID) -> dict:
    from bank_ingest.models.database import engine
    from bank_ingest.worker.processor import ImportJobProcessor

    try:
        processor = ImportJobProcessor()
        outcome = await processor.process_import_job(job_id)
        return outcome.model_dump(mode="json")
    finally:
        # asyncio.run closes the loop; pooled connections must not outlive it
        await engine.dispose()
