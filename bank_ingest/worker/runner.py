"""
Worker entry point.
Run with: python -m bank_ingest.worker.runner           (database polling loop)
      or: python -m bank_ingest.worker.runner --rq      (RQ worker on QUEUE_NAME)

The polling loop processes jobs until the queue is idle, then sleeps
POLL_INTERVAL_SECONDS. SIGINT/SIGTERM let the in-flight job finish before exiting.
"""

import argparse
import asyncio
import signal
from typing import Optional

import structlog

from bank_ingest.config import settings
from bank_ingest.models.database import close_db
from bank_ingest.observability.logging import setup_logging
from bank_ingest.worker.processor import ImportJobProcessor

logger = structlog.get_logger(__name__)


class PollingWorker:
    def __init__(self, processor: ImportJobProcessor, poll_interval: Optional[float] = None):
        self.processor = processor
        self.poll_interval = settings.POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        self._stop = asyncio.Event()

    def request_shutdown(self) -> None:
        if not self._stop.is_set():
            logger.info("worker_shutdown_requested")
        self._stop.set()

    async def run(self) -> int:
        """Run until shutdown is requested. Returns the number of jobs settled."""
        settled = 0
        logger.info("worker_started", poll_interval=self.poll_interval)
        while not self._stop.is_set():
            outcome = await self.processor.process_next_import_job()
            if outcome.status != "idle":
                settled += 1
                continue
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("worker_stopped", jobs_settled=settled)
        return settled


async def _run_polling() -> None:
    worker = PollingWorker(ImportJobProcessor())
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.request_shutdown)
    try:
        await worker.run()
    finally:
        await close_db()


def _run_rq() -> None:
    from redis import Redis
    from rq import Worker

    conn = Redis.from_url(settings.REDIS_URL)
    worker = Worker(
        queues=[settings.QUEUE_NAME],
        connection=conn,
        name=f"bank-import-worker-{settings.APP_VERSION}",
    )
    logger.info("rq_worker_starting", queue=settings.QUEUE_NAME)
    worker.work(with_scheduler=False)


def main(argv: Optional[list[str]] = None) -> None:
    """Start the worker."""
    parser = argparse.ArgumentParser(description="Bank statement import worker")
    parser.add_argument("--rq", action="store_true", help="consume the RQ queue instead of polling")
    parser.add_argument("--log-level", default=None, help="override LOG_LEVEL for this process")
    args = parser.parse_args(argv)

    setup_logging(log_level=args.log_level)
    if args.rq:
        _run_rq()
    else:
        asyncio.run(_run_polling())


if __name__ == "__main__":
    main()
