"""
Import job processor: claims a PENDING job, routes it to the XML or PDF path,
persists the result and settles the job in a terminal status.

Claims are atomic: the oldest PENDING row is selected FOR UPDATE SKIP LOCKED and then
moved to PROCESSING with a compare-and-swap UPDATE. Losing the race just means trying
the next candidate.

Every exception inside a job becomes FAILED with the message as failure_reason.
Nothing escapes to the caller. All writes for one job share one transaction, so a
failed job leaves no StatementImport behind.
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bank_ingest.config import settings
from bank_ingest.engines.base import ExtractionAdapter
from bank_ingest.errors import StructuralError
from bank_ingest.models.database import async_session_factory
from bank_ingest.models.enums import ImportFormat, JobStatus, PageStatus
from bank_ingest.models.tables import BankTransaction, ImportJob, Statement, StatementPage
from bank_ingest.observability.logging import job_context
from bank_ingest.observability.metrics import import_job_duration_seconds, import_jobs_processed_total
from bank_ingest.persistence.writer import StatementWriter, find_statement_import
from bank_ingest.pipeline.orchestrator import StatementPipeline
from bank_ingest.schemas.imports import (
    ImportJobSummary,
    JobReport,
    ProcessOutcome,
    ReportPage,
    ReportTransaction,
)
from bank_ingest.storage.file_store import FileStore
from bank_ingest.storage.paths import file_extension

logger = structlog.get_logger(__name__)

MAX_CLAIM_ATTEMPTS = 5
FAILURE_REASON_MAX_LENGTH = 500


def detect_format(original_name: str, content_type: Optional[str]) -> ImportFormat:
    """XML by extension or declared content type; everything else is treated as PDF."""
    if file_extension(original_name) in settings.xml_extensions:
        return ImportFormat.XML_CAMT053
    if content_type:
        media_type = content_type.split(";", 1)[0].strip().lower()
        if media_type in settings.xml_content_types:
            return ImportFormat.XML_CAMT053
    return ImportFormat.PDF


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImportJobProcessor:
    """
    Single-job worker step.
    Collaborators (session factory, file store, extraction adapter) are passed in.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker = async_session_factory,
        storage: Optional[FileStore] = None,
        adapter: Optional[ExtractionAdapter] = None,
    ):
        if adapter is None:
            from bank_ingest.engines.openai_adapter import OpenAICompatibleAdapter
            adapter = OpenAICompatibleAdapter.from_settings()
        self.session_factory = session_factory
        self.storage = storage or FileStore()
        self.adapter = adapter
        self.pipeline = StatementPipeline(adapter)

    # ── Claiming ─────────────────────────────────────────────

    async def _compare_and_swap(self, session: AsyncSession, job_id: uuid.UUID) -> bool:
        result = await session.execute(
            update(ImportJob)
            .where(ImportJob.id == job_id, ImportJob.status == JobStatus.PENDING.value)
            .values(status=JobStatus.PROCESSING.value, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _claim_next(self) -> tuple[Optional[uuid.UUID], bool]:
        """Returns (job_id, claimed). job_id is None when nothing is pending."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(ImportJob.id)
                .where(ImportJob.status == JobStatus.PENDING.value)
                .order_by(ImportJob.created_at, ImportJob.id)
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            job_id = result.scalar_one_or_none()
            if job_id is None:
                return None, False
            claimed = await self._compare_and_swap(session, job_id)
            await session.commit()
            return job_id, claimed

    async def process_next_import_job(self) -> ProcessOutcome:
        """Claim and settle the oldest PENDING job, if any."""
        for _ in range(MAX_CLAIM_ATTEMPTS):
            job_id, claimed = await self._claim_next()
            if job_id is None:
                return ProcessOutcome(status="idle", message="No pending jobs")
            if claimed:
                return await self._settle(job_id)
            logger.debug("job_claim_lost", job_id=str(job_id))
        return ProcessOutcome(status="idle", message="Could not claim a pending job")

    async def process_import_job(self, job_id: uuid.UUID) -> ProcessOutcome:
        """Settle one specific job. Does nothing unless the job is PENDING."""
        async with self.session_factory() as session:
            claimed = await self._compare_and_swap(session, job_id)
            await session.commit()
        if not claimed:
            logger.info("job_not_pending", job_id=str(job_id))
            return ProcessOutcome(status="skipped", job_id=job_id, message="Job is not pending")
        return await self._settle(job_id)

    # ── Settling ─────────────────────────────────────────────

    async def _settle(self, job_id: uuid.UUID) -> ProcessOutcome:
        with job_context(job_id):
            started = time.monotonic()
            try:
                async with self.session_factory() as session:
                    try:
                        outcome = await self._run(session, job_id)
                        await session.commit()
                    except Exception:
                        await session.rollback()
                        raise
            except Exception as e:
                reason = (str(e) or e.__class__.__name__)[:FAILURE_REASON_MAX_LENGTH]
                logger.error(
                    "import_job_failed",
                    error=reason,
                    error_code=getattr(e, "error_code", None),
                    exc_info=not isinstance(e, StructuralError),
                )
                await self._mark_failed(job_id, reason)
                import_jobs_processed_total.labels(status=JobStatus.FAILED.value, tier="none").inc()
                return ProcessOutcome(
                    status="error", job_id=job_id, job_status=JobStatus.FAILED.value, error=reason
                )

            tier = outcome.tier_used or "none"
            import_jobs_processed_total.labels(status=outcome.job_status, tier=tier).inc()
            import_job_duration_seconds.labels(tier=tier).observe(time.monotonic() - started)
            return outcome

    async def _run(self, session: AsyncSession, job_id: uuid.UUID) -> ProcessOutcome:
        job = await session.get(ImportJob, job_id)
        if job is None:
            raise StructuralError(f"Import job {job_id} not found", error_code="ERR_JOB_NOT_FOUND")

        # ── Idempotency guard ──
        existing = await find_statement_import(session, job.id)
        if existing is not None:
            job.status = JobStatus.VERIFIED.value
            job.failure_reason = None
            logger.info("job_already_imported", statement_import_id=str(existing.id))
            return ProcessOutcome(
                status="ok",
                job_id=job.id,
                job_status=job.status,
                tier_used=job.tier_used,
                already_imported=True,
            )

        if not job.bank_account_id:
            raise StructuralError(
                "Bank account ID is required for statement import", error_code="ERR_NO_BANK_ACCOUNT"
            )

        if not self.storage.exists(job.storage_path):
            raise StructuralError(
                f"Statement file not found: {job.storage_path}", error_code="ERR_FILE_NOT_FOUND"
            )
        content = self.storage.load_bytes(job.storage_path)

        fmt = detect_format(job.original_name, job.content_type)
        logger.info("job_routed", format=fmt.value, file_name=job.original_name, size_bytes=len(content))

        if fmt == ImportFormat.XML_CAMT053:
            data = await self.pipeline.process_xml(content)
        else:
            data = await self.pipeline.process_pdf(content)

        summary = await StatementWriter(session).write(job, data)

        job.status = (JobStatus.NEEDS_REVIEW if data.needs_review else JobStatus.VERIFIED).value
        job.tier_used = data.tier.value
        job.pages_processed = len(data.pages)
        job.pages_failed = data.pages_failed
        job.failure_reason = None
        await session.flush()

        logger.info(
            "import_job_settled",
            job_status=job.status,
            tier=job.tier_used,
            pages_processed=job.pages_processed,
            pages_failed=job.pages_failed,
            inserted=summary.inserted,
        )
        return ProcessOutcome(
            status="ok",
            job_id=job.id,
            job_status=job.status,
            tier_used=job.tier_used,
            inserted=summary.inserted,
            flagged=summary.flagged,
            skipped_duplicates=summary.skipped_duplicates,
            skipped=summary.skipped,
            already_imported=summary.already_imported,
        )

    async def _mark_failed(self, job_id: uuid.UUID, reason: str) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(ImportJob)
                .where(ImportJob.id == job_id)
                .values(
                    status=JobStatus.FAILED.value,
                    failure_reason=reason,
                    updated_at=_utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()


# ── Reporting ────────────────────────────────────────────────

async def get_job_report(session: AsyncSession, job_id: uuid.UUID) -> Optional[JobReport]:
    """Job status plus, for NEEDS_REVIEW jobs, every unverified page and its transactions."""
    job = await session.get(ImportJob, job_id)
    if job is None:
        return None

    report = JobReport(job=ImportJobSummary.model_validate(job))
    statement_import = await find_statement_import(session, job.id)
    if statement_import is None:
        return report

    report.statement_import_id = statement_import.id
    report.transaction_count = statement_import.transaction_count
    report.metadata = statement_import.metadata_json

    pages = await session.execute(
        select(StatementPage)
        .join(Statement, Statement.id == StatementPage.statement_id)
        .where(
            Statement.statement_import_id == statement_import.id,
            StatementPage.status != PageStatus.VERIFIED.value,
        )
        .order_by(StatementPage.page_number)
    )
    for page in pages.scalars().all():
        txns = await session.execute(
            select(BankTransaction)
            .where(BankTransaction.statement_page_id == page.id)
            .order_by(BankTransaction.date, BankTransaction.created_at)
        )
        report.unverified_pages.append(ReportPage(
            page_number=page.page_number,
            status=page.status,
            page_start_balance=page.page_start_balance,
            page_end_balance=page.page_end_balance,
            audit_difference=page.audit_difference,
            audit_reason=page.audit_reason,
            vision_repaired=page.vision_repaired,
            transactions=[ReportTransaction.model_validate(t) for t in txns.scalars().all()],
        ))
    return report
