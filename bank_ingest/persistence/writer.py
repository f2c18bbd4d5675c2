"""
Persists a processed statement: StatementImport → Statement → pages → transactions.

Idempotent per import job: an existing StatementImport for the job means the
statement was already written and nothing is written again. Transactions go
through the deduplication engine one at a time, in extracted order.
"""

import uuid
from typing import Optional

import structlog
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bank_ingest.dedup.engine import DeduplicationEngine
from bank_ingest.errors import StructuralError
from bank_ingest.models.enums import DedupOutcome, MatchStatus
from bank_ingest.models.tables import (
    BankTransaction,
    ImportJob,
    Statement,
    StatementImport,
    StatementPage,
)
from bank_ingest.pipeline.amount_parser import to_money
from bank_ingest.schemas.statement import StatementData

logger = structlog.get_logger(__name__)


class WriteSummary(BaseModel):
    statement_import_id: Optional[uuid.UUID] = None
    inserted: int = 0
    flagged: int = 0
    skipped_duplicates: int = 0
    skipped: int = 0
    pages_verified: int = 0
    pages_failed: int = 0
    already_imported: bool = False


async def find_statement_import(session: AsyncSession, job_id: uuid.UUID) -> Optional[StatementImport]:
    result = await session.execute(
        select(StatementImport).where(StatementImport.import_job_id == job_id)
    )
    return result.scalar_one_or_none()


class StatementWriter:
    """Writes one StatementData for one ImportJob inside the caller's transaction."""

    def __init__(self, session: AsyncSession, dedup: Optional[DeduplicationEngine] = None):
        self.session = session
        self.dedup = dedup or DeduplicationEngine(session)

    async def write(self, job: ImportJob, data: StatementData) -> WriteSummary:
        existing = await find_statement_import(self.session, job.id)
        if existing is not None:
            logger.info(
                "statement_already_imported",
                job_id=str(job.id),
                statement_import_id=str(existing.id),
            )
            return WriteSummary(
                statement_import_id=existing.id,
                pages_verified=data.pages_verified,
                pages_failed=data.pages_failed,
                already_imported=True,
            )

        if not job.bank_account_id:
            raise StructuralError(
                "Bank account ID is required for statement import", error_code="ERR_NO_BANK_ACCOUNT"
            )

        # ── Import record ──
        statement_import = StatementImport(
            import_job_id=job.id,
            company_id=job.company_id,
            bank_account_id=job.bank_account_id,
            file_name=job.original_name,
            file_checksum=job.file_checksum,
            format=data.format.value,
            transaction_count=0,
            metadata_json=data.summary_metadata(),
            imported_by=job.user_id,
        )
        self.session.add(statement_import)
        await self.session.flush()

        # ── Statement header ──
        statement = Statement(
            statement_import_id=statement_import.id,
            company_id=job.company_id,
            bank_account_id=job.bank_account_id,
            statement_date=data.statement_date,
            period_start=data.period_start,
            period_end=data.period_end,
            sequence_number=data.sequence_number,
            opening_balance=to_money(data.opening_balance) if data.opening_balance is not None else None,
            closing_balance=to_money(data.closing_balance) if data.closing_balance is not None else None,
            currency=data.currency,
            account_iban=data.account_iban,
            owner_name=data.owner_name,
        )
        self.session.add(statement)
        await self.session.flush()

        summary = WriteSummary(
            statement_import_id=statement_import.id,
            pages_verified=data.pages_verified,
            pages_failed=data.pages_failed,
        )

        # ── Pages and transactions, in order ──
        for page in sorted(data.pages, key=lambda p: p.page_number):
            page_row = StatementPage(
                statement_id=statement.id,
                company_id=job.company_id,
                page_number=page.page_number,
                page_start_balance=page.start_balance,
                page_end_balance=page.end_balance,
                status=page.status.value,
                audit_difference=page.audit_difference,
                audit_reason=page.audit_reason,
                vision_repaired=page.vision_repaired,
                raw_text=page.raw_text,
            )
            self.session.add(page_row)
            await self.session.flush()

            for txn in page.transactions:
                candidate = BankTransaction(
                    company_id=job.company_id,
                    bank_account_id=job.bank_account_id,
                    statement_import_id=statement_import.id,
                    statement_page_id=page_row.id,
                    date=txn.date,
                    value_date=txn.value_date,
                    description=txn.description or "",
                    amount=to_money(txn.amount),
                    direction=txn.direction.value,
                    currency=txn.currency or data.currency,
                    reference=txn.reference,
                    counterparty_name=txn.counterparty_name,
                    counterparty_iban=txn.counterparty_iban,
                    external_id=txn.external_id,
                    match_status=MatchStatus.UNMATCHED.value,
                )
                outcome = await self.dedup.insert_with_dedup(candidate)
                if outcome == DedupOutcome.INSERTED:
                    summary.inserted += 1
                elif outcome == DedupOutcome.FLAGGED:
                    summary.inserted += 1
                    summary.flagged += 1
                elif outcome == DedupOutcome.SKIPPED_DUPLICATE:
                    summary.skipped_duplicates += 1
                else:
                    summary.skipped += 1

        statement_import.transaction_count = summary.inserted
        statement_import.metadata_json = {
            **data.summary_metadata(),
            "inserted": summary.inserted,
            "flagged": summary.flagged,
            "skipped_duplicates": summary.skipped_duplicates,
            "skipped": summary.skipped,
        }
        await self.session.flush()

        logger.info(
            "statement_written",
            job_id=str(job.id),
            statement_import_id=str(statement_import.id),
            inserted=summary.inserted,
            flagged=summary.flagged,
            skipped_duplicates=summary.skipped_duplicates,
            skipped=summary.skipped,
        )
        return summary
