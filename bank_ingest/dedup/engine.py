"""
Two-tier transaction deduplication.

Tier 1 (strict): a candidate matching an existing transaction on the same bank account
by external id, or by date + exact amount + direction + reference, is not inserted.
Tier 2 (fuzzy): after insert, transactions within the date window and amount tolerance,
including ones from the same import (a line read twice across a page break),
whose descriptions are similar enough are paired into PotentialDuplicate rows for a
human to resolve. Fuzzy matches are never auto-resolved.

The check/insert pair is not fenced against a concurrent import on the same account;
a duplicate slipping through that way is caught by Tier 2 on the later insert.
"""

import uuid
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy import and_, or_, select, true
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bank_ingest.config import settings
from bank_ingest.dedup.similarity import bigram_similarity
from bank_ingest.models.enums import DedupOutcome, DuplicateStatus
from bank_ingest.models.tables import BankTransaction, PotentialDuplicate
from bank_ingest.observability.metrics import transactions_written_total

logger = structlog.get_logger(__name__)


@dataclass
class StrictMatch:
    existing_id: uuid.UUID
    reason: str


def _other_import(column, statement_import_id: Optional[uuid.UUID]):
    """Rows from the candidate's own import never count as strict content duplicates."""
    if statement_import_id is None:
        return true()
    return or_(column.is_(None), column != statement_import_id)


class DeduplicationEngine:
    """Strict skip plus fuzzy flag-for-review, scoped to one bank account."""

    def __init__(
        self,
        session: AsyncSession,
        date_window_days: Optional[int] = None,
        amount_tolerance: Optional[Decimal] = None,
        similarity_threshold: Optional[float] = None,
    ):
        self.session = session
        self.date_window = timedelta(
            days=settings.FUZZY_DATE_WINDOW_DAYS if date_window_days is None else date_window_days
        )
        self.amount_tolerance = (
            Decimal(settings.FUZZY_AMOUNT_TOLERANCE) if amount_tolerance is None else amount_tolerance
        )
        self.similarity_threshold = (
            settings.FUZZY_SIMILARITY_THRESHOLD if similarity_threshold is None else similarity_threshold
        )

    # ── Tier 1 ───────────────────────────────────────────────

    async def find_strict_duplicate(self, candidate: BankTransaction) -> Optional[StrictMatch]:
        same_account = BankTransaction.bank_account_id == candidate.bank_account_id

        if candidate.external_id:
            result = await self.session.execute(
                select(BankTransaction.id)
                .where(same_account, BankTransaction.external_id == candidate.external_id)
                .order_by(BankTransaction.created_at)
                .limit(1)
            )
            existing_id = result.scalar_one_or_none()
            if existing_id is not None:
                return StrictMatch(existing_id, "Matching external ID")

        if candidate.reference is None:
            same_reference = BankTransaction.reference.is_(None)
        else:
            same_reference = BankTransaction.reference == candidate.reference

        result = await self.session.execute(
            select(BankTransaction.id)
            .where(
                same_account,
                BankTransaction.date == candidate.date,
                BankTransaction.amount == candidate.amount,
                BankTransaction.direction == candidate.direction,
                same_reference,
                _other_import(BankTransaction.statement_import_id, candidate.statement_import_id),
            )
            .order_by(BankTransaction.created_at)
            .limit(1)
        )
        existing_id = result.scalar_one_or_none()
        if existing_id is not None:
            return StrictMatch(existing_id, "Matching amount, date, and reference")
        return None

    # ── Insert ───────────────────────────────────────────────

    async def insert_with_dedup(self, candidate: BankTransaction) -> DedupOutcome:
        """
        Insert one candidate inside a savepoint.
        Any failure rolls back only this candidate and reports SKIPPED.
        """
        try:
            _validate_candidate(candidate)
            async with self.session.begin_nested():
                match = await self.find_strict_duplicate(candidate)
                if match is not None:
                    logger.info(
                        "transaction_strict_duplicate",
                        existing_id=str(match.existing_id),
                        reason=match.reason,
                        date=str(candidate.date),
                        amount=str(candidate.amount),
                    )
                    outcome = DedupOutcome.SKIPPED_DUPLICATE
                else:
                    self.session.add(candidate)
                    await self.session.flush()
                    flagged = await self.flag_fuzzy_duplicates(candidate)
                    outcome = DedupOutcome.FLAGGED if flagged else DedupOutcome.INSERTED
        except (SQLAlchemyError, ValueError) as e:
            logger.warning(
                "transaction_insert_skipped",
                error=str(e)[:300],
                date=str(candidate.date),
                amount=str(candidate.amount),
            )
            outcome = DedupOutcome.SKIPPED

        transactions_written_total.labels(outcome=outcome.value).inc()
        return outcome

    # ── Tier 2 ───────────────────────────────────────────────

    async def flag_fuzzy_duplicates(self, txn: BankTransaction) -> int:
        """Create PotentialDuplicate rows for similar transactions. Returns the number created."""
        result = await self.session.execute(
            select(BankTransaction)
            .where(
                BankTransaction.bank_account_id == txn.bank_account_id,
                BankTransaction.id != txn.id,
                BankTransaction.direction == txn.direction,
                BankTransaction.date.between(txn.date - self.date_window, txn.date + self.date_window),
                BankTransaction.amount.between(
                    txn.amount - self.amount_tolerance, txn.amount + self.amount_tolerance
                ),
            )
            .order_by(BankTransaction.date, BankTransaction.created_at)
        )

        created = 0
        for existing in result.scalars().all():
            score = bigram_similarity(txn.description, existing.description)
            if score <= self.similarity_threshold:
                continue
            if await self._pair_exists(txn.id, existing.id):
                continue

            days_apart = abs((txn.date - existing.date).days)
            self.session.add(PotentialDuplicate(
                company_id=txn.company_id,
                bank_account_id=txn.bank_account_id,
                transaction_a_id=txn.id,
                transaction_b_id=existing.id,
                similarity_score=Decimal(str(round(score, 4))),
                reason=f"Description {round(score * 100)}% similar, {days_apart} day(s) apart",
                status=DuplicateStatus.PENDING.value,
            ))
            created += 1
            logger.info(
                "potential_duplicate_flagged",
                transaction_a=str(txn.id),
                transaction_b=str(existing.id),
                similarity=round(score, 4),
                days_apart=days_apart,
            )

        if created:
            await self.session.flush()
        return created

    async def _pair_exists(self, first: uuid.UUID, second: uuid.UUID) -> bool:
        result = await self.session.execute(
            select(PotentialDuplicate.id)
            .where(or_(
                and_(PotentialDuplicate.transaction_a_id == first, PotentialDuplicate.transaction_b_id == second),
                and_(PotentialDuplicate.transaction_a_id == second, PotentialDuplicate.transaction_b_id == first),
            ))
            .limit(1)
        )
        return result.scalar_one_or_none() is not None


def _validate_candidate(candidate: BankTransaction) -> None:
    if not candidate.bank_account_id:
        raise ValueError("transaction has no bank account")
    if candidate.date is None:
        raise ValueError("transaction has no date")
    if candidate.amount is None or candidate.amount < 0:
        raise ValueError(f"transaction amount must be non-negative, got {candidate.amount}")
    if candidate.direction not in ("INCOMING", "OUTGOING"):
        raise ValueError(f"unknown direction {candidate.direction!r}")
