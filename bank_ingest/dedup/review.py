"""
Potential duplicate review queue.

Fuzzy matches wait here as PENDING until a person resolves them:
- KEEP_BOTH:  both transactions are genuine, nothing changes
- DELETE_NEW: transaction A (the newer one) is deleted
- MERGE:      metadata A has and B lacks is copied into B, then A is deleted
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bank_ingest.errors import DuplicateResolutionError
from bank_ingest.models.enums import DuplicateResolution, DuplicateStatus
from bank_ingest.models.tables import BankTransaction, PotentialDuplicate
from bank_ingest.observability.metrics import duplicate_resolutions_total

logger = structlog.get_logger(__name__)

_MERGE_FIELDS = ("reference", "counterparty_name", "counterparty_iban", "external_id", "value_date")


async def get_pending_duplicates(
    session: AsyncSession,
    bank_account_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[PotentialDuplicate]:
    """Pending pairs, most similar first."""
    query = select(PotentialDuplicate).where(
        PotentialDuplicate.status == DuplicateStatus.PENDING.value
    )
    if bank_account_id:
        query = query.where(PotentialDuplicate.bank_account_id == bank_account_id)
    result = await session.execute(
        query
        .order_by(PotentialDuplicate.similarity_score.desc(), PotentialDuplicate.created_at)
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_duplicate_stats(session: AsyncSession) -> dict:
    """Get duplicate queue statistics."""
    result = await session.execute(
        select(
            PotentialDuplicate.status,
            func.count(PotentialDuplicate.id),
        ).group_by(PotentialDuplicate.status)
    )
    stats = {row[0]: row[1] for row in result.all()}
    return {
        "pending": stats.get(DuplicateStatus.PENDING.value, 0),
        "resolved": stats.get(DuplicateStatus.RESOLVED.value, 0),
        "total": sum(stats.values()),
    }


def _merge_into(target: BankTransaction, source: BankTransaction) -> list[str]:
    """Copy fields source has and target lacks. Returns the names of copied fields."""
    copied = []
    for field in _MERGE_FIELDS:
        if getattr(target, field) in (None, "") and getattr(source, field) not in (None, ""):
            setattr(target, field, getattr(source, field))
            copied.append(field)
    if len(source.description or "") > len(target.description or ""):
        target.description = source.description
        copied.append("description")
    return copied


async def _delete_transaction(
    session: AsyncSession,
    txn_id: uuid.UUID,
    resolution: DuplicateResolution,
    resolved_by: Optional[str],
    resolved_at: datetime,
) -> int:
    """
    Delete a transaction and settle every other pending pair that referenced it.
    References are nulled explicitly so the outcome does not depend on the
    database enforcing ON DELETE SET NULL.
    """
    settled = await session.execute(
        update(PotentialDuplicate)
        .where(
            PotentialDuplicate.status == DuplicateStatus.PENDING.value,
            or_(
                PotentialDuplicate.transaction_a_id == txn_id,
                PotentialDuplicate.transaction_b_id == txn_id,
            ),
        )
        .values(
            status=DuplicateStatus.RESOLVED.value,
            resolution=resolution.value,
            resolved_by=resolved_by,
            resolved_at=resolved_at,
        )
        .execution_options(synchronize_session=False)
    )
    await session.execute(
        update(PotentialDuplicate)
        .where(PotentialDuplicate.transaction_a_id == txn_id)
        .values(transaction_a_id=None)
        .execution_options(synchronize_session=False)
    )
    await session.execute(
        update(PotentialDuplicate)
        .where(PotentialDuplicate.transaction_b_id == txn_id)
        .values(transaction_b_id=None)
        .execution_options(synchronize_session=False)
    )
    await session.execute(
        delete(BankTransaction)
        .where(BankTransaction.id == txn_id)
        .execution_options(synchronize_session=False)
    )
    return settled.rowcount or 0


async def resolve_duplicate(
    session: AsyncSession,
    duplicate_id: uuid.UUID,
    resolution: DuplicateResolution,
    resolved_by: Optional[str] = None,
) -> PotentialDuplicate:
    """Apply a resolution to one pending pair. Raises DuplicateResolutionError."""
    duplicate = await session.get(PotentialDuplicate, duplicate_id)
    if duplicate is None:
        raise DuplicateResolutionError(
            f"Potential duplicate {duplicate_id} not found", error_code="ERR_DUPLICATE_NOT_FOUND"
        )
    if duplicate.status != DuplicateStatus.PENDING.value:
        raise DuplicateResolutionError(
            f"Potential duplicate {duplicate_id} is already resolved ({duplicate.resolution})",
            error_code="ERR_DUPLICATE_ALREADY_RESOLVED",
        )

    resolution = DuplicateResolution(resolution)
    resolved_at = datetime.now(timezone.utc)
    newer_id = duplicate.transaction_a_id
    older_id = duplicate.transaction_b_id
    merged_fields: list[str] = []
    cascaded = 0

    if resolution == DuplicateResolution.MERGE:
        if older_id is None:
            raise DuplicateResolutionError(
                f"Cannot merge duplicate {duplicate_id}: the existing transaction is gone",
                error_code="ERR_DUPLICATE_MERGE_TARGET_MISSING",
            )
        older = await session.get(BankTransaction, older_id)
        newer = await session.get(BankTransaction, newer_id) if newer_id else None
        if older is not None and newer is not None:
            merged_fields = _merge_into(older, newer)
            await session.flush()

    if resolution in (DuplicateResolution.MERGE, DuplicateResolution.DELETE_NEW) and newer_id:
        newer = await session.get(BankTransaction, newer_id)
        if newer is not None:
            session.expunge(newer)
        cascaded = await _delete_transaction(session, newer_id, resolution, resolved_by, resolved_at)

    # The bulk updates above bypassed the identity map
    await session.refresh(duplicate)
    duplicate.status = DuplicateStatus.RESOLVED.value
    duplicate.resolution = resolution.value
    duplicate.resolved_by = resolved_by
    duplicate.resolved_at = resolved_at
    await session.flush()

    duplicate_resolutions_total.labels(resolution=resolution.value).inc()
    logger.info(
        "duplicate_resolved",
        duplicate_id=str(duplicate_id),
        resolution=resolution.value,
        resolved_by=resolved_by,
        merged_fields=merged_fields,
        cascaded_pairs=max(cascaded - 1, 0),
    )
    return duplicate
