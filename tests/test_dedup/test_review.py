"""
Tests for the potential duplicate review queue.
"""

import uuid
from datetime import date

import pytest

from bank_ingest.dedup.engine import DeduplicationEngine
from bank_ingest.dedup.review import get_duplicate_stats, get_pending_duplicates, resolve_duplicate
from bank_ingest.errors import DuplicateResolutionError
from bank_ingest.models.enums import DuplicateResolution
from bank_ingest.models.tables import BankTransaction


@pytest.fixture
def flagged_pair(session, make_transaction):
    """An older transaction B and a newer fuzzy match A with extra metadata."""
    async def _build():
        engine = DeduplicationEngine(session)
        older = make_transaction(description="ACME DOO PAYMENT", date=date(2025, 1, 15))
        newer = make_transaction(
            description="ACME D.O.O. PAYMENT",
            date=date(2025, 1, 16),
            reference="HR00 2025-77",
            counterparty_name="ACME d.o.o.",
            counterparty_iban="HR1723600001101234565",
        )
        await engine.insert_with_dedup(older)
        await engine.insert_with_dedup(newer)
        [duplicate] = await get_pending_duplicates(session)
        return older.id, newer.id, duplicate
    return _build


class TestResolveDuplicate:
    async def test_keep_both(self, session, flagged_pair):
        older_id, newer_id, duplicate = await flagged_pair()

        resolved = await resolve_duplicate(session, duplicate.id, DuplicateResolution.KEEP_BOTH, resolved_by="ana")

        assert resolved.status == "RESOLVED"
        assert resolved.resolution == "KEEP_BOTH"
        assert resolved.resolved_by == "ana"
        assert resolved.resolved_at is not None
        assert await session.get(BankTransaction, older_id) is not None
        assert await session.get(BankTransaction, newer_id) is not None

    async def test_delete_new(self, session, flagged_pair):
        older_id, newer_id, duplicate = await flagged_pair()

        resolved = await resolve_duplicate(session, duplicate.id, DuplicateResolution.DELETE_NEW)

        assert resolved.resolution == "DELETE_NEW"
        assert resolved.transaction_a_id is None
        assert resolved.transaction_b_id == older_id
        assert await session.get(BankTransaction, newer_id) is None
        assert await session.get(BankTransaction, older_id) is not None

    async def test_merge_copies_missing_metadata(self, session, flagged_pair):
        older_id, newer_id, duplicate = await flagged_pair()

        resolved = await resolve_duplicate(session, duplicate.id, DuplicateResolution.MERGE)

        assert resolved.resolution == "MERGE"
        assert await session.get(BankTransaction, newer_id) is None
        older = await session.get(BankTransaction, older_id)
        assert older.reference == "HR00 2025-77"
        assert older.counterparty_name == "ACME d.o.o."
        assert older.counterparty_iban == "HR1723600001101234565"
        assert older.description == "ACME D.O.O. PAYMENT"

    async def test_already_resolved(self, session, flagged_pair):
        _, _, duplicate = await flagged_pair()
        await resolve_duplicate(session, duplicate.id, DuplicateResolution.KEEP_BOTH)

        with pytest.raises(DuplicateResolutionError) as exc:
            await resolve_duplicate(session, duplicate.id, DuplicateResolution.DELETE_NEW)
        assert exc.value.error_code == "ERR_DUPLICATE_ALREADY_RESOLVED"

    async def test_not_found(self, session):
        with pytest.raises(DuplicateResolutionError) as exc:
            await resolve_duplicate(session, uuid.uuid4(), DuplicateResolution.KEEP_BOTH)
        assert exc.value.error_code == "ERR_DUPLICATE_NOT_FOUND"

    async def test_delete_settles_other_pairs(self, session, make_transaction):
        engine = DeduplicationEngine(session)
        first = make_transaction(date=date(2025, 1, 14), reference="A")
        second = make_transaction(date=date(2025, 1, 15), reference="B")
        await engine.insert_with_dedup(first)
        await engine.insert_with_dedup(second)
        third = make_transaction(date=date(2025, 1, 16), reference="C")
        await engine.insert_with_dedup(third)

        pending = await get_pending_duplicates(session)
        assert len(pending) == 3
        pair = next(d for d in pending if d.transaction_a_id == third.id and d.transaction_b_id == second.id)

        await resolve_duplicate(session, pair.id, DuplicateResolution.DELETE_NEW)

        remaining = await get_pending_duplicates(session)
        assert [(d.transaction_a_id, d.transaction_b_id) for d in remaining] == [(second.id, first.id)]


class TestReviewQueue:
    async def test_stats(self, session, flagged_pair):
        _, _, duplicate = await flagged_pair()
        assert await get_duplicate_stats(session) == {"pending": 1, "resolved": 0, "total": 1}

        await resolve_duplicate(session, duplicate.id, DuplicateResolution.KEEP_BOTH)
        assert await get_duplicate_stats(session) == {"pending": 0, "resolved": 1, "total": 1}

    async def test_filter_by_account(self, session, flagged_pair):
        await flagged_pair()
        assert len(await get_pending_duplicates(session, bank_account_id="account-1")) == 1
        assert await get_pending_duplicates(session, bank_account_id="account-2") == []
