"""
Tests for the per-page arithmetic auditor.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from bank_ingest.models.enums import TxDirection
from bank_ingest.pipeline.auditor import audit_page, check_continuity
from bank_ingest.schemas.statement import ParsedTransaction


def _txn(amount: str, direction: TxDirection) -> ParsedTransaction:
    return ParsedTransaction(date=date(2025, 1, 15), amount=Decimal(amount), direction=direction)


@dataclass
class _Page:
    page_number: int
    start_balance: Optional[Decimal]
    end_balance: Optional[Decimal]


class TestAuditPage:
    """Exact reconciliation, no tolerance."""

    def test_reconciled_page(self):
        result = audit_page(
            Decimal("1000.00"),
            Decimal("1200.50"),
            [_txn("250.50", TxDirection.INCOMING), _txn("50.00", TxDirection.OUTGOING)],
        )
        assert result.is_verified
        assert result.difference == Decimal("0.00")
        assert result.reason is None

    def test_one_cent_gap_fails(self):
        result = audit_page(
            Decimal("1000.00"),
            Decimal("1200.51"),
            [_txn("250.50", TxDirection.INCOMING), _txn("50.00", TxDirection.OUTGOING)],
        )
        assert not result.is_verified
        assert result.reason == "BALANCE_MISMATCH"
        assert result.difference == Decimal("-0.01")
        assert result.computed_end_balance == Decimal("1200.50")
        assert result.expected_end_balance == Decimal("1200.51")

    def test_missing_transaction_difference(self):
        result = audit_page(Decimal("1000.00"), Decimal("1250.00"), [_txn("300.00", TxDirection.INCOMING)])
        assert result.difference == Decimal("50.00")

    def test_empty_page_with_equal_balances(self):
        result = audit_page(Decimal("99.99"), Decimal("99.99"), [])
        assert result.is_verified

    def test_negative_balances(self):
        result = audit_page(Decimal("-100.00"), Decimal("-150.00"), [_txn("50.00", TxDirection.OUTGOING)])
        assert result.is_verified

    def test_missing_start_balance(self):
        result = audit_page(None, Decimal("10.00"), [])
        assert not result.is_verified
        assert result.reason == "MISSING_BALANCE"
        assert result.difference is None
        assert result.expected_end_balance == Decimal("10.00")

    def test_missing_end_balance(self):
        result = audit_page(Decimal("10.00"), None, [])
        assert not result.is_verified
        assert result.reason == "MISSING_BALANCE"

    def test_sub_cent_amounts_quantized(self):
        result = audit_page(Decimal("0"), Decimal("0.01"), [_txn("0.005", TxDirection.INCOMING)])
        assert result.is_verified

    def test_repeatable(self):
        txns = [_txn("1.10", TxDirection.INCOMING)]
        first = audit_page(Decimal("1.00"), Decimal("2.10"), txns)
        second = audit_page(Decimal("1.00"), Decimal("2.10"), txns)
        assert first == second


class TestCheckContinuity:
    def test_continuous_pages(self):
        pages = [
            _Page(1, Decimal("0.00"), Decimal("100.00")),
            _Page(2, Decimal("100.00"), Decimal("80.00")),
        ]
        assert check_continuity(pages) == []

    def test_break_reported_on_later_page(self):
        pages = [
            _Page(1, Decimal("0.00"), Decimal("100.00")),
            _Page(2, Decimal("100.00"), Decimal("80.00")),
            _Page(3, Decimal("90.00"), Decimal("95.00")),
        ]
        assert check_continuity(pages) == [3]

    def test_missing_balances_skipped(self):
        pages = [
            _Page(1, Decimal("0.00"), None),
            _Page(2, Decimal("100.00"), Decimal("80.00")),
        ]
        assert check_continuity(pages) == []
