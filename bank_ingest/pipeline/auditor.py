"""
Arithmetic auditor - per-page balance reconciliation.

A page is verified iff
    start + sum(INCOMING) - sum(OUTGOING) == end
exactly, after quantizing every figure to the money scale. There is no tolerance
ladder: a one-cent gap is a failed page and goes to vision repair.
"""

from decimal import Decimal
from typing import Iterable, Optional, Protocol, Sequence

from pydantic import BaseModel

from bank_ingest.models.enums import TxDirection
from bank_ingest.pipeline.amount_parser import to_money


class _Ledgerline(Protocol):
    amount: Decimal
    direction: TxDirection


class AuditResult(BaseModel):
    is_verified: bool
    computed_end_balance: Optional[Decimal] = None
    expected_end_balance: Optional[Decimal] = None
    difference: Optional[Decimal] = None  # computed - expected
    reason: Optional[str] = None  # MISSING_BALANCE, BALANCE_MISMATCH


def audit_page(
    start_balance: Optional[Decimal],
    end_balance: Optional[Decimal],
    transactions: Iterable[_Ledgerline],
    scale: Optional[int] = None,
) -> AuditResult:
    """Reconcile one page. Pure; safe to call repeatedly."""
    if start_balance is None or end_balance is None:
        return AuditResult(
            is_verified=False,
            expected_end_balance=to_money(end_balance, scale) if end_balance is not None else None,
            reason="MISSING_BALANCE",
        )

    running = to_money(start_balance, scale)
    for txn in transactions:
        amount = to_money(abs(txn.amount), scale)
        if txn.direction == TxDirection.OUTGOING:
            running -= amount
        else:
            running += amount

    computed = to_money(running, scale)
    expected = to_money(end_balance, scale)
    difference = computed - expected

    return AuditResult(
        is_verified=difference == 0,
        computed_end_balance=computed,
        expected_end_balance=expected,
        difference=difference,
        reason=None if difference == 0 else "BALANCE_MISMATCH",
    )


class _BalancedPage(Protocol):
    page_number: int
    start_balance: Optional[Decimal]
    end_balance: Optional[Decimal]


def check_continuity(pages: Sequence[_BalancedPage]) -> list[int]:
    """
    Page numbers whose start balance differs from the previous page's end balance.
    Pages with a missing balance on either side are not reported.
    """
    breaks = []
    for previous, current in zip(pages, pages[1:]):
        if previous.end_balance is None or current.start_balance is None:
            continue
        if to_money(previous.end_balance) != to_money(current.start_balance):
            breaks.append(current.page_number)
    return breaks
