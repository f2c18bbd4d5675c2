"""
Parsed statement structures passed between pipeline stages.
Both the XML path and the PDF path produce a StatementData; the writer persists it.
"""

import datetime as dt
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from bank_ingest.models.enums import ImportFormat, PageStatus, TierType, TxDirection


@dataclass
class ParsedTransaction:
    date: dt.date
    amount: Decimal  # non-negative magnitude
    direction: TxDirection
    description: str = ""
    value_date: Optional[dt.date] = None
    reference: Optional[str] = None
    counterparty_name: Optional[str] = None
    counterparty_iban: Optional[str] = None
    external_id: Optional[str] = None
    currency: Optional[str] = None

    @property
    def signed_amount(self) -> Decimal:
        return -self.amount if self.direction == TxDirection.OUTGOING else self.amount


@dataclass
class PageResult:
    page_number: int
    start_balance: Optional[Decimal]
    end_balance: Optional[Decimal]
    transactions: list[ParsedTransaction]
    status: PageStatus = PageStatus.NEEDS_VISION
    raw_text: str = ""
    audit_difference: Optional[Decimal] = None
    audit_reason: Optional[str] = None
    vision_repaired: bool = False
    start_balance_carried: bool = False
    extraction_error: Optional[str] = None

    @property
    def is_verified(self) -> bool:
        return self.status == PageStatus.VERIFIED


@dataclass
class StatementData:
    format: ImportFormat
    pages: list[PageResult] = field(default_factory=list)
    statement_date: Optional[dt.date] = None
    period_start: Optional[dt.date] = None
    period_end: Optional[dt.date] = None
    sequence_number: int = 0
    opening_balance: Optional[Decimal] = None
    closing_balance: Optional[Decimal] = None
    currency: str = "EUR"
    account_iban: Optional[str] = None
    owner_name: Optional[str] = None
    vision_triggered: bool = False
    continuity_breaks: list[int] = field(default_factory=list)

    @property
    def transactions(self) -> list[ParsedTransaction]:
        return [txn for page in self.pages for txn in page.transactions]

    @property
    def pages_verified(self) -> int:
        return sum(1 for p in self.pages if p.is_verified)

    @property
    def pages_failed(self) -> int:
        return len(self.pages) - self.pages_verified

    @property
    def needs_review(self) -> bool:
        return self.pages_failed > 0

    @property
    def tier(self) -> TierType:
        if self.format == ImportFormat.XML_CAMT053:
            return TierType.XML
        return TierType.VISION_LLM if self.vision_triggered else TierType.TEXT_LLM

    def summary_metadata(self) -> dict:
        """JSON-safe metadata stored on the StatementImport."""
        return {
            "sequence_number": self.sequence_number,
            "statement_date": self.statement_date.isoformat() if self.statement_date else None,
            "period_start": self.period_start.isoformat() if self.period_start else None,
            "period_end": self.period_end.isoformat() if self.period_end else None,
            "account_iban": self.account_iban,
            "pages_total": len(self.pages),
            "pages_verified": self.pages_verified,
            "pages_failed": self.pages_failed,
            "vision_triggered": self.vision_triggered,
            "repaired_pages": [p.page_number for p in self.pages if p.vision_repaired],
            "continuity_breaks": list(self.continuity_breaks),
            "tier": self.tier.value,
        }
