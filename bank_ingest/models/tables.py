"""
SQLAlchemy ORM models for statement ingestion.
Company, bank account and user ids belong to the surrounding system and are stored as opaque text.
"""

import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bank_ingest.models.database import Base
from bank_ingest.models.enums import TxDirection

JsonType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ────────────────────────────────────────────────────────────
# IMPORT JOBS
# ────────────────────────────────────────────────────────────
class ImportJob(Base):
    __tablename__ = "import_jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[str] = mapped_column(Text, nullable=False)
    bank_account_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    original_name: Mapped[str] = mapped_column(Text, nullable=False)
    storage_path: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tier_used: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    pages_processed: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    pages_failed: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
        server_default=func.now()
    )

    __table_args__ = (
        Index("idx_import_jobs_status", "status", "created_at"),
        Index("idx_import_jobs_checksum", "bank_account_id", "file_checksum"),
    )


# ────────────────────────────────────────────────────────────
# STATEMENT IMPORTS
# ────────────────────────────────────────────────────────────
class StatementImport(Base):
    __tablename__ = "statement_imports"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    import_job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("import_jobs.id", ondelete="CASCADE"), nullable=False
    )
    company_id: Mapped[str] = mapped_column(Text, nullable=False)
    bank_account_id: Mapped[str] = mapped_column(Text, nullable=False)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    file_checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    format: Mapped[str] = mapped_column(String(20), nullable=False)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    metadata_json: Mapped[Optional[dict]] = mapped_column(JsonType, nullable=True)
    imported_by: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    imported_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    statement = relationship("Statement", back_populates="statement_import", uselist=False)

    __table_args__ = (
        UniqueConstraint("import_job_id", name="uq_statement_import_job"),
        Index("idx_statement_imports_account", "bank_account_id"),
    )


# ────────────────────────────────────────────────────────────
# STATEMENTS
# ────────────────────────────────────────────────────────────
class Statement(Base):
    __tablename__ = "statements"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    statement_import_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("statement_imports.id", ondelete="CASCADE"), nullable=False
    )
    company_id: Mapped[str] = mapped_column(Text, nullable=False)
    bank_account_id: Mapped[str] = mapped_column(Text, nullable=False)
    statement_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    period_start: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    period_end: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    opening_balance: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    closing_balance: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    account_iban: Mapped[Optional[str]] = mapped_column(String(34), nullable=True)
    owner_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    statement_import = relationship("StatementImport", back_populates="statement")
    pages = relationship(
        "StatementPage", back_populates="statement", order_by="StatementPage.page_number"
    )

    __table_args__ = (
        UniqueConstraint("statement_import_id", name="uq_statement_import"),
        Index("idx_statements_account", "bank_account_id", "statement_date"),
    )


# ────────────────────────────────────────────────────────────
# STATEMENT PAGES
# ────────────────────────────────────────────────────────────
class StatementPage(Base):
    __tablename__ = "statement_pages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    statement_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("statements.id", ondelete="CASCADE"), nullable=False
    )
    company_id: Mapped[str] = mapped_column(Text, nullable=False)
    page_number: Mapped[int] = mapped_column(Integer, nullable=False)
    page_start_balance: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    page_end_balance: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    # Computed end balance minus reported end balance; NULL when not auditable
    audit_difference: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    audit_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    vision_repaired: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    raw_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    statement = relationship("Statement", back_populates="pages")

    __table_args__ = (
        UniqueConstraint("statement_id", "page_number", name="uq_page_statement_number"),
    )


# ────────────────────────────────────────────────────────────
# BANK TRANSACTIONS
# ────────────────────────────────────────────────────────────
class BankTransaction(Base):
    __tablename__ = "bank_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[str] = mapped_column(Text, nullable=False)
    bank_account_id: Mapped[str] = mapped_column(Text, nullable=False)
    statement_import_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("statement_imports.id", ondelete="SET NULL"), nullable=True
    )
    statement_page_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("statement_pages.id", ondelete="SET NULL"), nullable=True
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    value_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # Always the non-negative magnitude; sign lives in `direction`
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    direction: Mapped[str] = mapped_column(String(10), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    reference: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    counterparty_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    counterparty_iban: Mapped[Optional[str]] = mapped_column(String(34), nullable=True)
    external_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    match_status: Mapped[str] = mapped_column(String(20), nullable=False, default="UNMATCHED")
    confidence_score: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False, default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_tx_account_date", "bank_account_id", "date"),
        Index("idx_tx_account_external", "bank_account_id", "external_id"),
        Index("idx_tx_import", "statement_import_id"),
    )

    @property
    def signed_amount(self) -> Decimal:
        if self.direction == TxDirection.OUTGOING.value:
            return -self.amount
        return self.amount


# ────────────────────────────────────────────────────────────
# POTENTIAL DUPLICATES
# ────────────────────────────────────────────────────────────
class PotentialDuplicate(Base):
    __tablename__ = "potential_duplicates"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[str] = mapped_column(Text, nullable=False)
    bank_account_id: Mapped[str] = mapped_column(Text, nullable=False)
    # A is always the newly inserted transaction, B the one it resembles
    transaction_a_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("bank_transactions.id", ondelete="SET NULL"), nullable=True
    )
    transaction_b_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("bank_transactions.id", ondelete="SET NULL"), nullable=True
    )
    similarity_score: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    resolution: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    resolved_by: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_duplicates_status", "status", "created_at"),
        Index("idx_duplicates_pair", "transaction_a_id", "transaction_b_id"),
    )
