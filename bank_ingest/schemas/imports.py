"""
Pydantic request/response schemas for the /api/v1/imports and /api/v1/duplicates endpoints.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


# ── Import jobs ──────────────────────────────────────────────

class ImportJobSummary(BaseModel):
    id: uuid.UUID
    company_id: str
    bank_account_id: Optional[str] = None
    original_name: str
    content_type: Optional[str] = None
    file_checksum: str
    status: str
    failure_reason: Optional[str] = None
    tier_used: Optional[str] = None
    pages_processed: Optional[int] = None
    pages_failed: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ImportUploadResponse(BaseModel):
    """Response after uploading a statement."""
    job: ImportJobSummary
    deduplicated: bool = False
    existing_job_id: Optional[uuid.UUID] = None
    enqueued: bool = False
    message: str = "Statement uploaded successfully. Processing queued."


class ProcessOutcome(BaseModel):
    """Result of one processor iteration."""
    status: str  # idle, ok, error, skipped
    job_id: Optional[uuid.UUID] = None
    job_status: Optional[str] = None
    tier_used: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    inserted: int = 0
    flagged: int = 0
    skipped_duplicates: int = 0
    skipped: int = 0
    already_imported: bool = False


# ── NEEDS_REVIEW report ──────────────────────────────────────

class ReportTransaction(BaseModel):
    id: uuid.UUID
    date: date
    description: str
    amount: Decimal
    direction: str
    reference: Optional[str] = None
    counterparty_name: Optional[str] = None

    model_config = {"from_attributes": True}


class ReportPage(BaseModel):
    page_number: int
    status: str
    page_start_balance: Optional[Decimal] = None
    page_end_balance: Optional[Decimal] = None
    audit_difference: Optional[Decimal] = None
    audit_reason: Optional[str] = None
    vision_repaired: bool = False
    transactions: list[ReportTransaction] = Field(default_factory=list)


class JobReport(BaseModel):
    job: ImportJobSummary
    statement_import_id: Optional[uuid.UUID] = None
    transaction_count: int = 0
    metadata: Optional[dict] = None
    unverified_pages: list[ReportPage] = Field(default_factory=list)


# ── Duplicates ───────────────────────────────────────────────

class PotentialDuplicateResponse(BaseModel):
    id: uuid.UUID
    bank_account_id: str
    transaction_a_id: Optional[uuid.UUID] = None
    transaction_b_id: Optional[uuid.UUID] = None
    similarity_score: Decimal
    reason: str
    status: str
    resolution: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class DuplicateStats(BaseModel):
    pending: int
    resolved: int
    total: int


class ResolveDuplicateRequest(BaseModel):
    resolution: str = Field(pattern="^(KEEP_BOTH|MERGE|DELETE_NEW)$")
    resolved_by: Optional[str] = None
