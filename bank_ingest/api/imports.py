"""
/api/v1/imports endpoints.
Statement upload, job status with the NEEDS_REVIEW report, and inline processing.
"""

import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bank_ingest.config import settings
from bank_ingest.dependencies import get_db, get_file_store, get_processor, verify_api_key
from bank_ingest.models.enums import JobStatus
from bank_ingest.models.tables import ImportJob
from bank_ingest.schemas.imports import (
    ImportJobSummary,
    ImportUploadResponse,
    JobReport,
    ProcessOutcome,
)
from bank_ingest.storage.file_store import FileStore
from bank_ingest.storage.paths import file_checksum, upload_path
from bank_ingest.worker.processor import ImportJobProcessor, get_job_report

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/imports", tags=["imports"], dependencies=[Depends(verify_api_key)])


@router.post("", response_model=ImportUploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_statement(
    file: UploadFile = File(...),
    company_id: str = Query(..., min_length=1),
    bank_account_id: str = Query(..., min_length=1),
    user_id: Optional[str] = Query(None),
    session: AsyncSession = Depends(get_db),
    store: FileStore = Depends(get_file_store),
):
    """Upload a camt XML or PDF statement and queue it for import."""
    file_bytes = await file.read()
    file_size = len(file_bytes)

    max_bytes = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
    if file_size > max_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large: {file_size} bytes. Max: {max_bytes} bytes",
        )
    if file_size == 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file uploaded")

    checksum = file_checksum(file_bytes)

    # Same file for the same account: hand back the job that already has it
    existing = await session.execute(
        select(ImportJob)
        .where(
            ImportJob.bank_account_id == bank_account_id,
            ImportJob.file_checksum == checksum,
            ImportJob.status != JobStatus.FAILED.value,
        )
        .order_by(ImportJob.created_at)
        .limit(1)
    )
    existing_job = existing.scalar_one_or_none()
    if existing_job is not None:
        logger.info("upload_deduplicated", existing_job_id=str(existing_job.id), checksum=checksum)
        return ImportUploadResponse(
            job=ImportJobSummary.model_validate(existing_job),
            deduplicated=True,
            existing_job_id=existing_job.id,
            message="Statement already uploaded for this account.",
        )

    job_id = uuid.uuid4()
    file_name = file.filename or "statement"
    relative_path = upload_path(company_id, str(job_id), file_name)
    store.save_bytes(relative_path, file_bytes)

    job = ImportJob(
        id=job_id,
        company_id=company_id,
        bank_account_id=bank_account_id,
        user_id=user_id,
        original_name=file_name,
        storage_path=relative_path,
        content_type=file.content_type,
        file_checksum=checksum,
        status=JobStatus.PENDING.value,
    )
    session.add(job)
    try:
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        # No job row points at the file, so nothing would ever read it
        store.delete(relative_path)
        logger.error("upload_job_insert_failed", job_id=str(job_id), error=str(e)[:300])
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not record the import job. Please retry the upload.",
        ) from e
    await session.refresh(job)

    # Enqueue for background processing
    enqueued = False
    try:
        from bank_ingest.worker.jobs import enqueue_import
        enqueue_import(str(job_id))
        enqueued = True
    except Exception as enqueue_err:
        # Redis unavailable: the polling worker still picks the job up
        logger.warning("enqueue_failed", job_id=str(job_id), error=str(enqueue_err))

    logger.info(
        "statement_uploaded",
        job_id=str(job_id),
        file_name=file_name,
        size_bytes=file_size,
        checksum=checksum,
    )
    return ImportUploadResponse(job=ImportJobSummary.model_validate(job), enqueued=enqueued)


@router.post("/process-next", response_model=ProcessOutcome)
async def process_next(processor: ImportJobProcessor = Depends(get_processor)):
    """Run one processor iteration inline."""
    return await processor.process_next_import_job()


@router.get("/{job_id}", response_model=JobReport)
async def get_import(job_id: uuid.UUID, session: AsyncSession = Depends(get_db)):
    """Job status; for NEEDS_REVIEW jobs, the unverified pages with their gap and transactions."""
    report = await get_job_report(session, job_id)
    if report is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Import job not found: {job_id}")
    return report
