"""
/api/v1/duplicates endpoints.
Potential duplicate review queue.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from bank_ingest.dedup.review import get_duplicate_stats, get_pending_duplicates, resolve_duplicate
from bank_ingest.dependencies import get_db, verify_api_key
from bank_ingest.errors import DuplicateResolutionError
from bank_ingest.models.enums import DuplicateResolution
from bank_ingest.schemas.imports import (
    DuplicateStats,
    PotentialDuplicateResponse,
    ResolveDuplicateRequest,
)

router = APIRouter(prefix="/api/v1/duplicates", tags=["duplicates"], dependencies=[Depends(verify_api_key)])


@router.get("", response_model=list[PotentialDuplicateResponse])
async def list_pending(
    bank_account_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_db),
):
    """Pending potential duplicates, most similar first."""
    items = await get_pending_duplicates(session, bank_account_id=bank_account_id, limit=limit, offset=offset)
    return [PotentialDuplicateResponse.model_validate(d) for d in items]


@router.get("/stats", response_model=DuplicateStats)
async def stats(session: AsyncSession = Depends(get_db)):
    return DuplicateStats(**await get_duplicate_stats(session))


@router.post("/{duplicate_id}/resolve", response_model=PotentialDuplicateResponse)
async def resolve(
    duplicate_id: uuid.UUID,
    body: ResolveDuplicateRequest,
    session: AsyncSession = Depends(get_db),
):
    try:
        duplicate = await resolve_duplicate(
            session, duplicate_id, DuplicateResolution(body.resolution), resolved_by=body.resolved_by
        )
    except DuplicateResolutionError as e:
        code = (
            status.HTTP_404_NOT_FOUND
            if e.error_code == "ERR_DUPLICATE_NOT_FOUND"
            else status.HTTP_409_CONFLICT
        )
        raise HTTPException(status_code=code, detail={"error_code": e.error_code, "message": e.message})
    return PotentialDuplicateResponse.model_validate(duplicate)
