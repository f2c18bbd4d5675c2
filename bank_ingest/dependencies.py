"""
FastAPI dependency injection.
Provides DB sessions, the file store, the job processor, and API key validation.
"""

from typing import Optional

from fastapi import Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from bank_ingest.config import settings
from bank_ingest.models.database import get_session
from bank_ingest.storage.file_store import FileStore
from bank_ingest.worker.processor import ImportJobProcessor


# ── Singleton instances ──────────────────────────────────────
_file_store: Optional[FileStore] = None
_processor: Optional[ImportJobProcessor] = None


def get_file_store() -> FileStore:
    """Get or create the file store singleton."""
    global _file_store
    if _file_store is None:
        _file_store = FileStore()
    return _file_store


def get_processor() -> ImportJobProcessor:
    """Get or create the inline job processor."""
    global _processor
    if _processor is None:
        _processor = ImportJobProcessor(storage=get_file_store())
    return _processor


async def get_db() -> AsyncSession:
    """Yield an async DB session."""
    async for session in get_session():
        yield session


async def verify_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> Optional[str]:
    """
    Verify API key if configured.
    If API_KEY is not set, all requests are allowed (dev mode).
    """
    if settings.API_KEY is None:
        return None

    if x_api_key is None or x_api_key != settings.API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return x_api_key
