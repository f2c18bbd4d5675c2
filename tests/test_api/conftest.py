"""
API fixtures: the app wired to the test database, file store and a scripted adapter.
"""

import httpx
import pytest
import pytest_asyncio

from bank_ingest.dependencies import get_db, get_file_store, get_processor
from bank_ingest.engines.scripted_adapter import ScriptedAdapter
from bank_ingest.main import create_app
from bank_ingest.worker.processor import ImportJobProcessor


@pytest.fixture
def enqueued(monkeypatch):
    """Capture enqueue calls instead of talking to Redis."""
    calls = []
    monkeypatch.setattr("bank_ingest.worker.jobs.enqueue_import", lambda job_id: calls.append(job_id) or "rq-1")
    return calls


@pytest_asyncio.fixture
async def client(session_factory, file_store, enqueued):
    app = create_app()

    async def _db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    processor = ImportJobProcessor(session_factory=session_factory, storage=file_store, adapter=ScriptedAdapter())
    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_file_store] = lambda: file_store
    app.dependency_overrides[get_processor] = lambda: processor

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
