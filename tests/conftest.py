"""
Shared test fixtures.
"""

import os

# Must be set before bank_ingest.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PROMETHEUS_ENABLED", "false")

import uuid
from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from bank_ingest.models.database import Base
from bank_ingest.models.tables import BankTransaction, ImportJob
from bank_ingest.storage.file_store import FileStore
from bank_ingest.storage.paths import file_checksum


# ── Database ─────────────────────────────────────────────────

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """File-backed SQLite with working SAVEPOINTs, schema created from the ORM."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def file_store(tmp_path):
    return FileStore(root=str(tmp_path / "uploads"))


@pytest.fixture
def make_transaction():
    """Factory for unsaved BankTransaction rows on a default account."""
    def _make(**overrides) -> BankTransaction:
        values = dict(
            company_id="company-1",
            bank_account_id="account-1",
            date=date(2025, 1, 15),
            description="ACME D.O.O. PAYMENT",
            amount=Decimal("100.00"),
            direction="INCOMING",
            currency="EUR",
            reference=None,
            match_status="UNMATCHED",
        )
        values.update(overrides)
        return BankTransaction(**values)
    return _make


@pytest.fixture
def add_job(session_factory, file_store):
    """Store a file and create a PENDING ImportJob for it. Returns the job id."""
    async def _add(content: bytes, original_name: str, content_type=None, bank_account_id="account-1"):
        job_id = uuid.uuid4()
        relative = file_store.save_bytes(f"company-1/{job_id}/{original_name}", content)
        async with session_factory() as s:
            s.add(ImportJob(
                id=job_id,
                company_id="company-1",
                bank_account_id=bank_account_id,
                user_id="user-1",
                original_name=original_name,
                storage_path=relative,
                content_type=content_type,
                file_checksum=file_checksum(content),
                status="PENDING",
            ))
            await s.commit()
        return job_id
    return _add


# ── Statement samples ────────────────────────────────────────

CAMT_053_CLEAN = b"""<?xml version="1.0" encoding="UTF-8"?>
<Document xmlns="urn:iso:std:iso:20022:tech:xsd:camt.053.001.02">
  <BkToCstmrStmt>
    <GrpHdr><MsgId>MSG-1</MsgId><CreDtTm>2025-01-31T18:00:00</CreDtTm></GrpHdr>
    <Stmt>
      <Id>STMT-2025-01</Id>
      <ElctrncSeqNb>12</ElctrncSeqNb>
      <LglSeqNb>12</LglSeqNb>
      <CreDtTm>2025-01-31T18:00:00+01:00</CreDtTm>
      <FrToDt><FrDtTm>2025-01-01T00:00:00</FrDtTm><ToDtTm>2025-01-31T23:59:59</ToDtTm></FrToDt>
      <Acct>
        <Id><IBAN>HR1210010051863000160</IBAN></Id>
        <Ccy>EUR</Ccy>
        <Ownr><Nm>FISKAL TEST d.o.o.</Nm></Ownr>
      </Acct>
      <Bal>
        <Tp><CdOrPrtry><Cd>OPBD</Cd></CdOrPrtry></Tp>
        <Amt Ccy="EUR">1000.00</Amt>
        <CdtDbtInd>CRDT</CdtDbtInd>
        <Dt><Dt>2025-01-01</Dt></Dt>
      </Bal>
      <Bal>
        <Tp><CdOrPrtry><Cd>CLBD</Cd></CdOrPrtry></Tp>
        <Amt Ccy="EUR">1200.50</Amt>
        <CdtDbtInd>CRDT</CdtDbtInd>
        <Dt><Dt>2025-01-31</Dt></Dt>
      </Bal>
      <Ntry>
        <NtryRef>REF-IN-1</NtryRef>
        <Amt Ccy="EUR">250.50</Amt>
        <CdtDbtInd>CRDT</CdtDbtInd>
        <Sts>BOOK</Sts>
        <BookgDt><Dt>2025-01-15</Dt></BookgDt>
        <ValDt><Dt>2025-01-15</Dt></ValDt>
        <AcctSvcrRef>BANK-0001</AcctSvcrRef>
        <NtryDtls><TxDtls>
          <Refs><EndToEndId>E2E-1</EndToEndId></Refs>
          <RltdPties>
            <Dbtr><Nm>KUPAC d.o.o.</Nm></Dbtr>
            <DbtrAcct><Id><IBAN>HR6623400091110123456</IBAN></Id></DbtrAcct>
            <Cdtr><Nm>FISKAL TEST d.o.o.</Nm></Cdtr>
          </RltdPties>
          <RmtInf><Ustrd>Placanje racuna 2025-001</Ustrd></RmtInf>
        </TxDtls></NtryDtls>
      </Ntry>
      <Ntry>
        <Amt Ccy="EUR">50.00</Amt>
        <CdtDbtInd>DBIT</CdtDbtInd>
        <Sts>BOOK</Sts>
        <BookgDt><Dt>2025-01-20</Dt></BookgDt>
        <AcctSvcrRef>BANK-0002</AcctSvcrRef>
        <NtryDtls><TxDtls>
          <Refs><EndToEndId>HR00 555-01</EndToEndId></Refs>
          <RltdPties>
            <Dbtr><Nm>FISKAL TEST d.o.o.</Nm></Dbtr>
            <Cdtr><Nm>HEP ELEKTRA d.o.o.</Nm></Cdtr>
            <CdtrAcct><Id><IBAN>HR3323600001101234565</IBAN></Id></CdtrAcct>
          </RltdPties>
        </TxDtls></NtryDtls>
        <AddtlNtryInf>Racun za struju 01/2025</AddtlNtryInf>
      </Ntry>
    </Stmt>
  </BkToCstmrStmt>
</Document>
"""


@pytest.fixture
def camt_clean():
    """camt.053: 1000.00 + 250.50 - 50.00 = 1200.50."""
    return CAMT_053_CLEAN


def build_pdf(pages: list[list[str]]) -> bytes:
    """
    Minimal text PDF: one content stream per page, Helvetica, one line per string.
    Offsets in the xref table are computed, so the file is well-formed.
    """
    objects: list[bytes] = []
    page_count = len(pages)
    font_obj = 3 + 2 * page_count
    kids = " ".join(f"{3 + 2 * i} 0 R" for i in range(page_count))

    objects.append(b"<< /Type /Catalog /Pages 2 0 R >>")
    objects.append(f"<< /Type /Pages /Kids [{kids}] /Count {page_count} >>".encode())
    for i, lines in enumerate(pages):
        content_obj = 4 + 2 * i
        objects.append(
            f"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 595 842] "
            f"/Resources << /Font << /F1 {font_obj} 0 R >> >> /Contents {content_obj} 0 R >>".encode()
        )
        ops = ["BT", "/F1 10 Tf", "14 TL", "40 800 Td"]
        for line in lines:
            escaped = line.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
            ops.append(f"({escaped}) Tj T*")
        ops.append("ET")
        stream = "\n".join(ops).encode("latin-1")
        objects.append(b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream")
    objects.append(b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>")

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"
    xref_at = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref_at)
    return bytes(out)


@pytest.fixture
def pdf_builder():
    return build_pdf


@pytest.fixture
def unbalanced_page_json():
    """Text-mode extraction that misses one OUTGOING row: 1000 + 300 != 1250."""
    return {
        "metadata": {"sequenceNumber": 3, "statementDate": "2025-02-28"},
        "pageStartBalance": "1.000,00",
        "pageEndBalance": "1.250,00",
        "transactions": [
            {"date": "10.02.2025", "payee": "KUPAC d.o.o.", "description": "Uplata po racunu 7",
             "amount": "300,00", "direction": "INCOMING", "reference": "HR00 7"},
        ],
    }


@pytest.fixture
def repaired_page_json():
    """Vision-mode extraction of the same page, now reconciling: 1000 + 300 - 50 = 1250."""
    return {
        "metadata": {"sequenceNumber": 3, "statementDate": "2025-02-28"},
        "pageStartBalance": 1000.00,
        "pageEndBalance": 1250.00,
        "transactions": [
            {"date": "2025-02-10", "payee": "KUPAC d.o.o.", "description": "Uplata po racunu 7",
             "amount": 300.00, "direction": "INCOMING", "reference": "HR00 7"},
            {"date": "2025-02-12", "payee": "A1 Hrvatska", "description": "Telekom usluge veljaca",
             "amount": 50.00, "direction": "OUTGOING", "reference": "HR01 9912"},
        ],
    }
