"""
Tests for the extraction orchestrator (audit, carry-forward and vision repair).
"""

from datetime import date
from decimal import Decimal

import pytest

from bank_ingest.engines.scripted_adapter import ScriptedAdapter
from bank_ingest.errors import StructuralError
from bank_ingest.models.enums import PageStatus, TierType
from bank_ingest.pipeline import orchestrator
from bank_ingest.pipeline.orchestrator import StatementPipeline


def _page(start, end, *txns, sequence=None, statement_date=None):
    payload = {
        "pageStartBalance": start,
        "pageEndBalance": end,
        "transactions": [
            {"date": d, "description": desc, "amount": amount, "direction": direction}
            for d, desc, amount, direction in txns
        ],
    }
    if sequence is not None or statement_date is not None:
        payload["metadata"] = {"sequenceNumber": sequence, "statementDate": statement_date}
    return payload


@pytest.fixture
def pages_text(monkeypatch):
    """Replace PDF text extraction with fixed page texts."""
    def _set(texts):
        monkeypatch.setattr(orchestrator, "extract_pages_text", lambda pdf_bytes: list(texts))
    return _set


@pytest.fixture
def rendered():
    calls = []

    def _render(pdf_bytes, page_number):
        calls.append(page_number)
        return b"\x89PNG-page-%d" % page_number

    _render.calls = calls
    return _render


class TestProcessPdf:
    """Per-page text extraction followed by audit."""

    async def test_clean_page_skips_vision(self, pages_text, rendered):
        pages_text(["IZVOD 1"])
        adapter = ScriptedAdapter(text_pages={
            1: _page("1.000,00", "1.200,50",
                     ("15.01.2025", "Uplata", "250,50", "INCOMING"),
                     ("20.01.2025", "Struja", "50,00", "OUTGOING"),
                     sequence=12, statement_date="31.01.2025"),
        })
        data = await StatementPipeline(adapter, renderer=rendered).process_pdf(b"%PDF")

        assert data.pages[0].status == PageStatus.VERIFIED
        assert adapter.vision_calls == []
        assert rendered.calls == []
        assert not data.vision_triggered
        assert data.tier == TierType.TEXT_LLM
        assert data.sequence_number == 12
        assert data.statement_date == date(2025, 1, 31)
        assert data.period_start == date(2025, 1, 15)
        assert data.period_end == date(2025, 1, 20)
        assert data.opening_balance == Decimal("1000.00")
        assert data.closing_balance == Decimal("1200.50")

    async def test_vision_repair_replaces_failed_page(
        self, pages_text, rendered, unbalanced_page_json, repaired_page_json
    ):
        pages_text(["IZVOD 3"])
        adapter = ScriptedAdapter(text_pages={1: unbalanced_page_json}, vision_pages={1: repaired_page_json})
        data = await StatementPipeline(adapter, renderer=rendered).process_pdf(b"%PDF")

        page = data.pages[0]
        assert page.status == PageStatus.VERIFIED
        assert page.vision_repaired
        assert len(page.transactions) == 2
        assert page.audit_difference == Decimal("0.00")
        assert adapter.vision_calls == [1]
        assert adapter.vision_images == [b"\x89PNG-page-1"]
        assert data.vision_triggered
        assert data.tier == TierType.VISION_LLM
        assert not data.needs_review

    async def test_unreconciled_repair_keeps_candidate(self, pages_text, rendered, unbalanced_page_json):
        still_wrong = dict(unbalanced_page_json, pageEndBalance="1.249,00")
        pages_text(["IZVOD 3"])
        adapter = ScriptedAdapter(text_pages={1: unbalanced_page_json}, vision_pages={1: still_wrong})
        data = await StatementPipeline(adapter, renderer=rendered).process_pdf(b"%PDF")

        page = data.pages[0]
        assert page.status == PageStatus.NEEDS_VISION
        assert not page.vision_repaired
        assert page.end_balance == Decimal("1250.00")
        assert page.audit_difference == Decimal("50.00")
        assert page.audit_reason == "BALANCE_MISMATCH"
        assert not data.vision_triggered
        assert data.needs_review

    async def test_failed_repair_keeps_candidate(self, pages_text, unbalanced_page_json):
        pages_text(["IZVOD 3"])
        adapter = ScriptedAdapter(text_pages={1: unbalanced_page_json})
        data = await StatementPipeline(adapter, renderer=lambda b, n: None).process_pdf(b"%PDF")

        page = data.pages[0]
        assert page.status == PageStatus.NEEDS_VISION
        assert len(page.transactions) == 1
        assert adapter.vision_calls == [1]
        assert adapter.vision_images == [None]

    async def test_oversized_amount_fails_only_its_page(self, pages_text, rendered):
        pages_text(["IZVOD 1", "IZVOD 2"])
        adapter = ScriptedAdapter(text_pages={
            1: _page("100,00", "150,00", ("15.01.2025", "Uplata", "50,00", "INCOMING")),
            2: _page("150,00", "150,00", ("16.01.2025", "Uplata", "1" + "0" * 30, "INCOMING")),
        })
        data = await StatementPipeline(adapter, renderer=rendered).process_pdf(b"%PDF")

        first, second = data.pages
        assert first.status == PageStatus.VERIFIED
        assert second.status == PageStatus.NEEDS_VISION
        assert second.extraction_error == "ERR_AI_SCHEMA"
        assert second.transactions == []
        assert adapter.vision_calls == [2]
        assert data.needs_review

    async def test_start_balance_carried_forward(self, pages_text, rendered):
        pages_text(["STRANICA 1", "STRANICA 2"])
        adapter = ScriptedAdapter(text_pages={
            1: _page("100,00", "150,00", ("02.01.2025", "Uplata", "50,00", "INCOMING")),
            2: _page(None, "120,00", ("03.01.2025", "Naknada", "30,00", "OUTGOING")),
        })
        data = await StatementPipeline(adapter, renderer=rendered).process_pdf(b"%PDF")

        second = data.pages[1]
        assert second.start_balance == Decimal("150.00")
        assert second.start_balance_carried
        assert second.status == PageStatus.VERIFIED
        assert data.pages_verified == 2
        assert data.closing_balance == Decimal("120.00")
        assert data.continuity_breaks == []

    async def test_blank_page_goes_straight_to_vision(self, pages_text, rendered):
        pages_text(["STRANICA 1", ""])
        adapter = ScriptedAdapter(
            text_pages={1: _page("100,00", "100,00")},
            vision_pages={2: _page("100,00", "90,00", ("04.01.2025", "Naknada", "10,00", "OUTGOING"))},
        )
        data = await StatementPipeline(adapter, renderer=rendered).process_pdf(b"%PDF")

        assert adapter.text_calls == [1]
        assert adapter.vision_calls == [2]
        assert rendered.calls == [2]
        assert data.pages[1].status == PageStatus.VERIFIED
        assert data.pages[1].extraction_error == "ERR_PAGE_NO_TEXT"

    async def test_pages_processed_in_order(self, pages_text, rendered):
        pages_text(["A", "B", "C"])
        adapter = ScriptedAdapter(text_pages={n: _page("1,00", "1,00") for n in (1, 2, 3)})
        data = await StatementPipeline(adapter, renderer=rendered).process_pdf(b"%PDF")

        assert adapter.text_calls == [1, 2, 3]
        assert [p.page_number for p in data.pages] == [1, 2, 3]

    async def test_continuity_break_recorded(self, pages_text, rendered):
        pages_text(["A", "B"])
        adapter = ScriptedAdapter(text_pages={1: _page("10,00", "10,00"), 2: _page("20,00", "20,00")})
        data = await StatementPipeline(adapter, renderer=rendered).process_pdf(b"%PDF")

        assert data.pages_verified == 2
        assert data.continuity_breaks == [2]

    async def test_no_text_raises(self, pages_text):
        pages_text(["", "  "])
        with pytest.raises(StructuralError) as exc:
            await StatementPipeline(ScriptedAdapter()).process_pdf(b"%PDF")
        assert exc.value.error_code == "ERR_PDF_NO_PAGES"

    async def test_no_pages_raises(self, pages_text):
        pages_text([])
        with pytest.raises(StructuralError):
            await StatementPipeline(ScriptedAdapter()).process_pdf(b"%PDF")


class TestProcessXml:
    async def test_clean_statement_verified(self, camt_clean):
        adapter = ScriptedAdapter()
        data = await StatementPipeline(adapter).process_xml(camt_clean)

        assert data.pages[0].status == PageStatus.VERIFIED
        assert data.tier == TierType.XML
        assert adapter.text_calls == []
        assert adapter.vision_calls == []

    async def test_unreconciled_statement_needs_review(self, camt_clean):
        tampered = camt_clean.replace(b"1200.50", b"1300.50")
        data = await StatementPipeline(ScriptedAdapter()).process_xml(tampered)

        assert data.pages[0].status == PageStatus.NEEDS_VISION
        assert data.pages[0].audit_difference == Decimal("-100.00")
        assert data.needs_review
