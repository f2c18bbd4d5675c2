"""
Extraction orchestrator: turns an uploaded statement into audited StatementData.

PDF path:  TEXT → AI EXTRACT → CARRY-FORWARD → AUDIT → (VISION REPAIR → RE-AUDIT) → AGGREGATE
XML path:  CAMT PARSE → AUDIT

Pages are processed strictly in ascending order; the only suspension points are
the adapter's external calls. Nothing here touches the database.
"""

from typing import Callable, Optional

import structlog

from bank_ingest.config import settings
from bank_ingest.engines.base import ExtractionAdapter
from bank_ingest.errors import StructuralError
from bank_ingest.models.enums import ImportFormat, PageStatus
from bank_ingest.observability.metrics import pages_audited_total, vision_repairs_total
from bank_ingest.pipeline.auditor import AuditResult, audit_page, check_continuity
from bank_ingest.pipeline.camt_parser import parse_camt
from bank_ingest.pipeline.text_extractor import extract_pages_text, has_any_text, render_page_image
from bank_ingest.schemas.extraction import ExtractionMetadata, PageExtraction
from bank_ingest.schemas.statement import PageResult, ParsedTransaction, StatementData

logger = structlog.get_logger(__name__)


def _to_parsed(page: PageExtraction) -> list[ParsedTransaction]:
    return [
        ParsedTransaction(
            date=t.date,
            amount=t.amount,
            direction=t.direction,
            description=t.description or t.payee or "",
            reference=t.reference,
            counterparty_name=t.payee,
            counterparty_iban=t.counterparty_iban,
        )
        for t in page.transactions
    ]


def _apply_audit(page: PageResult, audit: AuditResult) -> None:
    page.status = PageStatus.VERIFIED if audit.is_verified else PageStatus.NEEDS_VISION
    page.audit_difference = audit.difference
    page.audit_reason = audit.reason


class StatementPipeline:
    """
    Processes one statement file through extraction and audit.
    The adapter and the page renderer are explicit collaborators.
    """

    def __init__(
        self,
        adapter: ExtractionAdapter,
        renderer: Callable[[bytes, int], Optional[bytes]] = render_page_image,
    ):
        self.adapter = adapter
        self.renderer = renderer

    # ── XML ──────────────────────────────────────────────────

    async def process_xml(self, xml_bytes: bytes) -> StatementData:
        data = parse_camt(xml_bytes)
        page = data.pages[0]
        audit = audit_page(page.start_balance, page.end_balance, page.transactions)
        _apply_audit(page, audit)
        pages_audited_total.labels(status=page.status.value).inc()

        if not audit.is_verified:
            logger.warning(
                "xml_statement_unreconciled",
                reason=audit.reason,
                difference=str(audit.difference) if audit.difference is not None else None,
            )
        return data

    # ── PDF ──────────────────────────────────────────────────

    async def process_pdf(self, pdf_bytes: bytes) -> StatementData:
        pages_text = extract_pages_text(pdf_bytes)
        if not pages_text or not has_any_text(pages_text):
            raise StructuralError("PDF text extraction returned no pages", error_code="ERR_PDF_NO_PAGES")

        logger.info("pdf_pipeline_started", page_count=len(pages_text))

        results: list[PageResult] = []
        metadata: list[ExtractionMetadata] = []
        vision_triggered = False
        previous_end = None

        for index, text in enumerate(pages_text):
            page_number = index + 1
            page, page_meta, repaired = await self._process_page(
                pdf_bytes, page_number, text, previous_end
            )
            results.append(page)
            if page_meta is not None:
                metadata.append(page_meta)
            vision_triggered = vision_triggered or repaired
            previous_end = page.end_balance
            pages_audited_total.labels(status=page.status.value).inc()

        return self._aggregate(results, metadata, vision_triggered)

    async def _process_page(
        self,
        pdf_bytes: bytes,
        page_number: int,
        text: str,
        previous_end,
    ) -> tuple[PageResult, Optional[ExtractionMetadata], bool]:
        log = logger.bind(page=page_number)

        # ── Text-mode extraction ──
        extraction_error = None
        if text.strip():
            outcome = await self.adapter.extract_page(text, page_number)
            if outcome.ok:
                candidate = outcome.page
            else:
                candidate = PageExtraction()
                extraction_error = outcome.error_code
                log.warning("page_extraction_failed", error_code=outcome.error_code, error=outcome.message)
        else:
            candidate = PageExtraction()
            extraction_error = "ERR_PAGE_NO_TEXT"
            log.info("page_has_no_text")

        start = candidate.page_start_balance
        carried = False
        if start is None and previous_end is not None:
            start = previous_end
            carried = True

        page = PageResult(
            page_number=page_number,
            start_balance=start,
            end_balance=candidate.page_end_balance,
            transactions=_to_parsed(candidate),
            raw_text=text,
            start_balance_carried=carried,
            extraction_error=extraction_error,
        )
        audit = audit_page(page.start_balance, page.end_balance, page.transactions)
        _apply_audit(page, audit)
        if audit.is_verified:
            log.debug("page_verified", transactions=len(page.transactions))
            return page, candidate.metadata, False

        log.info(
            "page_audit_failed",
            reason=audit.reason,
            difference=str(audit.difference) if audit.difference is not None else None,
        )

        # ── Vision repair ──
        image = self.renderer(pdf_bytes, page_number)
        hint = candidate.model_copy(update={"page_start_balance": start})
        repair = await self.adapter.repair_page(text, image, hint, page_number)
        if not repair.ok:
            vision_repairs_total.labels(outcome="failed").inc()
            log.warning("vision_repair_failed", error_code=repair.error_code, error=repair.message)
            return page, candidate.metadata, False

        repaired = repair.page
        repaired_start = repaired.page_start_balance if repaired.page_start_balance is not None else start
        repaired_end = repaired.page_end_balance if repaired.page_end_balance is not None else page.end_balance
        repaired_txns = _to_parsed(repaired)
        re_audit = audit_page(repaired_start, repaired_end, repaired_txns)

        if not re_audit.is_verified:
            vision_repairs_total.labels(outcome="unreconciled").inc()
            log.warning(
                "vision_repair_unreconciled",
                reason=re_audit.reason,
                difference=str(re_audit.difference) if re_audit.difference is not None else None,
            )
            return page, candidate.metadata, False

        vision_repairs_total.labels(outcome="repaired").inc()
        log.info("vision_repair_verified", transactions=len(repaired_txns))
        page.start_balance = repaired_start
        page.end_balance = repaired_end
        page.transactions = repaired_txns
        page.vision_repaired = True
        page.start_balance_carried = carried and repaired.page_start_balance is None
        _apply_audit(page, re_audit)
        return page, repaired.metadata or candidate.metadata, True

    # ── Aggregation ──────────────────────────────────────────

    def _aggregate(
        self,
        pages: list[PageResult],
        metadata: list[ExtractionMetadata],
        vision_triggered: bool,
    ) -> StatementData:
        dates = sorted(t.date for p in pages for t in p.transactions)
        period_start = dates[0] if dates else None
        period_end = dates[-1] if dates else None

        statement_date = next((m.statement_date for m in metadata if m.statement_date), None)
        sequence_number = next(
            (m.sequence_number for m in metadata if m.sequence_number is not None), 0
        )

        opening = next((p.start_balance for p in pages if p.start_balance is not None), None)
        closing = next((p.end_balance for p in reversed(pages) if p.end_balance is not None), opening)

        breaks = check_continuity(pages)
        if breaks:
            logger.warning("balance_continuity_broken", pages=breaks)

        data = StatementData(
            format=ImportFormat.PDF,
            pages=pages,
            statement_date=statement_date or period_end,
            period_start=period_start,
            period_end=period_end,
            sequence_number=sequence_number,
            opening_balance=opening,
            closing_balance=closing,
            currency=settings.DEFAULT_CURRENCY,
            vision_triggered=vision_triggered,
            continuity_breaks=breaks,
        )

        logger.info(
            "pdf_pipeline_complete",
            pages=len(pages),
            pages_verified=data.pages_verified,
            pages_failed=data.pages_failed,
            transactions=len(data.transactions),
            vision_triggered=vision_triggered,
        )
        return data
