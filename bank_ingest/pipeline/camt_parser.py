"""
ISO 20022 camt.053 / camt.052 statement parser.

Deterministic, no external calls. Namespaces are stripped so every camt version
(001.02 through 001.08 and bank-specific variants) parses the same way.

Amounts are always read as the magnitude of <Amt>; direction comes from
<CdtDbtInd> only, never from a sign character.
"""

import datetime as dt
import xml.etree.ElementTree as ET
from decimal import Decimal, InvalidOperation
from typing import Optional

import structlog

from bank_ingest.config import settings
from bank_ingest.errors import StructuralError
from bank_ingest.models.enums import ImportFormat, PageStatus, TxDirection
from bank_ingest.pipeline.amount_parser import fits_money_column, to_money
from bank_ingest.pipeline.date_parser import parse_date_hr
from bank_ingest.schemas.statement import PageResult, ParsedTransaction, StatementData

logger = structlog.get_logger(__name__)

_OPENING_CODES = ("OPBD", "PRCD")
_CLOSING_CODES = ("CLBD",)


# ── Element helpers ──────────────────────────────────────────

def _strip_namespaces(root: ET.Element) -> ET.Element:
    for el in root.iter():
        if isinstance(el.tag, str) and "}" in el.tag:
            el.tag = el.tag.split("}", 1)[1]
    return root


def _text(el: Optional[ET.Element], path: str) -> Optional[str]:
    if el is None:
        return None
    found = el.find(path)
    if found is None or found.text is None:
        return None
    value = found.text.strip()
    return value or None


def _first_text(el: Optional[ET.Element], *paths: str) -> Optional[str]:
    for path in paths:
        value = _text(el, path)
        if value:
            return value
    return None


def _date(el: Optional[ET.Element], path: str) -> Optional[dt.date]:
    """A camt date container holds either <Dt> or <DtTm>."""
    return parse_date_hr(_first_text(el, f"{path}/Dt", f"{path}/DtTm"))


def _magnitude(el: Optional[ET.Element]) -> Optional[Decimal]:
    """<Amt> is an xs:decimal: '.' is always the decimal point, never a thousands mark."""
    if el is None or el.text is None:
        return None
    try:
        value = Decimal(el.text.strip())
    except InvalidOperation:
        return None
    if not fits_money_column(value):
        return None
    return to_money(abs(value))


# ── Statement element ────────────────────────────────────────

def _find_statement(root: ET.Element) -> Optional[ET.Element]:
    for path in ("BkToCstmrStmt/Stmt", "BkToCstmrAcctRpt/Rpt"):
        stmt = root.find(path)
        if stmt is not None:
            return stmt
        # Root may itself be the message element when the Document wrapper is missing
        container, child = path.split("/")
        if root.tag == container:
            stmt = root.find(child)
            if stmt is not None:
                return stmt
    return None


def _sequence_number(stmt: ET.Element) -> int:
    for path in ("LglSeqNb", "ElctrncSeqNb", "Id"):
        value = _text(stmt, path)
        if value and value.isdigit():
            return int(value)
    return 0


# ── Balances ─────────────────────────────────────────────────

def _balance_code(bal: ET.Element) -> Optional[str]:
    return _first_text(bal, "Tp/CdOrPrtry/Cd", "Tp/CdOrPrtry/Prtry")


def _signed_balance(bal: ET.Element) -> Optional[Decimal]:
    amount = _magnitude(bal.find("Amt"))
    if amount is None:
        return None
    if _text(bal, "CdtDbtInd") == "DBIT":
        return -amount
    return amount


def _pick_balances(stmt: ET.Element) -> tuple[Optional[Decimal], Optional[Decimal], Optional[str]]:
    balances = stmt.findall("Bal")
    if not balances:
        return None, None, None

    opening_el = next((b for b in balances if _balance_code(b) in _OPENING_CODES), balances[0])
    closing_el = next((b for b in balances if _balance_code(b) in _CLOSING_CODES), balances[-1])

    amt = opening_el.find("Amt")
    currency = amt.get("Ccy") if amt is not None else None
    return _signed_balance(opening_el), _signed_balance(closing_el), currency


# ── Entries ──────────────────────────────────────────────────

def _counterparty(details: Optional[ET.Element], direction: TxDirection) -> tuple[Optional[str], Optional[str]]:
    """Incoming money names the debtor as counterparty, outgoing money the creditor."""
    if details is None:
        return None, None
    parties = details.find("RltdPties")
    if parties is None:
        return None, None

    if direction == TxDirection.INCOMING:
        own, other = ("Dbtr", "UltmtDbtr", "DbtrAcct"), ("Cdtr", "UltmtCdtr", "CdtrAcct")
    else:
        own, other = ("Cdtr", "UltmtCdtr", "CdtrAcct"), ("Dbtr", "UltmtDbtr", "DbtrAcct")

    name = _first_text(
        parties,
        f"{own[0]}/Nm", f"{own[0]}/Pty/Nm", f"{own[1]}/Nm",
        f"{other[0]}/Nm", f"{other[0]}/Pty/Nm", f"{other[1]}/Nm",
    )
    iban = _first_text(parties, f"{own[2]}/Id/IBAN", f"{other[2]}/Id/IBAN")
    return name, iban


def _description(entry: ET.Element, details: Optional[ET.Element]) -> str:
    info = _text(entry, "AddtlNtryInf")
    if info:
        return info
    if details is not None:
        lines = [u.text.strip() for u in details.findall("RmtInf/Ustrd") if u.text and u.text.strip()]
        if lines:
            return " ".join(lines)
        extra = _text(details, "AddtlTxInf")
        if extra:
            return extra
    return ""


def _parse_entry(entry: ET.Element, fallback_date: Optional[dt.date]) -> Optional[ParsedTransaction]:
    amount = _magnitude(entry.find("Amt"))
    if amount is None:
        logger.warning("camt_entry_without_amount", entry_ref=_text(entry, "NtryRef"))
        return None

    direction = TxDirection.INCOMING if _text(entry, "CdtDbtInd") == "CRDT" else TxDirection.OUTGOING
    if (_text(entry, "RvslInd") or "").lower() == "true":
        direction = TxDirection.OUTGOING if direction == TxDirection.INCOMING else TxDirection.INCOMING

    booking_date = _date(entry, "BookgDt")
    value_date = _date(entry, "ValDt")
    txn_date = booking_date or value_date or fallback_date
    if txn_date is None:
        logger.warning("camt_entry_without_date", entry_ref=_text(entry, "NtryRef"))
        return None

    details = entry.find("NtryDtls/TxDtls")
    reference = _text(entry, "NtryRef") or _first_text(
        details, "Refs/EndToEndId", "Refs/TxId", "Refs/InstrId"
    )
    if reference == "NOTPROVIDED":
        reference = None

    name, iban = _counterparty(details, direction)
    amt_el = entry.find("Amt")

    return ParsedTransaction(
        date=txn_date,
        value_date=value_date,
        amount=amount,
        direction=direction,
        description=_description(entry, details),
        reference=reference,
        counterparty_name=name,
        counterparty_iban=iban,
        external_id=_text(entry, "AcctSvcrRef") or _text(details, "Refs/AcctSvcrRef"),
        currency=amt_el.get("Ccy") if amt_el is not None else None,
    )


# ── Public API ───────────────────────────────────────────────

def parse_camt(xml_bytes: bytes) -> StatementData:
    """
    Parse a camt.053/052 document into a single-page StatementData.
    The page is left unaudited; the orchestrator audits it like any other page.
    """
    try:
        root = _strip_namespaces(ET.fromstring(xml_bytes))
    except ET.ParseError as e:
        raise StructuralError(f"Invalid XML: {e}", error_code="ERR_XML_INVALID") from e

    stmt = _find_statement(root)
    if stmt is None:
        raise StructuralError(
            "CAMT XML does not contain a statement", error_code="ERR_XML_NO_STATEMENT"
        )

    opening, closing, balance_ccy = _pick_balances(stmt)
    currency = _text(stmt, "Acct/Ccy") or balance_ccy or settings.DEFAULT_CURRENCY

    period_start = parse_date_hr(_first_text(stmt, "FrToDt/FrDt", "FrToDt/FrDtTm"))
    period_end = parse_date_hr(_first_text(stmt, "FrToDt/ToDt", "FrToDt/ToDtTm"))
    statement_date = parse_date_hr(_text(stmt, "CreDtTm")) or period_end

    transactions = []
    for entry in stmt.findall("Ntry"):
        txn = _parse_entry(entry, statement_date)
        if txn is not None:
            transactions.append(txn)

    if transactions:
        dates = sorted(t.date for t in transactions)
        period_start = period_start or dates[0]
        period_end = period_end or dates[-1]
        statement_date = statement_date or dates[-1]

    raw_text = xml_bytes.decode("utf-8", errors="replace") if isinstance(xml_bytes, bytes) else str(xml_bytes)

    page = PageResult(
        page_number=1,
        start_balance=opening,
        end_balance=closing,
        transactions=transactions,
        status=PageStatus.NEEDS_VISION,
        raw_text=raw_text,
    )

    logger.info(
        "camt_parsed",
        entries=len(transactions),
        sequence_number=_sequence_number(stmt),
        currency=currency,
    )

    return StatementData(
        format=ImportFormat.XML_CAMT053,
        pages=[page],
        statement_date=statement_date,
        period_start=period_start,
        period_end=period_end,
        sequence_number=_sequence_number(stmt),
        opening_balance=opening,
        closing_balance=closing,
        currency=currency,
        account_iban=_first_text(stmt, "Acct/Id/IBAN", "Acct/Id/Othr/Id"),
        owner_name=_first_text(stmt, "Acct/Ownr/Nm"),
    )
