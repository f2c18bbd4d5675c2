"""
AI extraction contract.

The extraction adapter returns untyped JSON from an external model. It is validated
here, immediately on receipt, into either an ExtractionSuccess carrying a fully-shaped
PageExtraction or an ExtractionFailure. Nothing partially shaped goes further.

Wire shape (camelCase on the wire, snake_case in Python):
    {
      "metadata": {"sequenceNumber": 12, "statementDate": "2025-01-31"},
      "pageStartBalance": "1.000,00",
      "pageEndBalance": 1200.50,
      "transactions": [
        {"date": "15.01.2025", "payee": "ACME d.o.o.", "description": "...",
         "amount": "250,50", "direction": "INCOMING", "reference": "HR00 123",
         "counterpartyIban": "HR12..."}
      ]
    }
"""

import datetime as dt
import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from bank_ingest.models.enums import TxDirection
from bank_ingest.pipeline.amount_parser import fits_money_column, parse_amount_hr
from bank_ingest.pipeline.date_parser import parse_date_hr


_DIRECTION_SYNONYMS = {
    "INCOMING": TxDirection.INCOMING,
    "IN": TxDirection.INCOMING,
    "CREDIT": TxDirection.INCOMING,
    "CRDT": TxDirection.INCOMING,
    "UPLATA": TxDirection.INCOMING,
    "ODOBRENJE": TxDirection.INCOMING,
    "OUTGOING": TxDirection.OUTGOING,
    "OUT": TxDirection.OUTGOING,
    "DEBIT": TxDirection.OUTGOING,
    "DBIT": TxDirection.OUTGOING,
    "ISPLATA": TxDirection.OUTGOING,
    "TERECENJE": TxDirection.OUTGOING,
    "TEREĆENJE": TxDirection.OUTGOING,
}


def normalise_direction(value: Any) -> Optional[TxDirection]:
    if isinstance(value, TxDirection):
        return value
    if value is None:
        return None
    return _DIRECTION_SYNONYMS.get(str(value).strip().upper())


def _to_decimal(value: Any) -> Optional[Decimal]:
    """Parse a JSON number or numeric string; floats are re-read from their repr."""
    if value is None:
        return None
    if isinstance(value, float):
        value = str(value)
    parsed = parse_amount_hr(value)
    if parsed.amount is None:
        raise ValueError(f"not a monetary amount: {value!r}")
    if not fits_money_column(parsed.amount):
        raise ValueError(f"monetary amount out of range: {str(value)[:40]!r}")
    return parsed.amount


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class ExtractedTransaction(BaseModel):
    """One ledger line as extracted by the AI adapter."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    date: dt.date
    payee: Optional[str] = None
    description: Optional[str] = None
    amount: Decimal = Field(ge=0)
    direction: TxDirection
    reference: Optional[str] = None
    counterparty_iban: Optional[str] = Field(default=None, alias="counterpartyIban")

    @model_validator(mode="before")
    @classmethod
    def _amount_and_direction(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        amount = _to_decimal(data.get("amount"))
        if amount is None:
            raise ValueError("transaction amount is required")

        direction = normalise_direction(data.get("direction"))
        if direction is None:
            if data.get("direction") not in (None, ""):
                raise ValueError(f"unknown direction: {data.get('direction')!r}")
            direction = TxDirection.OUTGOING if amount < 0 else TxDirection.INCOMING

        data["amount"] = abs(amount)
        data["direction"] = direction
        return data

    @field_validator("date", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> dt.date:
        parsed = parse_date_hr(value)
        if parsed is None:
            raise ValueError(f"unparseable transaction date: {value!r}")
        return parsed

    @field_validator("payee", "description", "reference", "counterparty_iban", mode="before")
    @classmethod
    def _clean_text(cls, value: Any) -> Optional[str]:
        return _optional_text(value)

    @property
    def signed_amount(self) -> Decimal:
        return -self.amount if self.direction == TxDirection.OUTGOING else self.amount


class ExtractionMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sequence_number: Optional[int] = Field(default=None, alias="sequenceNumber")
    statement_date: Optional[dt.date] = Field(default=None, alias="statementDate")

    @field_validator("sequence_number", mode="before")
    @classmethod
    def _lenient_int(cls, value: Any) -> Optional[int]:
        if value is None or isinstance(value, bool):
            return None
        try:
            return int(str(value).strip())
        except ValueError:
            return None

    @field_validator("statement_date", mode="before")
    @classmethod
    def _lenient_date(cls, value: Any) -> Optional[dt.date]:
        return parse_date_hr(value)


class PageExtraction(BaseModel):
    """Balances and transactions the adapter found on one page."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    metadata: Optional[ExtractionMetadata] = None
    page_start_balance: Optional[Decimal] = Field(default=None, alias="pageStartBalance")
    page_end_balance: Optional[Decimal] = Field(default=None, alias="pageEndBalance")
    transactions: list[ExtractedTransaction] = Field(default_factory=list)

    @field_validator("page_start_balance", "page_end_balance", mode="before")
    @classmethod
    def _parse_balance(cls, value: Any) -> Optional[Decimal]:
        if isinstance(value, str) and not value.strip():
            return None
        return _to_decimal(value)

    @field_validator("transactions", mode="before")
    @classmethod
    def _null_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    def to_wire(self) -> dict:
        """The camelCase JSON shape, used as the correction hint for vision repair."""
        return self.model_dump(mode="json", by_alias=True)


# ── Tagged result ────────────────────────────────────────────

@dataclass
class ExtractionSuccess:
    page: PageExtraction
    ok: bool = True


@dataclass
class ExtractionFailure:
    error_code: str
    message: str
    ok: bool = False


ExtractionOutcome = Union[ExtractionSuccess, ExtractionFailure]


def parse_extraction_payload(raw: Optional[str]) -> ExtractionOutcome:
    """
    Validate raw adapter output. Markdown wrapping is not tolerated: anything that is
    not a bare JSON object is a failure for that page.
    """
    if raw is None or not raw.strip():
        return ExtractionFailure("ERR_AI_EMPTY", "Extraction returned no content")

    try:
        data = json.loads(raw, parse_float=Decimal)
    except json.JSONDecodeError as e:
        return ExtractionFailure("ERR_AI_INVALID_JSON", f"Invalid JSON from extraction: {e}")

    if not isinstance(data, dict):
        return ExtractionFailure(
            "ERR_AI_SCHEMA", f"Expected a JSON object, got {type(data).__name__}"
        )

    try:
        page = PageExtraction.model_validate(data)
    except ValidationError as e:
        return ExtractionFailure(
            "ERR_AI_SCHEMA", f"Extraction failed schema validation: {e.error_count()} error(s): {e.errors()[0]['msg']}"
        )

    return ExtractionSuccess(page=page)
