"""
Croatian amount parser.

Handles the amount conventions seen on Croatian bank statements and in AI output:
- 1.234,56 / 1234,56 EUR     -> Croatian: '.' thousands, ',' decimal
- 1,234.56 / 1234.56          -> plain: ',' thousands, '.' decimal
- 1.234.567                   -> Croatian thousands only
- (1.234,56)                  -> negative (parentheses)
- -1.234,56 / 1.234,56-       -> negative (leading / trailing minus)

Money is always Decimal. Nothing in here goes through float.
"""

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Union

from pydantic import BaseModel

from bank_ingest.config import settings


class AmountParseResult(BaseModel):
    amount: Optional[Decimal] = None
    raw_text: str
    is_negative: bool = False
    sign_convention: Optional[str] = None  # PARENTHESES, MINUS, NONE
    confidence: float = 0.0


_CURRENCY_MARKERS = ("EUR", "eur", "HRK", "hrk", "kn", "KN", "€")
_THOUSANDS_ONLY_DOT = re.compile(r"^\d{1,3}(\.\d{3})+$")
_THOUSANDS_ONLY_COMMA = re.compile(r"^\d{1,3}(,\d{3}){2,}$")


def _normalise_separators(s: str) -> str:
    """Rewrite a separator-laden number into plain Decimal notation."""
    has_dot = "." in s
    has_comma = "," in s

    if has_dot and has_comma:
        # Right-most separator is the decimal one
        if s.rfind(",") > s.rfind("."):
            return s.replace(".", "").replace(",", ".")
        return s.replace(",", "")

    if has_comma:
        if _THOUSANDS_ONLY_COMMA.match(s):
            return s.replace(",", "")
        if s.count(",") == 1:
            return s.replace(",", ".")
        return s.replace(",", "")

    if has_dot and _THOUSANDS_ONLY_DOT.match(s):
        return s.replace(".", "")

    return s


def parse_amount_hr(raw: Union[str, int, Decimal, None]) -> AmountParseResult:
    """
    Parse a monetary amount in Croatian or plain notation.
    """
    if raw is None:
        return AmountParseResult(amount=None, raw_text="", confidence=0.0)
    if isinstance(raw, bool):
        return AmountParseResult(amount=None, raw_text=str(raw), confidence=0.0)
    if isinstance(raw, (int, Decimal)):
        amount = Decimal(raw)
        return AmountParseResult(
            amount=amount,
            raw_text=str(raw),
            is_negative=amount < 0,
            sign_convention="MINUS" if amount < 0 else "NONE",
            confidence=0.95,
        )

    s = str(raw).strip()
    if not s or s in ("-", "--", "---"):
        return AmountParseResult(amount=None, raw_text=str(raw), confidence=0.0)

    for marker in _CURRENCY_MARKERS:
        s = s.replace(marker, "")
    s = s.replace(" ", "").replace(" ", "").strip()

    if not s:
        return AmountParseResult(amount=None, raw_text=str(raw), confidence=0.0)

    is_negative = False
    sign_convention = "NONE"

    if s.startswith("(") and s.endswith(")"):
        s = s[1:-1].strip()
        is_negative = True
        sign_convention = "PARENTHESES"

    if s.endswith("-"):
        s = s[:-1].strip()
        is_negative = not is_negative
        sign_convention = "MINUS"
    elif s.startswith("-") or s.startswith(chr(8722)):
        s = s[1:].strip()
        is_negative = not is_negative
        sign_convention = "MINUS"
    elif s.startswith("+"):
        s = s[1:].strip()

    s = _normalise_separators(s)

    try:
        amount = Decimal(s)
    except (InvalidOperation, ValueError):
        return AmountParseResult(amount=None, raw_text=str(raw), confidence=0.0)

    if not amount.is_finite():
        return AmountParseResult(amount=None, raw_text=str(raw), confidence=0.0)

    if is_negative:
        amount = -amount

    confidence = 0.95 if sign_convention != "MINUS" else 0.90
    if abs(amount) > Decimal("100000000"):
        confidence = 0.5  # Suspiciously large

    return AmountParseResult(
        amount=amount,
        raw_text=str(raw),
        is_negative=is_negative,
        sign_convention=sign_convention,
        confidence=confidence,
    )


def to_money(value: Union[Decimal, int, str], scale: Optional[int] = None) -> Decimal:
    """Quantize to the fixed money scale (half-up, as banks round)."""
    places = settings.MONEY_SCALE if scale is None else scale
    quantum = Decimal(1).scaleb(-places)
    return Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP)


# Numeric(15, 2) columns hold at most 13 integer digits
MONEY_LIMIT = Decimal(10) ** 13


def fits_money_column(value: Decimal) -> bool:
    """True for finite values that a Numeric(15, 2) column can store."""
    return value.is_finite() and abs(value) < MONEY_LIMIT
