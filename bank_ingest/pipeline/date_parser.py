"""
Croatian-first date parser.

Strategy:
1. ISO dates and datetimes (XML statements, well-behaved AI output)
2. Croatian numeric dates, always day-first: 15.01.2025, 15.01.2025., 15.1.25
3. dateutil day-first fallback for anything else
"""

import re
from datetime import date, datetime
from typing import Optional, Union

from dateutil import parser as dateutil_parser


# Ordered by specificity (try most specific first)
DATE_FORMATS = [
    (re.compile(r'^(\d{4})-(\d{2})-(\d{2})(?:[T ].*)?$'), 'YYYY-MM-DD'),
    (re.compile(r'^(\d{1,2})\.\s?(\d{1,2})\.\s?(\d{4})\.?$'), 'DD.MM.YYYY'),
    (re.compile(r'^(\d{1,2})/(\d{1,2})/(\d{4})$'), 'DD/MM/YYYY'),
    (re.compile(r'^(\d{1,2})-(\d{1,2})-(\d{4})$'), 'DD-MM-YYYY'),
    (re.compile(r'^(\d{1,2})\.(\d{1,2})\.(\d{2})\.?$'), 'DD.MM.YY'),
]


def parse_date_hr(raw: Union[str, date, datetime, None]) -> Optional[date]:
    """
    Parse a statement date. Numeric dates are always day-first.
    Returns None when nothing sensible can be parsed.
    """
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw

    raw_clean = str(raw).strip()
    if not raw_clean:
        return None

    for pattern, format_name in DATE_FORMATS:
        m = pattern.match(raw_clean)
        if not m:
            continue
        try:
            return _parse_by_format(m, format_name)
        except (ValueError, OverflowError):
            return None

    try:
        return dateutil_parser.parse(raw_clean, dayfirst=True).date()
    except (ValueError, OverflowError):
        return None


def _parse_by_format(match, format_name: str) -> date:
    if format_name == 'YYYY-MM-DD':
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))

    day = int(match.group(1))
    month = int(match.group(2))
    year = int(match.group(3))
    if format_name == 'DD.MM.YY':
        year = 1900 + year if year > 50 else 2000 + year
    return date(year, month, day)
