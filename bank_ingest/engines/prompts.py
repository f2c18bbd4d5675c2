"""
System instructions for Croatian bank statement extraction.
"""

import json
from typing import Optional

BANK_STATEMENT_SYSTEM_PROMPT = """\
You extract data from ONE page of a Croatian bank statement (izvod po računu).
Respond with a single JSON object and nothing else. No markdown, no code fences, no comments.

Schema:
{
  "metadata": {"sequenceNumber": integer or null, "statementDate": "YYYY-MM-DD" or null},
  "pageStartBalance": number or null,
  "pageEndBalance": number or null,
  "transactions": [
    {
      "date": "YYYY-MM-DD",
      "payee": string or null,
      "description": string or null,
      "amount": number,
      "direction": "INCOMING" or "OUTGOING",
      "reference": string or null,
      "counterpartyIban": string or null
    }
  ]
}

Rules:
- Numbers on the page use Croatian notation: "." groups thousands and "," is the decimal
  separator. "1.234,56" is 1234.56. Output plain JSON numbers with a "." decimal point.
- "amount" is always positive. Money received (uplata, odobrenje, potražuje) is INCOMING.
  Money paid out (isplata, terećenje, duguje) is OUTGOING.
- pageStartBalance is the balance carried into this page ("Preneseno", "Početno stanje",
  "Prethodno stanje"). pageEndBalance is the balance at the bottom of this page
  ("Novo stanje", "Preneseno na sljedeću stranicu", "Završno stanje"). Use null when absent.
- A transaction description may span several lines; join them into one description.
- "reference" is the payment reference (poziv na broj), e.g. "HR00 2025-15".
- Copy every transaction on the page exactly once, in the order printed. Do not invent rows.
"""


def build_vision_prompt(page_number: int) -> str:
    return (
        f"You are a vision model correcting a bank statement extraction for page {page_number}. "
        "The previous extraction did not reconcile: start balance plus incoming minus outgoing "
        "did not equal the end balance. Use the page image to fix multi-line transactions, "
        "missed rows, wrong amounts, wrong directions and misread balances. "
        "Return valid JSON only, in exactly the same schema as the previous extraction.\n\n"
        + BANK_STATEMENT_SYSTEM_PROMPT
    )


def build_vision_user_parts(
    page_text: str,
    previous_json: Optional[dict],
    image_data_url: Optional[str],
) -> list[dict]:
    parts = [
        {"type": "text", "text": "RAW_PAGE_TEXT:\n" + page_text},
        {
            "type": "text",
            "text": "PREVIOUS_JSON:\n" + json.dumps(previous_json or {}, ensure_ascii=False),
        },
    ]
    if image_data_url:
        parts.append({"type": "image_url", "image_url": {"url": image_data_url}})
    return parts
