"""
Per-page text extraction from PDF statements.

pdfplumber gives one text blob per physical page. When the document cannot be opened
(broken xref, truncated file) a degraded fallback pulls literal strings shown with
Tj/TJ operators out of uncompressed content streams and returns them as a single page.
Anything that is not a PDF at all yields no pages.

Page images for the vision pass are rendered with pdf2image and encoded by Pillow.
"""

import io
import re
from typing import Optional

import pdfplumber
import structlog
from pdf2image import convert_from_bytes

from bank_ingest.config import settings

logger = structlog.get_logger(__name__)

_PDF_MAGIC = b"%PDF"
_TJ_LITERAL = re.compile(rb"\(((?:\\.|[^\\)])*)\)\s*Tj")
_TJ_ARRAY = re.compile(rb"\[((?:[^\]\\]|\\.)*)\]\s*TJ")
_ARRAY_LITERAL = re.compile(rb"\(((?:\\.|[^\\)])*)\)")
_ESCAPES = {b"n": b"\n", b"r": b"\r", b"t": b"\t", b"(": b"(", b")": b")", b"\\": b"\\"}


def extract_pages_text(pdf_bytes: bytes) -> list[str]:
    """
    Return one text string per physical page, in page order.
    Blank pages are kept so page numbers stay physical.
    """
    try:
        with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
            pages = []
            for page in pdf.pages:
                text = page.extract_text(x_tolerance=2, y_tolerance=3) or ""
                pages.append(text.strip())
    except Exception as e:
        logger.warning("pdf_text_extraction_degraded", error=str(e)[:200])
        return _fallback_literal_text(pdf_bytes)

    logger.debug(
        "pdf_text_extracted",
        page_count=len(pages),
        text_pages=sum(1 for p in pages if p),
    )
    return pages


def has_any_text(pages: list[str]) -> bool:
    return any(p.strip() for p in pages)


# ── Degraded fallback ─────────────────────────────────────────

def _unescape(literal: bytes) -> bytes:
    out = bytearray()
    i = 0
    while i < len(literal):
        ch = literal[i:i + 1]
        if ch == b"\\" and i + 1 < len(literal):
            nxt = literal[i + 1:i + 2]
            out += _ESCAPES.get(nxt, nxt)
            i += 2
            continue
        out += ch
        i += 1
    return bytes(out)


def _fallback_literal_text(pdf_bytes: bytes) -> list[str]:
    if not pdf_bytes.lstrip().startswith(_PDF_MAGIC):
        return []

    chunks: list[bytes] = []
    for match in _TJ_LITERAL.finditer(pdf_bytes):
        chunks.append(_unescape(match.group(1)))
    for match in _TJ_ARRAY.finditer(pdf_bytes):
        parts = [_unescape(m.group(1)) for m in _ARRAY_LITERAL.finditer(match.group(1))]
        chunks.append(b"".join(parts))

    text = "\n".join(c.decode("latin-1").strip() for c in chunks if c.strip())
    if not text:
        return []
    logger.info("pdf_fallback_text_recovered", chars=len(text))
    return [text]


# ── Page images for vision repair ────────────────────────────

def render_page_image(
    pdf_bytes: bytes,
    page_number: int,
    dpi: Optional[int] = None,
) -> Optional[bytes]:
    """
    Render one page (1-based) to PNG bytes.
    Returns None when rendering is not possible; vision repair then runs on text alone.
    """
    try:
        images = convert_from_bytes(
            pdf_bytes,
            dpi=dpi or settings.VISION_RENDER_DPI,
            first_page=page_number,
            last_page=page_number,
            fmt="png",
        )
    except Exception as e:
        logger.warning("page_render_failed", page=page_number, error=str(e)[:200])
        return None

    if not images:
        return None

    buffer = io.BytesIO()
    images[0].save(buffer, format="PNG")
    return buffer.getvalue()
