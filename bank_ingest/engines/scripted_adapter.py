"""
Scripted extraction adapter for testing pipeline plumbing.
Returns pre-recorded JSON per page - validates end-to-end flow
without calling any external model.
"""

import json
from typing import Optional, Union

from bank_ingest.engines.base import ExtractionAdapter
from bank_ingest.schemas.extraction import (
    ExtractionFailure,
    ExtractionOutcome,
    PageExtraction,
    parse_extraction_payload,
)

Script = dict[int, Union[str, dict]]


class ScriptedAdapter(ExtractionAdapter):
    """Fake adapter that replays canned responses keyed by page number."""

    def __init__(self, text_pages: Optional[Script] = None, vision_pages: Optional[Script] = None):
        self.text_pages = text_pages or {}
        self.vision_pages = vision_pages or {}
        self.text_calls: list[int] = []
        self.vision_calls: list[int] = []
        self.vision_images: list[Optional[bytes]] = []

    @property
    def adapter_name(self) -> str:
        return "scripted"

    @staticmethod
    def _replay(script: Script, page_number: int) -> ExtractionOutcome:
        if page_number not in script:
            return ExtractionFailure("ERR_AI_UNAVAILABLE", f"No scripted response for page {page_number}")
        raw = script[page_number]
        if isinstance(raw, dict):
            raw = json.dumps(raw, default=str)
        return parse_extraction_payload(raw)

    async def extract_page(self, page_text: str, page_number: int = 1) -> ExtractionOutcome:
        self.text_calls.append(page_number)
        return self._replay(self.text_pages, page_number)

    async def repair_page(
        self,
        page_text: str,
        page_image: Optional[bytes],
        previous: Optional[PageExtraction],
        page_number: int = 1,
    ) -> ExtractionOutcome:
        self.vision_calls.append(page_number)
        self.vision_images.append(page_image)
        return self._replay(self.vision_pages, page_number)

    async def health_check(self) -> bool:
        return True
