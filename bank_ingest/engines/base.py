"""
Abstract base class for AI extraction adapters.
Every adapter must return a tagged ExtractionOutcome.
"""

from abc import ABC, abstractmethod
from typing import Optional

from bank_ingest.errors import ExtractionError
from bank_ingest.schemas.extraction import ExtractionOutcome, PageExtraction


class ExtractionAdapter(ABC):
    """
    Abstract base class for AI extraction adapters.

    Every adapter must:
    1. Accept the text of one statement page (plus an image in vision mode)
    2. Return ExtractionSuccess or ExtractionFailure, never raise
    3. Report its name
    4. Bound every external call with a timeout
    """

    @property
    @abstractmethod
    def adapter_name(self) -> str:
        """Unique identifier: 'openai_compatible', 'scripted'"""
        ...

    @abstractmethod
    async def extract_page(self, page_text: str, page_number: int = 1) -> ExtractionOutcome:
        """Text mode: extract balances and transactions from raw page text."""
        ...

    @abstractmethod
    async def repair_page(
        self,
        page_text: str,
        page_image: Optional[bytes],
        previous: Optional[PageExtraction],
        page_number: int = 1,
    ) -> ExtractionOutcome:
        """
        Vision mode: re-extract a page that failed the arithmetic audit.
        `previous` is the failed candidate, passed as a correction hint.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify the adapter is configured and able to answer."""
        ...


class AdapterError(ExtractionError):
    """Raised inside an adapter when an external call fails."""

    def __init__(self, adapter_name: str, error_code: str, message: str):
        super().__init__(f"[{adapter_name}] {error_code}: {message}", error_code)
        self.adapter_name = adapter_name
        self.message = message
