"""
OpenAI-compatible extraction adapter.

Text mode goes to a chat-completions endpoint (DeepSeek by default). Vision repair
tries the primary vision endpoint (Ollama) and then the optional fallback (OpenAI).
Every call runs under asyncio.wait_for with its own timeout; on timeout the request
is cancelled. Failures are reported as ExtractionFailure, never raised.
"""

import asyncio
import base64
import time
from dataclasses import dataclass
from typing import Optional

import openai
import structlog
from openai import AsyncOpenAI

from bank_ingest.config import Settings, settings
from bank_ingest.engines.base import AdapterError, ExtractionAdapter
from bank_ingest.engines.prompts import (
    BANK_STATEMENT_SYSTEM_PROMPT,
    build_vision_prompt,
    build_vision_user_parts,
)
from bank_ingest.observability.metrics import (
    external_api_failures_total,
    external_api_latency_seconds,
)
from bank_ingest.schemas.extraction import (
    ExtractionFailure,
    ExtractionOutcome,
    PageExtraction,
    parse_extraction_payload,
)

logger = structlog.get_logger(__name__)


@dataclass
class ChatEndpoint:
    name: str
    client: AsyncOpenAI
    model: str


class OpenAICompatibleAdapter(ExtractionAdapter):
    """Extraction through any OpenAI-compatible chat completions API."""

    adapter_name = "openai_compatible"

    def __init__(
        self,
        text_endpoint: Optional[ChatEndpoint],
        vision_endpoints: list[ChatEndpoint],
        text_timeout: float = 60.0,
        vision_timeout: float = 90.0,
    ):
        self.text_endpoint = text_endpoint
        self.vision_endpoints = vision_endpoints
        self.text_timeout = text_timeout
        self.vision_timeout = vision_timeout

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "OpenAICompatibleAdapter":
        text_endpoint = None
        if config.AI_API_KEY:
            text_endpoint = ChatEndpoint(
                name="text",
                client=AsyncOpenAI(
                    api_key=config.AI_API_KEY,
                    base_url=config.AI_BASE_URL,
                    timeout=config.AI_TEXT_TIMEOUT_SECONDS,
                    max_retries=1,
                ),
                model=config.AI_TEXT_MODEL,
            )

        vision_endpoints = []
        if config.VISION_API_KEY:
            vision_endpoints.append(ChatEndpoint(
                name="vision_primary",
                client=AsyncOpenAI(
                    api_key=config.VISION_API_KEY,
                    base_url=config.VISION_BASE_URL,
                    timeout=config.VISION_TIMEOUT_SECONDS,
                    max_retries=0,
                ),
                model=config.VISION_MODEL,
            ))
        if config.VISION_FALLBACK_API_KEY:
            vision_endpoints.append(ChatEndpoint(
                name="vision_fallback",
                client=AsyncOpenAI(
                    api_key=config.VISION_FALLBACK_API_KEY,
                    base_url=config.VISION_FALLBACK_BASE_URL,
                    timeout=config.VISION_TIMEOUT_SECONDS,
                    max_retries=0,
                ),
                model=config.VISION_FALLBACK_MODEL,
            ))

        return cls(
            text_endpoint=text_endpoint,
            vision_endpoints=vision_endpoints,
            text_timeout=config.AI_TEXT_TIMEOUT_SECONDS,
            vision_timeout=config.VISION_TIMEOUT_SECONDS,
        )

    # ── Transport ────────────────────────────────────────────

    async def _complete(
        self,
        endpoint: ChatEndpoint,
        messages: list[dict],
        timeout: float,
        operation: str,
    ) -> str:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                endpoint.client.chat.completions.create(
                    model=endpoint.model,
                    messages=messages,
                    response_format={"type": "json_object"},
                    temperature=0,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise AdapterError(
                endpoint.name, "ERR_AI_TIMEOUT", f"{operation} timed out after {timeout:g}s"
            ) from e
        except openai.APIError as e:
            raise AdapterError(endpoint.name, "ERR_AI_UNAVAILABLE", str(e)[:300]) from e
        finally:
            external_api_latency_seconds.labels(
                adapter=endpoint.name, operation=operation
            ).observe(time.monotonic() - start)

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise AdapterError(endpoint.name, "ERR_AI_EMPTY", f"{operation} returned no content")
        return content

    def _record_failure(self, endpoint_name: str, operation: str, error_code: str) -> None:
        external_api_failures_total.labels(
            adapter=endpoint_name, operation=operation, error_code=error_code
        ).inc()

    # ── Text mode ────────────────────────────────────────────

    async def extract_page(self, page_text: str, page_number: int = 1) -> ExtractionOutcome:
        if self.text_endpoint is None:
            return ExtractionFailure("ERR_AI_NOT_CONFIGURED", "No text extraction endpoint configured")

        messages = [
            {"role": "system", "content": BANK_STATEMENT_SYSTEM_PROMPT},
            {"role": "user", "content": page_text},
        ]
        try:
            content = await self._complete(
                self.text_endpoint, messages, self.text_timeout, "extract_page"
            )
        except AdapterError as e:
            self._record_failure(e.adapter_name, "extract_page", e.error_code)
            logger.warning(
                "text_extraction_failed",
                page=page_number,
                endpoint=e.adapter_name,
                error_code=e.error_code,
                error=e.message,
            )
            return ExtractionFailure(e.error_code, e.message)

        outcome = parse_extraction_payload(content)
        if not outcome.ok:
            self._record_failure(self.text_endpoint.name, "extract_page", outcome.error_code)
        return outcome

    # ── Vision mode ──────────────────────────────────────────

    async def repair_page(
        self,
        page_text: str,
        page_image: Optional[bytes],
        previous: Optional[PageExtraction],
        page_number: int = 1,
    ) -> ExtractionOutcome:
        if not self.vision_endpoints:
            return ExtractionFailure("ERR_AI_NOT_CONFIGURED", "No vision endpoint configured")

        image_url = None
        if page_image:
            image_url = "data:image/png;base64," + base64.b64encode(page_image).decode("ascii")

        messages = [
            {"role": "system", "content": build_vision_prompt(page_number)},
            {
                "role": "user",
                "content": build_vision_user_parts(
                    page_text, previous.to_wire() if previous else None, image_url
                ),
            },
        ]

        outcome: ExtractionOutcome = ExtractionFailure("ERR_AI_UNAVAILABLE", "No vision endpoint answered")
        for endpoint in self.vision_endpoints:
            try:
                content = await self._complete(endpoint, messages, self.vision_timeout, "repair_page")
            except AdapterError as e:
                self._record_failure(e.adapter_name, "repair_page", e.error_code)
                logger.warning(
                    "vision_call_failed",
                    page=page_number,
                    endpoint=e.adapter_name,
                    error_code=e.error_code,
                    error=e.message,
                )
                outcome = ExtractionFailure(e.error_code, e.message)
                continue

            outcome = parse_extraction_payload(content)
            if outcome.ok:
                return outcome
            self._record_failure(endpoint.name, "repair_page", outcome.error_code)
            logger.warning(
                "vision_payload_rejected",
                page=page_number,
                endpoint=endpoint.name,
                error_code=outcome.error_code,
            )

        return outcome

    async def health_check(self) -> bool:
        return self.text_endpoint is not None
