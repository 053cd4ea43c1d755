"""
AI signal extractor - document text in, validated SignalExtraction out

Uses an OpenAI-compatible chat completion (OpenRouter) in JSON mode, then
validates the response with the pydantic schema in models.api.extraction.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from openai import (
    AsyncOpenAI,
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AuthenticationError,
    RateLimitError,
)

from canary_watcher.config.policy import AXES
from canary_watcher.errors import ConfigurationError, PermanentUpstreamError, TransientUpstreamError
from canary_watcher.models.api.extraction import SignalExtraction, parse_extraction

logger = logging.getLogger(__name__)

MAX_PROMPT_CHARS = 120_000

SYSTEM_PROMPT = f"""You extract evidence about AI capability progress from documents.

For each distinct, verifiable claim return:
- claim_summary: one factual sentence
- classification: benchmark | deployment | research | policy | incident | other
- axes_impacted: list of {{axis, direction, magnitude, uncertainty}}
    axis is one of: {', '.join(AXES)}
    direction is up | down | neutral; magnitude and uncertainty in [0, 1]
- benchmark: {{name, value, unit}} when the claim reports a benchmark number, else null
- confidence: [0, 1], how well the document supports the claim
- citations: list of {{url, quoted_span}} quoting the document verbatim

Only report claims the document actually makes. If there are none, return {{"claims": []}}.
Respond with a single JSON object: {{"claims": [...]}}"""


@dataclass
class ExtractionRequest:
    """What the extractor knows about the document besides its text"""
    text: str
    source_name: str
    source_tier: str
    url: str
    published_at: Optional[datetime] = None


def build_user_prompt(request: ExtractionRequest) -> str:
    text = request.text
    if len(text) > MAX_PROMPT_CHARS:
        text = text[:MAX_PROMPT_CHARS] + "\n\n[Truncated]"
    published = request.published_at.date().isoformat() if request.published_at else 'unknown'
    return (
        f"Source: {request.source_name} ({request.source_tier})\n"
        f"URL: {request.url}\n"
        f"Published: {published}\n\n"
        f"---\n{text}\n---"
    )


class SignalExtractor:
    """
    extract(request) -> SignalExtraction

    Raises:
        TransientUpstreamError: timeouts, rate limits, 5xx
        ConfigurationError: bad credentials
        ExtractionValidationError: the model answered but not in schema
    """

    def __init__(self, client: AsyncOpenAI, model: str):
        self.client = client
        self.model = model

    @classmethod
    def from_settings(cls, settings) -> 'SignalExtractor':
        if not settings.openrouter_api_key:
            raise ConfigurationError("OPENROUTER_API_KEY is required for signal extraction")
        client = AsyncOpenAI(
            api_key=settings.openrouter_api_key,
            base_url=settings.openrouter_base_url,
            timeout=settings.ai_timeout_seconds,
            max_retries=1,
        )
        return cls(client, settings.extraction_model)

    async def extract(self, request: ExtractionRequest) -> SignalExtraction:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {'role': 'system', 'content': SYSTEM_PROMPT},
                    {'role': 'user', 'content': build_user_prompt(request)},
                ],
                response_format={'type': 'json_object'},
                temperature=0,
            )
        except AuthenticationError as e:
            raise ConfigurationError(f"AI provider rejected credentials: {e}")
        except (APITimeoutError, APIConnectionError, RateLimitError) as e:
            raise TransientUpstreamError(f"AI extraction unavailable: {e}")
        except APIStatusError as e:
            if e.status_code >= 500:
                raise TransientUpstreamError(f"AI provider error {e.status_code}", status_code=e.status_code)
            raise PermanentUpstreamError(f"AI request rejected ({e.status_code}): {e}", status_code=e.status_code)

        if not response.choices:
            raise TransientUpstreamError("AI provider returned no choices")
        raw = response.choices[0].message.content or ''
        extraction = parse_extraction(raw)
        logger.debug(f"Extracted {len(extraction.claims)} claim(s) from {request.url}")
        return extraction
