"""
OpenAI-backed classification provider.

Sends already-truncated email text to a chat model in JSON mode and returns
the parsed payload. Retrying is the engine's job: this class makes exactly one
call and maps SDK failures onto the provider error taxonomy.
"""

import json
from typing import Any

import openai
from openai import AsyncOpenAI

from app.config import settings
from app.features.extraction.providers.base import (
    MalformedResponseError,
    ProviderError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RateLimitedError,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CLASSIFY_SYSTEM_MESSAGE = """### Role
You decide whether an email is about a paid subscription.

### Output Requirements
Return ONLY valid JSON with this shape:
{
  "isSubscriptionRelated": true|false,
  "confidence": 0.0-1.0,
  "emailType": "Receipt|Renewal|Trial|PriceChange|Cancellation|Marketing|Other",
  "reason": "short explanation"
}

Receipts, renewal notices, trial start/end notices and price change notices
for recurring services count as subscription related. One-off purchases,
newsletters and promotions do not.
"""

EXTRACT_SYSTEM_MESSAGE = """### Role
You extract subscription facts from an email.

### Output Requirements
Return ONLY valid JSON with this shape (use null for anything not stated):
{
  "serviceName": "string",
  "price": number,
  "currency": "ISO 4217 code",
  "billingCycle": "Weekly|Monthly|Quarterly|Annual",
  "nextRenewalDate": "YYYY-MM-DD",
  "category": "Streaming|Music|Software|Cloud Storage|News|Fitness|Gaming|Productivity|Other",
  "cancellationLink": "url",
  "perFieldConfidence": {
    "serviceName": 0.0-1.0,
    "price": 0.0-1.0,
    "currency": 0.0-1.0,
    "billingCycle": 0.0-1.0,
    "nextRenewalDate": 0.0-1.0,
    "category": 0.0-1.0
  }
}
"""


class OpenAIClassificationProvider:
    """Single-shot JSON-mode chat completions for classify and extract."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        client: AsyncOpenAI | None = None,
    ):
        self.model = model or settings.OPENAI_MODEL
        self.timeout = timeout or settings.OPENAI_TIMEOUT_SECONDS
        self.client = client or self._initialize_client(api_key or settings.OPENAI_API_KEY)
        logger.info("OpenAI classification provider initialized", model=self.model)

    def _initialize_client(self, api_key: str | None) -> AsyncOpenAI:
        if not api_key:
            raise ProviderError("OPENAI_API_KEY not configured in settings", recoverable=False)
        # SDK-level retries are disabled; the engine owns backoff
        return AsyncOpenAI(api_key=api_key, timeout=self.timeout, max_retries=0)

    async def classify(self, text: str) -> dict[str, Any]:
        return await self._complete(CLASSIFY_SYSTEM_MESSAGE, text, operation="classify")

    async def extract(self, text: str) -> dict[str, Any]:
        return await self._complete(EXTRACT_SYSTEM_MESSAGE, text, operation="extract")

    async def _complete(
        self, system_message: str, user_message: str, operation: str
    ) -> dict[str, Any]:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_message},
                    {"role": "user", "content": user_message},
                ],
                max_tokens=settings.OPENAI_MAX_TOKENS,
                temperature=settings.OPENAI_TEMPERATURE,
                response_format={"type": "json_object"},
            )
        except openai.RateLimitError as e:
            raise RateLimitedError(str(e)) from e
        except openai.APITimeoutError as e:
            raise ProviderTimeoutError(str(e)) from e
        except openai.APIConnectionError as e:
            raise ProviderUnavailableError(str(e)) from e
        except openai.APIStatusError as e:
            # Don't retry on client errors (4xx)
            if 400 <= e.status_code < 500:
                logger.error("OpenAI client error (not retrying)", operation=operation, error=str(e))
                raise ProviderError(str(e), recoverable=False) from e
            raise ProviderUnavailableError(str(e)) from e

        if not response.choices or not response.choices[0].message.content:
            raise MalformedResponseError("Empty response from OpenAI API")

        content = response.choices[0].message.content.strip()
        logger.debug(
            "OpenAI API call successful",
            operation=operation,
            response_length=len(content),
            usage_tokens=response.usage.total_tokens if response.usage else 0,
        )

        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(f"Response is not valid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise MalformedResponseError("Response JSON is not an object")
        return payload
