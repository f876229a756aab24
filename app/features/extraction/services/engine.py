"""
Classification & extraction engine.

Two stages against the model provider: a cheap relevance check on a short
slice of the body, then field extraction on a longer slice. Transient
provider failures are retried with capped exponential backoff; every wait
goes through ``asyncio.sleep`` so cancelling the caller cancels the retry.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from dateutil import parser as date_parser
from pydantic import ValidationError

from app.config import settings
from app.features.extraction.domain.models import (
    FIELD_WEIGHTS,
    ClassificationPayload,
    ClassificationResult,
    ExtractionPayload,
    ExtractionResult,
)
from app.features.extraction.providers.base import ClassificationProvider, ProviderError
from app.infrastructure.observability.logging import get_logger
from app.models.domain.email_domain import EmailMessage
from app.models.domain.subscription_domain import BillingCycle
from app.models.results import ExtractionErrors, OperationResult

logger = get_logger(__name__)

CLASSIFY_BODY_LIMIT = 2000
EXTRACT_BODY_LIMIT = 3000
TRUNCATION_MARKER = "..."

DEFAULT_CURRENCY = "USD"
DEFAULT_CATEGORY = "Other"

_CYCLE_SYNONYMS = {
    "weekly": BillingCycle.WEEKLY,
    "week": BillingCycle.WEEKLY,
    "monthly": BillingCycle.MONTHLY,
    "month": BillingCycle.MONTHLY,
    "quarterly": BillingCycle.QUARTERLY,
    "quarter": BillingCycle.QUARTERLY,
    "annual": BillingCycle.ANNUAL,
    "annually": BillingCycle.ANNUAL,
    "yearly": BillingCycle.ANNUAL,
    "year": BillingCycle.ANNUAL,
}


def truncate_body(body: str, limit: int) -> str:
    if len(body) <= limit:
        return body
    return body[:limit] + TRUNCATION_MARKER


def build_prompt_text(message: EmailMessage, body_limit: int) -> str:
    return (
        f"From: {message.sender}\n"
        f"Subject: {message.subject}\n"
        f"Date: {message.received_at:%Y-%m-%d}\n\n"
        f"Body:\n{truncate_body(message.body or '', body_limit)}"
    )


def parse_billing_cycle(value: str | None) -> BillingCycle:
    if not value:
        return BillingCycle.UNKNOWN
    return _CYCLE_SYNONYMS.get(value.strip().lower(), BillingCycle.UNKNOWN)


def weighted_confidence(field_confidence: dict[str, float], present: set[str]) -> float:
    """Weighted mean of per-field confidence over the fields actually extracted."""
    total_weight = 0.0
    score = 0.0
    for name, weight in FIELD_WEIGHTS.items():
        if name not in present or name not in field_confidence:
            continue
        score += weight * max(0.0, min(1.0, float(field_confidence[name])))
        total_weight += weight
    return round(score / total_weight, 4) if total_weight else 0.0


class ClassificationEngine:
    def __init__(
        self,
        provider: ClassificationProvider,
        review_threshold: float | None = None,
        max_retries: int | None = None,
        backoff_base_seconds: float | None = None,
        backoff_max_seconds: float | None = None,
    ):
        self.provider = provider
        self.review_threshold = (
            review_threshold
            if review_threshold is not None
            else settings.REVIEW_CONFIDENCE_THRESHOLD
        )
        self.max_retries = max_retries or settings.EXTRACTION_MAX_RETRIES
        self.backoff_base_seconds = (
            backoff_base_seconds
            if backoff_base_seconds is not None
            else settings.EXTRACTION_BACKOFF_BASE_SECONDS
        )
        self.backoff_max_seconds = backoff_max_seconds or settings.EXTRACTION_BACKOFF_MAX_SECONDS

    async def classify(self, message: EmailMessage) -> OperationResult[ClassificationResult]:
        text = build_prompt_text(message, CLASSIFY_BODY_LIMIT)
        raw = await self._call_with_retry(self.provider.classify, text, "classify")
        if not raw.ok:
            return raw

        try:
            payload = ClassificationPayload.model_validate(raw.value)
        except ValidationError as e:
            logger.warning("Malformed classification payload", error=str(e))
            return OperationResult.failure(
                ExtractionErrors.MALFORMED_RESPONSE.with_detail("classify")
            )

        return OperationResult.success(
            ClassificationResult(
                is_subscription_related=payload.is_subscription_related,
                confidence=payload.confidence,
                email_type=payload.email_type,
                reason=payload.reason,
            )
        )

    async def extract(self, message: EmailMessage) -> OperationResult[ExtractionResult]:
        text = build_prompt_text(message, EXTRACT_BODY_LIMIT)
        raw = await self._call_with_retry(self.provider.extract, text, "extract")
        if not raw.ok:
            return raw

        try:
            payload = ExtractionPayload.model_validate(raw.value)
        except ValidationError as e:
            logger.warning("Malformed extraction payload", error=str(e))
            return OperationResult.failure(
                ExtractionErrors.MALFORMED_RESPONSE.with_detail("extract")
            )

        result = self._build_result(payload)
        logger.info(
            "Extraction completed",
            service_name=result.service_name,
            confidence=result.confidence,
            requires_review=result.requires_review,
            warnings=result.warnings,
        )
        return OperationResult.success(result)

    def _build_result(self, payload: ExtractionPayload) -> ExtractionResult:
        warnings: list[str] = []

        service_name = (payload.service_name or "").strip() or None
        price = self._parse_price(payload.price)
        billing_cycle = parse_billing_cycle(payload.billing_cycle)
        renewal = self._parse_date(payload.next_renewal_date)

        present = {
            name
            for name, value in (
                ("serviceName", service_name),
                ("price", price),
                ("billingCycle", payload.billing_cycle),
                ("nextRenewalDate", renewal),
                ("category", payload.category),
                ("currency", payload.currency),
            )
            if value not in (None, "")
        }
        if payload.field_confidence:
            confidence = weighted_confidence(payload.field_confidence, present)
        else:
            confidence = payload.confidence or 0.0

        if not service_name:
            warnings.append("Service name could not be determined")
        if price is None or price <= 0:
            warnings.append("Price is missing or not positive")
        if billing_cycle == BillingCycle.UNKNOWN:
            warnings.append("Billing cycle is unknown")
        if renewal is None:
            warnings.append("No renewal date found")

        return ExtractionResult(
            service_name=service_name,
            price=price,
            currency=(payload.currency or DEFAULT_CURRENCY).strip().upper(),
            billing_cycle=billing_cycle,
            next_renewal_date=renewal,
            category=(payload.category or "").strip() or DEFAULT_CATEGORY,
            cancellation_link=payload.cancellation_link,
            confidence=confidence,
            requires_review=confidence < self.review_threshold,
            field_confidence=dict(payload.field_confidence),
            warnings=warnings,
        )

    @staticmethod
    def _parse_price(value: float | str | None) -> Decimal | None:
        if value is None or value == "":
            return None
        try:
            cleaned = str(value).replace(",", "").lstrip("$€£").strip()
            return Decimal(cleaned).quantize(Decimal("0.01"))
        except (InvalidOperation, ValueError):
            return None

    @staticmethod
    def _parse_date(value: str | None) -> datetime | None:
        if not value:
            return None
        try:
            parsed = date_parser.isoparse(value)
        except (ValueError, OverflowError):
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)

    async def _call_with_retry(
        self,
        call: Callable[[str], Awaitable[dict[str, Any]]],
        text: str,
        operation: str,
    ) -> OperationResult[dict[str, Any]]:
        last_error: ProviderError | None = None

        for attempt in range(self.max_retries):
            try:
                return OperationResult.success(await call(text))
            except ProviderError as e:
                last_error = e
                if not e.recoverable:
                    logger.error(
                        "Model provider call failed (not retrying)",
                        operation=operation,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    return OperationResult.failure(
                        ExtractionErrors.MALFORMED_RESPONSE.with_detail(str(e))
                    )

                wait_time = min(self.backoff_base_seconds * 2**attempt, self.backoff_max_seconds)
                logger.warning(
                    "Model provider call failed, retrying",
                    operation=operation,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    wait_time=wait_time,
                    error_type=type(e).__name__,
                )
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(wait_time)

        logger.error(
            "Model provider call failed after all retries",
            operation=operation,
            max_retries=self.max_retries,
            final_error=str(last_error),
        )
        return OperationResult.failure(
            ExtractionErrors.PROVIDER_UNAVAILABLE.with_detail(str(last_error))
        )
