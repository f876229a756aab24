"""
Email processor: the single consumer of the priority scheduler.

claim -> classify -> (extract -> reconcile) -> complete. Any failure along the
way marks the ledger entry Failed; the loop itself keeps going.
"""

import asyncio
from dataclasses import dataclass

from app.features.extraction.services.engine import ClassificationEngine
from app.features.ingestion.services.ledger import MetadataLedger
from app.features.ingestion.services.scheduler import PriorityScheduler
from app.features.reconciliation.services.subscription_ledger import (
    SubscriptionFacts,
    SubscriptionLedger,
)
from app.infrastructure.observability.logging import get_logger
from app.models.domain.email_domain import EmailMetadata, QueuedEmail
from app.models.results import OperationResult, ValidationErrors, unexpected

logger = get_logger(__name__)


@dataclass(slots=True)
class ProcessingOutcome:
    metadata_id: str
    subscription_related: bool
    subscription_id: str | None = None
    created: bool = False


class EmailProcessor:
    def __init__(
        self,
        ledger: MetadataLedger,
        scheduler: PriorityScheduler,
        engine: ClassificationEngine,
        subscriptions: SubscriptionLedger,
    ):
        self.ledger = ledger
        self.scheduler = scheduler
        self.engine = engine
        self.subscriptions = subscriptions

    async def process_next(self) -> OperationResult[ProcessingOutcome] | None:
        """Process one waiting item, or return None if every lane is empty."""
        item = self.scheduler.dequeue_nowait()
        if item is None:
            return None
        return await self.process_item(item)

    async def drain(self) -> int:
        processed = 0
        while (result := await self.process_next()) is not None:
            processed += 1
        return processed

    async def run(self, stop_event: asyncio.Event) -> None:
        """Consume the scheduler until ``stop_event`` is set."""
        logger.info("Email processor started")
        while not stop_event.is_set():
            next_item = asyncio.create_task(self.scheduler.dequeue())
            stopped = asyncio.create_task(stop_event.wait())
            try:
                await asyncio.wait({next_item, stopped}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                stopped.cancel()
                if not next_item.done():
                    next_item.cancel()

            # An item already taken off its lane is processed even when stopping
            if next_item.done() and not next_item.cancelled():
                await self.process_item(next_item.result())
        logger.info("Email processor stopped")

    async def process_item(self, item: QueuedEmail) -> OperationResult[ProcessingOutcome]:
        claimed = await self.ledger.claim_for_processing(item.metadata_id)
        if not claimed.ok or claimed.no_op:
            return claimed

        entry = claimed.value
        try:
            return await self._process_claimed(item, entry)
        except Exception as e:
            logger.error(
                "Email processing crashed",
                metadata_id=entry.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self.ledger.mark_failed(entry.id, f"{type(e).__name__}: {e}")
            return OperationResult.failure(unexpected("process_email", e))

    async def _process_claimed(
        self, item: QueuedEmail, entry: EmailMetadata
    ) -> OperationResult[ProcessingOutcome]:
        message = entry.to_message()

        classification = await self.engine.classify(message)
        if not classification.ok:
            await self.ledger.mark_failed(entry.id, classification.error.message)
            return OperationResult.failure(classification.error)

        if not classification.value.is_subscription_related:
            await self.ledger.mark_completed(entry.id)
            logger.debug(
                "Email not subscription related",
                metadata_id=entry.id,
                email_type=classification.value.email_type,
            )
            return OperationResult.success(ProcessingOutcome(entry.id, subscription_related=False))

        extraction = await self.engine.extract(message)
        if not extraction.ok:
            await self.ledger.mark_failed(entry.id, extraction.error.message)
            return OperationResult.failure(extraction.error)

        extracted = extraction.value
        if not extracted.service_name:
            await self.ledger.mark_failed(entry.id, ValidationErrors.REQUIRED_SERVICE_NAME.message)
            return OperationResult.failure(ValidationErrors.REQUIRED_SERVICE_NAME)

        reconciled = await self.subscriptions.create_or_update(
            SubscriptionFacts(
                user_id=item.user_id,
                service_name=extracted.service_name,
                price=extracted.price,
                currency=extracted.currency,
                billing_cycle=extracted.billing_cycle,
                next_renewal_date=extracted.next_renewal_date,
                category=extracted.category,
                cancellation_link=extracted.cancellation_link,
                confidence=extracted.confidence,
                email_account_id=entry.email_account_id,
                source_email_id=entry.external_message_id,
            )
        )
        if not reconciled.ok:
            await self.ledger.mark_failed(entry.id, reconciled.error.message)
            return OperationResult.failure(reconciled.error)

        subscription = reconciled.value.subscription
        await self.ledger.mark_completed(entry.id, subscription.id)
        return OperationResult.success(
            ProcessingOutcome(
                metadata_id=entry.id,
                subscription_related=True,
                subscription_id=subscription.id,
                created=reconciled.value.created,
            )
        )
