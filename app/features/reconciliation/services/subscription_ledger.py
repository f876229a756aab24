"""
Subscription ledger: the create-vs-update decision and its audit trail.

An incoming fact is matched against the user's live subscriptions by
normalized-name similarity. The first existing record at or above the
threshold is updated field by field, with one history entry per changed
field; otherwise a new record is created, Active or PendingReview depending
on extraction confidence.
"""

import asyncio
import weakref
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from app.config import settings
from app.features.reconciliation.domain.normalization import service_name_similarity
from app.features.reconciliation.repository.subscription_repository import SubscriptionRepository
from app.features.reconciliation.services.vendor_directory import VendorDirectory
from app.infrastructure.observability.logging import get_logger
from app.models.domain.subscription_domain import (
    BillingCycle,
    HistoryChangeType,
    Subscription,
    SubscriptionStatus,
    normalize_to_monthly,
)
from app.models.results import (
    OperationResult,
    SubscriptionErrors,
    ValidationErrors,
    unexpected,
)

logger = get_logger(__name__)

_ST = SubscriptionStatus

ALLOWED_STATUS_CHANGES: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    _ST.ACTIVE: frozenset({_ST.CANCELLED, _ST.TRIAL_ACTIVE, _ST.ARCHIVED}),
    _ST.TRIAL_ACTIVE: frozenset({_ST.ACTIVE, _ST.CANCELLED, _ST.ARCHIVED}),
    _ST.CANCELLED: frozenset({_ST.ACTIVE, _ST.ARCHIVED}),
    _ST.PENDING_REVIEW: frozenset({_ST.ACTIVE, _ST.CANCELLED, _ST.ARCHIVED}),
    _ST.ARCHIVED: frozenset(),
}


@dataclass(slots=True)
class SubscriptionFacts:
    """Everything known about a subscription from one email or manual entry."""

    user_id: str
    service_name: str
    price: Decimal | None = None
    currency: str = "USD"
    billing_cycle: BillingCycle = BillingCycle.UNKNOWN
    next_renewal_date: datetime | None = None
    category: str = "Other"
    cancellation_link: str | None = None
    confidence: float = 1.0
    email_account_id: str | None = None
    source_email_id: str | None = None
    initial_status: SubscriptionStatus | None = None


@dataclass(slots=True)
class ReconciliationOutcome:
    subscription: Subscription
    created: bool
    changes: list[HistoryChangeType] = field(default_factory=list)


def _money(amount: Decimal, currency: str) -> str:
    return f"{amount} {currency}"


class SubscriptionLedger:
    def __init__(
        self,
        repository: SubscriptionRepository,
        vendors: VendorDirectory | None = None,
        match_threshold: float | None = None,
        review_threshold: float | None = None,
    ):
        self.repository = repository
        self.vendors = vendors
        self.match_threshold = match_threshold or settings.FUZZY_MATCH_THRESHOLD
        self.review_threshold = (
            review_threshold
            if review_threshold is not None
            else settings.REVIEW_CONFIDENCE_THRESHOLD
        )
        # Entries drop out once no reconciliation for that user holds the lock
        self._user_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._user_locks[user_id] = lock
        return lock

    @staticmethod
    def _validate(facts: SubscriptionFacts) -> OperationResult | None:
        if not facts.user_id or not facts.user_id.strip():
            return OperationResult.failure(ValidationErrors.REQUIRED_USER_ID)
        if not facts.service_name or not facts.service_name.strip():
            return OperationResult.failure(ValidationErrors.REQUIRED_SERVICE_NAME)
        if facts.price is not None and facts.price < 0:
            return OperationResult.failure(ValidationErrors.NEGATIVE_PRICE)
        return None

    async def create_or_update(
        self, facts: SubscriptionFacts
    ) -> OperationResult[ReconciliationOutcome]:
        invalid = self._validate(facts)
        if invalid is not None:
            return invalid

        try:
            async with self._lock_for(facts.user_id):
                existing = await self.find_match(facts.user_id, facts.service_name)
                if existing is None:
                    return OperationResult.success(await self._create(facts))
                return OperationResult.success(await self._update(existing, facts))
        except Exception as e:
            logger.error(
                "Subscription reconciliation failed",
                user_id=facts.user_id,
                service_name=facts.service_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return OperationResult.failure(unexpected("create_or_update_subscription", e))

    async def create_manual(
        self, facts: SubscriptionFacts
    ) -> OperationResult[ReconciliationOutcome]:
        """User-entered subscription: full confidence, same de-duplication."""
        return await self.create_or_update(replace(facts, confidence=1.0, source_email_id=None))

    async def find_match(self, user_id: str, service_name: str) -> Subscription | None:
        """First live subscription (in discovery order) similar enough to the name."""
        for subscription in await self.repository.list_for_user(user_id):
            if not subscription.is_live:
                continue
            similarity = service_name_similarity(subscription.service_name, service_name)
            if similarity >= self.match_threshold:
                logger.debug(
                    "Matched existing subscription",
                    subscription_id=subscription.id,
                    service_name=service_name,
                    similarity=round(similarity, 3),
                )
                return subscription
        return None

    async def _create(self, facts: SubscriptionFacts) -> ReconciliationOutcome:
        now = datetime.now(UTC)
        needs_review = facts.confidence < self.review_threshold
        status = facts.initial_status or (_ST.PENDING_REVIEW if needs_review else _ST.ACTIVE)
        if needs_review:
            status = _ST.PENDING_REVIEW

        vendor_id = None
        if self.vendors is not None:
            vendor = await self.vendors.get_or_create(facts.service_name, facts.category)
            if vendor.ok:
                vendor_id = vendor.value.id
            else:
                logger.warning(
                    "Vendor lookup failed, continuing without vendor",
                    service_name=facts.service_name,
                    error=vendor.error.message,
                )

        price = facts.price if facts.price is not None else Decimal("0")
        subscription = Subscription(
            user_id=facts.user_id,
            service_name=facts.service_name.strip(),
            price=price,
            currency=facts.currency,
            billing_cycle=facts.billing_cycle,
            email_account_id=facts.email_account_id,
            next_renewal_date=facts.next_renewal_date,
            category=facts.category or "Other",
            vendor_id=vendor_id,
            cancellation_link=facts.cancellation_link,
            extraction_confidence=facts.confidence,
            requires_user_review=needs_review,
            status=status,
            created_at=now,
            updated_at=now,
            last_activity_at=now,
        )
        subscription.record(
            HistoryChangeType.CREATED,
            None,
            f"Service: {subscription.service_name}, "
            f"Price: {price} {facts.currency}/{facts.billing_cycle.value}",
            source_email_id=facts.source_email_id,
            at=now,
        )
        await self.repository.save(subscription)

        logger.info(
            "Subscription created",
            subscription_id=subscription.id,
            user_id=facts.user_id,
            service_name=subscription.service_name,
            status=status.value,
            confidence=facts.confidence,
        )
        return ReconciliationOutcome(
            subscription, created=True, changes=[HistoryChangeType.CREATED]
        )

    async def _update(
        self, subscription: Subscription, facts: SubscriptionFacts
    ) -> ReconciliationOutcome:
        now = datetime.now(UTC)
        changes: list[HistoryChangeType] = []

        currency = facts.currency or subscription.currency
        # Currency only moves together with a price, so every switch is in history
        if facts.price is not None and (
            facts.price != subscription.price or currency != subscription.currency
        ):
            subscription.record(
                HistoryChangeType.PRICE_CHANGE,
                _money(subscription.price, subscription.currency),
                _money(facts.price, currency),
                source_email_id=facts.source_email_id,
                at=now,
            )
            subscription.price = facts.price
            subscription.currency = currency
            changes.append(HistoryChangeType.PRICE_CHANGE)

        if (
            facts.billing_cycle != BillingCycle.UNKNOWN
            and facts.billing_cycle != subscription.billing_cycle
        ):
            subscription.record(
                HistoryChangeType.BILLING_CYCLE_CHANGE,
                subscription.billing_cycle.value,
                facts.billing_cycle.value,
                source_email_id=facts.source_email_id,
                at=now,
            )
            subscription.billing_cycle = facts.billing_cycle
            changes.append(HistoryChangeType.BILLING_CYCLE_CHANGE)

        if (
            facts.next_renewal_date is not None
            and facts.next_renewal_date != subscription.next_renewal_date
        ):
            subscription.record(
                HistoryChangeType.RENEWAL_DATE_CHANGE,
                subscription.next_renewal_date.date().isoformat()
                if subscription.next_renewal_date
                else None,
                facts.next_renewal_date.date().isoformat(),
                source_email_id=facts.source_email_id,
                at=now,
            )
            subscription.next_renewal_date = facts.next_renewal_date
            changes.append(HistoryChangeType.RENEWAL_DATE_CHANGE)

        if facts.cancellation_link and not subscription.cancellation_link:
            subscription.cancellation_link = facts.cancellation_link
        if facts.email_account_id and not subscription.email_account_id:
            subscription.email_account_id = facts.email_account_id

        subscription.last_activity_at = now
        subscription.updated_at = now
        await self.repository.save(subscription)

        logger.info(
            "Subscription updated",
            subscription_id=subscription.id,
            user_id=subscription.user_id,
            changes=[c.value for c in changes],
        )
        return ReconciliationOutcome(subscription, created=False, changes=changes)

    async def get(self, subscription_id: str) -> OperationResult[Subscription]:
        subscription = await self.repository.get(subscription_id)
        if subscription is None:
            return OperationResult.failure(SubscriptionErrors.NOT_FOUND)
        return OperationResult.success(subscription)

    async def list_for_user(
        self,
        user_id: str,
        status: SubscriptionStatus | None = None,
        category: str | None = None,
    ) -> list[Subscription]:
        subscriptions = await self.repository.list_for_user(user_id)
        if status is not None:
            subscriptions = [s for s in subscriptions if s.status == status]
        if category is not None:
            subscriptions = [s for s in subscriptions if s.category.lower() == category.lower()]
        return subscriptions

    async def pending_review(self, user_id: str) -> list[Subscription]:
        return await self.list_for_user(user_id, status=_ST.PENDING_REVIEW)

    async def upcoming_renewals(
        self, user_id: str, days_ahead: int = 30, now: datetime | None = None
    ) -> list[Subscription]:
        now = now or datetime.now(UTC)
        horizon = now + timedelta(days=days_ahead)
        due = [
            s
            for s in await self.repository.list_for_user(user_id)
            if s.status in (_ST.ACTIVE, _ST.TRIAL_ACTIVE)
            and s.next_renewal_date is not None
            and now <= s.next_renewal_date <= horizon
        ]
        return sorted(due, key=lambda s: s.next_renewal_date)

    async def update_status(
        self, subscription_id: str, new_status: SubscriptionStatus
    ) -> OperationResult[Subscription]:
        subscription = await self.repository.get(subscription_id)
        if subscription is None:
            return OperationResult.failure(SubscriptionErrors.NOT_FOUND)
        if subscription.status == new_status:
            return OperationResult.noop(subscription)
        if new_status not in ALLOWED_STATUS_CHANGES[subscription.status]:
            return OperationResult.failure(
                SubscriptionErrors.INVALID_TRANSITION.with_detail(
                    f"{subscription.status.value} -> {new_status.value}"
                )
            )

        now = datetime.now(UTC)
        subscription.record(
            HistoryChangeType.STATUS_CHANGE, subscription.status.value, new_status.value, at=now
        )
        subscription.status = new_status
        if new_status == _ST.CANCELLED:
            subscription.cancelled_at = now
        elif new_status == _ST.ACTIVE:
            subscription.cancelled_at = None
        subscription.updated_at = now
        await self.repository.save(subscription)

        logger.info(
            "Subscription status changed",
            subscription_id=subscription_id,
            status=new_status.value,
        )
        return OperationResult.success(subscription)

    async def update_price(
        self, subscription_id: str, new_price: Decimal, source_email_id: str | None = None
    ) -> OperationResult[Subscription]:
        if new_price < 0:
            return OperationResult.failure(ValidationErrors.NEGATIVE_PRICE)
        subscription = await self.repository.get(subscription_id)
        if subscription is None:
            return OperationResult.failure(SubscriptionErrors.NOT_FOUND)
        if subscription.price == new_price:
            return OperationResult.noop(subscription)

        now = datetime.now(UTC)
        subscription.record(
            HistoryChangeType.PRICE_CHANGE,
            _money(subscription.price, subscription.currency),
            _money(new_price, subscription.currency),
            source_email_id=source_email_id,
            at=now,
        )
        subscription.price = new_price
        subscription.updated_at = now
        await self.repository.save(subscription)
        return OperationResult.success(subscription)

    async def approve(self, subscription_id: str) -> OperationResult[Subscription]:
        return await self._review(subscription_id, approved=True)

    async def reject(self, subscription_id: str) -> OperationResult[Subscription]:
        return await self._review(subscription_id, approved=False)

    async def _review(self, subscription_id: str, approved: bool) -> OperationResult[Subscription]:
        subscription = await self.repository.get(subscription_id)
        if subscription is None:
            return OperationResult.failure(SubscriptionErrors.NOT_FOUND)
        if subscription.status != _ST.PENDING_REVIEW:
            return OperationResult.failure(
                SubscriptionErrors.INVALID_TRANSITION.with_detail(
                    f"{subscription.status.value} is not awaiting review"
                )
            )

        now = datetime.now(UTC)
        new_status = _ST.ACTIVE if approved else _ST.ARCHIVED
        subscription.record(
            HistoryChangeType.APPROVED if approved else HistoryChangeType.REJECTED,
            _ST.PENDING_REVIEW.value,
            new_status.value,
            at=now,
        )
        subscription.status = new_status
        subscription.requires_user_review = False
        subscription.updated_at = now
        await self.repository.save(subscription)

        logger.info("Subscription reviewed", subscription_id=subscription_id, approved=approved)
        return OperationResult.success(subscription)

    async def archive_by_email_account(self, email_account_id: str) -> OperationResult[int]:
        """Archive every live subscription attributed to a disconnected account."""
        try:
            archived = 0
            for subscription in await self.repository.list_for_account(email_account_id):
                if not subscription.is_live:
                    continue
                subscription.status = _ST.ARCHIVED
                subscription.updated_at = datetime.now(UTC)
                await self.repository.save(subscription)
                archived += 1
        except Exception as e:
            logger.error(
                "Failed to archive subscriptions", email_account_id=email_account_id, error=str(e)
            )
            return OperationResult.failure(unexpected("archive_by_email_account", e))

        logger.info(
            "Archived subscriptions for disconnected account",
            email_account_id=email_account_id,
            archived=archived,
        )
        return OperationResult.success(archived)

    async def monthly_spending(self, user_id: str) -> Decimal:
        active = await self.list_for_user(user_id, status=_ST.ACTIVE)
        return sum(
            (normalize_to_monthly(s.price, s.billing_cycle) for s in active), Decimal("0")
        )

    async def spending_by_category(self, user_id: str) -> dict[str, Decimal]:
        totals: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
        for subscription in await self.list_for_user(user_id, status=_ST.ACTIVE):
            totals[subscription.category] += subscription.monthly_price
        return dict(totals)
