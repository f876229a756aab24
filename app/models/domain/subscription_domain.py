# app/models/domain/subscription_domain.py
"""
Subscription Domain Models
Subscriptions, their append-only audit trail and the vendor directory.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from uuid import uuid4


class BillingCycle(str, Enum):
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"
    ANNUAL = "Annual"
    UNKNOWN = "Unknown"


class SubscriptionStatus(str, Enum):
    ACTIVE = "Active"
    PENDING_REVIEW = "PendingReview"
    TRIAL_ACTIVE = "TrialActive"
    CANCELLED = "Cancelled"
    ARCHIVED = "Archived"


class HistoryChangeType(str, Enum):
    CREATED = "Created"
    PRICE_CHANGE = "PriceChange"
    BILLING_CYCLE_CHANGE = "BillingCycleChange"
    RENEWAL_DATE_CHANGE = "RenewalDateChange"
    STATUS_CHANGE = "StatusChange"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    TRIAL_ENDED = "TrialEnded"
    RENEWAL_DATE_ADVANCED = "RenewalDateAdvanced"
    RENEWAL_OVERDUE = "RenewalOverdue"


WEEKS_PER_MONTH = Decimal("4.33")


def normalize_to_monthly(price: Decimal, cycle: BillingCycle) -> Decimal:
    """Express a price per billing cycle as a monthly amount."""
    if cycle == BillingCycle.ANNUAL:
        return price / 12
    if cycle == BillingCycle.QUARTERLY:
        return price / 3
    if cycle == BillingCycle.WEEKLY:
        return price * WEEKS_PER_MONTH
    return price


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class SubscriptionHistory:
    """Immutable audit entry."""

    subscription_id: str
    change_type: HistoryChangeType
    old_value: str | None
    new_value: str | None
    source_email_id: str | None = None
    changed_at: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=lambda: str(uuid4()))


@dataclass(slots=True)
class Subscription:
    user_id: str
    service_name: str
    price: Decimal
    currency: str = "USD"
    billing_cycle: BillingCycle = BillingCycle.UNKNOWN
    email_account_id: str | None = None
    next_renewal_date: datetime | None = None
    category: str = "Other"
    vendor_id: str | None = None
    cancellation_link: str | None = None
    extraction_confidence: float = 1.0
    requires_user_review: bool = False
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    last_activity_at: datetime | None = None
    cancelled_at: datetime | None = None
    history: list[SubscriptionHistory] = field(default_factory=list)

    @property
    def is_live(self) -> bool:
        return self.status != SubscriptionStatus.ARCHIVED

    @property
    def monthly_price(self) -> Decimal:
        return normalize_to_monthly(self.price, self.billing_cycle)

    def record(
        self,
        change_type: HistoryChangeType,
        old_value: str | None,
        new_value: str | None,
        source_email_id: str | None = None,
        at: datetime | None = None,
    ) -> SubscriptionHistory:
        """Append a history entry. Entries are never edited or removed."""
        entry = SubscriptionHistory(
            subscription_id=self.id,
            change_type=change_type,
            old_value=old_value,
            new_value=new_value,
            source_email_id=source_email_id,
            changed_at=at or _utcnow(),
        )
        self.history.append(entry)
        return entry


@dataclass(slots=True)
class VendorMetadata:
    name: str
    normalized_name: str
    category: str = "Other"
    logo_url: str | None = None
    website_url: str | None = None
    account_management_url: str | None = None
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
