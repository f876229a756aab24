# app/models/domain/alert_domain.py
"""
Alert Domain Models
Alerts derived from ledger state and the payloads sent to the notifier.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4


class AlertType(str, Enum):
    RENEWAL_UPCOMING_7_DAYS = "RenewalUpcoming7Days"
    RENEWAL_UPCOMING_3_DAYS = "RenewalUpcoming3Days"
    PRICE_INCREASE = "PriceIncrease"
    TRIAL_ENDING = "TrialEnding"
    UNUSED_SUBSCRIPTION = "UnusedSubscription"


class AlertStatus(str, Enum):
    PENDING = "Pending"
    SENT = "Sent"
    FAILED = "Failed"
    SNOOZED = "Snoozed"
    DISMISSED = "Dismissed"


UNRESOLVED_ALERT_STATUSES = frozenset({AlertStatus.PENDING, AlertStatus.SNOOZED})


@dataclass(slots=True)
class Alert:
    user_id: str
    subscription_id: str | None
    alert_type: AlertType
    message: str
    scheduled_for: datetime
    status: AlertStatus = AlertStatus.PENDING
    # Identifies the occurrence alerted on (renewal date, history entry id)
    dedup_key: str | None = None
    id: str = field(default_factory=lambda: str(uuid4()))
    sent_at: datetime | None = None
    retry_count: int = 0
    last_error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_unresolved(self) -> bool:
        return self.status in UNRESOLVED_ALERT_STATUSES


@dataclass(slots=True)
class NotificationMessage:
    alert_id: str
    user_id: str
    recipient: str
    alert_type: AlertType
    body: str


@dataclass(slots=True)
class DeliveryReceipt:
    message_id: str
    success: bool
    status: str
