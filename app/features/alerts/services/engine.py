"""
Alert engine.

Evaluates one user's subscriptions and history against four rule families
(renewal, price increase, trial ending, unused), each behind its own
preference flag. Duplicate suppression has two layers: no new alert while one
of the same type is unresolved for the subscription, and no second alert for
an occurrence (renewal date per window, history entry) that was already
alerted on. Price increases are held back by any alert that was not Sent.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal, InvalidOperation

from dateutil.relativedelta import relativedelta

from app.config import settings
from app.features.alerts.repository.alert_repository import AlertRepository
from app.features.reconciliation.repository.subscription_repository import SubscriptionRepository
from app.infrastructure.observability.logging import get_logger
from app.models.domain.alert_domain import Alert, AlertStatus, AlertType
from app.models.domain.subscription_domain import (
    HistoryChangeType,
    Subscription,
    SubscriptionHistory,
    SubscriptionStatus,
    normalize_to_monthly,
)
from app.models.domain.user_domain import AlertPreferences
from app.models.results import (
    AlertErrors,
    OperationResult,
    UserErrors,
    ValidationErrors,
    unexpected,
)
from app.repositories.account_repository import UserRepository

logger = get_logger(__name__)

RENEWAL_EARLY_WINDOW_DAYS = 7
RENEWAL_LATE_WINDOW_DAYS = 3


def _days(n: int) -> str:
    return f"{n} day" if n == 1 else f"{n} days"


def _amount(value: str | None) -> Decimal | None:
    """Parse the amount out of a history value such as ``"15.99 USD"``."""
    if not value:
        return None
    try:
        return Decimal(value.split()[0])
    except (InvalidOperation, IndexError):
        return None


@dataclass(slots=True)
class GenerationSummary:
    renewal: int = 0
    price_increase: int = 0
    trial_ending: int = 0
    unused: int = 0

    @property
    def total(self) -> int:
        return self.renewal + self.price_increase + self.trial_ending + self.unused

    def to_dict(self) -> dict:
        return {
            "renewal": self.renewal,
            "price_increase": self.price_increase,
            "trial_ending": self.trial_ending,
            "unused": self.unused,
            "total": self.total,
        }


class AlertEngine:
    def __init__(
        self,
        alerts: AlertRepository,
        subscriptions: SubscriptionRepository,
        users: UserRepository,
        price_window_days: int | None = None,
        trial_lead_days: int | None = None,
        unused_months: int | None = None,
        unused_cooldown_days: int | None = None,
        max_retries: int | None = None,
        backoff_base_minutes: int | None = None,
        default_snooze_hours: int | None = None,
    ):
        self.alerts = alerts
        self.subscriptions = subscriptions
        self.users = users
        self.price_window_days = price_window_days or settings.ALERT_PRICE_WINDOW_DAYS
        self.trial_lead_days = trial_lead_days or settings.ALERT_TRIAL_LEAD_DAYS
        self.unused_months = unused_months or settings.ALERT_UNUSED_MONTHS
        self.unused_cooldown_days = unused_cooldown_days or settings.ALERT_UNUSED_COOLDOWN_DAYS
        self.max_retries = max_retries or settings.ALERT_MAX_RETRIES
        self.backoff_base_minutes = backoff_base_minutes or settings.ALERT_BACKOFF_BASE_MINUTES
        self.default_snooze_hours = default_snooze_hours or settings.ALERT_DEFAULT_SNOOZE_HOURS

    # =================================================================
    # GENERATION
    # =================================================================

    async def generate_all(
        self, user_id: str, now: datetime | None = None
    ) -> OperationResult[GenerationSummary]:
        user = await self.users.get(user_id)
        if user is None:
            return OperationResult.failure(UserErrors.NOT_FOUND)

        now = now or datetime.now(UTC)
        prefs = user.preferences
        summary = GenerationSummary()
        try:
            if prefs.enable_renewal_alerts:
                summary.renewal = await self.generate_renewal_alerts(user_id, now)
            if prefs.enable_price_change_alerts:
                summary.price_increase = await self.generate_price_increase_alerts(user_id, now)
            if prefs.enable_trial_ending_alerts:
                summary.trial_ending = await self.generate_trial_ending_alerts(user_id, now)
            if prefs.enable_unused_subscription_alerts:
                summary.unused = await self.generate_unused_alerts(user_id, now)
        except Exception as e:
            logger.error(
                "Alert generation failed",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return OperationResult.failure(unexpected("generate_alerts", e))

        if summary.total:
            logger.info("Alerts generated", user_id=user_id, **summary.to_dict())
        return OperationResult.success(summary)

    async def generate_renewal_alerts(self, user_id: str, now: datetime | None = None) -> int:
        now = now or datetime.now(UTC)
        created = 0
        for subscription in await self._with_status(user_id, SubscriptionStatus.ACTIVE):
            if subscription.next_renewal_date is None:
                continue
            days_until = (subscription.next_renewal_date.date() - now.date()).days

            if RENEWAL_LATE_WINDOW_DAYS < days_until <= RENEWAL_EARLY_WINDOW_DAYS:
                alert_type = AlertType.RENEWAL_UPCOMING_7_DAYS
            elif 0 <= days_until <= RENEWAL_LATE_WINDOW_DAYS:
                alert_type = AlertType.RENEWAL_UPCOMING_3_DAYS
            else:
                continue

            occurrence = subscription.next_renewal_date.date().isoformat()
            # At most one warning per window for a given renewal date
            if await self._occurrence_alerted(subscription.id, (alert_type,), occurrence):
                continue
            if await self._has_unresolved(subscription.id, alert_type):
                continue

            amount = f"{subscription.currency} {subscription.price:.2f}"
            if days_until == 0:
                message = f"{subscription.service_name} renews TODAY! Amount: {amount}"
            else:
                message = (
                    f"{subscription.service_name} renews in {_days(days_until)}. Amount: {amount}"
                )
            await self._create(subscription, alert_type, message, now, occurrence)
            created += 1
        return created

    async def generate_price_increase_alerts(
        self, user_id: str, now: datetime | None = None
    ) -> int:
        now = now or datetime.now(UTC)
        window_start = now - timedelta(days=self.price_window_days)
        created = 0

        for subscription in await self._with_status(
            user_id, SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL_ACTIVE
        ):
            # Any non-Sent price alert blocks a new one, not just unresolved ones
            if await self._has_unsent(subscription.id, AlertType.PRICE_INCREASE):
                continue

            recent = sorted(
                (
                    h
                    for h in subscription.history
                    if h.change_type == HistoryChangeType.PRICE_CHANGE
                    and h.changed_at >= window_start
                ),
                key=lambda h: h.changed_at,
                reverse=True,
            )
            for entry in recent:
                old, new = _amount(entry.old_value), _amount(entry.new_value)
                if old is None or new is None or new <= old:
                    continue
                if await self._occurrence_alerted(
                    subscription.id, (AlertType.PRICE_INCREASE,), entry.id
                ):
                    break
                message = self._price_increase_message(subscription, entry, old, new)
                await self._create(subscription, AlertType.PRICE_INCREASE, message, now, entry.id)
                created += 1
                break
        return created

    @staticmethod
    def _price_increase_message(
        subscription: Subscription, entry: SubscriptionHistory, old: Decimal, new: Decimal
    ) -> str:
        currency = subscription.currency
        change = f"{currency} {old:.2f} → {currency} {new:.2f}"
        if old > 0:
            pct = (new - old) / old * 100
            change += f" (+{pct:.1f}%)"
        return f"Price increased for {subscription.service_name}: {change}"

    async def generate_trial_ending_alerts(
        self, user_id: str, now: datetime | None = None
    ) -> int:
        now = now or datetime.now(UTC)
        created = 0
        for subscription in await self._with_status(user_id, SubscriptionStatus.TRIAL_ACTIVE):
            if subscription.next_renewal_date is None:
                continue
            days_until = (subscription.next_renewal_date.date() - now.date()).days
            if not 0 <= days_until <= self.trial_lead_days:
                continue

            occurrence = subscription.next_renewal_date.date().isoformat()
            if await self._occurrence_alerted(
                subscription.id, (AlertType.TRIAL_ENDING,), occurrence
            ) or await self._has_unresolved(subscription.id, AlertType.TRIAL_ENDING):
                continue

            price = (
                f"{subscription.currency} {subscription.price:.2f}"
                f"/{subscription.billing_cycle.value}"
            )
            if days_until == 0:
                message = (
                    f"Trial ending TODAY for {subscription.service_name}! Full price: {price}"
                )
            else:
                message = (
                    f"Trial ending in {_days(days_until)} for {subscription.service_name}. "
                    f"Full price: {price}"
                )
            await self._create(subscription, AlertType.TRIAL_ENDING, message, now, occurrence)
            created += 1
        return created

    async def generate_unused_alerts(self, user_id: str, now: datetime | None = None) -> int:
        now = now or datetime.now(UTC)
        inactive_since = now - relativedelta(months=self.unused_months)
        cooldown = timedelta(days=self.unused_cooldown_days)
        created = 0

        for subscription in await self._with_status(user_id, SubscriptionStatus.ACTIVE):
            last_activity = subscription.last_activity_at or subscription.created_at
            if last_activity > inactive_since:
                continue

            previous = await self.alerts.list_for_subscription(
                subscription.id, AlertType.UNUSED_SUBSCRIPTION
            )
            if any(a.is_unresolved for a in previous):
                continue
            last_alerted = max((a.sent_at or a.created_at for a in previous), default=None)
            if last_alerted is not None and now - last_alerted < cooldown:
                continue

            unused_months = (now - last_activity).days // 30
            monthly = normalize_to_monthly(subscription.price, subscription.billing_cycle)
            wasted = monthly * unused_months
            message = (
                f"{subscription.service_name} appears unused for {unused_months} months. "
                f"Potential savings: {subscription.currency} {wasted:.2f}. Consider canceling?"
            )
            await self._create(subscription, AlertType.UNUSED_SUBSCRIPTION, message, now, None)
            created += 1
        return created

    async def _with_status(
        self, user_id: str, *statuses: SubscriptionStatus
    ) -> list[Subscription]:
        return [s for s in await self.subscriptions.list_for_user(user_id) if s.status in statuses]

    async def _has_unresolved(self, subscription_id: str, alert_type: AlertType) -> bool:
        existing = await self.alerts.list_for_subscription(subscription_id, alert_type)
        return any(a.is_unresolved for a in existing)

    async def _has_unsent(self, subscription_id: str, alert_type: AlertType) -> bool:
        existing = await self.alerts.list_for_subscription(subscription_id, alert_type)
        return any(a.status != AlertStatus.SENT for a in existing)

    async def _occurrence_alerted(
        self, subscription_id: str, alert_types: tuple[AlertType, ...], dedup_key: str
    ) -> bool:
        for alert_type in alert_types:
            existing = await self.alerts.list_for_subscription(subscription_id, alert_type)
            if any(a.dedup_key == dedup_key for a in existing):
                return True
        return False

    async def _create(
        self,
        subscription: Subscription,
        alert_type: AlertType,
        message: str,
        now: datetime,
        dedup_key: str | None,
    ) -> Alert:
        alert = Alert(
            user_id=subscription.user_id,
            subscription_id=subscription.id,
            alert_type=alert_type,
            message=message,
            scheduled_for=now,
            dedup_key=dedup_key,
            created_at=now,
        )
        await self.alerts.add(alert)
        logger.debug(
            "Alert created",
            alert_id=alert.id,
            subscription_id=subscription.id,
            alert_type=alert_type.value,
        )
        return alert

    # =================================================================
    # MANUAL ALERTS AND USER ACTIONS
    # =================================================================

    async def create_alert(
        self,
        user_id: str,
        subscription_id: str | None,
        alert_type: AlertType,
        message: str,
        scheduled_for: datetime | None = None,
    ) -> OperationResult[Alert]:
        if not user_id:
            return OperationResult.failure(ValidationErrors.REQUIRED_USER_ID)
        if subscription_id is not None:
            existing = await self.alerts.list_for_subscription(subscription_id, alert_type)
            unresolved = next((a for a in existing if a.is_unresolved), None)
            if unresolved is not None:
                logger.debug(
                    "Duplicate alert ignored",
                    subscription_id=subscription_id,
                    alert_type=alert_type.value,
                    reason=AlertErrors.DUPLICATE.code,
                )
                return OperationResult.noop(unresolved)

        alert = Alert(
            user_id=user_id,
            subscription_id=subscription_id,
            alert_type=alert_type,
            message=message,
            scheduled_for=scheduled_for or datetime.now(UTC),
        )
        await self.alerts.add(alert)
        return OperationResult.success(alert)

    async def get_alert(self, alert_id: str) -> OperationResult[Alert]:
        alert = await self.alerts.get(alert_id)
        if alert is None:
            return OperationResult.failure(AlertErrors.NOT_FOUND)
        return OperationResult.success(alert)

    async def list_alerts(
        self,
        user_id: str,
        status: AlertStatus | None = None,
        alert_type: AlertType | None = None,
    ) -> list[Alert]:
        alerts = await self.alerts.list_for_user(user_id)
        return sorted(
            (
                a
                for a in alerts
                if (status is None or a.status == status)
                and (alert_type is None or a.alert_type == alert_type)
            ),
            key=lambda a: a.scheduled_for,
        )

    async def snooze(
        self, alert_id: str, hours: int | None = None, now: datetime | None = None
    ) -> OperationResult[Alert]:
        hours = self.default_snooze_hours if hours is None else hours
        if hours <= 0:
            return OperationResult.failure(ValidationErrors.INVALID_HOURS)
        alert = await self.alerts.get(alert_id)
        if alert is None:
            return OperationResult.failure(AlertErrors.NOT_FOUND)
        if alert.status in (AlertStatus.SENT, AlertStatus.DISMISSED):
            return OperationResult.noop(alert)

        alert.status = AlertStatus.SNOOZED
        alert.scheduled_for = (now or datetime.now(UTC)) + timedelta(hours=hours)
        await self.alerts.save(alert)
        logger.info("Alert snoozed", alert_id=alert_id, hours=hours)
        return OperationResult.success(alert)

    async def dismiss(self, alert_id: str) -> OperationResult[Alert]:
        alert = await self.alerts.get(alert_id)
        if alert is None:
            return OperationResult.failure(AlertErrors.NOT_FOUND)
        if alert.status == AlertStatus.DISMISSED:
            return OperationResult.noop(alert)

        alert.status = AlertStatus.DISMISSED
        await self.alerts.save(alert)
        logger.info("Alert dismissed", alert_id=alert_id)
        return OperationResult.success(alert)

    # =================================================================
    # DELIVERY OUTCOMES
    # =================================================================

    async def record_delivery_success(
        self, alert_id: str, now: datetime | None = None
    ) -> OperationResult[Alert]:
        alert = await self.alerts.get(alert_id)
        if alert is None:
            return OperationResult.failure(AlertErrors.NOT_FOUND)

        alert.status = AlertStatus.SENT
        alert.sent_at = now or datetime.now(UTC)
        alert.last_error = None
        await self.alerts.save(alert)
        return OperationResult.success(alert)

    async def record_delivery_failure(
        self,
        alert_id: str,
        error: str,
        permanent: bool = False,
        now: datetime | None = None,
    ) -> OperationResult[Alert]:
        """Back off ``base * 2**retry_count`` minutes, or fail for good at the ceiling."""
        alert = await self.alerts.get(alert_id)
        if alert is None:
            return OperationResult.failure(AlertErrors.NOT_FOUND)

        now = now or datetime.now(UTC)
        alert.retry_count += 1
        alert.last_error = (error or "")[:500]

        if permanent or alert.retry_count >= self.max_retries:
            alert.status = AlertStatus.FAILED
            logger.warning(
                "Alert delivery failed permanently",
                alert_id=alert_id,
                retry_count=alert.retry_count,
                permanent=permanent,
                error=error,
            )
        else:
            delay = timedelta(minutes=self.backoff_base_minutes * 2**alert.retry_count)
            alert.status = AlertStatus.PENDING
            alert.scheduled_for = now + delay
            logger.info(
                "Alert delivery rescheduled",
                alert_id=alert_id,
                retry_count=alert.retry_count,
                retry_in_minutes=delay.total_seconds() / 60,
            )

        await self.alerts.save(alert)
        return OperationResult.success(alert)

    # =================================================================
    # PREFERENCES
    # =================================================================

    async def get_preferences(self, user_id: str) -> OperationResult[AlertPreferences]:
        user = await self.users.get(user_id)
        if user is None:
            return OperationResult.failure(UserErrors.NOT_FOUND)
        return OperationResult.success(user.preferences)

    async def update_preferences(
        self, user_id: str, preferences: AlertPreferences
    ) -> OperationResult[AlertPreferences]:
        user = await self.users.get(user_id)
        if user is None:
            return OperationResult.failure(UserErrors.NOT_FOUND)
        user.preferences_blob = preferences.to_blob()
        await self.users.save(user)
        return OperationResult.success(preferences)
