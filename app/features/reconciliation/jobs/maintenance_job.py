"""
Subscription maintenance job.

Daily housekeeping on ledger state:
- trials whose end date passed become Active
- renewal dates that passed recently roll forward one billing cycle
- Active subscriptions more than a week past renewal are flagged for review
"""

import asyncio
from datetime import UTC, datetime, timedelta

from dateutil.relativedelta import relativedelta

from app.features.reconciliation.repository.subscription_repository import SubscriptionRepository
from app.infrastructure.observability.logging import get_logger, log_job_metrics
from app.jobs.metrics import JobError, JobMetrics
from app.models.domain.subscription_domain import (
    BillingCycle,
    HistoryChangeType,
    Subscription,
    SubscriptionStatus,
)

logger = get_logger(__name__)

OVERDUE_AFTER = timedelta(days=7)

CYCLE_STEP: dict[BillingCycle, relativedelta] = {
    BillingCycle.WEEKLY: relativedelta(weeks=1),
    BillingCycle.MONTHLY: relativedelta(months=1),
    BillingCycle.QUARTERLY: relativedelta(months=3),
    BillingCycle.ANNUAL: relativedelta(years=1),
}


def next_renewal_after(renewal: datetime, cycle: BillingCycle, now: datetime) -> datetime | None:
    """Roll ``renewal`` forward whole cycles until it is not in the past."""
    step = CYCLE_STEP.get(cycle)
    if step is None:
        return None
    periods = 1
    advanced = renewal + step
    while advanced < now:
        periods += 1
        advanced = renewal + step * periods
    return advanced


class SubscriptionMaintenanceJob:
    job_name = "subscription_maintenance"

    def __init__(self, subscriptions: SubscriptionRepository):
        self.subscriptions = subscriptions
        self.job_metrics = JobMetrics(self.job_name)

    async def run_once(self, now: datetime | None = None) -> dict:
        self.job_metrics.reset()
        now = now or datetime.now(UTC)
        try:
            user_ids = await self.subscriptions.list_user_ids()
        except Exception as e:
            raise JobError(f"Failed to list users: {e}", operation="list_users") from e

        results = await asyncio.gather(
            *(self.maintain_user(uid, now) for uid in user_ids), return_exceptions=True
        )
        for user_id, result in zip(user_ids, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                self.job_metrics.record_failure(user_id, f"{type(result).__name__}: {result}")
            else:
                self.job_metrics.record_success(user_id)

        self.job_metrics.finalize()
        metrics = self.job_metrics.to_dict()
        log_job_metrics(self.job_name, metrics)
        return metrics

    async def maintain_user(self, user_id: str, now: datetime) -> int:
        changed = 0
        for subscription in await self.subscriptions.list_for_user(user_id):
            if self._maintain(subscription, now):
                subscription.updated_at = now
                await self.subscriptions.save(subscription)
                changed += 1
        return changed

    def _maintain(self, subscription: Subscription, now: datetime) -> bool:
        renewal = subscription.next_renewal_date
        if renewal is None or renewal >= now:
            return False

        if subscription.status == SubscriptionStatus.TRIAL_ACTIVE:
            subscription.record(
                HistoryChangeType.TRIAL_ENDED,
                SubscriptionStatus.TRIAL_ACTIVE.value,
                SubscriptionStatus.ACTIVE.value,
                at=now,
            )
            subscription.status = SubscriptionStatus.ACTIVE
            self.job_metrics.increment("trials_ended")
            self._advance(subscription, now)
            return True

        if subscription.status != SubscriptionStatus.ACTIVE:
            return False

        if now - renewal > OVERDUE_AFTER:
            if subscription.requires_user_review:
                return False
            subscription.requires_user_review = True
            subscription.record(
                HistoryChangeType.RENEWAL_OVERDUE,
                renewal.date().isoformat(),
                None,
                at=now,
            )
            self.job_metrics.increment("renewals_overdue")
            return True

        return self._advance(subscription, now)

    def _advance(self, subscription: Subscription, now: datetime) -> bool:
        current = subscription.next_renewal_date
        advanced = next_renewal_after(current, subscription.billing_cycle, now)
        if advanced is None:
            return False
        subscription.record(
            HistoryChangeType.RENEWAL_DATE_ADVANCED,
            current.date().isoformat(),
            advanced.date().isoformat(),
            at=now,
        )
        subscription.next_renewal_date = advanced
        self.job_metrics.increment("renewals_advanced")
        return True
