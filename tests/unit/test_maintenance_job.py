from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from app.features.reconciliation.jobs.maintenance_job import (
    SubscriptionMaintenanceJob,
    next_renewal_after,
)
from app.features.reconciliation.repository.subscription_repository import (
    InMemorySubscriptionRepository,
)
from app.models.domain.subscription_domain import (
    BillingCycle,
    HistoryChangeType,
    Subscription,
    SubscriptionStatus,
)


@pytest.fixture
def repository():
    return InMemorySubscriptionRepository()


@pytest.fixture
def job(repository):
    return SubscriptionMaintenanceJob(repository)


@pytest.fixture
def add_subscription(repository):
    async def _add(name="Netflix", **kwargs):
        kwargs.setdefault("billing_cycle", BillingCycle.MONTHLY)
        subscription = Subscription(
            user_id=kwargs.pop("user_id", "user-1"),
            service_name=name,
            price=Decimal("15.99"),
            **kwargs,
        )
        await repository.save(subscription)
        return subscription

    return _add


def test_next_renewal_after():
    renewal = datetime(2025, 1, 31, tzinfo=UTC)
    now = datetime(2025, 3, 10, tzinfo=UTC)

    assert next_renewal_after(renewal, BillingCycle.MONTHLY, now) == datetime(
        2025, 3, 31, tzinfo=UTC
    )
    assert next_renewal_after(renewal, BillingCycle.ANNUAL, now) == datetime(
        2026, 1, 31, tzinfo=UTC
    )
    assert next_renewal_after(renewal, BillingCycle.UNKNOWN, now) is None


@pytest.mark.asyncio
async def test_recent_renewal_is_advanced(job, add_subscription, now, days):
    subscription = await add_subscription(next_renewal_date=now - days(3))

    metrics = await job.run_once(now)

    assert subscription.next_renewal_date == now - days(3) + timedelta(days=31)
    entry = subscription.history[-1]
    assert entry.change_type == HistoryChangeType.RENEWAL_DATE_ADVANCED
    assert (entry.old_value, entry.new_value) == ("2025-03-07", "2025-04-07")
    assert metrics["renewals_advanced"] == 1
    assert metrics["succeeded"] == 1


@pytest.mark.asyncio
async def test_ended_trial_becomes_active(job, add_subscription, now, days):
    subscription = await add_subscription(
        status=SubscriptionStatus.TRIAL_ACTIVE,
        billing_cycle=BillingCycle.WEEKLY,
        next_renewal_date=now - days(1),
    )

    metrics = await job.run_once(now)

    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.next_renewal_date == now + days(6)
    assert [h.change_type for h in subscription.history] == [
        HistoryChangeType.TRIAL_ENDED,
        HistoryChangeType.RENEWAL_DATE_ADVANCED,
    ]
    assert metrics["trials_ended"] == 1


@pytest.mark.asyncio
async def test_long_overdue_renewal_is_flagged_once(job, add_subscription, now, days):
    subscription = await add_subscription(next_renewal_date=now - days(10))

    await job.run_once(now)
    await job.run_once(now + days(1))

    assert subscription.requires_user_review is True
    assert subscription.next_renewal_date == now - days(10)
    overdue = [
        h for h in subscription.history if h.change_type == HistoryChangeType.RENEWAL_OVERDUE
    ]
    assert len(overdue) == 1


@pytest.mark.asyncio
async def test_untouched_subscriptions(job, add_subscription, now, days):
    future = await add_subscription(next_renewal_date=now + days(5))
    cancelled = await add_subscription(
        "Hulu", status=SubscriptionStatus.CANCELLED, next_renewal_date=now - days(2)
    )
    unknown = await add_subscription(
        "Gym", billing_cycle=BillingCycle.UNKNOWN, next_renewal_date=now - days(2)
    )

    metrics = await job.run_once(now)

    assert future.history == cancelled.history == unknown.history == []
    assert metrics.get("renewals_advanced", 0) == 0
