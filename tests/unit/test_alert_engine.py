from datetime import timedelta
from decimal import Decimal

import pytest

from app.features.alerts.repository.alert_repository import InMemoryAlertRepository
from app.features.alerts.services.engine import AlertEngine
from app.features.reconciliation.repository.subscription_repository import (
    InMemorySubscriptionRepository,
)
from app.models.domain.alert_domain import AlertStatus, AlertType
from app.models.domain.subscription_domain import (
    BillingCycle,
    HistoryChangeType,
    Subscription,
    SubscriptionStatus,
)
from app.models.domain.user_domain import AlertPreferences
from app.repositories.account_repository import InMemoryUserRepository


@pytest.fixture
def alerts():
    return InMemoryAlertRepository()


@pytest.fixture
def subscriptions():
    return InMemorySubscriptionRepository()


@pytest.fixture
def engine(alerts, subscriptions, user):
    return AlertEngine(
        alerts,
        subscriptions,
        InMemoryUserRepository([user]),
        price_window_days=7,
        trial_lead_days=3,
        unused_months=6,
        unused_cooldown_days=30,
        max_retries=3,
        backoff_base_minutes=5,
        default_snooze_hours=24,
    )


@pytest.fixture
def add_subscription(subscriptions, now):
    async def _add(name="Netflix", **kwargs):
        kwargs.setdefault("price", Decimal("15.99"))
        kwargs.setdefault("billing_cycle", BillingCycle.MONTHLY)
        kwargs.setdefault("last_activity_at", now)
        subscription = Subscription(user_id="user-1", service_name=name, **kwargs)
        await subscriptions.save(subscription)
        return subscription

    return _add


# =================================================================
# RENEWALS
# =================================================================


@pytest.mark.asyncio
async def test_renewal_in_seven_day_window(engine, alerts, add_subscription, now, days):
    subscription = await add_subscription(next_renewal_date=now + days(5))

    assert await engine.generate_renewal_alerts("user-1", now) == 1

    (alert,) = await alerts.list_for_subscription(subscription.id)
    assert alert.alert_type == AlertType.RENEWAL_UPCOMING_7_DAYS
    assert alert.message == "Netflix renews in 5 days. Amount: USD 15.99"
    assert alert.status == AlertStatus.PENDING
    assert alert.scheduled_for == now


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("offset", "message"),
    [
        (0, "Netflix renews TODAY! Amount: USD 15.99"),
        (1, "Netflix renews in 1 day. Amount: USD 15.99"),
        (3, "Netflix renews in 3 days. Amount: USD 15.99"),
    ],
)
async def test_renewal_in_three_day_window(
    engine, alerts, add_subscription, now, days, offset, message
):
    subscription = await add_subscription(next_renewal_date=now + days(offset))

    await engine.generate_renewal_alerts("user-1", now)

    (alert,) = await alerts.list_for_subscription(subscription.id)
    assert alert.alert_type == AlertType.RENEWAL_UPCOMING_3_DAYS
    assert alert.message == message


@pytest.mark.asyncio
@pytest.mark.parametrize("offset", [8, 30, -1])
async def test_renewal_outside_windows(engine, add_subscription, now, days, offset):
    await add_subscription(next_renewal_date=now + days(offset))

    assert await engine.generate_renewal_alerts("user-1", now) == 0


@pytest.mark.asyncio
async def test_renewal_skips_non_active(engine, add_subscription, now, days):
    await add_subscription(
        next_renewal_date=now + days(2), status=SubscriptionStatus.PENDING_REVIEW
    )
    await add_subscription(
        "Hulu", next_renewal_date=now + days(2), status=SubscriptionStatus.CANCELLED
    )

    assert await engine.generate_renewal_alerts("user-1", now) == 0


@pytest.mark.asyncio
async def test_renewal_warns_once_per_window(engine, alerts, add_subscription, now, days):
    subscription = await add_subscription(next_renewal_date=now + days(6))

    assert await engine.generate_renewal_alerts("user-1", now) == 1
    assert await engine.generate_renewal_alerts("user-1", now) == 0

    (early,) = await alerts.list_for_subscription(subscription.id)
    await engine.record_delivery_success(early.id, now)
    assert await engine.generate_renewal_alerts("user-1", now + days(1)) == 0

    # same renewal date, now 2 days out
    assert await engine.generate_renewal_alerts("user-1", now + days(4)) == 1
    assert await engine.generate_renewal_alerts("user-1", now + days(4)) == 0

    types = [a.alert_type for a in await alerts.list_for_subscription(subscription.id)]
    assert types == [AlertType.RENEWAL_UPCOMING_7_DAYS, AlertType.RENEWAL_UPCOMING_3_DAYS]


@pytest.mark.asyncio
async def test_late_window_alert_not_repeated_after_delivery(
    engine, alerts, add_subscription, now, days
):
    subscription = await add_subscription(next_renewal_date=now + days(3))
    await engine.generate_renewal_alerts("user-1", now)
    (alert,) = await alerts.list_for_subscription(subscription.id)
    await engine.record_delivery_success(alert.id, now)

    assert await engine.generate_renewal_alerts("user-1", now + days(2)) == 0


@pytest.mark.asyncio
async def test_next_renewal_date_gets_its_own_alert(engine, alerts, add_subscription, now, days):
    subscription = await add_subscription(next_renewal_date=now + days(2))
    await engine.generate_renewal_alerts("user-1", now)
    (alert,) = await alerts.list_for_subscription(subscription.id)
    await engine.record_delivery_success(alert.id, now)

    subscription.next_renewal_date = now + days(33)
    assert await engine.generate_renewal_alerts("user-1", now + days(30)) == 1


# =================================================================
# PRICE INCREASES
# =================================================================


@pytest.mark.asyncio
async def test_price_increase_alert(engine, alerts, add_subscription, now, days):
    subscription = await add_subscription(price=Decimal("17.99"))
    subscription.record(
        HistoryChangeType.PRICE_CHANGE, "15.99 USD", "17.99 USD", at=now - days(1)
    )

    assert await engine.generate_price_increase_alerts("user-1", now) == 1
    assert await engine.generate_price_increase_alerts("user-1", now) == 0

    (alert,) = await alerts.list_for_subscription(subscription.id)
    assert alert.alert_type == AlertType.PRICE_INCREASE
    assert alert.message == "Price increased for Netflix: USD 15.99 → USD 17.99 (+12.5%)"
    assert alert.dedup_key == subscription.history[-1].id


@pytest.mark.asyncio
async def test_price_decrease_is_ignored(engine, add_subscription, now, days):
    subscription = await add_subscription(price=Decimal("12.99"))
    subscription.record(HistoryChangeType.PRICE_CHANGE, "15.99 USD", "12.99 USD", at=now)

    assert await engine.generate_price_increase_alerts("user-1", now) == 0


@pytest.mark.asyncio
async def test_price_increase_outside_window_is_ignored(engine, add_subscription, now, days):
    subscription = await add_subscription(price=Decimal("17.99"))
    subscription.record(
        HistoryChangeType.PRICE_CHANGE, "15.99 USD", "17.99 USD", at=now - days(8)
    )

    assert await engine.generate_price_increase_alerts("user-1", now) == 0


@pytest.mark.asyncio
async def test_same_increase_not_alerted_twice_after_delivery(
    engine, alerts, add_subscription, now, days
):
    subscription = await add_subscription(price=Decimal("17.99"))
    subscription.record(HistoryChangeType.PRICE_CHANGE, "15.99 USD", "17.99 USD", at=now)
    await engine.generate_price_increase_alerts("user-1", now)
    (alert,) = await alerts.list_for_subscription(subscription.id)
    await engine.record_delivery_success(alert.id, now)

    assert await engine.generate_price_increase_alerts("user-1", now + days(1)) == 0


@pytest.mark.asyncio
async def test_dismissed_price_alert_blocks_a_new_increase(
    engine, alerts, add_subscription, now, days
):
    subscription = await add_subscription(price=Decimal("19.99"))
    subscription.record(
        HistoryChangeType.PRICE_CHANGE, "15.99 USD", "17.99 USD", at=now - days(2)
    )
    await engine.generate_price_increase_alerts("user-1", now - days(2))
    (first,) = await alerts.list_for_subscription(subscription.id)
    await engine.dismiss(first.id)

    subscription.record(HistoryChangeType.PRICE_CHANGE, "17.99 USD", "19.99 USD", at=now)

    assert await engine.generate_price_increase_alerts("user-1", now) == 0


@pytest.mark.asyncio
async def test_failed_price_alert_blocks_a_new_increase(engine, alerts, add_subscription, now):
    subscription = await add_subscription(price=Decimal("17.99"))
    subscription.record(HistoryChangeType.PRICE_CHANGE, "15.99 USD", "17.99 USD", at=now)
    await engine.generate_price_increase_alerts("user-1", now)
    (first,) = await alerts.list_for_subscription(subscription.id)
    await engine.record_delivery_failure(first.id, "bad address", permanent=True, now=now)

    subscription.record(HistoryChangeType.PRICE_CHANGE, "17.99 USD", "19.99 USD", at=now)

    assert await engine.generate_price_increase_alerts("user-1", now) == 0


# =================================================================
# TRIALS AND UNUSED
# =================================================================


@pytest.mark.asyncio
async def test_trial_ending_alert(engine, alerts, add_subscription, now, days):
    subscription = await add_subscription(
        "Disney Plus",
        price=Decimal("7.99"),
        status=SubscriptionStatus.TRIAL_ACTIVE,
        next_renewal_date=now + days(2),
    )
    await add_subscription(
        "Hulu", status=SubscriptionStatus.TRIAL_ACTIVE, next_renewal_date=now + days(10)
    )

    assert await engine.generate_trial_ending_alerts("user-1", now) == 1

    (alert,) = await alerts.list_for_subscription(subscription.id)
    assert alert.message == (
        "Trial ending in 2 days for Disney Plus. Full price: USD 7.99/Monthly"
    )


@pytest.mark.asyncio
async def test_unused_alert_and_cooldown(engine, alerts, add_subscription, now, days):
    subscription = await add_subscription(last_activity_at=now - days(221))
    await add_subscription("Spotify", last_activity_at=now - days(30))

    assert await engine.generate_unused_alerts("user-1", now) == 1
    (alert,) = await alerts.list_for_subscription(subscription.id)
    assert alert.message == (
        "Netflix appears unused for 7 months. Potential savings: USD 111.93. "
        "Consider canceling?"
    )

    # unresolved blocks a second one
    assert await engine.generate_unused_alerts("user-1", now + days(1)) == 0

    await engine.dismiss(alert.id)
    assert await engine.generate_unused_alerts("user-1", now + days(10)) == 0
    assert await engine.generate_unused_alerts("user-1", now + days(31)) == 1


# =================================================================
# ORCHESTRATION
# =================================================================


@pytest.mark.asyncio
async def test_generate_all_respects_preferences(engine, alerts, add_subscription, user, now, days):
    user.preferences_blob = AlertPreferences(enable_renewal_alerts=False).to_blob()
    subscription = await add_subscription(
        price=Decimal("17.99"), next_renewal_date=now + days(2)
    )
    subscription.record(HistoryChangeType.PRICE_CHANGE, "15.99 USD", "17.99 USD", at=now)

    result = await engine.generate_all("user-1", now)

    assert result.value.to_dict() == {
        "renewal": 0,
        "price_increase": 1,
        "trial_ending": 0,
        "unused": 0,
        "total": 1,
    }


@pytest.mark.asyncio
async def test_generate_all_unknown_user(engine, now):
    result = await engine.generate_all("ghost", now)

    assert result.error.code == "user.not_found"


@pytest.mark.asyncio
async def test_create_alert_suppresses_unresolved_duplicate(engine, add_subscription):
    subscription = await add_subscription()

    first = await engine.create_alert("user-1", subscription.id, AlertType.PRICE_INCREASE, "a")
    second = await engine.create_alert("user-1", subscription.id, AlertType.PRICE_INCREASE, "b")

    assert not first.no_op
    assert second.no_op
    assert second.value.id == first.value.id


# =================================================================
# USER ACTIONS AND DELIVERY OUTCOMES
# =================================================================


@pytest.mark.asyncio
async def test_snooze_reschedules(engine, alerts, add_subscription, now):
    subscription = await add_subscription()
    created = await engine.create_alert(
        "user-1", subscription.id, AlertType.RENEWAL_UPCOMING_7_DAYS, "x", scheduled_for=now
    )

    result = await engine.snooze(created.value.id, hours=2, now=now)

    assert result.value.status == AlertStatus.SNOOZED
    assert await alerts.list_due(now) == []
    assert [a.id for a in await alerts.list_due(now + timedelta(hours=3))] == [created.value.id]


@pytest.mark.asyncio
async def test_snooze_defaults_and_validation(engine, add_subscription, now):
    subscription = await add_subscription()
    created = await engine.create_alert(
        "user-1", subscription.id, AlertType.TRIAL_ENDING, "x", scheduled_for=now
    )

    invalid = await engine.snooze(created.value.id, hours=0, now=now)
    assert invalid.error.code == "validation.hours"

    snoozed = await engine.snooze(created.value.id, now=now)
    assert snoozed.value.scheduled_for == now + timedelta(hours=24)

    missing = await engine.snooze("nope", now=now)
    assert missing.error.code == "alert.not_found"


@pytest.mark.asyncio
async def test_dismiss(engine, add_subscription, now):
    subscription = await add_subscription()
    created = await engine.create_alert("user-1", subscription.id, AlertType.TRIAL_ENDING, "x")

    dismissed = await engine.dismiss(created.value.id)
    assert dismissed.value.status == AlertStatus.DISMISSED
    assert (await engine.dismiss(created.value.id)).no_op
    assert (await engine.snooze(created.value.id, now=now)).no_op


@pytest.mark.asyncio
async def test_delivery_failure_backoff_then_ceiling(engine, add_subscription, now):
    subscription = await add_subscription()
    created = await engine.create_alert(
        "user-1", subscription.id, AlertType.TRIAL_ENDING, "x", scheduled_for=now
    )
    alert_id = created.value.id

    first = await engine.record_delivery_failure(alert_id, "timeout", now=now)
    assert first.value.status == AlertStatus.PENDING
    assert first.value.retry_count == 1
    assert first.value.scheduled_for == now + timedelta(minutes=10)

    second = await engine.record_delivery_failure(alert_id, "timeout", now=now)
    assert second.value.scheduled_for == now + timedelta(minutes=20)

    third = await engine.record_delivery_failure(alert_id, "timeout", now=now)
    assert third.value.status == AlertStatus.FAILED
    assert third.value.last_error == "timeout"


@pytest.mark.asyncio
async def test_permanent_delivery_failure(engine, add_subscription, now):
    subscription = await add_subscription()
    created = await engine.create_alert("user-1", subscription.id, AlertType.TRIAL_ENDING, "x")

    result = await engine.record_delivery_failure(created.value.id, "bad address", permanent=True)

    assert result.value.status == AlertStatus.FAILED
    assert result.value.retry_count == 1
