import gc
from datetime import UTC, datetime
from decimal import Decimal

import pytest

from app.features.reconciliation.repository.subscription_repository import (
    InMemorySubscriptionRepository,
    InMemoryVendorRepository,
)
from app.features.reconciliation.services.enrichment import VendorEnrichmentQueue
from app.features.reconciliation.services.subscription_ledger import (
    SubscriptionFacts,
    SubscriptionLedger,
)
from app.features.reconciliation.services.vendor_directory import VendorDirectory
from app.models.domain.subscription_domain import (
    BillingCycle,
    HistoryChangeType,
    SubscriptionStatus,
)
from app.models.results import ErrorKind


@pytest.fixture
def repository():
    return InMemorySubscriptionRepository()


@pytest.fixture
def vendors():
    return VendorDirectory(InMemoryVendorRepository(), VendorEnrichmentQueue())


@pytest.fixture
def ledger(repository, vendors):
    return SubscriptionLedger(repository, vendors, match_threshold=0.85, review_threshold=0.8)


def _facts(name="Netflix", price="15.99", **kwargs) -> SubscriptionFacts:
    kwargs.setdefault("billing_cycle", BillingCycle.MONTHLY)
    kwargs.setdefault("confidence", 0.92)
    return SubscriptionFacts(
        user_id=kwargs.pop("user_id", "user-1"),
        service_name=name,
        price=Decimal(price) if price is not None else None,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_create_records_history_and_vendor(ledger, vendors):
    result = await ledger.create_or_update(_facts(source_email_id="email-1"))

    outcome = result.value
    subscription = outcome.subscription
    assert outcome.created is True
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.requires_user_review is False
    assert len(subscription.history) == 1
    created = subscription.history[0]
    assert created.change_type == HistoryChangeType.CREATED
    assert created.new_value == "Service: Netflix, Price: 15.99 USD/Monthly"
    assert created.source_email_id == "email-1"
    assert subscription.vendor_id == (await vendors.match_vendor("netflix")).id


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("confidence", "status", "review"),
    [
        (0.79, SubscriptionStatus.PENDING_REVIEW, True),
        (0.8, SubscriptionStatus.ACTIVE, False),
    ],
)
async def test_review_threshold(ledger, confidence, status, review):
    result = await ledger.create_or_update(_facts(confidence=confidence))

    assert result.value.subscription.status == status
    assert result.value.subscription.requires_user_review is review


@pytest.mark.asyncio
async def test_update_in_place_records_price_change(ledger, repository):
    first = await ledger.create_or_update(_facts())
    second = await ledger.create_or_update(_facts(price="17.99", source_email_id="email-2"))

    assert second.value.created is False
    assert second.value.subscription.id == first.value.subscription.id
    assert second.value.changes == [HistoryChangeType.PRICE_CHANGE]
    assert len(await repository.list_for_user("user-1")) == 1

    change = second.value.subscription.history[-1]
    assert change.old_value == "15.99 USD"
    assert change.new_value == "17.99 USD"
    assert change.source_email_id == "email-2"
    assert second.value.subscription.price == Decimal("17.99")


@pytest.mark.asyncio
async def test_update_records_each_changed_field(ledger):
    await ledger.create_or_update(_facts())
    renewal = datetime(2025, 4, 1, tzinfo=UTC)

    result = await ledger.create_or_update(
        _facts(billing_cycle=BillingCycle.ANNUAL, next_renewal_date=renewal)
    )

    history = result.value.subscription.history
    assert [h.change_type for h in history] == [
        HistoryChangeType.CREATED,
        HistoryChangeType.BILLING_CYCLE_CHANGE,
        HistoryChangeType.RENEWAL_DATE_CHANGE,
    ]
    assert (history[1].old_value, history[1].new_value) == ("Monthly", "Annual")
    assert (history[2].old_value, history[2].new_value) == (None, "2025-04-01")


@pytest.mark.asyncio
async def test_unchanged_facts_add_no_history(ledger):
    await ledger.create_or_update(_facts())
    result = await ledger.create_or_update(_facts())

    assert result.value.changes == []
    assert len(result.value.subscription.history) == 1


@pytest.mark.asyncio
async def test_unknown_cycle_does_not_overwrite(ledger):
    await ledger.create_or_update(_facts())
    result = await ledger.create_or_update(_facts(billing_cycle=BillingCycle.UNKNOWN))

    assert result.value.subscription.billing_cycle == BillingCycle.MONTHLY


@pytest.mark.asyncio
async def test_currency_switch_is_recorded_as_price_change(ledger):
    await ledger.create_or_update(_facts())
    result = await ledger.create_or_update(_facts(currency="EUR"))

    subscription = result.value.subscription
    assert result.value.changes == [HistoryChangeType.PRICE_CHANGE]
    assert subscription.currency == "EUR"
    change = subscription.history[-1]
    assert (change.old_value, change.new_value) == ("15.99 USD", "15.99 EUR")


@pytest.mark.asyncio
async def test_currency_without_price_is_ignored(ledger):
    await ledger.create_or_update(_facts())
    result = await ledger.create_or_update(_facts(price=None, currency="EUR"))

    subscription = result.value.subscription
    assert subscription.currency == "USD"
    assert result.value.changes == []
    assert len(subscription.history) == 1


@pytest.mark.asyncio
async def test_user_locks_are_released(ledger):
    await ledger.create_or_update(_facts())
    await ledger.create_or_update(_facts(user_id="user-2"))
    gc.collect()

    assert len(ledger._user_locks) == 0


@pytest.mark.asyncio
async def test_similar_name_matches_existing(ledger):
    # "netflix" vs "netflixx": 1 - 1/8 = 0.875
    await ledger.create_or_update(_facts("Netflix"))
    result = await ledger.create_or_update(_facts("Netflixx"))

    assert result.value.created is False


@pytest.mark.asyncio
async def test_dissimilar_name_creates_new(ledger, repository):
    # "hulu" vs "hula": 1 - 1/4 = 0.75
    await ledger.create_or_update(_facts("Hulu"))
    result = await ledger.create_or_update(_facts("Hula"))

    assert result.value.created is True
    assert len(await repository.list_for_user("user-1")) == 2


@pytest.mark.asyncio
async def test_first_matching_candidate_wins(ledger):
    # the two records are 0.8 apart; the query is 0.9 from each
    first = await ledger.create_or_update(_facts("Streamflix"))
    second = await ledger.create_or_update(_facts("Strezmflox"))
    assert second.value.created is True

    result = await ledger.create_or_update(_facts("Streamflox", price="20.00"))

    assert result.value.subscription.id == first.value.subscription.id


@pytest.mark.asyncio
async def test_archived_subscriptions_are_not_matched(ledger):
    first = await ledger.create_or_update(_facts(email_account_id="acct-1"))
    await ledger.archive_by_email_account("acct-1")

    result = await ledger.create_or_update(_facts())

    assert result.value.created is True
    assert result.value.subscription.id != first.value.subscription.id


@pytest.mark.asyncio
async def test_users_are_isolated(ledger):
    await ledger.create_or_update(_facts())
    result = await ledger.create_or_update(_facts(user_id="user-2"))

    assert result.value.created is True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("facts", "code"),
    [
        (dict(user_id=""), "validation.user_id"),
        (dict(name=" "), "validation.service_name"),
        (dict(price="-1"), "validation.price"),
    ],
)
async def test_validation(ledger, facts, code):
    result = await ledger.create_or_update(_facts(**facts))

    assert not result.ok
    assert result.error.code == code
    assert result.error.kind == ErrorKind.VALIDATION


@pytest.mark.asyncio
async def test_manual_entry_is_full_confidence(ledger):
    result = await ledger.create_manual(_facts(confidence=0.1, source_email_id="ignored"))

    subscription = result.value.subscription
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.history[0].source_email_id is None


@pytest.mark.asyncio
async def test_manual_entry_leaves_callers_facts_alone(ledger):
    facts = _facts(confidence=0.1, source_email_id="ignored")
    await ledger.create_manual(facts)

    assert facts.confidence == 0.1
    assert facts.source_email_id == "ignored"


@pytest.mark.asyncio
async def test_approve_and_reject(ledger):
    pending = await ledger.create_or_update(_facts("Hulu", confidence=0.5))
    other = await ledger.create_or_update(_facts("Spotify", confidence=0.5))

    approved = await ledger.approve(pending.value.subscription.id)
    rejected = await ledger.reject(other.value.subscription.id)

    assert approved.value.status == SubscriptionStatus.ACTIVE
    assert approved.value.requires_user_review is False
    assert approved.value.history[-1].change_type == HistoryChangeType.APPROVED
    assert rejected.value.status == SubscriptionStatus.ARCHIVED
    assert rejected.value.history[-1].change_type == HistoryChangeType.REJECTED

    again = await ledger.approve(pending.value.subscription.id)
    assert again.error.code == "subscription.invalid_transition"


@pytest.mark.asyncio
async def test_status_changes(ledger):
    created = await ledger.create_or_update(_facts())
    subscription_id = created.value.subscription.id

    cancelled = await ledger.update_status(subscription_id, SubscriptionStatus.CANCELLED)
    assert cancelled.value.cancelled_at is not None
    assert cancelled.value.history[-1].old_value == "Active"
    assert cancelled.value.history[-1].new_value == "Cancelled"

    same = await ledger.update_status(subscription_id, SubscriptionStatus.CANCELLED)
    assert same.no_op

    await ledger.update_status(subscription_id, SubscriptionStatus.ARCHIVED)
    revived = await ledger.update_status(subscription_id, SubscriptionStatus.ACTIVE)
    assert revived.error.code == "subscription.invalid_transition"

    missing = await ledger.update_status("nope", SubscriptionStatus.ACTIVE)
    assert missing.error.kind == ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_archive_by_email_account_only_touches_that_account(ledger, repository):
    await ledger.create_or_update(_facts("Netflix", email_account_id="acct-1"))
    await ledger.create_or_update(_facts("Spotify", email_account_id="acct-2"))

    result = await ledger.archive_by_email_account("acct-1")

    assert result.value == 1
    statuses = {s.service_name: s.status for s in await repository.list_for_user("user-1")}
    assert statuses == {
        "Netflix": SubscriptionStatus.ARCHIVED,
        "Spotify": SubscriptionStatus.ACTIVE,
    }


@pytest.mark.asyncio
async def test_monthly_spending(ledger):
    await ledger.create_or_update(_facts("Netflix", price="15.99", category="Streaming"))
    await ledger.create_or_update(
        _facts("Adobe", price="120.00", billing_cycle=BillingCycle.ANNUAL, category="Software")
    )
    await ledger.create_or_update(
        _facts("Gym", price="10.00", billing_cycle=BillingCycle.WEEKLY, category="Health")
    )
    await ledger.create_or_update(_facts("Hulu", price="7.99", confidence=0.5))

    total = await ledger.monthly_spending("user-1")

    assert total == Decimal("15.99") + Decimal("10") + Decimal("43.30")
    by_category = await ledger.spending_by_category("user-1")
    assert by_category["Software"] == Decimal("10")
    assert "Other" not in by_category


@pytest.mark.asyncio
async def test_upcoming_renewals(ledger):
    now = datetime(2025, 3, 10, tzinfo=UTC)
    await ledger.create_or_update(
        _facts("Netflix", next_renewal_date=datetime(2025, 3, 20, tzinfo=UTC))
    )
    await ledger.create_or_update(
        _facts("Spotify", next_renewal_date=datetime(2025, 3, 12, tzinfo=UTC))
    )
    await ledger.create_or_update(
        _facts("Adobe", next_renewal_date=datetime(2025, 6, 1, tzinfo=UTC))
    )

    due = await ledger.upcoming_renewals("user-1", days_ahead=30, now=now)

    assert [s.service_name for s in due] == ["Spotify", "Netflix"]
