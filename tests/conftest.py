from datetime import UTC, datetime, timedelta

import pytest

from app.bootstrap import build_pipeline
from app.features.alerts.providers.base import DeliveryError
from app.features.ingestion.domain.gateway import CursorInvalidError, GatewayError, MessageListing
from app.infrastructure.security.credential_store import CredentialStore
from app.models.domain.alert_domain import DeliveryReceipt, NotificationMessage
from app.models.domain.email_domain import EmailAccount, EmailMessage, EmailProvider
from app.models.domain.user_domain import User
from app.repositories.account_repository import (
    InMemoryEmailAccountRepository,
    InMemoryUserRepository,
)

NETFLIX_EXTRACTION = {
    "serviceName": "Netflix",
    "price": 15.99,
    "currency": "USD",
    "billingCycle": "Monthly",
    "category": "Streaming",
    "confidence": 0.92,
}


class FakeGateway:
    def __init__(self):
        self.messages: dict[str, EmailMessage] = {}
        self.incremental_ids: list[str] | None = None
        self.next_cursor = None
        self.cursor_invalid = False
        self.failing_message_ids: set[str] = set()
        self.failing_account_ids: set[str] = set()
        self.calls: list[str] = []
        self.tokens_seen: list[str] = []

    def add(self, message: EmailMessage) -> EmailMessage:
        self.messages[message.message_id] = message
        return message

    async def list_messages(self, account, access_token, message_filter):
        self.calls.append("full")
        self.tokens_seen.append(access_token)
        if account.id in self.failing_account_ids:
            raise GatewayError("provider exploded")
        return MessageListing(list(self.messages)[: message_filter.max_results], self.next_cursor)

    async def list_messages_since_cursor(self, account, access_token, message_filter):
        self.calls.append("incremental")
        self.tokens_seen.append(access_token)
        if self.cursor_invalid:
            raise CursorInvalidError()
        ids = self.incremental_ids if self.incremental_ids is not None else list(self.messages)
        return MessageListing(ids, self.next_cursor)

    async def get_message(self, account, access_token, message_id):
        if message_id in self.failing_message_ids:
            raise GatewayError(f"cannot fetch {message_id}")
        return self.messages[message_id]


class FakeProvider:
    def __init__(self, classification: dict | None = None, extraction: dict | None = None):
        self.classification = classification or {
            "isSubscriptionRelated": True,
            "confidence": 0.9,
            "emailType": "Renewal",
        }
        self.extraction = extraction or dict(NETFLIX_EXTRACTION)
        self.classify_errors: list[Exception] = []
        self.extract_errors: list[Exception] = []
        self.classify_calls: list[str] = []
        self.extract_calls: list[str] = []

    async def classify(self, text: str) -> dict:
        self.classify_calls.append(text)
        if self.classify_errors:
            raise self.classify_errors.pop(0)
        return dict(self.classification)

    async def extract(self, text: str) -> dict:
        self.extract_calls.append(text)
        if self.extract_errors:
            raise self.extract_errors.pop(0)
        return dict(self.extraction)


class FakeNotifier:
    def __init__(self):
        self.sent: list[NotificationMessage] = []
        self.outcomes: list[DeliveryError | DeliveryReceipt] = []

    async def send(self, message: NotificationMessage) -> DeliveryReceipt:
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        self.sent.append(message)
        return DeliveryReceipt(message_id=f"msg-{len(self.sent)}", success=True, status="sent")


def _make_message(message_id: str, subject: str, received_at: datetime | None = None, **kwargs):
    return EmailMessage(
        message_id=message_id,
        sender=kwargs.pop("sender", "Netflix <info@mailer.netflix.com>"),
        subject=subject,
        received_at=received_at or datetime.now(UTC),
        body=kwargs.pop("body", "Your membership renews soon."),
    )


@pytest.fixture
def make_message():
    return _make_message


@pytest.fixture
def credential_store():
    return CredentialStore(CredentialStore.generate_key())


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def fake_notifier():
    return FakeNotifier()


@pytest.fixture
def user():
    return User(id="user-1", email="user@example.com", name="Sam")


@pytest.fixture
def account(credential_store, user):
    return EmailAccount(
        id="acct-1",
        user_id=user.id,
        email_address=user.email,
        provider=EmailProvider.GMAIL,
        encrypted_access_token=credential_store.encrypt("access-token-1"),
    )


@pytest.fixture
def pipeline(fake_gateway, fake_provider, fake_notifier, credential_store, user, account):
    return build_pipeline(
        gateway=fake_gateway,
        provider=fake_provider,
        notifier=fake_notifier,
        credentials=credential_store,
        accounts=InMemoryEmailAccountRepository([account]),
        users=InMemoryUserRepository([user]),
    )


@pytest.fixture
def now():
    return datetime(2025, 3, 10, 12, 0, tzinfo=UTC)


@pytest.fixture
def days():
    return lambda n: timedelta(days=n)
