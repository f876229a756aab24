# app/models/domain/email_domain.py
"""
Email Domain Models
Connected mailboxes, fetched messages and the per-message processing ledger.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import uuid4


class EmailProvider(str, Enum):
    GMAIL = "gmail"
    OUTLOOK = "outlook"


class EmailProcessingStatus(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# States a message may be re-offered for scheduling from
UNPROCESSED_STATUSES = frozenset(
    {EmailProcessingStatus.PENDING, EmailProcessingStatus.QUEUED, EmailProcessingStatus.FAILED}
)


class ProcessingPriority(int, Enum):
    """Lane order: lower value drains first."""

    HIGH = 0
    NORMAL = 1
    LOW = 2


@dataclass(frozen=True, slots=True)
class GmailHistoryCursor:
    history_id: str

    provider = EmailProvider.GMAIL


@dataclass(frozen=True, slots=True)
class OutlookDeltaCursor:
    delta_token: str

    provider = EmailProvider.OUTLOOK


SyncCursor = GmailHistoryCursor | OutlookDeltaCursor


@dataclass(slots=True)
class EmailAccount:
    """A connected mailbox. Tokens are stored encrypted."""

    user_id: str
    email_address: str
    provider: EmailProvider
    encrypted_access_token: bytes
    id: str = field(default_factory=lambda: str(uuid4()))
    last_scan_at: datetime | None = None
    sync_cursor: SyncCursor | None = None
    is_active: bool = True

    def usable_cursor(self) -> SyncCursor | None:
        """The stored cursor, if it belongs to this account's provider."""
        if self.sync_cursor is None or self.sync_cursor.provider != self.provider:
            return None
        return self.sync_cursor


@dataclass(slots=True)
class EmailMessage:
    """A message as returned by the mail provider gateway."""

    message_id: str
    sender: str
    subject: str
    received_at: datetime
    body: str = ""

    @property
    def sender_domain(self) -> str:
        address = self.sender.rsplit("<", 1)[-1].rstrip(">").strip()
        return address.rsplit("@", 1)[-1].lower() if "@" in address else ""


@dataclass(slots=True)
class EmailMetadata:
    """Ledger entry: one per external message per account."""

    email_account_id: str
    external_message_id: str
    sender: str
    subject: str
    received_at: datetime
    id: str = field(default_factory=lambda: str(uuid4()))
    status: EmailProcessingStatus = EmailProcessingStatus.PENDING
    processed_at: datetime | None = None
    subscription_id: str | None = None
    body: str = ""
    error: str | None = None

    @property
    def is_unprocessed(self) -> bool:
        return self.status in UNPROCESSED_STATUSES

    def to_message(self) -> EmailMessage:
        return EmailMessage(
            message_id=self.external_message_id,
            sender=self.sender,
            subject=self.subject,
            received_at=self.received_at,
            body=self.body,
        )


@dataclass(slots=True)
class QueuedEmail:
    """Work item handed from the scheduler to the processor."""

    metadata_id: str
    email_account_id: str
    user_id: str
    priority: ProcessingPriority
    enqueued_at: datetime
