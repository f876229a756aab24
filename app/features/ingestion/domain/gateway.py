"""
Mail provider boundary.

The gateway owns transport, paging and MIME decoding. The scanner only sees
message ids, an optional new sync cursor and fully decoded ``EmailMessage``s.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from app.models.domain.email_domain import EmailAccount, EmailMessage, SyncCursor


class GatewayError(Exception):
    """Raised by a gateway for provider failures."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.recoverable = recoverable


class CursorInvalidError(GatewayError):
    """The incremental sync cursor expired or was never valid (provider 404)."""

    def __init__(self, message: str = "Sync cursor is no longer valid"):
        super().__init__(message, recoverable=True)


@dataclass(slots=True)
class MessageFilter:
    since: datetime | None = None
    before: datetime | None = None
    sender_domains: list[str] = field(default_factory=list)
    subject_keywords: list[str] = field(default_factory=list)
    max_results: int = 500

    def matches(self, message: EmailMessage) -> bool:
        """Client-side re-check; providers may only partially honour the filter."""
        if self.since and message.received_at < self.since:
            return False
        if self.before and message.received_at >= self.before:
            return False
        if not self.sender_domains and not self.subject_keywords:
            return True

        domain = message.sender_domain
        if any(domain == d.lower() or domain.endswith("." + d.lower()) for d in self.sender_domains):
            return True
        subject = message.subject.lower()
        return any(keyword.lower() in subject for keyword in self.subject_keywords)


@dataclass(slots=True)
class MessageListing:
    message_ids: list[str]
    cursor: SyncCursor | None = None


class MessageGateway(Protocol):
    async def list_messages(
        self, account: EmailAccount, access_token: str, message_filter: MessageFilter
    ) -> MessageListing: ...

    async def list_messages_since_cursor(
        self, account: EmailAccount, access_token: str, message_filter: MessageFilter
    ) -> MessageListing:
        """Raises CursorInvalidError when the account's cursor is stale."""
        ...

    async def get_message(
        self, account: EmailAccount, access_token: str, message_id: str
    ) -> EmailMessage: ...
