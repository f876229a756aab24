"""
Storage for email metadata ledger entries.

Keyed by (email_account_id, external_message_id). ``add_many_if_absent`` and
``transition`` are the only writes that must be atomic; the in-memory version
serializes them behind one lock per repository.
"""

import asyncio
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Protocol

from app.models.domain.email_domain import EmailMetadata, EmailProcessingStatus


class EmailMetadataRepository(Protocol):
    async def get(self, metadata_id: str) -> EmailMetadata | None: ...

    async def get_by_external_ids(
        self, email_account_id: str, external_ids: Iterable[str]
    ) -> dict[str, EmailMetadata]: ...

    async def add_many_if_absent(self, entries: list[EmailMetadata]) -> list[EmailMetadata]: ...

    async def transition(
        self,
        metadata_id: str,
        allowed_from: Iterable[EmailProcessingStatus],
        to_status: EmailProcessingStatus,
        subscription_id: str | None = None,
        error: str | None = None,
    ) -> EmailMetadata | None: ...

    async def list_by_status(self, status: EmailProcessingStatus) -> list[EmailMetadata]: ...


class InMemoryEmailMetadataRepository:
    def __init__(self):
        self._by_id: dict[str, EmailMetadata] = {}
        self._by_key: dict[tuple[str, str], str] = {}
        self._lock = asyncio.Lock()

    async def get(self, metadata_id: str) -> EmailMetadata | None:
        return self._by_id.get(metadata_id)

    async def get_by_external_ids(
        self, email_account_id: str, external_ids: Iterable[str]
    ) -> dict[str, EmailMetadata]:
        found = {}
        for external_id in external_ids:
            metadata_id = self._by_key.get((email_account_id, external_id))
            if metadata_id is not None:
                found[external_id] = self._by_id[metadata_id]
        return found

    async def add_many_if_absent(self, entries: list[EmailMetadata]) -> list[EmailMetadata]:
        """Insert entries whose key is unseen; return only those inserted."""
        inserted = []
        async with self._lock:
            for entry in entries:
                key = (entry.email_account_id, entry.external_message_id)
                if key in self._by_key:
                    continue
                self._by_key[key] = entry.id
                self._by_id[entry.id] = entry
                inserted.append(entry)
        return inserted

    async def transition(
        self,
        metadata_id: str,
        allowed_from: Iterable[EmailProcessingStatus],
        to_status: EmailProcessingStatus,
        subscription_id: str | None = None,
        error: str | None = None,
    ) -> EmailMetadata | None:
        """Compare-and-set the status. Returns None if the entry was not in ``allowed_from``."""
        async with self._lock:
            entry = self._by_id.get(metadata_id)
            if entry is None or entry.status not in set(allowed_from):
                return None
            entry.status = to_status
            entry.error = error
            if to_status in (EmailProcessingStatus.COMPLETED, EmailProcessingStatus.FAILED):
                entry.processed_at = datetime.now(UTC)
            if subscription_id is not None:
                entry.subscription_id = subscription_id
            return entry

    async def list_by_status(self, status: EmailProcessingStatus) -> list[EmailMetadata]:
        return [e for e in self._by_id.values() if e.status == status]
