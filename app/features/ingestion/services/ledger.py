"""
Metadata ledger: one tracking entry per external message per account.

Registration is batched: a single existing-ids lookup per call, then an
atomic insert of the unseen ids. Entries left unprocessed by an earlier run
are handed back so they are rescheduled rather than dropped.
"""

from dataclasses import dataclass, field

from app.features.ingestion.repository.metadata_repository import EmailMetadataRepository
from app.infrastructure.observability.logging import get_logger
from app.models.domain.email_domain import (
    UNPROCESSED_STATUSES,
    EmailMessage,
    EmailMetadata,
    EmailProcessingStatus,
)
from app.models.results import EmailErrors, OperationResult, unexpected

logger = get_logger(__name__)

_S = EmailProcessingStatus


@dataclass(slots=True)
class RegistrationResult:
    created: list[EmailMetadata] = field(default_factory=list)
    resurfaced: list[EmailMetadata] = field(default_factory=list)

    @property
    def to_schedule(self) -> list[EmailMetadata]:
        return self.created + self.resurfaced


class MetadataLedger:
    def __init__(self, repository: EmailMetadataRepository):
        self.repository = repository

    async def register_messages(
        self, email_account_id: str, messages: list[EmailMessage]
    ) -> OperationResult[RegistrationResult]:
        try:
            unique: dict[str, EmailMessage] = {}
            for message in messages:
                unique.setdefault(message.message_id, message)

            existing = await self.repository.get_by_external_ids(email_account_id, unique.keys())
            result = RegistrationResult(
                resurfaced=[m for m in existing.values() if m.is_unprocessed]
            )

            fresh = [
                EmailMetadata(
                    email_account_id=email_account_id,
                    external_message_id=message.message_id,
                    sender=message.sender,
                    subject=message.subject,
                    received_at=message.received_at,
                    body=message.body,
                )
                for external_id, message in unique.items()
                if external_id not in existing
            ]
            if fresh:
                result.created = await self.repository.add_many_if_absent(fresh)

            # A concurrent scan of the same account may have inserted some ids first
            if len(result.created) < len(fresh):
                inserted_ids = {m.external_message_id for m in result.created}
                lost = [
                    m.external_message_id
                    for m in fresh
                    if m.external_message_id not in inserted_ids
                ]
                winners = await self.repository.get_by_external_ids(email_account_id, lost)
                result.resurfaced.extend(m for m in winners.values() if m.is_unprocessed)

            logger.info(
                "Registered email metadata",
                email_account_id=email_account_id,
                received=len(messages),
                created=len(result.created),
                resurfaced=len(result.resurfaced),
                skipped=len(unique) - len(result.created) - len(result.resurfaced),
            )
            return OperationResult.success(result)

        except Exception as e:
            logger.error(
                "Failed to register email metadata",
                email_account_id=email_account_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return OperationResult.failure(unexpected("register_messages", e))

    async def get(self, metadata_id: str) -> EmailMetadata | None:
        return await self.repository.get(metadata_id)

    async def mark_queued(self, metadata_id: str) -> OperationResult[EmailMetadata]:
        entry = await self.repository.transition(
            metadata_id, (_S.PENDING, _S.FAILED, _S.QUEUED), _S.QUEUED
        )
        if entry is None:
            return await self._refused(metadata_id)
        return OperationResult.success(entry)

    async def claim_for_processing(self, metadata_id: str) -> OperationResult[EmailMetadata]:
        """Move an unprocessed entry to Processing. Only one claimant wins."""
        entry = await self.repository.transition(metadata_id, UNPROCESSED_STATUSES, _S.PROCESSING)
        if entry is None:
            return await self._refused(metadata_id)
        return OperationResult.success(entry)

    async def mark_completed(
        self, metadata_id: str, subscription_id: str | None = None
    ) -> OperationResult[EmailMetadata]:
        entry = await self.repository.transition(
            metadata_id,
            (_S.PROCESSING, *UNPROCESSED_STATUSES),
            _S.COMPLETED,
            subscription_id=subscription_id,
        )
        if entry is None:
            return await self._refused(metadata_id)
        logger.debug(
            "Email metadata completed", metadata_id=metadata_id, subscription_id=subscription_id
        )
        return OperationResult.success(entry)

    async def mark_failed(self, metadata_id: str, error: str) -> OperationResult[EmailMetadata]:
        entry = await self.repository.transition(
            metadata_id,
            (_S.PROCESSING, *UNPROCESSED_STATUSES),
            _S.FAILED,
            error=(error or "")[:500],
        )
        if entry is None:
            return await self._refused(metadata_id)
        logger.warning("Email metadata marked failed", metadata_id=metadata_id, error=error)
        return OperationResult.success(entry)

    async def _refused(self, metadata_id: str) -> OperationResult[EmailMetadata]:
        """Explain why a transition was refused; duplicates are successful no-ops."""
        entry = await self.repository.get(metadata_id)
        if entry is None:
            return OperationResult.failure(EmailErrors.NOT_FOUND)
        logger.debug(
            "Ignoring duplicate email metadata transition",
            metadata_id=metadata_id,
            status=entry.status.value,
            reason=(
                EmailErrors.ALREADY_PROCESSED.code
                if entry.status == _S.COMPLETED
                else EmailErrors.IN_FLIGHT.code
            ),
        )
        return OperationResult.noop(entry)
