"""
Ingestion scanner.

Per account: decrypt credentials, pick incremental or full fetch, pull message
details in rate-limited batches, register them with the metadata ledger and
schedule whatever still needs processing. A user's accounts are scanned
concurrently and one account's failure never reaches its siblings.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime

from dateutil.relativedelta import relativedelta

from app.config import settings
from app.features.ingestion.domain.gateway import (
    CursorInvalidError,
    MessageFilter,
    MessageGateway,
    MessageListing,
)
from app.features.ingestion.services.ledger import MetadataLedger
from app.features.ingestion.services.scheduler import PriorityScheduler
from app.infrastructure.observability.logging import get_logger
from app.infrastructure.security.credential_store import CredentialError, CredentialStore
from app.models.domain.email_domain import EmailAccount, EmailMessage, EmailMetadata
from app.models.results import AccountErrors, OperationResult
from app.repositories.account_repository import EmailAccountRepository

logger = get_logger(__name__)

SCAN_MODE_FULL = "full"
SCAN_MODE_INCREMENTAL = "incremental"


@dataclass(slots=True)
class ScanReport:
    email_account_id: str
    mode: str = SCAN_MODE_FULL
    listed: int = 0
    fetched: int = 0
    matched: int = 0
    created: int = 0
    resurfaced: int = 0
    queued: int = 0
    fetch_failures: int = 0
    cursor_reset: bool = False
    duration_ms: float = 0.0


@dataclass(slots=True)
class UserScanReport:
    user_id: str
    reports: list[ScanReport] = field(default_factory=list)
    failed_accounts: dict[str, str] = field(default_factory=dict)

    @property
    def queued(self) -> int:
        return sum(r.queued for r in self.reports)


class IngestionScanner:
    def __init__(
        self,
        accounts: EmailAccountRepository,
        gateway: MessageGateway,
        credentials: CredentialStore,
        ledger: MetadataLedger,
        scheduler: PriorityScheduler,
        lookback_months: int | None = None,
        max_messages: int | None = None,
        subject_keywords: list[str] | None = None,
        sender_domains: list[str] | None = None,
        max_concurrent_accounts: int | None = None,
        batch_size: int | None = None,
        batch_delay_seconds: float | None = None,
    ):
        self.accounts = accounts
        self.gateway = gateway
        self.credentials = credentials
        self.ledger = ledger
        self.scheduler = scheduler
        self.lookback_months = lookback_months or settings.SCAN_LOOKBACK_MONTHS
        self.max_messages = max_messages or settings.SCAN_MAX_MESSAGES
        self.subject_keywords = (
            subject_keywords if subject_keywords is not None else settings.SCAN_SUBJECT_KEYWORDS
        )
        self.sender_domains = (
            sender_domains if sender_domains is not None else settings.SCAN_SENDER_DOMAINS
        )
        self.max_concurrent_accounts = (
            max_concurrent_accounts or settings.SCAN_MAX_CONCURRENT_ACCOUNTS
        )
        self.batch_size = batch_size or settings.SCAN_DETAIL_BATCH_SIZE
        self.batch_delay_seconds = (
            batch_delay_seconds
            if batch_delay_seconds is not None
            else settings.SCAN_BATCH_DELAY_SECONDS
        )

    def build_filter(
        self, since: datetime | None = None, now: datetime | None = None
    ) -> MessageFilter:
        now = now or datetime.now(UTC)
        return MessageFilter(
            since=since or now - relativedelta(months=self.lookback_months),
            sender_domains=list(self.sender_domains),
            subject_keywords=list(self.subject_keywords),
            max_results=self.max_messages,
        )

    async def scan_user(self, user_id: str) -> OperationResult[UserScanReport]:
        """Scan every active account of a user concurrently."""
        accounts = await self.accounts.list_for_user(user_id, active_only=True)
        report = UserScanReport(user_id=user_id)
        if not accounts:
            logger.info("No active email accounts to scan", user_id=user_id)
            return OperationResult.success(report)

        semaphore = asyncio.Semaphore(self.max_concurrent_accounts)

        async def _scan_with_semaphore(account: EmailAccount) -> OperationResult[ScanReport]:
            async with semaphore:
                return await self.scan_account(account)

        outcomes = await asyncio.gather(
            *(_scan_with_semaphore(account) for account in accounts), return_exceptions=True
        )

        for account, outcome in zip(accounts, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.error(
                    "Account scan crashed",
                    user_id=user_id,
                    email_account_id=account.id,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
                report.failed_accounts[account.id] = f"{type(outcome).__name__}: {outcome}"
            elif not outcome.ok:
                report.failed_accounts[account.id] = outcome.error.message
            else:
                report.reports.append(outcome.value)

        logger.info(
            "User scan completed",
            user_id=user_id,
            accounts=len(accounts),
            failed_accounts=len(report.failed_accounts),
            queued=report.queued,
        )
        return OperationResult.success(report)

    async def scan_account_by_id(
        self, email_account_id: str, since: datetime | None = None
    ) -> OperationResult[ScanReport]:
        account = await self.accounts.get(email_account_id)
        if account is None:
            return OperationResult.failure(AccountErrors.NOT_FOUND)
        return await self.scan_account(account, since)

    async def scan_account(
        self, account: EmailAccount, since: datetime | None = None
    ) -> OperationResult[ScanReport]:
        if not account.is_active:
            return OperationResult.failure(AccountErrors.INACTIVE)

        start_time = time.time()
        now = datetime.now(UTC)
        report = ScanReport(email_account_id=account.id)

        try:
            access_token = self.credentials.decrypt(account.encrypted_access_token)
        except CredentialError as e:
            logger.error(
                "Cannot decrypt account credentials", email_account_id=account.id, error=str(e)
            )
            return OperationResult.failure(AccountErrors.CREDENTIALS)

        message_filter = self.build_filter(since, now)

        try:
            listing = await self._list_messages(account, access_token, message_filter, report)
            message_ids = listing.message_ids[: self.max_messages]
            report.listed = len(message_ids)

            messages = await self._fetch_details(account, access_token, message_ids, report)
            matched = [m for m in messages if message_filter.matches(m)]
            report.matched = len(matched)

            if matched:
                registered = await self.ledger.register_messages(account.id, matched)
                if not registered.ok:
                    return OperationResult.failure(registered.error)
                report.created = len(registered.value.created)
                report.resurfaced = len(registered.value.resurfaced)
                report.queued = await self._schedule(account, registered.value.to_schedule, now)

            if listing.cursor is not None:
                account.sync_cursor = listing.cursor
            account.last_scan_at = now
            await self.accounts.save(account)

        except Exception as e:
            logger.error(
                "Mailbox scan failed",
                email_account_id=account.id,
                user_id=account.user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return OperationResult.failure(AccountErrors.SCAN_FAILED.with_detail(str(e)))

        report.duration_ms = round((time.time() - start_time) * 1000, 2)
        logger.info(
            "Mailbox scan completed",
            email_account_id=account.id,
            user_id=account.user_id,
            mode=report.mode,
            listed=report.listed,
            matched=report.matched,
            created=report.created,
            resurfaced=report.resurfaced,
            queued=report.queued,
            fetch_failures=report.fetch_failures,
            duration_ms=report.duration_ms,
        )
        return OperationResult.success(report)

    async def _list_messages(
        self,
        account: EmailAccount,
        access_token: str,
        message_filter: MessageFilter,
        report: ScanReport,
    ) -> MessageListing:
        """Incremental listing when possible, falling back to a full scan on a stale cursor."""
        if account.last_scan_at is not None and account.usable_cursor() is not None:
            try:
                listing = await self.gateway.list_messages_since_cursor(
                    account, access_token, message_filter
                )
                report.mode = SCAN_MODE_INCREMENTAL
                return listing
            except CursorInvalidError:
                logger.warning(
                    "Sync cursor invalid, falling back to full scan", email_account_id=account.id
                )
                account.sync_cursor = None
                await self.accounts.save(account)
                report.cursor_reset = True

        report.mode = SCAN_MODE_FULL
        return await self.gateway.list_messages(account, access_token, message_filter)

    async def _fetch_details(
        self, account: EmailAccount, access_token: str, message_ids: list[str], report: ScanReport
    ) -> list[EmailMessage]:
        batches = [
            message_ids[i : i + self.batch_size] for i in range(0, len(message_ids), self.batch_size)
        ]
        messages: list[EmailMessage] = []

        for batch_num, batch in enumerate(batches, 1):
            results = await asyncio.gather(
                *(self.gateway.get_message(account, access_token, mid) for mid in batch),
                return_exceptions=True,
            )
            for message_id, result in zip(batch, results):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                if isinstance(result, BaseException):
                    report.fetch_failures += 1
                    logger.warning(
                        "Failed to fetch message details",
                        email_account_id=account.id,
                        message_id=message_id,
                        error=str(result),
                    )
                else:
                    messages.append(result)

            # Short pause between batches to stay under provider rate limits
            if batch_num < len(batches):
                await asyncio.sleep(self.batch_delay_seconds)

        report.fetched = len(messages)
        return messages

    async def _schedule(
        self, account: EmailAccount, entries: list[EmailMetadata], now: datetime
    ) -> int:
        queued = 0
        for entry in entries:
            marked = await self.ledger.mark_queued(entry.id)
            if not marked.ok or marked.no_op:
                continue
            if await self.scheduler.enqueue_metadata(entry, account.user_id, now) is not None:
                queued += 1
        return queued
