"""
Mailbox scan job: scans every user's connected accounts on a schedule.
"""

import asyncio
import time
from datetime import UTC, datetime

from app.config import settings
from app.features.ingestion.services.scanner import IngestionScanner
from app.infrastructure.observability.logging import get_logger, log_job_metrics
from app.jobs.metrics import JobError, JobMetrics
from app.repositories.account_repository import UserRepository

logger = get_logger(__name__)

JOB_NAME = "email_scan"


class EmailScanJob:
    def __init__(
        self,
        scanner: IngestionScanner,
        users: UserRepository,
        max_concurrent_users: int | None = None,
    ):
        self.scanner = scanner
        self.users = users
        self.max_concurrent_users = max_concurrent_users or settings.JOB_MAX_CONCURRENT_USERS
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.job_metrics = JobMetrics(JOB_NAME)

    async def run_once(self) -> dict:
        if self.is_running:
            logger.warning("Email scan job already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        try:
            self.is_running = True
            self.job_metrics.reset()

            user_ids = await self.users.list_ids()
            semaphore = asyncio.Semaphore(self.max_concurrent_users)
            await asyncio.gather(
                *(self._scan_user_with_semaphore(semaphore, uid) for uid in user_ids),
                return_exceptions=True,
            )

            self.job_metrics.finalize()
            self.last_run_time = datetime.now(UTC)
            metrics = self.job_metrics.to_dict()
            log_job_metrics(JOB_NAME, metrics)
            return metrics

        except Exception as e:
            logger.error("Email scan job failed", error=str(e), error_type=type(e).__name__)
            raise JobError(f"Email scan job failed: {e}", operation="run_once") from e

        finally:
            self.is_running = False

    async def _scan_user_with_semaphore(self, semaphore: asyncio.Semaphore, user_id: str):
        async with semaphore:
            await self._scan_user(user_id)

    async def _scan_user(self, user_id: str):
        start_time = time.time()
        try:
            result = await self.scanner.scan_user(user_id)
        except Exception as e:
            self.job_metrics.record_failure(user_id, f"Unexpected error: {type(e).__name__}: {e}")
            return

        if not result.ok:
            self.job_metrics.record_failure(user_id, result.error.message)
            return

        report = result.value
        self.job_metrics.increment("accounts_scanned", len(report.reports))
        self.job_metrics.increment("accounts_failed", len(report.failed_accounts))
        self.job_metrics.increment("emails_queued", report.queued)
        self.job_metrics.record_success(user_id, (time.time() - start_time) * 1000)

    def get_job_status(self) -> dict:
        return {
            "job_name": JOB_NAME,
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "last_run_metrics": self.job_metrics.to_dict() if self.last_run_time else None,
        }
