"""
Alert jobs: periodic generation for every user, and delivery of due alerts.
"""

import asyncio
from datetime import UTC, datetime

from app.config import settings
from app.features.alerts.services.dispatcher import AlertDispatcher
from app.features.alerts.services.engine import AlertEngine
from app.infrastructure.observability.logging import get_logger, log_job_metrics
from app.jobs.metrics import JobError, JobMetrics
from app.repositories.account_repository import UserRepository

logger = get_logger(__name__)


class AlertGenerationJob:
    """Runs every alert rule for every user. One user's failure is recorded and skipped."""

    job_name = "alert_generation"

    def __init__(
        self, engine: AlertEngine, users: UserRepository, max_concurrent_users: int | None = None
    ):
        self.engine = engine
        self.users = users
        self.max_concurrent_users = max_concurrent_users or settings.JOB_MAX_CONCURRENT_USERS
        self.job_metrics = JobMetrics(self.job_name)
        self.last_run_time: datetime | None = None

    async def run_once(self, now: datetime | None = None) -> dict:
        self.job_metrics.reset()
        now = now or datetime.now(UTC)
        try:
            user_ids = await self.users.list_ids()
        except Exception as e:
            raise JobError(f"Failed to list users: {e}", operation="list_users") from e

        semaphore = asyncio.Semaphore(self.max_concurrent_users)

        async def _generate(user_id: str) -> None:
            async with semaphore:
                try:
                    result = await self.engine.generate_all(user_id, now)
                except Exception as e:
                    self.job_metrics.record_failure(user_id, f"{type(e).__name__}: {e}")
                    return
                if not result.ok:
                    self.job_metrics.record_failure(user_id, result.error.message)
                    return
                self.job_metrics.increment("alerts_created", result.value.total)
                self.job_metrics.record_success(user_id)

        await asyncio.gather(*(_generate(uid) for uid in user_ids), return_exceptions=True)

        self.job_metrics.finalize()
        self.last_run_time = datetime.now(UTC)
        metrics = self.job_metrics.to_dict()
        log_job_metrics(self.job_name, metrics)
        return metrics


class AlertDeliveryJob:
    job_name = "alert_delivery"

    def __init__(self, dispatcher: AlertDispatcher):
        self.dispatcher = dispatcher
        self.last_run_time: datetime | None = None

    async def run_once(self, now: datetime | None = None) -> dict:
        report = await self.dispatcher.dispatch_due(now)
        self.last_run_time = datetime.now(UTC)
        metrics = {"job_run": self.job_name, **report.to_dict()}
        log_job_metrics(self.job_name, metrics)
        return metrics
