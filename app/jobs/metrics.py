"""
Shared run metrics and scheduling loop for background jobs.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class JobError(Exception):
    """Raised when a job run fails as a whole (not for per-item failures)."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class JobMetrics:
    """Per-run counters. One failing item is recorded, never raised."""

    def __init__(self, job_name: str):
        self.job_name = job_name
        self.reset()

    def reset(self):
        """Reset all metrics for new job run."""
        self.start_time = datetime.now(UTC)
        self.processed = 0
        self.succeeded = 0
        self.failed = 0
        self.total_duration_seconds = 0.0
        self.counters: dict[str, int] = {}
        self.errors: list[dict] = []

    def increment(self, name: str, amount: int = 1):
        self.counters[name] = self.counters.get(name, 0) + amount

    def record_success(self, item_id: str, duration_ms: float | None = None):
        self.processed += 1
        self.succeeded += 1
        logger.debug(
            "Job item succeeded", item_id=item_id, duration_ms=duration_ms, job_run=self.job_name
        )

    def record_failure(self, item_id: str, error: str):
        self.processed += 1
        self.failed += 1
        self.errors.append(
            {"item_id": item_id, "error": error, "timestamp": datetime.now(UTC).isoformat()}
        )
        logger.warning("Job item failed", item_id=item_id, error=error, job_run=self.job_name)

    def finalize(self):
        """Finalize metrics and calculate totals."""
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        """Convert metrics to dictionary for logging."""
        return {
            "job_run": self.job_name,
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "success_rate_percent": round(
                (self.succeeded / self.processed * 100) if self.processed > 0 else 0, 2
            ),
            "errors_count": len(self.errors),
            **self.counters,
        }


async def run_periodically(
    job_name: str,
    run_once: Callable[[], Awaitable[dict]],
    interval_seconds: float,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Call ``run_once`` every ``interval_seconds`` until stopped. A failed run is logged."""
    stop_event = stop_event or asyncio.Event()
    logger.info("Starting job scheduler", job=job_name, interval_seconds=interval_seconds)

    while not stop_event.is_set():
        try:
            await run_once()
        except Exception as e:
            logger.error(
                "Job run failed", job=job_name, error=str(e), error_type=type(e).__name__
            )

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except TimeoutError:
            pass

    logger.info("Job scheduler stopped", job=job_name)
