"""
Alert dispatcher: delivers due alerts through the notification provider and
records each outcome on the alert via the engine.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime

from app.features.alerts.providers.base import DeliveryError, NotificationProvider
from app.features.alerts.repository.alert_repository import AlertRepository
from app.features.alerts.services.engine import AlertEngine
from app.infrastructure.observability.logging import get_logger
from app.models.domain.alert_domain import Alert, AlertStatus, NotificationMessage
from app.repositories.account_repository import UserRepository

logger = get_logger(__name__)


@dataclass(slots=True)
class DispatchReport:
    attempted: int = 0
    sent: int = 0
    rescheduled: int = 0
    failed: int = 0
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "attempted": self.attempted,
            "sent": self.sent,
            "rescheduled": self.rescheduled,
            "failed": self.failed,
            "errors_count": len(self.errors),
        }


class AlertDispatcher:
    def __init__(
        self,
        engine: AlertEngine,
        alerts: AlertRepository,
        users: UserRepository,
        notifier: NotificationProvider,
        max_concurrent_sends: int = 10,
    ):
        self.engine = engine
        self.alerts = alerts
        self.users = users
        self.notifier = notifier
        self.max_concurrent_sends = max_concurrent_sends

    async def dispatch_due(self, now: datetime | None = None) -> DispatchReport:
        now = now or datetime.now(UTC)
        due = await self.alerts.list_due(now)
        report = DispatchReport(attempted=len(due))
        if not due:
            return report

        semaphore = asyncio.Semaphore(self.max_concurrent_sends)

        async def _deliver_with_semaphore(alert: Alert) -> None:
            async with semaphore:
                await self._deliver(alert, now, report)

        await asyncio.gather(*(_deliver_with_semaphore(a) for a in due), return_exceptions=True)

        logger.info("Alert dispatch completed", **report.to_dict())
        return report

    async def _deliver(self, alert: Alert, now: datetime, report: DispatchReport) -> None:
        try:
            user = await self.users.get(alert.user_id)
            if user is None:
                await self._record_failure(alert, "User not found", True, now, report)
                return

            receipt = await self.notifier.send(
                NotificationMessage(
                    alert_id=alert.id,
                    user_id=alert.user_id,
                    recipient=user.email,
                    alert_type=alert.alert_type,
                    body=alert.message,
                )
            )
            if receipt.success:
                await self.engine.record_delivery_success(alert.id, now)
                report.sent += 1
            else:
                await self._record_failure(
                    alert, f"Delivery rejected: {receipt.status}", False, now, report
                )

        except DeliveryError as e:
            await self._record_failure(alert, str(e), not e.recoverable, now, report)
        except Exception as e:
            logger.error(
                "Unexpected error delivering alert",
                alert_id=alert.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._record_failure(alert, f"{type(e).__name__}: {e}", False, now, report)

    async def _record_failure(
        self, alert: Alert, error: str, permanent: bool, now: datetime, report: DispatchReport
    ) -> None:
        result = await self.engine.record_delivery_failure(alert.id, error, permanent, now)
        report.errors.append({"alert_id": alert.id, "error": error, "permanent": permanent})
        if result.ok and result.value.status == AlertStatus.FAILED:
            report.failed += 1
        else:
            report.rescheduled += 1
