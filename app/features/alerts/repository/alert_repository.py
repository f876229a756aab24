"""Storage for alerts."""

import asyncio
from datetime import datetime
from typing import Protocol

from app.models.domain.alert_domain import Alert, AlertStatus, AlertType


class AlertRepository(Protocol):
    async def get(self, alert_id: str) -> Alert | None: ...

    async def add(self, alert: Alert) -> None: ...

    async def save(self, alert: Alert) -> None: ...

    async def list_for_user(self, user_id: str) -> list[Alert]: ...

    async def list_for_subscription(
        self, subscription_id: str, alert_type: AlertType | None = None
    ) -> list[Alert]: ...

    async def list_due(self, now: datetime) -> list[Alert]: ...


class InMemoryAlertRepository:
    def __init__(self):
        self._alerts: dict[str, Alert] = {}
        self._lock = asyncio.Lock()

    async def get(self, alert_id: str) -> Alert | None:
        return self._alerts.get(alert_id)

    async def add(self, alert: Alert) -> None:
        async with self._lock:
            self._alerts[alert.id] = alert

    async def save(self, alert: Alert) -> None:
        async with self._lock:
            self._alerts[alert.id] = alert

    async def list_for_user(self, user_id: str) -> list[Alert]:
        return [a for a in self._alerts.values() if a.user_id == user_id]

    async def list_for_subscription(
        self, subscription_id: str, alert_type: AlertType | None = None
    ) -> list[Alert]:
        return [
            a
            for a in self._alerts.values()
            if a.subscription_id == subscription_id
            and (alert_type is None or a.alert_type == alert_type)
        ]

    async def list_due(self, now: datetime) -> list[Alert]:
        """Pending or snoozed alerts whose scheduled time has passed, oldest first."""
        due = [
            a
            for a in self._alerts.values()
            if a.status in (AlertStatus.PENDING, AlertStatus.SNOOZED) and a.scheduled_for <= now
        ]
        return sorted(due, key=lambda a: a.scheduled_for)
