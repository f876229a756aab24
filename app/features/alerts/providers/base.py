"""Notification delivery boundary."""

from typing import Protocol

from app.infrastructure.observability.logging import get_logger
from app.models.domain.alert_domain import DeliveryReceipt, NotificationMessage

logger = get_logger(__name__)


class DeliveryError(Exception):
    def __init__(self, message: str, recoverable: bool = True, status_code: int | None = None):
        super().__init__(message)
        self.recoverable = recoverable
        self.status_code = status_code


class TransientDeliveryError(DeliveryError):
    """Timeouts, 5xx and rate limiting. Worth retrying."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, recoverable=True, status_code=status_code)


class PermanentDeliveryError(DeliveryError):
    """4xx other than rate limiting. Retrying will not help."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, recoverable=False, status_code=status_code)


def classify_status_code(status_code: int, message: str) -> DeliveryError:
    """Map a transport status code onto the delivery error taxonomy."""
    if status_code == 429 or status_code >= 500:
        return TransientDeliveryError(message, status_code=status_code)
    return PermanentDeliveryError(message, status_code=status_code)


class NotificationProvider(Protocol):
    async def send(self, message: NotificationMessage) -> DeliveryReceipt: ...


class LoggingNotificationProvider:
    """Writes notifications to the structured log instead of a transport."""

    async def send(self, message: NotificationMessage) -> DeliveryReceipt:
        logger.info(
            "Notification delivered to log",
            alert_id=message.alert_id,
            user_id=message.user_id,
            alert_type=message.alert_type.value,
            body=message.body,
        )
        return DeliveryReceipt(message_id=f"log-{message.alert_id}", success=True, status="logged")
