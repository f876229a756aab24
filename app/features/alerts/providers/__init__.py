from .base import (
    DeliveryError,
    LoggingNotificationProvider,
    NotificationProvider,
    PermanentDeliveryError,
    TransientDeliveryError,
    classify_status_code,
)

__all__ = [
    "DeliveryError",
    "LoggingNotificationProvider",
    "NotificationProvider",
    "PermanentDeliveryError",
    "TransientDeliveryError",
    "classify_status_code",
]
