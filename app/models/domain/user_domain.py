import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class AlertPreferences(BaseModel):
    """Typed per-user alert settings, persisted as an opaque blob."""

    model_config = ConfigDict(extra="ignore")

    enable_renewal_alerts: bool = True
    enable_price_change_alerts: bool = True
    enable_trial_ending_alerts: bool = True
    enable_unused_subscription_alerts: bool = True
    use_daily_digest: bool = False
    timezone: str = "UTC"
    preferred_currency: str = "USD"

    @classmethod
    def from_blob(cls, blob: str | bytes | dict[str, Any] | None) -> "AlertPreferences":
        """Parse a stored blob, falling back to defaults if it is unreadable."""
        if not blob:
            return cls()
        try:
            if isinstance(blob, dict):
                return cls.model_validate(blob)
            return cls.model_validate_json(blob)
        except (ValidationError, ValueError, TypeError) as e:
            logger.warning("Unreadable alert preferences, using defaults", error=str(e))
            return cls()

    def to_blob(self) -> str:
        return json.dumps(self.model_dump())


class User(BaseModel):
    """A user who owns mailboxes and subscriptions."""

    id: str
    email: str
    name: str | None = None
    preferences_blob: str | None = None
    created_at: datetime | None = None

    @property
    def preferences(self) -> AlertPreferences:
        return AlertPreferences.from_blob(self.preferences_blob)
