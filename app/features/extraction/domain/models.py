"""
Domain models for classification and extraction.

Provider payloads are validated with pydantic (camelCase, as the model is
prompted to answer); engine results are plain dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from app.models.domain.subscription_domain import BillingCycle

# Share of the overall confidence contributed by each extracted field
FIELD_WEIGHTS: dict[str, float] = {
    "serviceName": 0.25,
    "price": 0.25,
    "billingCycle": 0.20,
    "nextRenewalDate": 0.15,
    "category": 0.10,
    "currency": 0.05,
}


class ClassificationPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    is_subscription_related: bool = Field(alias="isSubscriptionRelated")
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    email_type: str = Field(default="Other", alias="emailType")
    reason: str | None = None


class ExtractionPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    service_name: str | None = Field(default=None, alias="serviceName")
    price: float | str | None = None
    currency: str | None = None
    billing_cycle: str | None = Field(default=None, alias="billingCycle")
    next_renewal_date: str | None = Field(default=None, alias="nextRenewalDate")
    category: str | None = None
    cancellation_link: str | None = Field(default=None, alias="cancellationLink")
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    field_confidence: dict[str, float] = Field(default_factory=dict, alias="perFieldConfidence")


@dataclass(slots=True)
class ClassificationResult:
    is_subscription_related: bool
    confidence: float
    email_type: str
    reason: str | None = None


@dataclass(slots=True)
class ExtractionResult:
    service_name: str | None
    price: Decimal | None
    currency: str
    billing_cycle: BillingCycle
    next_renewal_date: datetime | None
    category: str
    cancellation_link: str | None
    confidence: float
    requires_review: bool
    field_confidence: dict[str, float] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
