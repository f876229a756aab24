"""
Operation results shared by every component.

Public operations return an ``OperationResult`` instead of raising across a
component boundary. Failures carry a ``ServiceError`` whose ``kind`` tells the
caller whether retrying makes sense.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    CONFLICT = "conflict"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True, slots=True)
class ServiceError:
    code: str
    message: str
    kind: ErrorKind = ErrorKind.UNEXPECTED

    def with_detail(self, detail: str) -> "ServiceError":
        return ServiceError(self.code, f"{self.message}: {detail}", self.kind)


@dataclass(frozen=True, slots=True)
class OperationResult(Generic[T]):
    ok: bool
    value: T | None = None
    error: ServiceError | None = None
    # True when the call was a duplicate and nothing changed
    no_op: bool = False

    @classmethod
    def success(cls, value: T | None = None) -> "OperationResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def noop(cls, value: T | None = None) -> "OperationResult[T]":
        return cls(ok=True, value=value, no_op=True)

    @classmethod
    def failure(cls, error: ServiceError) -> "OperationResult[T]":
        return cls(ok=False, error=error)


class ValidationErrors:
    REQUIRED_USER_ID = ServiceError("validation.user_id", "User id is required", ErrorKind.VALIDATION)
    REQUIRED_SERVICE_NAME = ServiceError(
        "validation.service_name", "Service name is required", ErrorKind.VALIDATION
    )
    NEGATIVE_PRICE = ServiceError("validation.price", "Price cannot be negative", ErrorKind.VALIDATION)
    INVALID_HOURS = ServiceError(
        "validation.hours", "Snooze duration must be positive", ErrorKind.VALIDATION
    )


class AccountErrors:
    NOT_FOUND = ServiceError("account.not_found", "Email account not found", ErrorKind.NOT_FOUND)
    INACTIVE = ServiceError("account.inactive", "Email account is not active", ErrorKind.VALIDATION)
    CREDENTIALS = ServiceError(
        "account.credentials", "Email account credentials unavailable", ErrorKind.VALIDATION
    )
    SCAN_FAILED = ServiceError("account.scan_failed", "Mailbox scan failed", ErrorKind.TRANSIENT)


class EmailErrors:
    NOT_FOUND = ServiceError("email.not_found", "Email metadata not found", ErrorKind.NOT_FOUND)
    ALREADY_PROCESSED = ServiceError(
        "email.already_processed", "Email already processed", ErrorKind.CONFLICT
    )
    IN_FLIGHT = ServiceError("email.in_flight", "Email is already being processed", ErrorKind.CONFLICT)


class ExtractionErrors:
    PROVIDER_UNAVAILABLE = ServiceError(
        "extraction.provider_unavailable", "Model provider unavailable", ErrorKind.TRANSIENT
    )
    MALFORMED_RESPONSE = ServiceError(
        "extraction.malformed_response", "Model provider returned malformed data", ErrorKind.UNEXPECTED
    )


class SubscriptionErrors:
    NOT_FOUND = ServiceError("subscription.not_found", "Subscription not found", ErrorKind.NOT_FOUND)
    INVALID_TRANSITION = ServiceError(
        "subscription.invalid_transition", "Subscription status change not allowed", ErrorKind.VALIDATION
    )


class VendorErrors:
    NOT_FOUND = ServiceError("vendor.not_found", "Vendor not found", ErrorKind.NOT_FOUND)


class AlertErrors:
    NOT_FOUND = ServiceError("alert.not_found", "Alert not found", ErrorKind.NOT_FOUND)
    DUPLICATE = ServiceError("alert.duplicate", "An unresolved alert already exists", ErrorKind.CONFLICT)
    DELIVERY_FAILED = ServiceError("alert.delivery_failed", "Alert delivery failed", ErrorKind.TRANSIENT)


class UserErrors:
    NOT_FOUND = ServiceError("user.not_found", "User not found", ErrorKind.NOT_FOUND)


def unexpected(operation: str, exc: Exception) -> ServiceError:
    return ServiceError(
        f"unexpected.{operation}", f"{type(exc).__name__}: {exc}", ErrorKind.UNEXPECTED
    )
