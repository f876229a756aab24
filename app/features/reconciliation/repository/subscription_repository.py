"""Storage for subscriptions and vendor directory entries."""

import asyncio
from typing import Protocol

from app.models.domain.subscription_domain import Subscription, VendorMetadata


class SubscriptionRepository(Protocol):
    async def get(self, subscription_id: str) -> Subscription | None: ...

    async def list_for_user(self, user_id: str) -> list[Subscription]: ...

    async def list_for_account(self, email_account_id: str) -> list[Subscription]: ...

    async def list_user_ids(self) -> list[str]: ...

    async def save(self, subscription: Subscription) -> None: ...


class VendorRepository(Protocol):
    async def get(self, vendor_id: str) -> VendorMetadata | None: ...

    async def get_by_normalized_name(self, normalized_name: str) -> VendorMetadata | None: ...

    async def list_all(self) -> list[VendorMetadata]: ...

    async def add_if_absent(self, vendor: VendorMetadata) -> VendorMetadata: ...

    async def save(self, vendor: VendorMetadata) -> None: ...


class InMemorySubscriptionRepository:
    def __init__(self):
        # Insertion order doubles as discovery order for reconciliation
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = asyncio.Lock()

    async def get(self, subscription_id: str) -> Subscription | None:
        return self._subscriptions.get(subscription_id)

    async def list_for_user(self, user_id: str) -> list[Subscription]:
        return [s for s in self._subscriptions.values() if s.user_id == user_id]

    async def list_for_account(self, email_account_id: str) -> list[Subscription]:
        return [s for s in self._subscriptions.values() if s.email_account_id == email_account_id]

    async def list_user_ids(self) -> list[str]:
        return list(dict.fromkeys(s.user_id for s in self._subscriptions.values()))

    async def save(self, subscription: Subscription) -> None:
        async with self._lock:
            self._subscriptions[subscription.id] = subscription


class InMemoryVendorRepository:
    def __init__(self, vendors: list[VendorMetadata] | None = None):
        self._vendors: dict[str, VendorMetadata] = {v.id: v for v in vendors or []}
        self._lock = asyncio.Lock()

    async def get(self, vendor_id: str) -> VendorMetadata | None:
        return self._vendors.get(vendor_id)

    async def get_by_normalized_name(self, normalized_name: str) -> VendorMetadata | None:
        return next(
            (v for v in self._vendors.values() if v.normalized_name == normalized_name), None
        )

    async def list_all(self) -> list[VendorMetadata]:
        return list(self._vendors.values())

    async def add_if_absent(self, vendor: VendorMetadata) -> VendorMetadata:
        """Normalized names are unique; a concurrent creator gets the stored row back."""
        async with self._lock:
            existing = await self.get_by_normalized_name(vendor.normalized_name)
            if existing is not None:
                return existing
            self._vendors[vendor.id] = vendor
            return vendor

    async def save(self, vendor: VendorMetadata) -> None:
        async with self._lock:
            self._vendors[vendor.id] = vendor
