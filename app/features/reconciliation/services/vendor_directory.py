"""
Vendor directory service.

Exact normalized lookup first, then a fuzzy pass over a cached copy of the
full vendor list. The cache lives on the instance and is dropped on every
write, including enrichment.
"""

import time
from collections.abc import Callable
from datetime import UTC, datetime

from app.config import settings
from app.features.reconciliation.domain.normalization import normalize_name, vendor_similarity
from app.features.reconciliation.repository.subscription_repository import VendorRepository
from app.features.reconciliation.services.enrichment import (
    VendorEnrichmentQueue,
    favicon_url,
    infer_website,
)
from app.infrastructure.observability.logging import get_logger
from app.models.domain.subscription_domain import VendorMetadata
from app.models.results import OperationResult, ValidationErrors, VendorErrors, unexpected

logger = get_logger(__name__)

DEFAULT_CATEGORY = "Other"
_UPDATABLE_FIELDS = ("name", "category", "logo_url", "website_url", "account_management_url")


class VendorDirectory:
    def __init__(
        self,
        repository: VendorRepository,
        enrichment_queue: VendorEnrichmentQueue,
        match_threshold: float | None = None,
        cache_ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.repository = repository
        self.enrichment_queue = enrichment_queue
        self.match_threshold = match_threshold or settings.FUZZY_MATCH_THRESHOLD
        self.cache_ttl_seconds = cache_ttl_seconds or settings.VENDOR_CACHE_TTL_SECONDS
        self._clock = clock
        self._cache: list[VendorMetadata] | None = None
        self._cache_loaded_at = 0.0

    def invalidate_cache(self) -> None:
        self._cache = None

    async def _all_vendors(self) -> list[VendorMetadata]:
        if self._cache is None or self._clock() - self._cache_loaded_at > self.cache_ttl_seconds:
            self._cache = await self.repository.list_all()
            self._cache_loaded_at = self._clock()
        return self._cache

    async def match_vendor(self, name: str) -> VendorMetadata | None:
        """Best vendor for a name, or None if nothing reaches the threshold."""
        normalized = normalize_name(name)
        if not normalized:
            return None

        exact = await self.repository.get_by_normalized_name(normalized)
        if exact is not None:
            return exact

        best: VendorMetadata | None = None
        best_score = 0.0
        for vendor in await self._all_vendors():
            score = vendor_similarity(normalized, vendor.normalized_name)
            if score >= self.match_threshold and score > best_score:
                best, best_score = vendor, score

        if best is not None:
            logger.debug(
                "Fuzzy vendor match", name=name, vendor_id=best.id, similarity=round(best_score, 3)
            )
        return best

    async def get_or_create(
        self, name: str, category: str | None = None
    ) -> OperationResult[VendorMetadata]:
        if not name or not normalize_name(name):
            return OperationResult.failure(ValidationErrors.REQUIRED_SERVICE_NAME)
        try:
            vendor = await self.match_vendor(name)
            if vendor is not None:
                return OperationResult.success(vendor)
            return await self.create_vendor(name, category)
        except Exception as e:
            logger.error("Vendor lookup failed", name=name, error=str(e))
            return OperationResult.failure(unexpected("get_or_create_vendor", e))

    async def create_vendor(
        self,
        name: str,
        category: str | None = None,
        website_url: str | None = None,
        logo_url: str | None = None,
        account_management_url: str | None = None,
    ) -> OperationResult[VendorMetadata]:
        normalized = normalize_name(name)
        if not normalized:
            return OperationResult.failure(ValidationErrors.REQUIRED_SERVICE_NAME)

        candidate = VendorMetadata(
            name=name.strip(),
            normalized_name=normalized,
            category=category or DEFAULT_CATEGORY,
            website_url=website_url,
            logo_url=logo_url,
            account_management_url=account_management_url,
        )
        vendor = await self.repository.add_if_absent(candidate)
        if vendor is not candidate:
            return OperationResult.noop(vendor)

        self.invalidate_cache()
        if not vendor.website_url or not vendor.logo_url:
            self.enrichment_queue.submit(vendor.id)
        logger.info("Vendor created", vendor_id=vendor.id, name=vendor.name, category=vendor.category)
        return OperationResult.success(vendor)

    async def update_vendor(self, vendor_id: str, **changes) -> OperationResult[VendorMetadata]:
        vendor = await self.repository.get(vendor_id)
        if vendor is None:
            return OperationResult.failure(VendorErrors.NOT_FOUND)

        for key, value in changes.items():
            if key in _UPDATABLE_FIELDS and value is not None:
                setattr(vendor, key, value)
        if "name" in changes and changes["name"]:
            vendor.normalized_name = normalize_name(changes["name"])
        vendor.updated_at = datetime.now(UTC)

        await self.repository.save(vendor)
        self.invalidate_cache()
        return OperationResult.success(vendor)

    async def enrich_vendor(self, vendor_id: str) -> OperationResult[VendorMetadata]:
        """Fill in website and logo where missing."""
        vendor = await self.repository.get(vendor_id)
        if vendor is None:
            return OperationResult.failure(VendorErrors.NOT_FOUND)

        if not vendor.website_url:
            vendor.website_url = infer_website(vendor.normalized_name)
        if not vendor.logo_url:
            vendor.logo_url = favicon_url(vendor.website_url)
        vendor.updated_at = datetime.now(UTC)

        await self.repository.save(vendor)
        self.invalidate_cache()
        logger.info(
            "Vendor enriched",
            vendor_id=vendor.id,
            website_url=vendor.website_url,
            has_logo=vendor.logo_url is not None,
        )
        return OperationResult.success(vendor)

    async def get(self, vendor_id: str) -> OperationResult[VendorMetadata]:
        vendor = await self.repository.get(vendor_id)
        if vendor is None:
            return OperationResult.failure(VendorErrors.NOT_FOUND)
        return OperationResult.success(vendor)

    async def search(self, term: str) -> list[VendorMetadata]:
        needle = normalize_name(term)
        if not needle:
            return []
        return [v for v in await self._all_vendors() if needle in v.normalized_name]

    async def by_category(self, category: str) -> list[VendorMetadata]:
        wanted = category.strip().lower()
        return [v for v in await self._all_vendors() if v.category.lower() == wanted]
