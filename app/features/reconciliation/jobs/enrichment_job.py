"""
Vendor enrichment worker: drains the enrichment queue in the background.
"""

import asyncio

from app.config import settings
from app.features.reconciliation.services.enrichment import VendorEnrichmentQueue
from app.features.reconciliation.services.vendor_directory import VendorDirectory
from app.infrastructure.observability.logging import get_logger
from app.jobs.metrics import JobMetrics

logger = get_logger(__name__)


class VendorEnrichmentWorker:
    job_name = "vendor_enrichment"

    def __init__(
        self,
        directory: VendorDirectory,
        queue: VendorEnrichmentQueue,
        delay_seconds: float | None = None,
    ):
        self.directory = directory
        self.queue = queue
        self.delay_seconds = (
            delay_seconds if delay_seconds is not None else settings.VENDOR_ENRICHMENT_DELAY_SECONDS
        )
        self.job_metrics = JobMetrics(self.job_name)

    async def enrich_one(self, vendor_id: str) -> bool:
        try:
            result = await self.directory.enrich_vendor(vendor_id)
        except Exception as e:
            self.job_metrics.record_failure(vendor_id, f"{type(e).__name__}: {e}")
            return False
        if not result.ok:
            self.job_metrics.record_failure(vendor_id, result.error.message)
            return False
        self.job_metrics.record_success(vendor_id)
        return True

    async def drain(self) -> dict:
        """Enrich everything currently queued, then return run metrics."""
        self.job_metrics.reset()
        while (vendor_id := self.queue.get_nowait()) is not None:
            await self.enrich_one(vendor_id)
            if self.queue.qsize():
                await asyncio.sleep(self.delay_seconds)
        self.job_metrics.finalize()
        return self.job_metrics.to_dict()

    async def run(self, stop_event: asyncio.Event) -> None:
        logger.info("Vendor enrichment worker started")
        while not stop_event.is_set():
            next_vendor = asyncio.create_task(self.queue.get())
            stopped = asyncio.create_task(stop_event.wait())
            try:
                await asyncio.wait({next_vendor, stopped}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                stopped.cancel()
                if not next_vendor.done():
                    next_vendor.cancel()

            if next_vendor.done() and not next_vendor.cancelled():
                await self.enrich_one(next_vendor.result())
                await asyncio.sleep(self.delay_seconds)
        logger.info("Vendor enrichment worker stopped")
