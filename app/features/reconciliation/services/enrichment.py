"""
Vendor enrichment: website and logo backfill for directory entries.

Vendors created during reconciliation are pushed onto an injected
``VendorEnrichmentQueue`` and enriched later by ``VendorEnrichmentWorker`` so
reconciliation never waits on it.
"""

import asyncio
import re
from urllib.parse import urlparse

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

FAVICON_SERVICE_URL = "https://www.google.com/s2/favicons?domain={host}&sz=64"

KNOWN_VENDOR_DOMAINS: dict[str, str] = {
    "netflix": "netflix.com",
    "spotify": "spotify.com",
    "amazon prime": "amazon.com",
    "disney": "disneyplus.com",
    "disney plus": "disneyplus.com",
    "hulu": "hulu.com",
    "hbo max": "max.com",
    "max": "max.com",
    "apple music": "music.apple.com",
    "apple tv": "tv.apple.com",
    "youtube premium": "youtube.com",
    "adobe": "adobe.com",
    "adobe creative cloud": "adobe.com",
    "microsoft 365": "microsoft.com",
    "office 365": "microsoft.com",
    "dropbox": "dropbox.com",
    "google one": "one.google.com",
    "icloud": "icloud.com",
    "slack": "slack.com",
    "zoom": "zoom.us",
    "notion": "notion.so",
    "figma": "figma.com",
    "canva": "canva.com",
    "github": "github.com",
    "linkedin premium": "linkedin.com",
    "grammarly": "grammarly.com",
    "nordvpn": "nordvpn.com",
    "expressvpn": "expressvpn.com",
    "1password": "1password.com",
    "lastpass": "lastpass.com",
    "audible": "audible.com",
    "kindle unlimited": "amazon.com",
    "paramount": "paramountplus.com",
    "paramount plus": "paramountplus.com",
    "peacock": "peacocktv.com",
    "crunchyroll": "crunchyroll.com",
}

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def infer_website(normalized_name: str) -> str | None:
    """Known vendor domain, else a ``www.<name>.com`` guess for names of 3+ characters."""
    domain = KNOWN_VENDOR_DOMAINS.get(normalized_name)
    if domain:
        return f"https://www.{domain}" if domain.count(".") == 1 else f"https://{domain}"

    slug = _NON_ALNUM.sub("", normalized_name)
    if len(slug) >= 3:
        return f"https://www.{slug}.com"
    return None


def favicon_url(website_url: str | None) -> str | None:
    if not website_url:
        return None
    host = urlparse(website_url).hostname
    return FAVICON_SERVICE_URL.format(host=host) if host else None


class VendorEnrichmentQueue:
    """Unbounded FIFO of vendor ids awaiting enrichment."""

    def __init__(self):
        self._queue: asyncio.Queue[str] = asyncio.Queue()

    def submit(self, vendor_id: str) -> None:
        # Unbounded, so this never blocks the reconciling caller
        self._queue.put_nowait(vendor_id)

    async def get(self) -> str:
        vendor_id = await self._queue.get()
        self._queue.task_done()
        return vendor_id

    def get_nowait(self) -> str | None:
        try:
            vendor_id = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        self._queue.task_done()
        return vendor_id

    def qsize(self) -> int:
        return self._queue.qsize()
