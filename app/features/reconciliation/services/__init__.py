"""
Service layer for reconciliation.
"""

from .enrichment import VendorEnrichmentQueue
from .subscription_ledger import ReconciliationOutcome, SubscriptionFacts, SubscriptionLedger
from .vendor_directory import VendorDirectory

__all__ = [
    "ReconciliationOutcome",
    "SubscriptionFacts",
    "SubscriptionLedger",
    "VendorDirectory",
    "VendorEnrichmentQueue",
]
