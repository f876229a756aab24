"""
Job runners for reconciliation.
"""

from .enrichment_job import VendorEnrichmentWorker
from .maintenance_job import SubscriptionMaintenanceJob

__all__ = ["SubscriptionMaintenanceJob", "VendorEnrichmentWorker"]
