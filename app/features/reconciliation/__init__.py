"""
Reconciliation feature package.

Turns extracted subscription facts into ledger mutations: vendor directory
matching, create-vs-update decisions and the append-only history trail.
"""

from .domain.normalization import normalize_name, service_name_similarity  # noqa: F401
from .services.subscription_ledger import SubscriptionFacts, SubscriptionLedger  # noqa: F401
from .services.vendor_directory import VendorDirectory  # noqa: F401
