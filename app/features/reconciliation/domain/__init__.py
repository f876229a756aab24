"""
Domain subpackage for reconciliation.
"""

from .normalization import (
    edit_similarity,
    levenshtein_distance,
    normalize_name,
    service_name_similarity,
    vendor_similarity,
)

__all__ = [
    "edit_similarity",
    "levenshtein_distance",
    "normalize_name",
    "service_name_similarity",
    "vendor_similarity",
]
