"""
Service layer for classification and extraction.
"""

from .engine import ClassificationEngine, parse_billing_cycle, truncate_body, weighted_confidence

__all__ = ["ClassificationEngine", "parse_billing_cycle", "truncate_body", "weighted_confidence"]
