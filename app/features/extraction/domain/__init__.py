"""
Domain subpackage for classification and extraction.
"""

from .models import (
    FIELD_WEIGHTS,
    ClassificationPayload,
    ClassificationResult,
    ExtractionPayload,
    ExtractionResult,
)

__all__ = [
    "FIELD_WEIGHTS",
    "ClassificationPayload",
    "ClassificationResult",
    "ExtractionPayload",
    "ExtractionResult",
]
