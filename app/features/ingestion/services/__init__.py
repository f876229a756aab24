"""
Service layer for mailbox ingestion.
"""

from .ledger import MetadataLedger, RegistrationResult
from .processor import EmailProcessor, ProcessingOutcome
from .scanner import IngestionScanner, ScanReport, UserScanReport
from .scheduler import PriorityScheduler, priority_for

__all__ = [
    "EmailProcessor",
    "IngestionScanner",
    "MetadataLedger",
    "PriorityScheduler",
    "ProcessingOutcome",
    "RegistrationResult",
    "ScanReport",
    "UserScanReport",
    "priority_for",
]
