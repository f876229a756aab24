"""
Job runners for mailbox ingestion.
"""

from .scan_job import EmailScanJob

__all__ = ["EmailScanJob"]
