"""
Job runners for alerts.
"""

from .alert_jobs import AlertDeliveryJob, AlertGenerationJob

__all__ = ["AlertDeliveryJob", "AlertGenerationJob"]
