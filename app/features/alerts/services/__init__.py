"""
Service layer for alerts.
"""

from .dispatcher import AlertDispatcher, DispatchReport
from .engine import AlertEngine, GenerationSummary

__all__ = ["AlertDispatcher", "AlertEngine", "DispatchReport", "GenerationSummary"]
