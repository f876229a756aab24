"""
Mailbox ingestion feature package.

Scanner, metadata ledger, priority scheduler and the processor that drains
the scheduler into classification and reconciliation.
"""

from .domain.gateway import CursorInvalidError, MessageFilter, MessageGateway  # noqa: F401
from .services.ledger import MetadataLedger  # noqa: F401
from .services.processor import EmailProcessor  # noqa: F401
from .services.scanner import IngestionScanner  # noqa: F401
from .services.scheduler import PriorityScheduler, priority_for  # noqa: F401
