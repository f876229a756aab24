"""
Domain subpackage for mailbox ingestion.
"""

from .gateway import (
    CursorInvalidError,
    GatewayError,
    MessageFilter,
    MessageGateway,
    MessageListing,
)

__all__ = [
    "CursorInvalidError",
    "GatewayError",
    "MessageFilter",
    "MessageGateway",
    "MessageListing",
]
