"""
Alerts feature package.
"""

from .services.dispatcher import AlertDispatcher  # noqa: F401
from .services.engine import AlertEngine  # noqa: F401
