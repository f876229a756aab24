"""
Classification and extraction feature package.
"""

from .providers.base import ClassificationProvider, ProviderError  # noqa: F401
from .services.engine import ClassificationEngine  # noqa: F401
