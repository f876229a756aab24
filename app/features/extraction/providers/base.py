"""Model provider boundary and its failure taxonomy."""

from typing import Any, Protocol


class ProviderError(Exception):
    """Base exception for model provider failures."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.recoverable = recoverable


class RateLimitedError(ProviderError):
    def __init__(self, message: str = "Model provider rate limit hit"):
        super().__init__(message, recoverable=True)


class ProviderUnavailableError(ProviderError):
    def __init__(self, message: str = "Model provider unavailable"):
        super().__init__(message, recoverable=True)


class ProviderTimeoutError(ProviderError):
    def __init__(self, message: str = "Model provider timed out"):
        super().__init__(message, recoverable=True)


class MalformedResponseError(ProviderError):
    def __init__(self, message: str = "Model provider returned malformed data"):
        super().__init__(message, recoverable=False)


class ClassificationProvider(Protocol):
    async def classify(self, text: str) -> dict[str, Any]: ...

    async def extract(self, text: str) -> dict[str, Any]: ...
