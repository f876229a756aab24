"""
Credential store for mailbox OAuth tokens.
Uses Fernet symmetric encryption; blobs are opaque to everything else.
"""

from cryptography.fernet import Fernet, InvalidToken

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class CredentialError(Exception):
    """Raised when a token blob cannot be encrypted or decrypted."""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(message)
        self.recoverable = recoverable


class CredentialStore:
    """Encrypts and decrypts token blobs with a single Fernet key."""

    def __init__(self, key: str | bytes | None = None):
        key = key or settings.ENCRYPTION_KEY
        if not key:
            raise CredentialError("ENCRYPTION_KEY not configured in environment")

        try:
            self._fernet = Fernet(key.encode("utf-8") if isinstance(key, str) else key)
        except Exception as e:
            logger.error("Failed to initialize Fernet cipher", error=str(e))
            raise CredentialError(f"Invalid encryption key: {e}") from e

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("utf-8")

    def encrypt(self, token: str) -> bytes:
        """
        Encrypt a token string for storage.

        Raises:
            CredentialError: If the token is empty or encryption fails
        """
        if not token or not isinstance(token, str):
            raise CredentialError("Token must be a non-empty string")

        try:
            return self._fernet.encrypt(token.encode("utf-8"))
        except Exception as e:
            logger.error("Failed to encrypt token", error=str(e))
            raise CredentialError(f"Encryption failed: {e}") from e

    def decrypt(self, encrypted_token: bytes) -> str:
        """
        Decrypt a stored token blob.

        Raises:
            CredentialError: If the blob is empty, tampered with, or for another key
        """
        if not encrypted_token or not isinstance(encrypted_token, bytes):
            raise CredentialError("Encrypted token must be non-empty bytes")

        try:
            return self._fernet.decrypt(encrypted_token).decode("utf-8")
        except InvalidToken as e:
            logger.error("Token decryption failed - invalid token")
            raise CredentialError("Invalid or corrupted token") from e
