"""
Encryption Service

Handles encryption and decryption of Plaid access tokens at rest.
Uses Fernet symmetric encryption (AES-128-CBC with HMAC authentication).
"""
import base64
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from budget_app.config import settings

logger = logging.getLogger(__name__)

KDF_SALT = b'plaid_token_encryption_salt'
KDF_ITERATIONS = 100000


def derive_fernet_key(secret: str) -> bytes:
    """Derive a URL-safe base64 Fernet key from an arbitrary secret string."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=KDF_SALT,
        iterations=KDF_ITERATIONS,
    )
    return base64.urlsafe_b64encode(kdf.derive(secret.encode()))


class EncryptionService:
    """Service for encrypting and decrypting sensitive data"""

    def __init__(self, secret: Optional[str] = None):
        """
        Initialize the encryption service with a key derived from ENCRYPTION_KEY.
        The key is already validated to be 32+ characters and secure.
        """
        self.key = derive_fernet_key(secret or settings.ENCRYPTION_KEY)
        self.cipher = Fernet(self.key)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a plaintext string and return base64-encoded ciphertext.

        Args:
            plaintext: The string to encrypt

        Returns:
            Base64-encoded encrypted string
        """
        if not plaintext:
            return ""

        return self.cipher.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a base64-encoded ciphertext and return plaintext.

        Raises:
            InvalidToken: if the ciphertext was tampered with or encrypted with another key
        """
        if not ciphertext:
            return ""

        try:
            return self.cipher.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            logger.error("Decryption failed: invalid token or wrong ENCRYPTION_KEY")
            raise


# Global encryption service instance
encryption_service = EncryptionService()
