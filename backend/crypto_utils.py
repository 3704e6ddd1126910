"""Encryption of OAuth tokens at rest."""

import base64
import hashlib
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken


class TokenDecryptionError(Exception):
    """Stored ciphertext could not be decrypted with the configured key."""


class TokenEncryption:
    """Handles encryption/decryption of tokens at rest."""

    def __init__(self, encryption_key: str):
        """
        Initialize encryption with a key.

        Args:
            encryption_key: Base64url encoded 32-byte Fernet key. Any other
                string is stretched to a Fernet key with SHA-256.
        """
        key_bytes = encryption_key.encode() if isinstance(encryption_key, str) else encryption_key
        try:
            self.cipher = Fernet(key_bytes)
        except ValueError:
            derived = hashlib.sha256(key_bytes).digest()
            self.cipher = Fernet(base64.urlsafe_b64encode(derived))

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a token."""
        return self.cipher.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a token."""
        try:
            return self.cipher.decrypt(ciphertext.encode()).decode()
        except InvalidToken as e:
            raise TokenDecryptionError("Stored token could not be decrypted") from e

    def encrypt_optional(self, plaintext: Optional[str]) -> Optional[str]:
        return self.encrypt(plaintext) if plaintext else None

    def decrypt_optional(self, ciphertext: Optional[str]) -> Optional[str]:
        return self.decrypt(ciphertext) if ciphertext else None


def generate_key() -> str:
    """Generate a fresh Fernet key suitable for ENCRYPTION_KEY."""
    return Fernet.generate_key().decode()
