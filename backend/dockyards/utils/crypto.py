"""Encryption utilities for data sealed at rest."""
import base64
import json
from typing import Dict, Optional
from cryptography.fernet import Fernet, InvalidToken


class CryptoService:
    """Service for sealing and opening sensitive data with Fernet."""

    def __init__(self, encryption_key: str):
        """Initialize crypto service with the configured encryption key."""
        if not encryption_key:
            raise ValueError("ENCRYPTION_KEY is not set")

        # Ensure the key is properly formatted for Fernet
        try:
            self.cipher = Fernet(encryption_key.encode())
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid ENCRYPTION_KEY format: {e}")

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string and return base64-encoded ciphertext."""
        if not plaintext:
            return plaintext

        encrypted_bytes = self.cipher.encrypt(plaintext.encode())
        return base64.b64encode(encrypted_bytes).decode()

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a base64-encoded ciphertext and return plaintext."""
        if not ciphertext:
            return ciphertext

        try:
            encrypted_bytes = base64.b64decode(ciphertext.encode())
            return self.cipher.decrypt(encrypted_bytes).decode()
        except (InvalidToken, ValueError) as e:
            raise ValueError(f"Failed to decrypt data: {e}")

    def seal(self, data: Optional[Dict[str, str]]) -> Optional[str]:
        """Seal a key/value document."""
        if data is None:
            return None
        return self.encrypt(json.dumps(data, sort_keys=True))

    def open(self, sealed: Optional[str]) -> Optional[Dict[str, str]]:
        if not sealed:
            return None
        return json.loads(self.decrypt(sealed))


def generate_key() -> str:
    """Generate a new ENCRYPTION_KEY value."""
    return Fernet.generate_key().decode()
