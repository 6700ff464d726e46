"""
Cryptographic utilities for stored CRM connections

Persisted OAuth connections (access + refresh token) are sealed with Fernet
(AES-128-CBC with HMAC-SHA256) before they leave the process.
"""

import os
import json
import base64
from typing import Any, Dict, Optional
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
import structlog

logger = structlog.get_logger(__name__)


class CryptoService:
    """
    Service for sealing and opening stored connection payloads

    Usage:
        crypto = CryptoService(master_key="your-secret-master-key")
        sealed = crypto.encrypt_json({"access_token": "..."})
        payload = crypto.decrypt_json(sealed)
    """

    SALT = b"crm-connection-salt-v1"

    def __init__(self, master_key: Optional[str] = None):
        """
        Args:
            master_key: Master encryption key. Falls back to the
                        ENCRYPTION_MASTER_KEY environment variable
        """
        self._master_key = master_key or os.getenv("ENCRYPTION_MASTER_KEY")

        if not self._master_key:
            raise ValueError(
                "ENCRYPTION_MASTER_KEY is required. "
                "Set it via environment variable or pass to constructor."
            )

        self._fernet = self._create_fernet(self._master_key)

    def _create_fernet(self, master_key: str) -> Fernet:
        """Derive a Fernet key from the master key with PBKDF2"""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=self.SALT,
            iterations=480000,  # OWASP minimum for PBKDF2-SHA256
        )
        key = base64.urlsafe_b64encode(kdf.derive(master_key.encode()))
        return Fernet(key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string, empty stays empty"""
        if not plaintext:
            return ""
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a string

        Raises:
            InvalidToken: wrong key or corrupted data
        """
        if not ciphertext:
            return ""

        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            logger.warning("decryption_failed", reason="invalid_token")
            raise

    def encrypt_json(self, payload: Dict[str, Any]) -> str:
        """Seal a JSON-serializable dict"""
        return self.encrypt(json.dumps(payload, separators=(",", ":")))

    def decrypt_json(self, ciphertext: str) -> Dict[str, Any]:
        """
        Open a sealed dict

        Raises:
            InvalidToken: wrong key or corrupted data
            ValueError: payload is not a JSON object
        """
        data = json.loads(self.decrypt(ciphertext) or "{}")
        if not isinstance(data, dict):
            raise ValueError("Sealed payload is not a JSON object")
        return data

