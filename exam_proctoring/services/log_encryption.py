"""
Log Encryption - AES-256-GCM for proctoring log records at rest

Each record is encrypted with a fresh 12-byte nonce and stored as JSON:
    {"encryptedData": <hex>, "iv": <hex>, "authTag": <hex>}
The authentication tag is verified on decrypt, so any modified byte fails.
"""

import json
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)


class DecryptionError(Exception):
    """Raised when a stored record cannot be decrypted or is malformed."""


class LogCipher:
    """
    Encrypts and decrypts individual log payloads.

    Usage:
        cipher = LogCipher.from_hex(settings.LOG_ENCRYPTION_KEY)
        stored = cipher.encrypt('{"eventType": "tab-switch"}')
        plain = cipher.decrypt(stored)
    """

    KEY_BYTES = 32
    NONCE_BYTES = 12
    TAG_BYTES = 16

    def __init__(self, key: bytes):
        """
        Initialize cipher.

        Args:
            key: 32-byte AES key
        """
        if len(key) != self.KEY_BYTES:
            raise ValueError(f"Encryption key must be {self.KEY_BYTES} bytes, got {len(key)}")
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_hex(cls, key_hex: Optional[str]) -> "LogCipher":
        """Build a cipher from a hex key, generating a per-process key if none is configured."""
        if not key_hex:
            logger.warning(
                "LOG_ENCRYPTION_KEY not set, using a random per-process key. "
                "Logs written now will be unreadable after a restart."
            )
            return cls(AESGCM.generate_key(bit_length=256))
        return cls(bytes.fromhex(key_hex))

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(self.NONCE_BYTES)
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-self.TAG_BYTES], sealed[-self.TAG_BYTES:]
        return json.dumps({
            "encryptedData": ciphertext.hex(),
            "iv": nonce.hex(),
            "authTag": tag.hex(),
        })

    def decrypt(self, stored: str) -> str:
        try:
            envelope = json.loads(stored)
            ciphertext = bytes.fromhex(envelope["encryptedData"])
            nonce = bytes.fromhex(envelope["iv"])
            tag = bytes.fromhex(envelope["authTag"])
        except (ValueError, KeyError, TypeError) as e:
            raise DecryptionError(f"malformed envelope: {e}")

        if len(nonce) != self.NONCE_BYTES or len(tag) != self.TAG_BYTES:
            raise DecryptionError("malformed envelope: bad nonce or tag length")

        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag:
            raise DecryptionError("authentication tag mismatch")

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError(f"invalid utf-8: {e}")
