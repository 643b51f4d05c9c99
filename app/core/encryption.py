"""
AES-256-GCM field encryption for personally identifying data at rest.

Stored form is ``base64(nonce || ciphertext || tag)`` with a fresh 96-bit
nonce per call.
"""
import base64
import binascii
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.core.exceptions import ErrorCode, ServiceError

logger = logging.getLogger(__name__)

NONCE_LENGTH = 12
TAG_LENGTH = 16
KEY_LENGTH = 32


class FieldCipher:
    """Authenticated encryption of individual string fields"""

    def __init__(self, key: bytes):
        if len(key) != KEY_LENGTH:
            raise ValueError(
                f"Encryption key must be {KEY_LENGTH} bytes (256 bits), got {len(key)}"
            )
        self._aead = AESGCM(key)

    @classmethod
    def from_base64(cls, key_base64: str) -> "FieldCipher":
        try:
            key = base64.b64decode(key_base64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError("Encryption key is not valid base64") from e
        return cls(key)

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        """Encrypt ``plaintext``; empty or missing input passes through"""
        if not plaintext:
            return plaintext

        nonce = os.urandom(NONCE_LENGTH)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, encrypted: Optional[str]) -> Optional[str]:
        """Decrypt a value produced by :meth:`encrypt`.

        Malformed input or a failed tag check raises DECRYPTION_ERROR; no
        partial plaintext is ever returned.
        """
        if not encrypted:
            return encrypted

        try:
            raw = base64.b64decode(encrypted, validate=True)
        except (binascii.Error, ValueError):
            logger.error("Decryption failed: stored value is not valid base64")
            raise ServiceError(ErrorCode.DECRYPTION_ERROR, "Stored value is not valid base64")

        if len(raw) < NONCE_LENGTH + TAG_LENGTH:
            logger.error(f"Decryption failed: stored value too short ({len(raw)} bytes)")
            raise ServiceError(ErrorCode.DECRYPTION_ERROR, "Stored value is truncated")

        nonce, sealed = raw[:NONCE_LENGTH], raw[NONCE_LENGTH:]
        try:
            plaintext = self._aead.decrypt(nonce, sealed, None)
        except InvalidTag:
            logger.error("Decryption failed: authentication tag mismatch")
            raise ServiceError(ErrorCode.DECRYPTION_ERROR, "Authentication tag mismatch")

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            logger.error("Decryption failed: plaintext is not valid UTF-8")
            raise ServiceError(ErrorCode.DECRYPTION_ERROR, "Plaintext is not valid UTF-8")
