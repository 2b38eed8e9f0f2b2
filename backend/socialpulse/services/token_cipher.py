"""
Symmetric encryption for OAuth tokens at rest.

Blob format: ``<iv hex>:<ciphertext hex>``. A fresh 12-byte IV is drawn for
every call; AES-256-GCM appends its 16-byte tag to the ciphertext, so
tampering, truncation and a foreign key all fail decryption instead of
yielding garbage. Hex never contains the ``:`` delimiter.
"""
from __future__ import annotations

import hashlib
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from socialpulse.errors import ConfigurationError, DecryptionError, ValidationError
from socialpulse.settings import get_settings

logger = logging.getLogger(__name__)

DELIMITER = ":"
IV_BYTES = 12


class TokenCipher:
    """Encrypts and decrypts tokens with one process-wide key.

    The key is injected at construction; any secret string works, it is
    stretched to 32 bytes with SHA-256.
    """

    def __init__(self, key: str | bytes | None):
        if not key:
            raise ConfigurationError("ENCRYPTION_KEY is not configured", config_key="ENCRYPTION_KEY")
        raw = key.encode("utf-8") if isinstance(key, str) else key
        self._aead = AESGCM(hashlib.sha256(raw).digest())

    def encrypt(self, plaintext: str) -> str:
        try:
            data = plaintext.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise ValidationError("Token is not valid Unicode text") from exc
        iv = os.urandom(IV_BYTES)
        ciphertext = self._aead.encrypt(iv, data, None)
        return f"{iv.hex()}{DELIMITER}{ciphertext.hex()}"

    def decrypt(self, blob: str) -> str:
        parts = blob.split(DELIMITER) if isinstance(blob, str) else []
        if len(parts) != 2:
            raise DecryptionError("Invalid encrypted token format")
        iv_hex, ciphertext_hex = parts
        try:
            iv = bytes.fromhex(iv_hex)
            ciphertext = bytes.fromhex(ciphertext_hex)
        except ValueError as exc:
            raise DecryptionError("Encrypted token is not valid hex") from exc
        if len(iv) != IV_BYTES:
            raise DecryptionError("Encrypted token has an invalid IV")
        try:
            plaintext = self._aead.decrypt(iv, ciphertext, None)
        except InvalidTag as exc:
            raise DecryptionError("Encrypted token failed authentication (tampered or wrong key)") from exc
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionError("Decrypted token is not valid UTF-8") from exc


def get_token_cipher() -> TokenCipher:
    return TokenCipher(get_settings().encryption_key)
