from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import os
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from clinicauth.logging import get_logger

logger = get_logger(__name__)

_IV_BYTES = 16
_BLOCK_BITS = 128

DECRYPT_PLACEHOLDER = "[unavailable]"


class DecryptionError(Exception):
    """Ciphertext could not be decoded, unpadded or decrypted."""


class SymmetricCipher:
    """AES-256-CBC field encryption plus a keyed lookup hash.

    Every call to :meth:`encrypt` draws a fresh IV, so equal plaintexts produce
    different ciphertexts. Exact-match search goes through :meth:`hash`
    instead, which is stored next to the ciphertext (``email_hash``).
    """

    def __init__(self, key_secret: str, hash_secret: str) -> None:
        if not key_secret:
            raise ValueError("encryption key secret is required")
        if not hash_secret:
            raise ValueError("hash secret is required")
        self._key = hashlib.sha256(key_secret.encode("utf-8")).digest()
        self._hash_key = hash_secret.encode("utf-8")

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(_IV_BYTES)
        padder = padding.PKCS7(_BLOCK_BITS).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return base64.b64encode(iv + ciphertext).decode("ascii")

    def decrypt(self, ciphertext_b64: str) -> str:
        try:
            combined = base64.b64decode(ciphertext_b64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise DecryptionError("invalid encrypted data format") from exc
        body = combined[_IV_BYTES:]
        if len(body) == 0 or len(body) % (_BLOCK_BITS // 8):
            raise DecryptionError("ciphertext has an invalid length")
        iv = combined[:_IV_BYTES]
        decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(body) + decryptor.finalize()
        unpadder = padding.PKCS7(_BLOCK_BITS).unpadder()
        try:
            raw = unpadder.update(padded) + unpadder.finalize()
            return raw.decode("utf-8")
        except (ValueError, UnicodeDecodeError) as exc:
            raise DecryptionError("decryption failed") from exc

    def decrypt_or_placeholder(
        self,
        value: Optional[str],
        *,
        field: str = "unknown",
        placeholder: str = DECRYPT_PLACEHOLDER,
    ) -> Optional[str]:
        """Decrypt for a read path; a bad row yields ``placeholder``, never an error."""
        if value is None:
            return None
        try:
            return self.decrypt(value)
        except DecryptionError as exc:
            logger.warning("pii_decrypt_failed", field=field, error=str(exc))
            return placeholder

    def hash(self, value: str) -> str:
        normalized = value.strip().lower().encode("utf-8")
        return hmac.new(self._hash_key, normalized, hashlib.sha256).hexdigest()
