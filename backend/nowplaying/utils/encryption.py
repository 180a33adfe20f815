"""Encryption utilities for provider tokens stored at rest

AES-256-GCM via the cryptography package. The stored form is
base64(nonce || ciphertext) using the standard alphabet with padding.

When TOKEN_ENCRYPTION_KEY is not configured, encrypt_token/decrypt_token pass
values through unchanged so the service stays usable, and decrypt_token falls
back to the stored value when decryption fails, so rows written before
encryption was enabled keep working. A corrupted ciphertext cannot be told
apart from a legacy plaintext token and is returned as-is.
"""
import base64
import binascii
import logging
import os
import threading
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from nowplaying.core.config import settings
from nowplaying.core.errors import DecryptionError, InvalidCiphertextError, InvalidKeyError

logger = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 12


class TokenCipher:
    """Authenticated encryption of single string values"""

    def __init__(self, key: bytes):
        if len(key) != KEY_SIZE:
            raise InvalidKeyError(details={"key_length": len(key)})
        self._aead = AESGCM(key)

    @classmethod
    def from_key(cls, key) -> "TokenCipher":
        """Build a cipher from a raw 32-byte key (str keys are UTF-8 encoded)"""
        if isinstance(key, str):
            key = key.encode("utf-8")
        return cls(key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string - empty input gives empty output"""
        if not plaintext:
            return ""
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a string produced by encrypt()

        Raises:
            InvalidCiphertextError: not base64, or shorter than the nonce
            DecryptionError: authentication failed (tampered data or wrong key)
        """
        if not ciphertext:
            return ""
        try:
            data = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidCiphertextError(details={"original_error": str(e)})

        if len(data) < NONCE_SIZE:
            raise InvalidCiphertextError(details={"length": len(data)})

        nonce, sealed = data[:NONCE_SIZE], data[NONCE_SIZE:]
        try:
            return self._aead.decrypt(nonce, sealed, None).decode("utf-8")
        except (InvalidTag, UnicodeDecodeError) as e:
            raise DecryptionError(details={"original_error": type(e).__name__})


def generate_key() -> bytes:
    """Generate a random 32-byte key"""
    return os.urandom(KEY_SIZE)


def generate_key_base64() -> str:
    """Generate a random key, base64-encoded for display"""
    return base64.b64encode(generate_key()).decode("ascii")


# ============================================================================
# PROCESS-WIDE DEFAULT CIPHER
# ============================================================================

_default_cipher: Optional[TokenCipher] = None
_default_cipher_loaded = False
_default_cipher_lock = threading.Lock()


def get_default_cipher() -> Optional[TokenCipher]:
    """Return the cipher built from TOKEN_ENCRYPTION_KEY, constructed once

    Returns None when no key is configured (pass-through mode).

    Raises:
        InvalidKeyError: the configured key is not exactly 32 bytes
    """
    global _default_cipher, _default_cipher_loaded
    if _default_cipher_loaded:
        return _default_cipher

    with _default_cipher_lock:
        if not _default_cipher_loaded:
            key = settings.TOKEN_ENCRYPTION_KEY
            _default_cipher = TokenCipher.from_key(key) if key else None
            _default_cipher_loaded = True
            if _default_cipher is None:
                logger.warning("Token encryption disabled - TOKEN_ENCRYPTION_KEY is not set")
    return _default_cipher


def reset_default_cipher() -> None:
    """Forget the cached default cipher so the next call re-reads settings"""
    global _default_cipher, _default_cipher_loaded
    with _default_cipher_lock:
        _default_cipher = None
        _default_cipher_loaded = False


def encrypt_token(token: str, cipher: Optional[TokenCipher]) -> str:
    """Encrypt a token for storage, or return it unchanged when encryption is off"""
    if cipher is None or not token:
        return token
    return cipher.encrypt(token)


def decrypt_token(token: str, cipher: Optional[TokenCipher]) -> str:
    """Decrypt a stored token

    Falls back to the stored value when decryption fails (legacy plaintext row).
    """
    if cipher is None or not token:
        return token
    try:
        return cipher.decrypt(token)
    except (InvalidCiphertextError, DecryptionError) as e:
        logger.debug(f"Token decryption failed, treating value as legacy plaintext: {e}")
        return token
