"""Symmetric encryption for secrets kept on the controller (mailbox cleartext, etc.).

Uses Fernet (AES-128-CBC + HMAC-SHA256) with a key derived from `settings.secret_key`
via SHA-256 → base64-urlsafe.  The key is derived deterministically so a value
encrypted by one controller process decrypts in another, as long as SECRET_KEY is
unchanged.
"""

from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from fleetmux.core.config import get_settings

__all__ = ["InvalidToken", "decrypt", "encrypt"]


def _get_fernet(secret_key: str | None = None) -> Fernet:
    """Derive a Fernet instance from *secret_key* (default: the application key)."""
    raw = (secret_key if secret_key is not None else get_settings().secret_key).encode()
    digest = hashlib.sha256(raw).digest()
    key = base64.urlsafe_b64encode(digest)
    return Fernet(key)


def encrypt(value: str, secret_key: str | None = None) -> str:
    """Encrypt *value* and return the ciphertext as a UTF-8 string."""
    return _get_fernet(secret_key).encrypt(value.encode()).decode()


def decrypt(ciphertext: str, secret_key: str | None = None) -> str:
    """Decrypt *ciphertext* and return the original plaintext string.

    Raises ``InvalidToken`` when the ciphertext was produced with another key.
    """
    return _get_fernet(secret_key).decrypt(ciphertext.encode()).decode()
