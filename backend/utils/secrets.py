"""Helpers for encrypting/decrypting wallet secrets stored in the database."""

from __future__ import annotations

import base64
import hashlib
import os
from typing import Optional

from utils.logger import get_logger

logger = get_logger("secrets")

_ENC_PREFIX = "enc:v1:"
_FERNET_CACHE: dict[str, object] = {}


class SecretsUnavailableError(RuntimeError):
    """Raised when a secret must be encrypted but no key is configured."""


def _derive_fernet_key(raw_key: str) -> bytes:
    """Derive a Fernet-compatible key from arbitrary input."""
    # Fernet expects 32-byte URL-safe base64 data.
    digest = hashlib.sha256(raw_key.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


def _resolve_key(secret_key: Optional[str]) -> Optional[str]:
    if secret_key:
        return secret_key
    from config import settings

    return settings.APP_SECRETS_KEY or os.getenv("APP_SECRETS_KEY") or None


def _get_fernet(secret_key: Optional[str] = None):
    from cryptography.fernet import Fernet

    raw_key = _resolve_key(secret_key)
    if not raw_key:
        raise SecretsUnavailableError("APP_SECRETS_KEY is not set; wallet secrets cannot be stored")
    fernet = _FERNET_CACHE.get(raw_key)
    if fernet is None:
        fernet = Fernet(_derive_fernet_key(raw_key))
        _FERNET_CACHE[raw_key] = fernet
    return fernet


def is_encrypted(value: Optional[str]) -> bool:
    return bool(value and value.startswith(_ENC_PREFIX))


def encrypt_secret(value: bytes, secret_key: Optional[str] = None) -> str:
    """Encrypt raw secret bytes into a prefixed, storable token."""
    token = _get_fernet(secret_key).encrypt(value).decode("utf-8")
    return _ENC_PREFIX + token


def decrypt_secret(value: str, secret_key: Optional[str] = None) -> bytes:
    """Decrypt a stored token back to raw bytes."""
    from cryptography.fernet import InvalidToken

    if not is_encrypted(value):
        raise ValueError("stored secret is not in the encrypted format")
    token = value[len(_ENC_PREFIX) :]
    try:
        return _get_fernet(secret_key).decrypt(token.encode("utf-8"))
    except InvalidToken as exc:
        logger.warning("Failed to decrypt stored secret", error=type(exc).__name__)
        raise SecretsUnavailableError("stored secret could not be decrypted with the configured key") from exc
