"""Per-agent API credentials: 32 random bytes, hex-encoded, stored as bcrypt hashes."""

from __future__ import annotations

import asyncio
import secrets
from typing import Optional

import bcrypt

from config import settings


def generate_api_key() -> str:
    return secrets.token_hex(32)


def hash_api_key(api_key: str, rounds: Optional[int] = None) -> str:
    salt = bcrypt.gensalt(rounds=rounds or settings.API_KEY_BCRYPT_ROUNDS)
    return bcrypt.hashpw(api_key.encode("utf-8"), salt).decode("utf-8")


def verify_api_key(api_key: str, api_key_hash: str) -> bool:
    try:
        return bcrypt.checkpw(api_key.encode("utf-8"), api_key_hash.encode("utf-8"))
    except ValueError:
        return False


async def verify_api_key_async(api_key: str, api_key_hash: str) -> bool:
    """Run the bcrypt comparison in a worker thread."""
    return await asyncio.to_thread(verify_api_key, api_key, api_key_hash)
