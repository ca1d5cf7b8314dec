"""
auth.py
Shared-secret gate (bcrypt hashing + verification of the API key).

The plain key is never compared directly; only its bcrypt hash is kept in memory.
"""

from __future__ import annotations

import bcrypt

import config

logger = config.get_logger(__name__)


def _to_bcrypt_secret(key: str) -> bytes:
    """bcrypt reads at most 72 bytes; longer keys are cut so hashing never raises."""
    secret = key.encode("utf-8")
    if len(secret) > 72:
        secret = secret[:72]
    return secret


def hash_api_key(key: str, rounds: int = 12) -> str:
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(_to_bcrypt_secret(key), salt).decode("utf-8")


def verify_api_key(key: str | None, key_hash: str) -> bool:
    if not key:
        return False
    try:
        return bcrypt.checkpw(_to_bcrypt_secret(key), key_hash.encode("utf-8"))
    except ValueError:
        logger.error("Configured API key hash is not a valid bcrypt hash")
        return False


def configured_key_hash() -> str:
    if config.API_KEY_HASH:
        return config.API_KEY_HASH
    return hash_api_key(config.API_KEY, rounds=config.API_KEY_BCRYPT_ROUNDS)
