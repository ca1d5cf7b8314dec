"""
config.py
Environment settings (.env aware) + logging setup.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

_CONFIGURED = False
_DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


def setup_logging(level: int | str | None = None) -> None:
    """Configure the root logger once."""
    global _CONFIGURED
    if _CONFIGURED:
        return
    level = level or os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format=_DEFAULT_FORMAT)
    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    setup_logging()
    return logging.getLogger(name)


logger = get_logger(__name__)


def env_int(key: str, default: int, *, minimum: int | None = None) -> int:
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        value = int(raw)
        if minimum is not None and value < minimum:
            raise ValueError
        return value
    except ValueError:
        logger.warning("Invalid %s value '%s'. Falling back to %d.", key, raw, default)
        return default


def env_list(key: str, default: str) -> list[str]:
    raw = os.getenv(key, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


DATABASE_PATH = Path(os.getenv("DATABASE_PATH") or Path(__file__).with_name("registrants.db"))

API_KEY = os.getenv("API_KEY", "devkey")
API_KEY_HASH = os.getenv("API_KEY_HASH") or None
# bcrypt accepts 4..31
API_KEY_BCRYPT_ROUNDS = min(env_int("API_KEY_BCRYPT_ROUNDS", 12, minimum=4), 31)

CORS_ORIGINS = env_list("CORS_ORIGINS", "http://localhost:3000")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = env_int("PORT", 4000, minimum=1)
