"""
Location ID generation

8-character ids drawn from lowercase letters and digits using the
`secrets` module. Uniqueness is checked against the registry with a
bounded number of retries.
"""

import logging
import secrets
from typing import Callable

from services.location.errors import IdExhausted

logger = logging.getLogger(__name__)

CHARSET = "abcdefghijklmnopqrstuvwxyz0123456789"
ID_LENGTH = 8
MAX_ATTEMPTS = 5


def generate_location_id() -> str:
    """Random 8-character alphanumeric id"""
    return "".join(secrets.choice(CHARSET) for _ in range(ID_LENGTH))


def generate_unique_location_id(exists: Callable[[str], bool], attempts: int = MAX_ATTEMPTS) -> str:
    """
    Draw ids until one is not reported by `exists`.

    Gives up with IdExhausted after `attempts` draws. With 36^8 possible ids
    a collision streak that long means something is broken (wrong alphabet,
    corrupt table), so we stop instead of looping.
    """
    for attempt in range(1, attempts + 1):
        candidate = generate_location_id()
        if not exists(candidate):
            return candidate
        logger.warning(f"Location id collision on attempt {attempt}: {candidate}")

    raise IdExhausted(attempts)
