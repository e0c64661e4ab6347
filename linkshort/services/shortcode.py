import logging
import random
import secrets
import string
import time

from ..config import settings

logger = logging.getLogger(__name__)

ALPHABET = string.digits + string.ascii_lowercase + string.ascii_uppercase

def generate_short_code(length: int = settings.SHORT_CODE_LENGTH) -> str:
    """Return a random code of ``length`` characters drawn from ALPHABET.

    Uniqueness is not checked here; the links table enforces it on insert.
    """
    try:
        return "".join(secrets.choice(ALPHABET) for _ in range(length))
    except (NotImplementedError, OSError) as e:
        logger.warning(f"Secure random source unavailable, using time-seeded fallback: {e}")
        return _fallback_short_code(length)

def _fallback_short_code(length: int) -> str:
    rng = random.Random(time.time_ns())
    return "".join(rng.choice(ALPHABET) for _ in range(length))
