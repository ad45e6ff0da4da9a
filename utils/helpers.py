"""Utility helper functions for the marketplace"""

import logging
import secrets
import string
from typing import Optional

from config import Config
from utils.datetime_helpers import epoch_millis

logger = logging.getLogger(__name__)

_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def _random_suffix(length: int = 6) -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


def generate_sale_code(project_id: Optional[int] = None, batch: bool = False) -> str:
    """
    Human-legible sale code: prefix, millisecond timestamp, random suffix.

    Single purchases look like SALE_1718000000000_X7K2QD; cart purchases carry
    the listing id, CART_1718000000000_42_X7K2QD. The sales table holds a unique
    index on the code, which is the real uniqueness guarantee.
    """
    prefix = "CART" if batch else "SALE"
    parts = [prefix, str(epoch_millis())]
    if batch and project_id is not None:
        parts.append(str(project_id))
    parts.append(_random_suffix())
    return "_".join(parts)


def generate_batch_id() -> str:
    """Identifier returned to the client for a whole cart checkout"""
    return f"BATCH_{epoch_millis()}_{_random_suffix()}"


def is_university_email(email: str) -> bool:
    """Only institutional addresses may register with a password"""
    if not email or not isinstance(email, str):
        return False
    normalized = email.strip().lower()
    if normalized.count("@") != 1:
        return False
    if any(normalized.endswith(suffix) for suffix in Config.UNIVERSITY_EMAIL_SUFFIXES):
        return True
    return any(marker in normalized for marker in Config.UNIVERSITY_EMAIL_MARKERS)


def mask_email(email: Optional[str]) -> str:
    """Mask an address for logs: jo***@uni.edu.pe"""
    if not email or "@" not in email:
        return "***"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def clamp_limit(raw: Optional[int], default: int, maximum: int) -> int:
    """Clamp a ?limit= query value to [1, maximum]"""
    if raw is None:
        return default
    return max(1, min(int(raw), maximum))
