from __future__ import annotations

import hashlib
import re
import secrets
from datetime import datetime, timezone
from typing import Optional

_DIGITS = re.compile(r"^\d+$")


def canonical_device_id(raw: object, *, prefix: str = "LOCKER_", width: int = 3) -> str:
    """Normalize a locker identifier into its canonical ``PREFIX`` + padded form.

    ``"7"`` and ``" 007 "`` both become ``LOCKER_007``; an already prefixed
    value keeps its suffix, upper-cased, and numeric suffixes are re-padded.
    Returns an empty string for empty input.
    """
    if raw is None:
        return ""
    value = str(raw).strip()
    if not value:
        return ""

    upper_prefix = prefix.upper()
    if upper_prefix and value.upper().startswith(upper_prefix):
        value = value[len(upper_prefix) :].strip()
        if not value:
            return ""
    if _DIGITS.match(value):
        value = value.zfill(width)
    return f"{upper_prefix}{value.upper()}"


def generate_code(num_bytes: int = 16) -> str:
    return secrets.token_hex(num_bytes)


def hash_code(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
