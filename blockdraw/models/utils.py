"""Utility helpers for the models package."""

from __future__ import annotations

import secrets
import string
from datetime import datetime, timezone

BASE62_ALPHABET = string.digits + string.ascii_uppercase + string.ascii_lowercase
SECRET_ALPHABET = string.ascii_lowercase + string.digits
SECRET_LENGTH = 64


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def generate_identifier(prefix: str, length: int = 12) -> str:
    """Return ``<prefix>-<base62 suffix>`` using a CSPRNG."""
    suffix = "".join(secrets.choice(BASE62_ALPHABET) for _ in range(length))
    return f"{prefix}-{suffix}"[:64]


def generate_secret(length: int = SECRET_LENGTH) -> str:
    """Return the per-drawing secret committed to before any seed is known."""
    return "".join(secrets.choice(SECRET_ALPHABET) for _ in range(length))
