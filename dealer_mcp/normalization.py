"""Shared canonical normalization functions for contact and timestamp data.

Single source of truth: imported by the intake planner, the engines, and
the tool layer so that every comparison sees the same canonical form.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def normalize_phone(raw: str | None) -> str:
    """Keep only digits.  Returns ``""`` for empty input."""
    if not raw:
        return ""
    return "".join(c for c in raw if c.isdigit())


def normalize_email(raw: str | None) -> str:
    """Trim and lowercase.  Returns ``""`` for empty input."""
    if not raw:
        return ""
    return raw.strip().lower()


def normalize_name(raw: str | None) -> str:
    if not raw:
        return ""
    return raw.strip().lower()


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so that comparisons never mix kinds."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_iso_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 string (``Z`` suffix allowed).  ``None`` if unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    if not stripped:
        return None
    if stripped.endswith("Z"):
        stripped = stripped[:-1] + "+00:00"
    try:
        return ensure_aware(datetime.fromisoformat(stripped))
    except ValueError:
        return None


def to_iso(value: datetime) -> str:
    return ensure_aware(value).isoformat()
