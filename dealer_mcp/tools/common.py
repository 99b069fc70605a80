"""Argument parsing shared by the tool implementations.

This is the only place the wall clock is read; engines always receive ``now``.
"""

from __future__ import annotations

from datetime import datetime, timezone

from dealer_mcp.config import business_hours_from_env
from dealer_mcp.normalization import parse_iso_datetime


def resolve_now(as_of: str = "") -> datetime:
    """Parse an optional ``as_of`` override, defaulting to the current UTC time.

    Raises ``ValueError`` with a user-facing message when unparseable.
    """
    if not as_of or not as_of.strip():
        return datetime.now(timezone.utc)
    parsed = parse_iso_datetime(as_of)
    if parsed is None:
        raise ValueError("Error: as_of must be an ISO-8601 timestamp.")
    return parsed


def resolve_showroom_now(as_of: str = "") -> datetime:
    """Like :func:`resolve_now`, expressed in showroom wall time.

    Calendar windows (month boundaries, "today") are cut on this clock.
    """
    return business_hours_from_env().local(resolve_now(as_of))


def require_timestamp(value: str, *, label: str) -> datetime:
    parsed = parse_iso_datetime(value)
    if parsed is None:
        raise ValueError(f"Error: {label} must be an ISO-8601 timestamp.")
    return parsed


def validate_limit(limit: int, *, maximum: int) -> str | None:
    """Return a validation message, or ``None`` when the limit is usable."""
    if limit <= 0:
        return "Limit must be greater than 0."
    if limit > maximum:
        return f"Limit must be {maximum} or fewer."
    return None
