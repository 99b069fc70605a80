"""Normalization helper tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from dealer_mcp.normalization import (
    ensure_aware,
    normalize_email,
    normalize_name,
    normalize_phone,
    parse_iso_datetime,
    to_iso,
)


class TestContactNormalization:
    def test_phone_keeps_digits_only(self):
        assert normalize_phone("(734) 555-0001") == "7345550001"
        assert normalize_phone("734.555.0001") == "7345550001"

    def test_phone_empty(self):
        assert normalize_phone(None) == ""
        assert normalize_phone("") == ""

    def test_email_trims_and_lowercases(self):
        assert normalize_email("  Maria.Lopez@Example.COM ") == "maria.lopez@example.com"

    def test_name_trims_and_lowercases(self):
        assert normalize_name(" Smith ") == "smith"
        assert normalize_name(None) == ""


class TestTimestamps:
    def test_z_suffix(self):
        parsed = parse_iso_datetime("2026-03-11T15:00:00Z")
        assert parsed == datetime(2026, 3, 11, 15, 0, tzinfo=timezone.utc)

    def test_naive_treated_as_utc(self):
        parsed = parse_iso_datetime("2026-03-11T15:00:00")
        assert parsed is not None
        assert parsed.tzinfo is not None
        assert parsed.utcoffset() == timedelta(0)

    def test_offset_preserved(self):
        parsed = parse_iso_datetime("2026-03-11T10:00:00-05:00")
        assert parsed == datetime(2026, 3, 11, 15, 0, tzinfo=timezone.utc)

    def test_garbage_is_none(self):
        assert parse_iso_datetime("yesterday") is None
        assert parse_iso_datetime(None) is None
        assert parse_iso_datetime(12) is None

    def test_to_iso_round_trips_aware(self):
        value = ensure_aware(datetime(2026, 3, 11, 15, 0))
        assert parse_iso_datetime(to_iso(value)) == value
