"""Tests for utils/timezone.py - UTC time and ticket date handling."""

from datetime import date, datetime, timezone

import pytest

from utils.timezone import now_utc, parse_entry_date, two_digit_year


class TestNowUtc:
    """Tests for now_utc()."""

    def test_returns_timezone_aware(self):
        """Result must have tzinfo set (not naive)."""
        assert now_utc().tzinfo is not None

    def test_is_utc(self):
        assert now_utc().tzinfo == timezone.utc


class TestTwoDigitYear:
    """Tests for two_digit_year()."""

    def test_from_datetime(self):
        assert two_digit_year(datetime(2026, 12, 31, 23, 0, tzinfo=timezone.utc)) == 26

    def test_from_date(self):
        assert two_digit_year(date(2105, 1, 1)) == 5

    def test_defaults_to_now(self):
        assert two_digit_year() == now_utc().year % 100


class TestParseEntryDate:
    """Tests for parse_entry_date()."""

    def test_iso_string(self):
        assert parse_entry_date("2026-02-10") == date(2026, 2, 10)

    def test_date_passthrough(self):
        assert parse_entry_date(date(2026, 2, 10)) == date(2026, 2, 10)

    def test_rejects_datetime(self):
        with pytest.raises(ValueError, match="calendar days"):
            parse_entry_date(datetime(2026, 2, 10, tzinfo=timezone.utc))

    def test_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_entry_date("10/02/2026")
