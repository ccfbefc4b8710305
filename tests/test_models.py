"""Tests for models.py: the notification email log."""

from datetime import datetime

import pytest

from errors import ClientInputError
from models import _get_db, count_notifications, record_notification, validate_email


class TestValidateEmail:
    @pytest.mark.parametrize("email", ["a@b.co", "  user.name+tag@example.org  "])
    def test_valid(self, email):
        assert validate_email(email) == email.strip()

    @pytest.mark.parametrize("email", ["no-at-sign", "a@b", "a @b.co", "@b.co", "a@.co@"])
    def test_invalid(self, email):
        with pytest.raises(ClientInputError, match="Invalid email format"):
            validate_email(email)

    @pytest.mark.parametrize("email", [5, 0, ["a@b.co"], {"email": "a@b.co"}])
    def test_non_string_rejected(self, email):
        with pytest.raises(ClientInputError, match="Invalid email format"):
            validate_email(email)

    @pytest.mark.parametrize("email", [None, "", "   "])
    def test_missing(self, email):
        with pytest.raises(ClientInputError, match="Missing email"):
            validate_email(email)


class TestRecordNotification:
    def test_appends_row(self):
        ts = record_notification("user@example.com", "6019001000")

        assert count_notifications() == 1
        conn = _get_db()
        row = conn.execute("SELECT created_at, tract, email FROM notifications").fetchone()
        conn.close()
        assert row["email"] == "user@example.com"
        assert row["tract"] == "6019001000"
        assert row["created_at"] == ts
        datetime.fromisoformat(ts)

    def test_tract_optional(self):
        record_notification("user@example.com")
        conn = _get_db()
        row = conn.execute("SELECT tract FROM notifications").fetchone()
        conn.close()
        assert row["tract"] == ""

    def test_numeric_tract_stored_as_text(self):
        record_notification("user@example.com", 6019001000)
        conn = _get_db()
        row = conn.execute("SELECT tract FROM notifications").fetchone()
        conn.close()
        assert row["tract"] == "6019001000"

    def test_no_dedup(self):
        record_notification("user@example.com", "1")
        record_notification("user@example.com", "1")
        assert count_notifications() == 2

    def test_invalid_email_leaves_log_unchanged(self):
        record_notification("user@example.com")
        with pytest.raises(ClientInputError):
            record_notification("not-an-email", "1")
        assert count_notifications() == 1
