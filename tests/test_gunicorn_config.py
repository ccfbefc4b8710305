"""Tests for gunicorn_config.py hooks."""

from unittest.mock import MagicMock, patch

import pytest

import gunicorn_config
from gunicorn_config import boot_smoke_url, run_boot_smoke, when_ready


class TestBootSmokeUrl:
    @pytest.mark.parametrize("env", [{}, {"SMOKE_TEST_ON_BOOT": ""}, {"SMOKE_TEST_ON_BOOT": "0"}])
    def test_off_by_default(self, env):
        assert boot_smoke_url(env) is None

    def test_localhost_on_port(self):
        assert boot_smoke_url({"SMOKE_TEST_ON_BOOT": "1", "PORT": "5001"}) == "http://127.0.0.1:5001"
        assert boot_smoke_url({"SMOKE_TEST_ON_BOOT": "true"}) == "http://127.0.0.1:8000"

    def test_explicit_base_url(self):
        env = {"SMOKE_TEST_ON_BOOT": "yes", "SMOKE_BASE_URL": "https://lookup.test/"}
        assert boot_smoke_url(env) == "https://lookup.test"


class TestWhenReady:
    def test_no_thread_when_disabled(self, monkeypatch):
        monkeypatch.delenv("SMOKE_TEST_ON_BOOT", raising=False)
        with patch.object(gunicorn_config.threading, "Thread") as mock_thread:
            assert when_ready(MagicMock()) is None
        mock_thread.assert_not_called()

    def test_starts_smoke_thread_when_enabled(self, monkeypatch):
        monkeypatch.setenv("SMOKE_TEST_ON_BOOT", "1")
        monkeypatch.setenv("PORT", "9100")
        monkeypatch.delenv("SMOKE_BASE_URL", raising=False)
        with patch.object(gunicorn_config.threading, "Thread") as mock_thread:
            when_ready(MagicMock())

        kwargs = mock_thread.call_args.kwargs
        assert kwargs["target"] is run_boot_smoke
        assert kwargs["args"] == ("http://127.0.0.1:9100",)
        mock_thread.return_value.start.assert_called_once()


class TestRunBootSmoke:
    @pytest.mark.parametrize("passed", [True, False])
    def test_returns_suite_result(self, passed):
        with patch("smoke_test.run_tests", return_value=passed) as mock_run:
            assert run_boot_smoke("http://127.0.0.1:8000", delay=0) is passed
        mock_run.assert_called_once_with("http://127.0.0.1:8000")

    def test_crash_is_logged_as_failure(self):
        with patch("smoke_test.run_tests", side_effect=ConnectionError("refused")):
            assert run_boot_smoke("http://127.0.0.1:8000", delay=0) is False


class TestPostFork:
    def test_starts_monitor_with_overlay_url(self, monkeypatch):
        monkeypatch.setenv("OVERLAY_SERVICE_URL", "https://gis.test/execute")
        with patch("health_monitor.start_monitor") as mock_start:
            gunicorn_config.post_fork(MagicMock(), MagicMock(pid=42))
        mock_start.assert_called_once_with("https://gis.test/execute")
