"""Tests for environment-driven settings."""

import logging
import os
import unittest
from unittest.mock import patch

from capacity_planner.config import Settings, configure_logging


class SettingsFromEnvTests(unittest.TestCase):
    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings.from_env(load_dotenv_file=False)
        self.assertEqual(settings.api_base_url, "http://localhost:5000/api")
        self.assertEqual(settings.cache_ttl, 300)
        self.assertEqual(settings.alert_warning_threshold, 85.0)
        self.assertIsNone(settings.alert_error_threshold)
        self.assertIsNone(settings.api_token)

    def test_overrides(self):
        env = {
            "CAPACITY_API_BASE_URL": "https://capacity.example.com/api/",
            "CAPACITY_API_TOKEN": "abc",
            "CAPACITY_CACHE_TTL": "60",
            "ALERT_ERROR_THRESHOLD": "110",
            "ALERT_CRITICAL_THRESHOLD": "120",
            "SAVE_MAX_WORKERS": "0",
            "LOG_LEVEL": "debug",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env(load_dotenv_file=False)
        self.assertEqual(settings.api_base_url, "https://capacity.example.com/api")
        self.assertEqual(settings.api_token, "abc")
        self.assertEqual(settings.cache_ttl, 60)
        self.assertEqual(settings.alert_error_threshold, 110.0)
        self.assertEqual(settings.save_max_workers, 1)
        self.assertEqual(settings.log_level, "DEBUG")

    def test_non_numeric_values_fall_back(self):
        with patch.dict(os.environ, {"HTTP_TIMEOUT": "soon"}, clear=True):
            with self.assertLogs("capacity_planner.config", level="WARNING"):
                settings = Settings.from_env(load_dotenv_file=False)
        self.assertEqual(settings.http_timeout, 10)

    def test_secret_is_hidden_from_repr(self):
        self.assertNotIn("top-secret", repr(Settings(session_secret="top-secret")))

    def test_configure_logging_sets_level(self):
        root = logging.getLogger()
        previous = root.level
        try:
            configure_logging(Settings(log_level="ERROR"))
            self.assertEqual(root.level, logging.ERROR)
        finally:
            root.setLevel(previous)


if __name__ == "__main__":
    unittest.main()
