"""Tests for backend session construction."""

import unittest

from capacity_planner.utils.http_client import (
    DEFAULT_TIMEOUT,
    RETRY_METHODS,
    backend_retry_policy,
    build_backend_session,
)


class BackendSessionTests(unittest.TestCase):
    def test_adapters_mounted_for_both_schemes(self):
        session = build_backend_session()
        for url in ("http://backend.local/api", "https://backend.local/api"):
            self.assertEqual(session.get_adapter(url).max_retries.total, 3)

    def test_retry_budget_and_backoff(self):
        session = build_backend_session(retries=5, backoff_factor=0.5)
        retry = session.get_adapter("https://backend.local").max_retries
        self.assertEqual(retry.total, 5)
        self.assertEqual(retry.backoff_factor, 0.5)
        self.assertFalse(retry.raise_on_status)

    def test_headers_applied(self):
        session = build_backend_session(headers={"Authorization": "Bearer abc"})
        self.assertEqual(session.headers["Authorization"], "Bearer abc")

    def test_default_timeout(self):
        self.assertEqual(DEFAULT_TIMEOUT, 10)


class RetryPolicyTests(unittest.TestCase):
    def test_transient_statuses(self):
        retry = backend_retry_policy()
        self.assertIn(503, retry.status_forcelist)
        self.assertIn(429, retry.status_forcelist)
        self.assertNotIn(404, retry.status_forcelist)

    def test_post_is_never_replayed(self):
        retry = backend_retry_policy()
        self.assertNotIn("POST", retry.allowed_methods)
        self.assertIn("PUT", retry.allowed_methods)
        self.assertNotIn("POST", RETRY_METHODS)


if __name__ == "__main__":
    unittest.main()
