"""Sliding window rate limiter."""

import unittest
from unittest import mock

from app.rate_limit import RateLimiter, RateLimitResult


class TestRateLimiter(unittest.TestCase):

    def test_allows_up_to_limit(self):
        limiter = RateLimiter(rpm=3)
        results = [limiter.check("org_a") for _ in range(4)]
        self.assertEqual([r.allowed for r in results], [True, True, True, False])
        self.assertEqual([r.remaining for r in results], [2, 1, 0, 0])

    def test_keys_are_independent(self):
        limiter = RateLimiter(rpm=1)
        self.assertTrue(limiter.allow("org_a"))
        self.assertTrue(limiter.allow("org_b"))
        self.assertFalse(limiter.allow("org_a"))

    def test_window_slides(self):
        limiter = RateLimiter(rpm=1, window_seconds=60)
        with mock.patch("app.rate_limit.time.time", return_value=1000.0):
            self.assertTrue(limiter.allow("org_a"))
        with mock.patch("app.rate_limit.time.time", return_value=1030.0):
            blocked = limiter.check("org_a")
        self.assertFalse(blocked.allowed)
        self.assertAlmostEqual(blocked.retry_after, 30.0)
        self.assertEqual(blocked.retry_after_seconds, 30)
        with mock.patch("app.rate_limit.time.time", return_value=1061.0):
            self.assertTrue(limiter.allow("org_a"))

    def test_stats_and_reset(self):
        limiter = RateLimiter(rpm=5)
        limiter.allow("org_a")
        limiter.allow("org_a")
        self.assertEqual(limiter.get_stats("org_a"), {
            "current": 2, "limit": 5, "remaining": 3, "window_seconds": 60,
        })
        limiter.reset("org_a")
        self.assertEqual(limiter.get_stats("org_a")["current"], 0)

    def test_reset_all(self):
        limiter = RateLimiter(rpm=1)
        limiter.allow("org_a")
        limiter.allow("org_b")
        limiter.reset()
        self.assertTrue(limiter.allow("org_a"))
        self.assertTrue(limiter.allow("org_b"))

    def test_zero_rpm_still_allows_one(self):
        self.assertTrue(RateLimiter(rpm=0).allow("org_a"))


class TestRetryAfter(unittest.TestCase):

    def test_rounds_up(self):
        self.assertEqual(RateLimitResult(False, 0, 0.0, retry_after=2.2).retry_after_seconds, 3)

    def test_minimum_one_second(self):
        self.assertEqual(RateLimitResult(False, 0, 0.0, retry_after=0.0).retry_after_seconds, 1)

    def test_allowed_has_none(self):
        self.assertEqual(RateLimitResult(True, 4, 0.0).retry_after_seconds, 0)


class TestQuotaHeaders(unittest.TestCase):

    def test_headers_report_quota(self):
        limiter = RateLimiter(rpm=2)
        with mock.patch("app.rate_limit.time.time", return_value=1000.25):
            result = limiter.check("org_a")
        self.assertEqual(result.headers(), {
            "X-RateLimit-Limit": "2",
            "X-RateLimit-Remaining": "1",
            "X-RateLimit-Reset": "1061",
        })

    def test_reset_tracks_oldest_request(self):
        limiter = RateLimiter(rpm=1)
        with mock.patch("app.rate_limit.time.time", return_value=1000.0):
            limiter.check("org_a")
        with mock.patch("app.rate_limit.time.time", return_value=1020.0):
            blocked = limiter.check("org_a")
        self.assertEqual(blocked.headers()["X-RateLimit-Reset"], "1060")
        self.assertEqual(blocked.headers()["X-RateLimit-Remaining"], "0")


if __name__ == "__main__":
    unittest.main()
