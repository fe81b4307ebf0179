import unittest
from unittest.mock import MagicMock

from uasf.core.throttler import RateLimiter
from uasf.errors import ConfigurationError, ScopeViolationError
from uasf.safety_lock import ScopeGuard, origin_of, scope_regex_for


class TestScopeGuard(unittest.TestCase):
    def test_match_is_anchored_at_start(self):
        guard = ScopeGuard(r"https://app\.test")
        self.assertTrue(guard.check("https://app.test/login"))
        with self.assertLogs("uasf.scope", level="ERROR"):
            self.assertFalse(guard.check("http://evil.test/?u=https://app.test"))

    def test_violation_is_audited(self):
        audit = MagicMock()
        guard = ScopeGuard(r"^https://app\.test", audit=audit)
        with self.assertLogs("uasf.scope", level="ERROR"):
            self.assertFalse(guard.check("https://other.test/"))
        audit.log_event.assert_called_once_with(
            "SCOPE_VIOLATION", {"url": "https://other.test/", "scope_regex": r"^https://app\.test"})

    def test_require_raises(self):
        guard = ScopeGuard(r"^https://app\.test")
        guard.require("https://app.test/")
        with self.assertLogs("uasf.scope", level="ERROR"):
            with self.assertRaises(ScopeViolationError) as ctx:
                guard.require("https://other.test/")
        self.assertIn("does not match scope regex", str(ctx.exception))

    def test_invalid_pattern(self):
        with self.assertRaises(ConfigurationError):
            ScopeGuard("([unclosed")


class TestDerivedScope(unittest.TestCase):
    def test_origin_of(self):
        self.assertEqual(origin_of("https://api.example.com/v1?x=1"), "https://api.example.com")
        self.assertEqual(origin_of("http://127.0.0.1:8080"), "http://127.0.0.1:8080")
        with self.assertRaises(ConfigurationError):
            origin_of("ftp://example.com")

    def test_scope_regex_rejects_look_alike_hosts(self):
        guard = ScopeGuard(scope_regex_for("https://api.example.com/v1"))
        self.assertTrue(guard.check("https://api.example.com"))
        self.assertTrue(guard.check("https://api.example.com/v1/users"))
        self.assertTrue(guard.check("https://api.example.com?q=1"))
        with self.assertLogs("uasf.scope", level="ERROR"):
            self.assertFalse(guard.check("https://api.example.com.attacker.net/"))
            self.assertFalse(guard.check("https://apiXexample.com/"))
            self.assertFalse(guard.check("http://api.example.com/"))


class TestRateLimiter(unittest.TestCase):
    def test_sleeps_full_interval_every_call(self):
        sleep = MagicMock()
        limiter = RateLimiter(4, sleep=sleep)
        for _ in range(3):
            limiter.throttle()
        self.assertEqual(sleep.call_count, 3)
        sleep.assert_called_with(0.25)
        self.assertEqual(limiter.calls, 3)
        self.assertEqual(limiter.describe(), "4 requests/second")

    def test_zero_disables_delay(self):
        sleep = MagicMock()
        limiter = RateLimiter(0, sleep=sleep)
        limiter.throttle()
        sleep.assert_not_called()
        self.assertEqual(limiter.interval, 0.0)
        self.assertEqual(limiter.describe(), "unlimited")

    def test_rejects_invalid_rates(self):
        for bad in (-1, 1.5, True, "5"):
            with self.assertRaises(ValueError):
                RateLimiter(bad)


if __name__ == '__main__':
    unittest.main()
