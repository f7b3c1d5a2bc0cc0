"""
Unit Tests for Retry Decisions
==============================
"""

import os
import sys
import unittest
from datetime import timedelta

# Add parent directory for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from geodb_update.retry import ABANDON, next_retry


class TestNextRetry(unittest.TestCase):
    """Test the backoff decision function."""

    def test_first_failure_retries_after_base_delay(self):
        decision = next_retry(attempt=1, elapsed=0, budget=300)

        self.assertTrue(decision.retry)
        self.assertEqual(decision.delay, 1.0)

    def test_delay_doubles_and_is_capped(self):
        delays = [next_retry(attempt, 0, 3600).delay for attempt in range(1, 9)]

        self.assertEqual(delays, [1.0, 2.0, 4.0, 8.0, 16.0, 32.0, 60.0, 60.0])

    def test_abandons_once_budget_elapsed(self):
        self.assertEqual(next_retry(attempt=5, elapsed=300, budget=300), ABANDON)
        self.assertEqual(next_retry(attempt=5, elapsed=301.5, budget=300), ABANDON)

    def test_delay_never_exceeds_remaining_budget(self):
        decision = next_retry(attempt=6, elapsed=295, budget=300)

        self.assertTrue(decision.retry)
        self.assertEqual(decision.delay, 5.0)

    def test_zero_budget_allows_single_attempt(self):
        self.assertFalse(next_retry(attempt=1, elapsed=0, budget=0).retry)

    def test_accepts_timedelta(self):
        decision = next_retry(attempt=1, elapsed=timedelta(seconds=10), budget=timedelta(minutes=5))

        self.assertTrue(decision.retry)
        self.assertEqual(decision.delay, 1.0)

    def test_custom_backoff(self):
        decision = next_retry(attempt=3, elapsed=0, budget=100, base_delay=0.5, max_delay=1.5)

        self.assertEqual(decision.delay, 1.5)

    def test_invalid_attempt(self):
        with self.assertRaises(ValueError):
            next_retry(attempt=0, elapsed=0, budget=10)


if __name__ == '__main__':
    unittest.main()
