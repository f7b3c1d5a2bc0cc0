"""
Unit Tests for the Process Lock
===============================
"""

import os
import sys
import shutil
import tempfile
import unittest

# Add parent directory for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from geodb_update.errors import LockHeldError
from geodb_update.lock import ProcessLock, acquire_lock


class TestProcessLock(unittest.TestCase):
    """Test exclusive, non-blocking locking."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp(prefix='geodb_lock_')
        self.lock_path = os.path.join(self.temp_dir, 'sub', 'dir', '.geoipupdate.lock')

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_acquire_creates_lock_file_and_directories(self):
        lock = acquire_lock(self.lock_path)
        try:
            self.assertTrue(lock.is_held)
            self.assertTrue(os.path.exists(self.lock_path))
        finally:
            lock.release()

        self.assertFalse(lock.is_held)

    def test_second_acquire_fails_immediately(self):
        with ProcessLock(self.lock_path):
            with self.assertRaises(LockHeldError) as ctx:
                ProcessLock(self.lock_path).acquire()

        self.assertEqual(ctx.exception.lock_path, self.lock_path)

    def test_lock_available_after_release(self):
        first = acquire_lock(self.lock_path)
        first.release()

        second = acquire_lock(self.lock_path)
        self.assertTrue(second.is_held)
        second.release()

    def test_release_is_idempotent(self):
        lock = acquire_lock(self.lock_path)
        lock.release()
        lock.release()

        never_acquired = ProcessLock(self.lock_path)
        never_acquired.release()

    def test_released_when_block_raises(self):
        with self.assertRaises(RuntimeError):
            with ProcessLock(self.lock_path):
                raise RuntimeError("boom")

        lock = acquire_lock(self.lock_path)
        lock.release()


if __name__ == '__main__':
    unittest.main()
