"""
Unit tests for job locking (keepsafe/backup/lock.py).
"""

import os
import signal
import time
from unittest.mock import patch

import pytest

from keepsafe.backup.errors import JobInterrupted, LockHeld
from keepsafe.backup.lock import LockCoordinator, interrupt_on_signals


@pytest.fixture
def lock_path(tmp_path):
    return str(tmp_path / 'keepsafe.lock')


class TestLockCoordinator:
    """Test LockCoordinator acquire/release semantics."""

    def test_acquire_creates_empty_lock_file(self, lock_path):
        """Test the lock is a plain, empty file."""
        lock = LockCoordinator(lock_path)

        lock.acquire()

        assert lock.is_held
        assert os.path.exists(lock_path)
        assert os.path.getsize(lock_path) == 0
        lock.release()

    def test_second_acquire_fails(self, lock_path):
        """Test a second holder is refused immediately."""
        first = LockCoordinator(lock_path)
        first.acquire()

        second = LockCoordinator(lock_path)
        with pytest.raises(LockHeld, match="Another backup is in progress"):
            second.acquire()

        assert not second.is_held
        first.release()

    def test_existing_lock_file_blocks(self, lock_path):
        """Test a lock left by another process blocks acquisition."""
        open(lock_path, 'w').close()

        with pytest.raises(LockHeld):
            with LockCoordinator(lock_path):
                pytest.fail("body must not run while the lock is held")

        # Not ours, so it stays
        assert os.path.exists(lock_path)

    def test_release_removes_lock_file(self, lock_path):
        """Test release removes the lock so it can be taken again."""
        lock = LockCoordinator(lock_path)
        lock.acquire()
        lock.release()

        assert not os.path.exists(lock_path)
        LockCoordinator(lock_path).acquire()

    def test_release_runs_once(self, lock_path):
        """Test only the first release removes anything."""
        lock = LockCoordinator(lock_path)
        lock.acquire()
        lock.release()

        # Someone else takes the lock; our stale release must not remove it
        open(lock_path, 'w').close()
        lock.release()

        assert os.path.exists(lock_path)

    def test_context_manager_releases_on_error(self, lock_path):
        """Test the lock is released when the body raises."""
        with pytest.raises(RuntimeError):
            with LockCoordinator(lock_path):
                assert os.path.exists(lock_path)
                raise RuntimeError("boom")

        assert not os.path.exists(lock_path)

    def test_context_manager_releases_on_interrupt(self, lock_path):
        """Test the lock is released on KeyboardInterrupt."""
        with pytest.raises(KeyboardInterrupt):
            with LockCoordinator(lock_path):
                raise KeyboardInterrupt()

        assert not os.path.exists(lock_path)


class TestInterruptOnSignals:
    """Test termination signal handling."""

    def test_sigterm_raises_job_interrupted(self, lock_path):
        """Test SIGTERM unwinds through the lock's cleanup."""
        with pytest.raises(JobInterrupted) as exc_info:
            with interrupt_on_signals():
                with LockCoordinator(lock_path):
                    os.kill(os.getpid(), signal.SIGTERM)
                    time.sleep(5)

        assert exc_info.value.signum == signal.SIGTERM
        assert not os.path.exists(lock_path)

    def test_handlers_restored(self):
        """Test previous handlers are put back afterwards."""
        before = signal.getsignal(signal.SIGTERM)

        with interrupt_on_signals():
            assert signal.getsignal(signal.SIGTERM) is not before

        assert signal.getsignal(signal.SIGTERM) == before

    def test_signal_during_release_still_removes_lock(self, lock_path):
        """Test a SIGTERM arriving while the lock is released is deferred until it is gone."""
        real_remove = os.remove

        def remove_after_signal(path):
            os.kill(os.getpid(), signal.SIGTERM)
            real_remove(path)

        lock = LockCoordinator(lock_path)
        with pytest.raises(JobInterrupted):
            with interrupt_on_signals():
                lock.acquire()
                with patch('keepsafe.backup.lock.os.remove', side_effect=remove_after_signal):
                    lock.release()
                time.sleep(5)

        assert not os.path.exists(lock_path)
        assert not lock.is_held
