"""
Process-wide mutual exclusion between backup jobs.

The lock is a plain file at a well-known path. Its existence is the whole
token: no pid, no owner, no reentrancy. Acquisition never waits.
"""

import os
import signal
from contextlib import contextmanager
from typing import Iterator

from keepsafe import logger
from .errors import BackupError, LockHeld, JobInterrupted


# Signals that terminate a job through the normal cleanup path
TERMINATION_SIGNALS = tuple(
    getattr(signal, name) for name in ('SIGTERM', 'SIGHUP') if hasattr(signal, name)
)


class LockCoordinator:
    """
    Owner of the job lock file.

    Use as a context manager so release runs on every exit path:

        with LockCoordinator(path):
            ...
    """

    def __init__(self, lock_path: str):
        self.lock_path = lock_path
        self._held = False

    @property
    def is_held(self) -> bool:
        return self._held

    def acquire(self):
        """
        Create the lock file.

        Raises:
            LockHeld: If the lock file already exists
        """
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            raise LockHeld(
                f"Another backup is in progress (lock file exists: {self.lock_path})"
            )
        except OSError as e:
            raise BackupError(f"Cannot create lock file {self.lock_path}: {e}") from e
        os.close(fd)
        self._held = True
        logger.debug(f"Acquired lock {self.lock_path}")

    def release(self):
        """
        Remove the lock file. Only the first call has any effect.

        Termination signals are held back until the file is gone, so a
        SIGTERM arriving mid-release cannot leave the lock behind.
        """
        if not self._held:
            return
        with termination_signals_blocked():
            try:
                os.remove(self.lock_path)
            except FileNotFoundError:
                logger.warning(f"Lock file already gone: {self.lock_path}")
            finally:
                self._held = False
            logger.debug(f"Released lock {self.lock_path}")

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.release()
        return False


@contextmanager
def termination_signals_blocked() -> Iterator[None]:
    """Defer delivery of termination signals until the block exits."""
    if not TERMINATION_SIGNALS or not hasattr(signal, 'pthread_sigmask'):
        yield
        return
    previous = signal.pthread_sigmask(signal.SIG_BLOCK, TERMINATION_SIGNALS)
    try:
        yield
    finally:
        signal.pthread_sigmask(signal.SIG_SETMASK, previous)


def _raise_interrupted(signum, frame):
    raise JobInterrupted(signum)


@contextmanager
def interrupt_on_signals() -> Iterator[None]:
    """
    Turn termination signals into JobInterrupted while the block runs.

    SIGINT already raises KeyboardInterrupt; this gives SIGTERM and SIGHUP
    the same unwinding so every finally block and __exit__ still runs.
    Handlers can only be installed from the main thread; elsewhere this is
    a no-op.
    """
    previous = {}
    try:
        for signum in TERMINATION_SIGNALS:
            previous[signum] = signal.signal(signum, _raise_interrupted)
    except ValueError:
        logger.debug("Not in main thread, termination signals left untouched")

    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
