"""
Error taxonomy for backup jobs.

Every expected failure of a job maps to one of these. None of them is
retried; the executor records the failure and the CLI exits non-zero.
"""


class BackupError(RuntimeError):
    """Base exception for all backup job failures."""


class InvalidSource(BackupError):
    """Raised when the source path does not exist or cannot be read."""


class InvalidDestination(BackupError):
    """Raised when the destination directory is missing or not writable."""


class LockHeld(BackupError):
    """Raised when another backup job already holds the lock."""


class UnsupportedAlgorithm(BackupError):
    """Raised when a digest algorithm is unknown or unavailable."""


class InvalidRetainValue(BackupError):
    """Raised when the retain count is not a non-negative integer."""


class CreationFailed(BackupError):
    """Raised when the backup artifact could not be created."""


class VerificationFailed(BackupError):
    """Raised when a finished artifact fails its integrity check."""


class JobInterrupted(KeyboardInterrupt):
    """Raised inside a running job when a termination signal arrives."""

    def __init__(self, signum: int):
        super().__init__(f"Interrupted by signal {signum}")
        self.signum = signum
