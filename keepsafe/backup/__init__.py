"""
Backup module for Keepsafe.

This module handles the backup pipeline:
- Path resolution and validation
- Job locking
- Archive creation and copying
- Checksums and verification
- Retention of old generations
- Execution orchestration
"""

from .executor import BackupExecutor, build_job, execute_backup
from .lock import LockCoordinator
from .compression import ArchiveBuilder, create_archive, copy_tree
from .checksum import ChecksumService
from .verification import VerificationService
from .retention import RetentionManager
from .reporter import Reporter

__all__ = [
    'BackupExecutor',
    'build_job',
    'execute_backup',
    'LockCoordinator',
    'ArchiveBuilder',
    'create_archive',
    'copy_tree',
    'ChecksumService',
    'VerificationService',
    'RetentionManager',
    'Reporter'
]
