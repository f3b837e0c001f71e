"""
Data model for a single backup invocation.

A BackupJob is built once from resolved inputs and never changes. The
executor threads a JobResult through the pipeline and each step fills in
its own part of it.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple


class BackupMode(str, Enum):
    COPY = 'copy'
    COMPRESSED = 'compressed'


class DigestAlgorithm(str, Enum):
    MD5 = 'md5'
    SHA256 = 'sha256'
    SHA512 = 'sha512'


@dataclass(frozen=True)
class BackupJob:
    """A fully resolved backup request."""

    source: str
    destination: str
    name: str
    mode: BackupMode = BackupMode.COPY
    exclude_patterns: Tuple[str, ...] = ()
    retain: int = 0
    algorithm: Optional[DigestAlgorithm] = None
    verify: bool = False
    dry_run: bool = False

    @property
    def name_prefix(self) -> str:
        """Prefix shared by every generation of this backup (source basename)."""
        return os.path.basename(self.source)

    @property
    def artifact_name(self) -> str:
        if self.mode == BackupMode.COMPRESSED:
            return f"{self.name}.tar.gz"
        return self.name

    @property
    def artifact_path(self) -> str:
        return os.path.join(self.destination, self.artifact_name)


@dataclass
class Artifact:
    """The produced backup: an archive file or a copied tree."""

    path: str
    size: int
    created_at: datetime
    is_archive: bool = False
    is_directory: bool = False


@dataclass
class ChecksumRecord:
    """Sidecar file holding the digest(s) of an artifact."""

    path: str
    algorithm: DigestAlgorithm
    entries: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def digest(self) -> Optional[str]:
        """Digest of a single-file artifact, None for tree manifests."""
        if len(self.entries) == 1:
            return self.entries[0][0]
        return None


@dataclass
class RotationResult:
    kept: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


@dataclass
class JobResult:
    """Outcome of one backup invocation."""

    job: BackupJob
    status: str = 'running'
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    artifact: Optional[Artifact] = None
    checksum: Optional[ChecksumRecord] = None
    verified: Optional[bool] = None
    rotation: Optional[RotationResult] = None
    plan: List[str] = field(default_factory=list)
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    logs: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status in ('success', 'dry-run')

    @property
    def elapsed_seconds(self) -> float:
        end = self.completed_at or datetime.now()
        return (end - self.started_at).total_seconds()
