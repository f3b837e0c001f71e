"""
Post-creation integrity checks.

An artifact with a checksum sidecar is checked by recomputing its digest.
A compressed archive without one is checked structurally: the gzip stream
is read to the end and the tar listing parsed, nothing is extracted.
A failed check never removes the artifact.
"""

import gzip
import os
import tarfile
import zlib
from typing import List, Optional

from keepsafe import logger
from keepsafe.models import DigestAlgorithm
from .checksum import DEFAULT_CHUNK_SIZE, compute_digest, parse_sidecar, sidecar_path
from .compression import ARCHIVE_EXTENSION
from .errors import VerificationFailed


class VerificationService:
    """Confirms the integrity of a finished artifact."""

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.chunk_size = chunk_size

    def verify(self, artifact_path: str, algorithm: Optional[DigestAlgorithm] = None) -> str:
        """
        Verify an artifact.

        Args:
            artifact_path: Path of the archive or copied tree
            algorithm: Digest algorithm of the sidecar, None if no checksum was made

        Returns:
            How it was verified: 'checksum', 'archive' or 'skipped'

        Raises:
            VerificationFailed: On digest mismatch or unreadable archive
        """
        if algorithm is not None:
            self.verify_checksum(artifact_path, algorithm)
            return 'checksum'

        if artifact_path.endswith(f".{ARCHIVE_EXTENSION}") and os.path.isfile(artifact_path):
            self.verify_archive(artifact_path)
            return 'archive'

        logger.info(f"Nothing to verify for {artifact_path}")
        return 'skipped'

    def verify_checksum(self, artifact_path: str, algorithm: DigestAlgorithm):
        """
        Recompute digests and compare them with the sidecar.

        Raises:
            VerificationFailed: If the sidecar is missing or unreadable, or a digest differs
        """
        path = sidecar_path(artifact_path, algorithm)
        if not os.path.isfile(path):
            raise VerificationFailed(f"Checksum file not found: {path}")

        try:
            record = parse_sidecar(path, algorithm)
        except (OSError, ValueError) as e:
            raise VerificationFailed(f"Cannot read checksum file {path}: {e}") from e

        base = os.path.dirname(path)
        mismatched: List[str] = []

        for expected, name in record.entries:
            target = os.path.join(base, name)
            try:
                actual = compute_digest(target, algorithm, self.chunk_size)
            except OSError as e:
                raise VerificationFailed(f"Cannot read {target}: {e}") from e
            if actual != expected:
                mismatched.append(name)

        if mismatched:
            raise VerificationFailed(
                f"Checksum mismatch for {artifact_path}: {', '.join(mismatched)}"
            )

        logger.info(f"Checksum verified ({algorithm.value}): {artifact_path}")

    def verify_archive(self, archive_path: str) -> int:
        """
        Check that a tar.gz archive can be read from end to end.

        Returns:
            Number of members in the archive

        Raises:
            VerificationFailed: If decompression or the tar listing fails
        """
        try:
            # Reading the gzip stream to the end checks its CRC and length
            with gzip.open(archive_path, 'rb') as f:
                while f.read(self.chunk_size):
                    pass

            with tarfile.open(archive_path, 'r:gz') as tar:
                members = tar.getmembers()
        except (OSError, EOFError, zlib.error, tarfile.TarError) as e:
            raise VerificationFailed(f"Archive is corrupt: {archive_path}: {e}") from e

        logger.info(f"Archive listing verified ({len(members)} members): {archive_path}")
        return len(members)
