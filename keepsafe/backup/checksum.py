"""
Checksum sidecars for backup artifacts.

The sidecar lives next to the artifact as {artifact}.{algorithm} and uses
the "digest  filename" line format of md5sum/sha256sum/sha512sum, so it
can be checked with those tools from the destination directory.
"""

import hashlib
import os
from pathlib import Path
from typing import FrozenSet, Iterator, List, Optional, Tuple

from keepsafe import logger
from keepsafe.models import Artifact, ChecksumRecord, DigestAlgorithm
from .errors import CreationFailed, UnsupportedAlgorithm


DEFAULT_CHUNK_SIZE = 1024 * 1024

SIDECAR_EXTENSIONS = tuple(f".{algorithm.value}" for algorithm in DigestAlgorithm)


def _new_hash(algorithm: DigestAlgorithm):
    # Integrity checks only, so FIPS builds may still offer md5
    return hashlib.new(algorithm.value, usedforsecurity=False)


def detect_algorithms() -> FrozenSet[DigestAlgorithm]:
    """
    Probe which digest algorithms this interpreter can compute.

    Returns:
        Set of usable DigestAlgorithm members
    """
    available = set()
    for algorithm in DigestAlgorithm:
        try:
            _new_hash(algorithm)
        except ValueError:
            logger.debug(f"Digest algorithm unavailable: {algorithm.value}")
            continue
        available.add(algorithm)
    return frozenset(available)


def resolve_algorithm(
    name: Optional[str],
    available: Optional[FrozenSet[DigestAlgorithm]] = None
) -> Optional[DigestAlgorithm]:
    """
    Turn an algorithm name into a usable DigestAlgorithm.

    Args:
        name: Algorithm name as given by the operator, or None for no checksum
        available: Result of detect_algorithms(); probed when not given

    Returns:
        DigestAlgorithm, or None when no checksum was requested

    Raises:
        UnsupportedAlgorithm: If the name is unknown or cannot be computed here
    """
    if not name:
        return None

    try:
        algorithm = DigestAlgorithm(name.strip().lower())
    except ValueError:
        raise UnsupportedAlgorithm(
            f"Unsupported checksum algorithm: {name}. "
            f"Valid options: {[a.value for a in DigestAlgorithm]}"
        )

    if available is None:
        available = detect_algorithms()

    if algorithm not in available:
        raise UnsupportedAlgorithm(
            f"Checksum algorithm {algorithm.value} is not available on this system"
        )

    return algorithm


def compute_digest(path: str, algorithm: DigestAlgorithm, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """Hex digest of a file, read in chunks."""
    digest = _new_hash(algorithm)
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(chunk_size), b''):
            digest.update(chunk)
    return digest.hexdigest()


def sidecar_path(artifact_path: str, algorithm: DigestAlgorithm) -> str:
    return f"{artifact_path}.{algorithm.value}"


def is_sidecar(filename: str) -> bool:
    return filename.endswith(SIDECAR_EXTENSIONS)


def parse_sidecar(path: str, algorithm: DigestAlgorithm) -> ChecksumRecord:
    """
    Read a sidecar written by write_sidecar() or a checksum tool.

    Lines are "digest  name" (text mode) or "digest *name" (binary mode).

    Raises:
        OSError: If the sidecar cannot be read
        ValueError: If a line is malformed
    """
    entries = []
    with open(path, 'r', encoding='utf-8') as f:
        for line_number, line in enumerate(f, 1):
            line = line.rstrip('\n')
            if not line.strip():
                continue
            digest, sep, name = line.partition(' ')
            if not sep or not digest or not name or name[0] not in (' ', '*'):
                raise ValueError(f"Malformed checksum line {line_number} in {path}")
            entries.append((digest.lower(), name[1:]))

    if not entries:
        raise ValueError(f"Checksum file is empty: {path}")

    return ChecksumRecord(path=path, algorithm=algorithm, entries=entries)


class ChecksumService:
    """Computes digests of artifacts and persists them as sidecars."""

    def __init__(self, algorithm: DigestAlgorithm, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.algorithm = algorithm
        self.chunk_size = chunk_size

    def _iter_files(self, artifact_path: str) -> Iterator[Tuple[str, str]]:
        """
        Yield (full path, name as listed in the sidecar) for an artifact.

        Tree members are listed relative to the destination directory.
        """
        if not os.path.isdir(artifact_path) or os.path.islink(artifact_path):
            yield artifact_path, os.path.basename(artifact_path)
            return

        base = os.path.dirname(artifact_path)
        for directory, subdirs, files in os.walk(artifact_path):
            subdirs.sort()
            for name in sorted(files):
                full_path = os.path.join(directory, name)
                if os.path.islink(full_path) or not os.path.isfile(full_path):
                    continue
                yield full_path, os.path.relpath(full_path, base).replace(os.sep, '/')

    def compute(self, artifact_path: str) -> List[Tuple[str, str]]:
        """Compute (digest, name) entries for an artifact."""
        return [
            (compute_digest(full_path, self.algorithm, self.chunk_size), name)
            for full_path, name in self._iter_files(artifact_path)
        ]

    def generate(self, artifact: Artifact) -> ChecksumRecord:
        """
        Compute the artifact's digest and write its sidecar.

        Returns:
            ChecksumRecord for the written sidecar

        Raises:
            CreationFailed: If the artifact cannot be read or the sidecar written
        """
        path = sidecar_path(artifact.path, self.algorithm)

        try:
            entries = self.compute(artifact.path)
            with open(path, 'w', encoding='utf-8') as f:
                for digest, name in entries:
                    f.write(f"{digest}  {name}\n")
        except (OSError, KeyboardInterrupt) as e:
            Path(path).unlink(missing_ok=True)
            raise CreationFailed(f"Failed to write checksum {path}: {e}") from e

        logger.info(f"Wrote {self.algorithm.value} checksum: {path}")
        return ChecksumRecord(path=path, algorithm=self.algorithm, entries=entries)
