"""
Creation of backup artifacts.

Two modes:
- compressed: a gzip compressed tar of the source tree ({name}.tar.gz)
- copy: a recursive copy keeping permissions, timestamps and ownership

Exclude patterns apply in both modes while the tree is walked, so an
excluded directory is skipped together with everything below it.
"""

import os
import shlex
import shutil
import tarfile
from datetime import datetime
from fnmatch import fnmatch
from pathlib import Path
from typing import List, Optional, Sequence

from keepsafe import logger
from keepsafe.models import Artifact, BackupJob, BackupMode
from .errors import CreationFailed


ARCHIVE_EXTENSION = 'tar.gz'


def generate_backup_name(source_path: str, timestamp: bool = False) -> str:
    """
    Generate the backup name for a source.

    Format: {basename} or {basename}_{YYYYMMDD_HHMMSS}

    Args:
        source_path: Resolved source path
        timestamp: Append the current local time

    Returns:
        Name without any extension
    """
    name = os.path.basename(source_path)
    if timestamp:
        name = f"{name}_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
    return name


def strip_archive_extension(filename: str) -> str:
    """Strip the .tar.gz extension from a filename, if present."""
    suffix = f".{ARCHIVE_EXTENSION}"
    if filename.endswith(suffix):
        return filename[:-len(suffix)]
    return filename


def should_exclude(relative_path: str, exclude_patterns: Sequence[str]) -> bool:
    """
    Check if a member of the source tree should be excluded.

    A pattern matches when it matches the member's name, its path relative
    to the source root, or one of its leading directories.

    Args:
        relative_path: Path relative to the source root, '/' separated
        exclude_patterns: Glob patterns

    Returns:
        True if path matches any exclude pattern, False otherwise
    """
    if not exclude_patterns or not relative_path:
        return False

    parts = relative_path.split('/')
    prefixes = ['/'.join(parts[:i]) for i in range(1, len(parts) + 1)]

    for pattern in exclude_patterns:
        pattern = pattern.rstrip('/')
        if not pattern:
            continue
        if fnmatch(parts[-1], pattern):
            return True
        if any(fnmatch(prefix, pattern) for prefix in prefixes):
            return True
        # '**/name' style patterns match at any depth
        if pattern.startswith('**/') and fnmatch(parts[-1], pattern[3:]):
            return True

    return False


def is_skipped(path: str, skip_paths: Sequence[str]) -> bool:
    """Check if an absolute path is, or lies below, one of skip_paths."""
    return any(path == skip or path.startswith(skip.rstrip(os.sep) + os.sep) for skip in skip_paths)


def create_archive(
    source_path: str,
    archive_path: str,
    exclude_patterns: Sequence[str] = (),
    skip_paths: Sequence[str] = ()
) -> str:
    """
    Create a tar.gz archive of a file or directory.

    The archive holds the source under its basename, e.g. backing up
    /data/docs yields members docs, docs/a.txt, ...

    Args:
        source_path: File or directory to archive
        archive_path: Full path of the archive to write
        exclude_patterns: Glob patterns of members to leave out
        skip_paths: Absolute paths left out together with everything below them

    Returns:
        archive_path

    Raises:
        CreationFailed: If archive creation fails; nothing is left at archive_path
    """
    source = Path(source_path)
    root_name = source.name
    excluded = []

    def exclude_filter(tarinfo: tarfile.TarInfo) -> Optional[tarfile.TarInfo]:
        relative = tarinfo.name[len(root_name) + 1:]
        if relative and is_skipped(os.path.join(source_path, relative), skip_paths):
            return None
        if should_exclude(relative, exclude_patterns):
            excluded.append(tarinfo.name)
            return None
        return tarinfo

    try:
        if not source.exists():
            raise CreationFailed(f"Path does not exist: {source_path}")

        with tarfile.open(archive_path, 'w:gz') as tar:
            tar.add(source, arcname=root_name, recursive=True, filter=exclude_filter)
    except (Exception, KeyboardInterrupt) as e:
        # Clean up partial archive on failure
        _remove_path(archive_path)
        if isinstance(e, CreationFailed):
            raise
        raise CreationFailed(f"Failed to create archive: {e}") from e

    if excluded:
        logger.info(f"Excluded {len(excluded)} members from {archive_path}")
    return archive_path


def copy_tree(
    source_path: str,
    target_path: str,
    exclude_patterns: Sequence[str] = (),
    skip_paths: Sequence[str] = ()
) -> str:
    """
    Copy a file or directory, keeping mode, timestamps and ownership.

    An existing target is replaced. Symlinks are copied as symlinks.

    Args:
        source_path: File or directory to copy
        target_path: Where the copy is written
        exclude_patterns: Glob patterns of members to leave out
        skip_paths: Absolute paths left out together with everything below them

    Returns:
        target_path

    Raises:
        CreationFailed: If copying fails; the partial copy is removed
    """
    source = Path(source_path)

    def ignore_patterns(directory, names):
        relative_dir = os.path.relpath(directory, source)
        ignored = []
        for name in names:
            relative = name if relative_dir == '.' else f"{relative_dir}/{name}"
            if is_skipped(os.path.join(directory, name), skip_paths):
                ignored.append(name)
            elif should_exclude(relative.replace(os.sep, '/'), exclude_patterns):
                ignored.append(name)
        return ignored

    try:
        if os.path.lexists(target_path):
            logger.info(f"Replacing existing backup: {target_path}")
            _remove_path(target_path)

        if source.is_dir():
            shutil.copytree(
                source, target_path,
                symlinks=True,
                ignore=ignore_patterns,
                copy_function=_copy_with_owner
            )
            _copy_directory_owners(source_path, target_path)
        else:
            _copy_with_owner(source_path, target_path)
    except (Exception, KeyboardInterrupt) as e:
        _remove_path(target_path)
        raise CreationFailed(f"Failed to copy {source_path}: {e}") from e

    return target_path


def _copy_with_owner(src, dst):
    """copy2 that also carries uid/gid over when running as root."""
    shutil.copy2(src, dst, follow_symlinks=False)
    if _can_chown():
        st = os.lstat(src)
        os.chown(dst, st.st_uid, st.st_gid, follow_symlinks=False)
    return dst


def _copy_directory_owners(source_path: str, target_path: str):
    """copytree copies file owners through copy_function; directories need a pass."""
    if not _can_chown():
        return
    for directory, subdirs, _ in os.walk(target_path):
        for name in [''] + subdirs:
            target = os.path.join(directory, name) if name else directory
            original = os.path.join(source_path, os.path.relpath(target, target_path))
            st = os.lstat(original)
            os.chown(target, st.st_uid, st.st_gid, follow_symlinks=False)


def _can_chown() -> bool:
    return hasattr(os, 'geteuid') and os.geteuid() == 0


def _remove_path(path: str):
    """Remove a file, symlink or directory tree if it exists."""
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path, ignore_errors=True)
    else:
        Path(path).unlink(missing_ok=True)


def get_artifact_size(path: str) -> int:
    """
    Get the size of an artifact in bytes.

    For a directory this is the total size of everything below it.

    Raises:
        CreationFailed: If the artifact doesn't exist or cannot be accessed
    """
    try:
        if not os.path.isdir(path) or os.path.islink(path):
            return os.path.getsize(path)
        total = 0
        for directory, _, files in os.walk(path):
            for name in files:
                total += os.lstat(os.path.join(directory, name)).st_size
        return total
    except FileNotFoundError:
        raise CreationFailed(f"Artifact not found: {path}")
    except OSError as e:
        raise CreationFailed(f"Failed to get artifact size: {e}")


class ArchiveBuilder:
    """
    Produces the artifact for a BackupJob.

    Compressed archives are written into the scratch directory first and
    moved into the destination once complete.
    """

    def __init__(
        self,
        job: BackupJob,
        scratch_dir: Optional[str] = None,
        skip_paths: Sequence[str] = ()
    ):
        """
        Initialize archive builder.

        Args:
            job: Resolved backup job
            scratch_dir: Staging directory for archives; None writes in place
            skip_paths: Paths of the tool's own working files (lock, scratch)
                that must never end up in the artifact
        """
        self.job = job
        self.scratch_dir = scratch_dir
        self.skip_paths = tuple(os.path.realpath(path) for path in skip_paths)

    def describe(self) -> List[str]:
        """Describe what build() would do without touching the file system."""
        job = self.job
        target = job.artifact_path

        if job.mode == BackupMode.COMPRESSED:
            command = ['tar', '-czf', target, '-C', os.path.dirname(job.source)]
            command += [f"--exclude={pattern}" for pattern in job.exclude_patterns]
            command.append(os.path.basename(job.source))
            action = f"Would create compressed backup: {target}"
        else:
            command = ['cp', '-a', job.source, target]
            action = f"Would copy to: {target}"

        lines = [action, f"Command: {shlex.join(command)}"]
        if job.exclude_patterns and job.mode == BackupMode.COPY:
            lines.append(f"Excluding: {', '.join(job.exclude_patterns)}")
        if os.path.lexists(target):
            lines.append(f"Would replace existing backup: {target}")
        return lines

    def build(self) -> Artifact:
        """
        Create the artifact.

        Returns:
            Artifact describing what was written

        Raises:
            CreationFailed: If creation fails; no partial artifact remains
        """
        job = self.job
        target = job.artifact_path

        if job.mode == BackupMode.COMPRESSED:
            self._build_archive(target)
        else:
            copy_tree(job.source, target, job.exclude_patterns, self.skip_paths)
            # The top-level entry carries the backup time; retention orders
            # generations by it. Everything below keeps the source times.
            try:
                os.utime(target, follow_symlinks=False)
            except OSError as e:
                _remove_path(target)
                raise CreationFailed(f"Failed to timestamp {target}: {e}") from e

        return Artifact(
            path=target,
            size=get_artifact_size(target),
            created_at=datetime.now(),
            is_archive=job.mode == BackupMode.COMPRESSED,
            is_directory=os.path.isdir(target) and not os.path.islink(target)
        )

    def _build_archive(self, target: str):
        if not self.scratch_dir:
            create_archive(self.job.source, target, self.job.exclude_patterns, self.skip_paths)
            return

        staged = os.path.join(self.scratch_dir, self.job.artifact_name)
        create_archive(self.job.source, staged, self.job.exclude_patterns, self.skip_paths)

        try:
            shutil.move(staged, target)
        except (Exception, KeyboardInterrupt) as e:
            _remove_path(staged)
            _remove_path(target)
            raise CreationFailed(f"Failed to move archive into {self.job.destination}: {e}") from e
