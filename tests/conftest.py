"""
Shared pytest fixtures for Keepsafe tests.

This module provides fixtures for:
- Isolated settings (lock file and scratch directory under tmp_path)
- Source trees and destination directories
- Job construction
- Sample archives
"""

import os
import tarfile

import pytest

from keepsafe import configure_logging
from keepsafe.config import load_config
from keepsafe.backup.executor import build_job


@pytest.fixture(scope='function')
def settings(tmp_path):
    """
    Settings dict with test configuration.

    The lock file and the parent of the scratch directory are tmp_path/run,
    so tests never touch the real well-known locations.
    """
    run_dir = tmp_path / 'run'
    run_dir.mkdir()

    settings = load_config('testing')
    settings.update({
        'LOCK_FILE': str(run_dir / 'keepsafe.lock'),
        'TEMP_DIR': str(run_dir),
        'LOG_FILE': None,
    })
    configure_logging(settings)
    return settings


@pytest.fixture
def source_dir(tmp_path):
    """
    Create a source tree to back up.

    Creates data/docs with:
    - readme.txt
    - notes.log
    - sub/a.txt
    - sub/b.log
    - cache/blob.tmp
    """
    docs = tmp_path / 'data' / 'docs'
    (docs / 'sub').mkdir(parents=True)
    (docs / 'cache').mkdir()

    (docs / 'readme.txt').write_text('Read me')
    (docs / 'notes.log').write_text('Log line')
    (docs / 'sub' / 'a.txt').write_text('Nested content A')
    (docs / 'sub' / 'b.log').write_text('Nested log B')
    (docs / 'cache' / 'blob.tmp').write_bytes(b'\x00' * 64)

    return docs


@pytest.fixture
def dest_dir(tmp_path):
    """Empty destination directory."""
    dest = tmp_path / 'backup'
    dest.mkdir()
    return dest


@pytest.fixture
def make_job(source_dir, dest_dir):
    """Factory building a BackupJob for source_dir -> dest_dir."""
    def _make_job(**options):
        source = options.pop('source', str(source_dir))
        destination = options.pop('destination', str(dest_dir))
        return build_job(source, destination, **options)
    return _make_job


@pytest.fixture
def sample_archive(tmp_path):
    """
    Create a sample archive file for testing.
    """
    test_dir = tmp_path / 'test_data'
    test_dir.mkdir()
    (test_dir / 'file1.txt').write_text('Content 1')
    (test_dir / 'file2.txt').write_text('Content 2')

    archive_path = tmp_path / 'test_data.tar.gz'
    with tarfile.open(archive_path, 'w:gz') as tar:
        tar.add(test_dir, arcname='test_data')

    return archive_path


def snapshot_tree(root):
    """Map every path below root to (is_dir, size, mtime) for change detection."""
    state = {}
    for directory, subdirs, files in os.walk(root):
        for name in subdirs + files:
            path = os.path.join(directory, name)
            st = os.lstat(path)
            state[os.path.relpath(path, root)] = (os.path.isdir(path), st.st_size, st.st_mtime_ns)
    return state


@pytest.fixture
def tree_snapshot():
    """Function taking a snapshot of a directory tree."""
    return snapshot_tree
