"""
Resolution and validation of the source and destination paths.

Only file-system metadata is read here; nothing is created or changed.
"""

import os
from pathlib import Path
from typing import Tuple

from .errors import InvalidSource, InvalidDestination


def resolve_source(raw_path: str) -> str:
    """
    Resolve the source to a canonical absolute path.

    Args:
        raw_path: Path as given by the operator

    Returns:
        Canonical absolute path of the source

    Raises:
        InvalidSource: If the source does not exist or cannot be read
    """
    if not raw_path:
        raise InvalidSource("Source path is empty")

    source = Path(raw_path).expanduser().resolve()

    if not source.exists():
        raise InvalidSource(f"Source '{raw_path}' does not exist")

    if not source.name:
        raise InvalidSource(f"Cannot derive a backup name from source '{raw_path}'")

    # Directories also need search permission to be traversed
    mode = os.R_OK | os.X_OK if source.is_dir() else os.R_OK
    if not os.access(source, mode):
        raise InvalidSource(f"Source '{raw_path}' is not readable")

    return str(source)


def resolve_destination(raw_path: str) -> str:
    """
    Resolve the destination directory to a canonical absolute path.

    Args:
        raw_path: Path as given by the operator

    Returns:
        Canonical absolute path of the destination directory

    Raises:
        InvalidDestination: If it is not an existing, writable directory
    """
    if not raw_path:
        raise InvalidDestination("Destination path is empty")

    destination = Path(raw_path).expanduser().resolve()

    if not destination.is_dir():
        raise InvalidDestination(f"Destination directory '{raw_path}' does not exist")

    if not os.access(destination, os.W_OK | os.X_OK):
        raise InvalidDestination(f"Destination directory '{raw_path}' is not writable")

    return str(destination)


def is_within(path: str, directory: str) -> bool:
    """Return True if path is directory itself or lies below it."""
    try:
        Path(path).relative_to(directory)
        return True
    except ValueError:
        return False


def resolve_paths(raw_source: str, raw_destination: str) -> Tuple[str, str]:
    """Resolve and validate both ends of a backup."""
    return resolve_source(raw_source), resolve_destination(raw_destination)
