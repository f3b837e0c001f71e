"""
Generation-based retention for backups in a destination directory.

Every entry whose name starts with the backup's name prefix is one
generation. The newest N by modification time are kept and the rest are
deleted together with their checksum sidecars.
"""

import os
import shutil
from typing import List, Union

from keepsafe import logger
from keepsafe.models import RotationResult
from .checksum import SIDECAR_EXTENSIONS, is_sidecar
from .errors import InvalidRetainValue


def parse_retain_count(value: Union[str, int, None]) -> int:
    """
    Parse the retain count given by the operator.

    Args:
        value: Count as string or int; None means retention is disabled

    Returns:
        Non-negative integer, 0 disables retention

    Raises:
        InvalidRetainValue: If value is not a non-negative integer
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        raise InvalidRetainValue(f"Invalid retain value: {value}")
    if isinstance(value, int):
        count = value
    else:
        text = str(value).strip()
        # isdigit() alone also accepts digits int() rejects, e.g. superscripts
        if not (text.isascii() and text.isdigit()):
            raise InvalidRetainValue(
                f"Invalid retain value: '{value}' (must be a non-negative integer)"
            )
        count = int(text)

    if count < 0:
        raise InvalidRetainValue(f"Invalid retain value: {value} (must be >= 0)")
    return count


class RetentionManager:
    """
    Prunes old generations of a backup from its destination directory.
    """

    def __init__(self, destination: str):
        """
        Initialize retention manager.

        Args:
            destination: Destination directory holding the backups
        """
        self.destination = destination

    def list_generations(self, name_prefix: str) -> List[str]:
        """
        List backups sharing a name prefix, newest first.

        Checksum sidecars are not generations of their own.

        Returns:
            Full paths ordered by modification time, descending
        """
        entries = []
        with os.scandir(self.destination) as it:
            for entry in it:
                if not entry.name.startswith(name_prefix) or is_sidecar(entry.name):
                    continue
                entries.append((entry.stat(follow_symlinks=False).st_mtime, entry.path))

        entries.sort(key=lambda item: item[0], reverse=True)
        return [path for _, path in entries]

    def rotate(self, name_prefix: str, retain_count: int) -> RotationResult:
        """
        Keep the newest retain_count generations and delete the rest.

        Args:
            name_prefix: Shared prefix of the backup names
            retain_count: Generations to keep; 0 or less disables rotation

        Returns:
            RotationResult with kept, deleted and failed paths. Failures are
            logged and reported, never raised.
        """
        result = RotationResult()

        if retain_count <= 0:
            logger.info("Retention: not configured, skipping")
            return result

        try:
            generations = self.list_generations(name_prefix)
        except OSError as e:
            logger.error(f"Failed to list backups in {self.destination}: {e}")
            result.failed.append(self.destination)
            return result

        result.kept = generations[:retain_count]
        to_delete = generations[retain_count:]

        logger.info(
            f"Retention: {len(generations)} backups match '{name_prefix}', "
            f"keeping {len(result.kept)}, deleting {len(to_delete)}"
        )

        for path in to_delete:
            for target in [path] + self._sidecars_of(path):
                try:
                    self._delete(target)
                    result.deleted.append(target)
                    logger.info(f"Deleted old backup: {target}")
                except OSError as e:
                    result.failed.append(target)
                    logger.error(f"Failed to delete old backup {target}: {e}")

        return result

    def _sidecars_of(self, path: str) -> List[str]:
        return [
            f"{path}{extension}" for extension in SIDECAR_EXTENSIONS
            if os.path.lexists(f"{path}{extension}")
        ]

    def _delete(self, path: str):
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
        else:
            os.remove(path)
