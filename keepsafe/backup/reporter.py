"""
Operator-facing status output.

Lines are tagged INFO, SUCCESS or ERROR. INFO lines only appear in verbose
mode, and verbose mode also prefixes every line with a timestamp. ERROR
lines always go to stderr.
"""

from datetime import datetime
from typing import List

import click

from keepsafe import logger
from keepsafe.models import JobResult


def format_size(size: int) -> str:
    """Human readable byte count."""
    value = float(size)
    for unit in ('B', 'KB', 'MB', 'GB', 'TB'):
        if value < 1024 or unit == 'TB':
            return f"{value:.0f} {unit}" if unit == 'B' else f"{value:.2f} {unit}"
        value /= 1024
    return f"{size} B"


class Reporter:
    """Writes tagged status lines and keeps a timestamped copy of each."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.logs: List[str] = []

    def _emit(self, tag: str, message: str, err: bool = False, show: bool = True):
        timestamp = datetime.now().strftime('%Y-%m-%dT%H:%M:%S')
        entry = f"[{timestamp}] {tag}: {message}"
        self.logs.append(entry)

        if show:
            click.echo(entry if self.verbose else f"{tag}: {message}", err=err)

    def info(self, message: str):
        self._emit('INFO', message, show=self.verbose)
        logger.info(message)

    def success(self, message: str):
        self._emit('SUCCESS', message)
        logger.info(message)

    def error(self, message: str):
        self._emit('ERROR', message, err=True)
        logger.error(message)

    def summary(self, result: JobResult):
        """Print the final summary of a job."""
        job = result.job
        lines = []

        if result.status == 'dry-run':
            self.success("Dry run complete, no changes made")
            lines.extend(f"  {line}" for line in result.plan)
        elif result.succeeded:
            artifact = result.artifact
            self.success(f"Backup created: {artifact.path}")
            lines.append(f"  Size: {format_size(artifact.size)}")
            if result.checksum:
                lines.append(f"  Checksum ({result.checksum.algorithm.value}): {result.checksum.path}")
            if result.verified is not None:
                lines.append(f"  Verified: {'yes' if result.verified else 'no'}")
            if result.rotation is not None and job.retain > 0:
                lines.append(
                    f"  Retention: kept {len(result.rotation.kept)}, "
                    f"deleted {len(result.rotation.deleted)}, "
                    f"failed {len(result.rotation.failed)}"
                )
        else:
            lines.append(f"Backup failed: {result.error_type}")
            if result.artifact is not None:
                lines.append(f"  Artifact kept for inspection: {result.artifact.path}")

        lines.append(f"  Elapsed: {result.elapsed_seconds:.2f}s")

        for line in lines:
            click.echo(line, err=not result.succeeded)
