"""
Backup executor - orchestrates the complete backup workflow.

Workflow:
1. Pre-flight: resolve paths, algorithm and retain count (build_job)
2. Acquire the job lock
3. Create the scratch directory
4. Create the artifact (compressed archive or copy)
5. Write the checksum sidecar (if requested)
6. Verify the artifact (if requested)
7. Rotate old generations (if requested)
8. Remove the scratch directory and release the lock, whatever happened

In dry-run mode only step 1 runs and the planned actions are reported.
"""

import os
import shutil
from datetime import datetime
from typing import Iterable, Optional, Union

from keepsafe import logger
from keepsafe.config import load_config
from keepsafe.models import BackupJob, BackupMode, JobResult
from .checksum import DEFAULT_CHUNK_SIZE, ChecksumService, detect_algorithms, resolve_algorithm, sidecar_path
from .compression import ArchiveBuilder, generate_backup_name
from .errors import BackupError, CreationFailed, InvalidDestination
from .lock import LockCoordinator, interrupt_on_signals
from .paths import is_within, resolve_paths
from .reporter import Reporter
from .retention import RetentionManager, parse_retain_count
from .verification import VerificationService


# Job-owned child of TEMP_DIR; only this directory is ever removed
SCRATCH_DIR_NAME = 'keepsafe-job'
SCRATCH_MARKER = '.keepsafe-scratch'


def scratch_path(settings: dict) -> str:
    """Path of the job's scratch directory inside the configured TEMP_DIR."""
    return os.path.join(settings['TEMP_DIR'], SCRATCH_DIR_NAME)


def build_job(
    source: str,
    destination: str,
    compress: bool = False,
    timestamp: bool = False,
    exclude_patterns: Iterable[str] = (),
    retain: Union[str, int, None] = None,
    algorithm: Optional[str] = None,
    verify: bool = False,
    dry_run: bool = False
) -> BackupJob:
    """
    Validate raw inputs and build the immutable job description.

    Nothing is written here; every pre-flight failure is raised before any
    artifact work begins.

    Raises:
        InvalidSource, InvalidDestination, UnsupportedAlgorithm, InvalidRetainValue
    """
    resolved_source, resolved_destination = resolve_paths(source, destination)
    digest_algorithm = resolve_algorithm(algorithm, detect_algorithms())
    retain_count = parse_retain_count(retain)
    mode = BackupMode.COMPRESSED if compress else BackupMode.COPY

    if mode == BackupMode.COPY and os.path.isdir(resolved_source) \
            and is_within(resolved_destination, resolved_source):
        raise InvalidDestination(
            f"Destination '{destination}' is inside source '{source}'; "
            f"a copy would include itself"
        )

    return BackupJob(
        source=resolved_source,
        destination=resolved_destination,
        name=generate_backup_name(resolved_source, timestamp),
        mode=mode,
        exclude_patterns=tuple(p for p in exclude_patterns if p),
        retain=retain_count,
        algorithm=digest_algorithm,
        verify=verify,
        dry_run=dry_run
    )


class BackupExecutor:
    """
    Orchestrates the complete backup workflow for a job.
    """

    def __init__(self, job: BackupJob, settings: Optional[dict] = None, reporter: Optional[Reporter] = None):
        """
        Initialize backup executor.

        Args:
            job: BackupJob to execute
            settings: Settings dict from load_config(); defaults to the active environment
            reporter: Output sink for status lines
        """
        self.job = job
        self.settings = settings if settings is not None else load_config()
        self.reporter = reporter or Reporter()
        self.result = None
        self.temp_dir = None

    def execute(self) -> JobResult:
        """
        Execute the backup job.

        Returns:
            JobResult with status 'success', 'dry-run' or 'failed'. Job
            failures are recorded on the result, not raised.
        """
        self.result = JobResult(job=self.job, started_at=datetime.now())

        if self.job.dry_run:
            self._plan()
            self.result.status = 'dry-run'
            self.result.completed_at = datetime.now()
            self.result.logs = self.reporter.logs
            return self.result

        self._log(f"Starting backup of {self.job.source} to {self.job.destination}")

        try:
            with interrupt_on_signals():
                with LockCoordinator(self.settings['LOCK_FILE']):
                    try:
                        self._execute_workflow()
                    finally:
                        self._cleanup()

            self.result.status = 'success'

        except BackupError as e:
            self._fail(type(e).__name__, str(e))

        except KeyboardInterrupt as e:
            self._fail('JobInterrupted', str(e) or 'Interrupted')

        finally:
            self.result.completed_at = datetime.now()
            self.result.logs = self.reporter.logs

        return self.result

    def _execute_workflow(self):
        """Execute the main backup workflow steps."""
        job = self.job

        # Step 1: Create scratch directory
        self._create_temp_dir()

        # Step 2: Create artifact
        if job.mode == BackupMode.COMPRESSED:
            self._log(f"Creating compressed backup: {job.artifact_path}")
        else:
            self._log(f"Copying to: {job.artifact_path}")
        if job.exclude_patterns:
            self._log(f"Excluding: {', '.join(job.exclude_patterns)}")

        builder = ArchiveBuilder(
            job,
            scratch_dir=self.temp_dir,
            skip_paths=(self.settings['LOCK_FILE'], self.temp_dir)
        )
        self.result.artifact = builder.build()
        self._log(f"Artifact written: {self.result.artifact.path} ({self.result.artifact.size} bytes)")

        # Step 3: Checksum
        if job.algorithm is not None:
            self._log(f"Computing {job.algorithm.value} checksum")
            service = ChecksumService(job.algorithm, self.settings.get('HASH_CHUNK_SIZE', DEFAULT_CHUNK_SIZE))
            self.result.checksum = service.generate(self.result.artifact)
            self._log(f"Checksum written: {self.result.checksum.path}")

        # Step 4: Verify
        if job.verify:
            self._log(f"Verifying {self.result.artifact.path}")
            verifier = VerificationService(self.settings.get('HASH_CHUNK_SIZE', DEFAULT_CHUNK_SIZE))
            self.result.verified = False
            method = verifier.verify(self.result.artifact.path, job.algorithm)
            self.result.verified = True
            self._log(f"Verification passed ({method})")

        # Step 5: Rotate
        if job.retain > 0:
            self._log(f"Keeping the {job.retain} most recent backups matching '{job.name_prefix}'")
            rotation = RetentionManager(job.destination).rotate(job.name_prefix, job.retain)
            self.result.rotation = rotation
            for path in rotation.deleted:
                self._log(f"Deleted old backup: {path}")
            for path in rotation.failed:
                self.reporter.error(f"Failed to delete old backup: {path}")

    def _plan(self):
        """Report what a real run would do."""
        job = self.job
        plan = ArchiveBuilder(job).describe()

        if job.algorithm is not None:
            plan.append(
                f"Would write {job.algorithm.value} checksum: "
                f"{sidecar_path(job.artifact_path, job.algorithm)}"
            )
        if job.verify:
            if job.algorithm is not None:
                plan.append(f"Would verify {job.algorithm.value} checksum")
            elif job.mode == BackupMode.COMPRESSED:
                plan.append("Would verify archive listing")
            else:
                plan.append("Nothing to verify (no checksum, not an archive)")
        if job.retain > 0:
            plan.append(
                f"Would keep the {job.retain} most recent backups matching "
                f"'{job.name_prefix}' in {job.destination}"
            )

        self.result.plan = plan
        for line in plan:
            self._log(f"[dry-run] {line}")

    def _create_temp_dir(self):
        """
        Create the scratch directory, clearing leftovers of a killed run.

        Only a leftover carrying the marker file written below is removed;
        TEMP_DIR itself and anything else in it are left alone.
        """
        temp_dir = scratch_path(self.settings)
        marker = os.path.join(temp_dir, SCRATCH_MARKER)
        try:
            if os.path.lexists(temp_dir):
                if os.path.islink(temp_dir) or not os.path.isfile(marker):
                    raise CreationFailed(
                        f"Refusing to remove {temp_dir}: not a keepsafe scratch directory"
                    )
                logger.warning(f"Removing stale scratch directory: {temp_dir}")
                shutil.rmtree(temp_dir)
            os.makedirs(self.settings['TEMP_DIR'], exist_ok=True)
            os.mkdir(temp_dir, 0o700)
            self.temp_dir = temp_dir
            open(marker, 'w').close()
        except OSError as e:
            raise CreationFailed(f"Cannot prepare scratch directory {temp_dir}: {e}") from e
        logger.debug(f"Scratch directory: {temp_dir}")

    def _cleanup(self):
        """Remove scratch directory and files."""
        if self.temp_dir and os.path.exists(self.temp_dir):
            shutil.rmtree(self.temp_dir, ignore_errors=True)
            logger.debug("Cleaned up scratch directory")
        self.temp_dir = None

    def _fail(self, error_type: str, message: str):
        self.result.status = 'failed'
        self.result.error_type = error_type
        self.result.error_message = message
        self.reporter.error(f"{error_type}: {message}")

    def _log(self, message: str):
        self.reporter.info(message)


def execute_backup(job: BackupJob, settings: Optional[dict] = None, reporter: Optional[Reporter] = None) -> JobResult:
    """
    Execute a backup job.

    Returns:
        JobResult with execution results
    """
    executor = BackupExecutor(job, settings, reporter)
    return executor.execute()
