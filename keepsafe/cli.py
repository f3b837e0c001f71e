"""Command line interface"""
import sys

import click

from keepsafe import __version__, configure_logging
from keepsafe.config import load_config
from keepsafe.backup.errors import BackupError
from keepsafe.backup.executor import build_job, execute_backup
from keepsafe.backup.reporter import Reporter


CONTEXT_SETTINGS = {'help_option_names': ['-h', '--help']}


@click.command(context_settings=CONTEXT_SETTINGS)
@click.argument('source')
@click.argument('destination')
@click.option('-c', '--compress', is_flag=True, help='Compress backup using tar.gz.')
@click.option('-t', '--timestamp', is_flag=True, help='Add timestamp to backup name.')
@click.option('-v', '--verbose', is_flag=True, help='Verbose output.')
@click.option('-n', '--dry-run', is_flag=True, help='Show what would be done without doing it.')
@click.option('-e', '--exclude', 'exclude_patterns', multiple=True, metavar='PATTERN',
              help='Glob pattern to exclude (repeatable).')
@click.option('-r', '--retain', metavar='N', default=None,
              help='Keep only the N most recent backups (0 disables).')
@click.option('--verify', is_flag=True, help='Verify the backup after creation.')
@click.option('-a', '--checksum', 'algorithm', metavar='ALGORITHM', default=None,
              help='Write a checksum file: md5, sha256 or sha512.')
@click.version_option(__version__, prog_name='keepsafe')
def main(source, destination, compress, timestamp, verbose, dry_run,
         exclude_patterns, retain, verify, algorithm):
    """Backup files and directories to a specified location.

    \b
    Examples:
        keepsafe /home/user/documents /backup/location
        keepsafe -ct /etc /backup/config
        keepsafe -c -t -r 7 -a sha256 --verify /data/docs /backup
    """
    settings = load_config()
    if dry_run:
        # Dry runs leave no trace on disk, log files included
        settings['LOG_FILE'] = None
    configure_logging(settings)

    reporter = Reporter(verbose=verbose)

    try:
        job = build_job(
            source,
            destination,
            compress=compress,
            timestamp=timestamp,
            exclude_patterns=exclude_patterns,
            retain=retain,
            algorithm=algorithm,
            verify=verify,
            dry_run=dry_run
        )
    except BackupError as e:
        reporter.error(f"{type(e).__name__}: {e}")
        sys.exit(1)

    result = execute_backup(job, settings, reporter)
    reporter.summary(result)

    sys.exit(0 if result.succeeded else 1)


if __name__ == '__main__':
    main()
