"""Management command to clean up stale sessions from staging."""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Final

from django.core.management.base import BaseCommand
from django.utils import timezone

from server.apps.uploads.runtime import build_staging_store, get_part_timeout

_DEFAULT_BATCH_SIZE: Final = 1000

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Delete staged sessions nobody will reconcile anymore.

    The part tracker lives in memory, so parts staged before a restart
    are never reaped by the pipeline. This sweep works on disk only.
    """

    help = 'Clean up stale upload sessions from staging'

    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be deleted without deleting',
        )
        parser.add_argument(
            '--batch-size',
            type=int,
            default=_DEFAULT_BATCH_SIZE,
            help=f'Max sessions to process (default: {_DEFAULT_BATCH_SIZE})',
        )
        parser.add_argument(
            '--max-age-seconds',
            type=int,
            default=None,
            help='Minimum age of a stale session (default: part timeout)',
        )
        parser.add_argument(
            '--all',
            action='store_true',
            dest='include_single',
            help='Also delete stale single-file sessions, not only parts',
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the cleanup command.

        Args:
            args: Positional arguments (unused).
            options: Command options.
        """
        dry_run = options['dry_run']
        batch_size = options['batch_size']
        max_age = get_part_timeout()
        if options['max_age_seconds'] is not None:
            max_age = timedelta(seconds=options['max_age_seconds'])

        store = build_staging_store()
        cutoff = timezone.now() - max_age

        self.stdout.write(
            f'Looking for sessions in {store.root} staged before {cutoff}',
        )

        stale = [
            session
            for session in store.iter_sessions()
            if session.modified_at <= cutoff
            and (
                options['include_single']
                or session.metadata.get('isPartedUpload') == 'true'
            )
        ][:batch_size]

        count = 0
        failed = 0

        for session in stale:
            if dry_run:
                self.stdout.write(
                    f'Would delete: {session.session_id} '
                    f'(file: {_display_name(session.metadata)}, '
                    f'staged: {session.modified_at})',
                )
                count += 1
                continue

            try:
                asyncio.run(store.discard(session.session_id))
            except OSError as exc:
                self.stderr.write(
                    f'Failed to delete {session.session_id}: {exc}',
                )
                logger.exception(
                    'Failed to purge staged session: %s',
                    session.session_id,
                )
                failed += 1
                continue

            count += 1
            logger.info('Purged staged session: %s', session.session_id)

        if dry_run:
            self.stdout.write(
                self.style.SUCCESS(f'Would purge {count} staged sessions'),
            )
        else:
            self.stdout.write(
                self.style.SUCCESS(
                    f'Purged {count} staged sessions, {failed} failed',
                ),
            )


def _display_name(metadata: dict[str, str]) -> str:
    return (
        metadata.get('originalFilename')
        or metadata.get('filename')
        or 'unknown'
    )
