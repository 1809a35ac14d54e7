"""Periodic removal of split uploads that never completed."""

import asyncio
import logging
from datetime import timedelta
from typing import final

from server.apps.uploads.infrastructure.staging import StagingStore
from server.apps.uploads.logic.part_tracker import PartGroup, PartTracker

logger = logging.getLogger(__name__)


@final
class OrphanReaper:
    """Discards part groups older than the timeout, with their parts.

    This is the only bound on staging growth from split uploads whose
    remaining parts never arrive (client gone, browser closed).
    """

    def __init__(
        self,
        tracker: PartTracker,
        staging: StagingStore,
        timeout: timedelta,
        interval: float,
    ) -> None:
        """Initialize the reaper.

        Args:
            tracker: Tracker holding incomplete groups.
            staging: Staging store holding the part sessions.
            timeout: Age after which a group is an orphan.
            interval: Seconds between two sweeps.
        """
        self._tracker = tracker
        self._staging = staging
        self._timeout = timeout
        self._interval = interval

    async def reap(self) -> list[PartGroup]:
        """Remove expired groups and delete their staged parts.

        Returns:
            Groups that were removed.
        """
        expired = self._tracker.pop_expired(self._timeout)
        for group in expired:
            logger.warning(
                'Reaping orphaned upload %s: %d/%d parts after %s',
                group.original_filename,
                len(group.parts),
                group.total_parts,
                self._timeout,
            )
            for session_id in group.staged_session_ids:
                try:
                    await self._staging.discard(session_id)
                except OSError:
                    logger.exception(
                        'Failed to discard orphaned part %s of %s',
                        session_id,
                        group.original_filename,
                    )

        if expired:
            logger.info('Reaped %d orphaned uploads', len(expired))
        return expired

    async def run_periodically(self) -> None:
        """Sweep every interval until cancelled."""
        logger.info(
            'Orphan reaper started (interval: %ss, timeout: %s)',
            self._interval,
            self._timeout,
        )
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.reap()
            except Exception:
                logger.exception('Orphan sweep failed')
