"""Reconciliation of completed upload sessions.

Every "session completed" event from the transfer engine becomes one
task on the event loop. Single-file sessions are published directly,
parts of a split upload are collected until their group is complete and
then reassembled.
"""

import asyncio
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import final

from server.apps.uploads.infrastructure.metadata import UploadMetadata
from server.apps.uploads.infrastructure.staging import validate_session_id
from server.apps.uploads.logic.concatenator import PartConcatenator
from server.apps.uploads.logic.part_tracker import PartTracker
from server.apps.uploads.logic.paths import resolve_target_dir
from server.apps.uploads.logic.publisher import SingleFilePublisher

logger = logging.getLogger(__name__)


@final
class UploadPipeline:
    """Routes completed sessions and keeps track of running reconciliations."""

    def __init__(
        self,
        storage_root: Path,
        tracker: PartTracker,
        publisher: SingleFilePublisher,
        concatenator: PartConcatenator,
    ) -> None:
        """Initialize the pipeline.

        Args:
            storage_root: Root of the user-visible volume.
            tracker: Registry of incomplete split uploads.
            publisher: Publisher for single-file sessions.
            concatenator: Reassembler for complete split uploads.
        """
        self._storage_root = storage_root
        self._tracker = tracker
        self._publisher = publisher
        self._concatenator = concatenator
        self._in_flight: set[asyncio.Task[Path | None]] = set()

    @property
    def tracker(self) -> PartTracker:
        """Get the part tracker."""
        return self._tracker

    @property
    def in_flight(self) -> frozenset[asyncio.Task[Path | None]]:
        """Get the reconciliations that are still running."""
        return frozenset(self._in_flight)

    def spawn_completion(
        self,
        session_id: str,
        raw_metadata: Mapping[str, str],
    ) -> asyncio.Task[Path | None]:
        """Start reconciling a completed session in the background.

        Must be called from the event loop thread.

        Args:
            session_id: Completed session.
            raw_metadata: Metadata map the client attached to the session.

        Returns:
            Task running the reconciliation; it never raises.
        """
        task = asyncio.get_running_loop().create_task(
            self._reconcile(session_id, dict(raw_metadata)),
            name=f'reconcile-{session_id}',
        )
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def drain(self) -> None:
        """Wait until every running reconciliation has finished."""
        while self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

    async def handle_completion(
        self,
        session_id: str,
        raw_metadata: Mapping[str, str],
    ) -> Path | None:
        """Reconcile a completed session.

        Args:
            session_id: Completed session.
            raw_metadata: Metadata map the client attached to the session.

        Returns:
            Path of the published file, or None if nothing was published
            (session ignored, still waiting for parts, or publish failed).

        Raises:
            InvalidSessionIdError: If the session id is not a safe name.
            InvalidUploadMetadataError: If the metadata is malformed.
            PathTraversalError: If the target path leaves the storage root.
            PartReconstructionError: If a split upload cannot be reassembled.
        """
        validate_session_id(session_id)
        metadata = UploadMetadata.from_mapping(raw_metadata)
        if not metadata.use_original_filename:
            logger.debug(
                'Session %s keeps its upload id as filename',
                session_id,
            )
            return None

        if not metadata.is_parted:
            return await self._publisher.publish(session_id, metadata)

        target_dir = await asyncio.to_thread(
            resolve_target_dir,
            self._storage_root,
            metadata.path,
            create=False,
        )
        group = self._tracker.add_part(session_id, metadata, target_dir)
        if group is None:
            return None
        return await self._concatenator.concatenate(group)

    async def _reconcile(
        self,
        session_id: str,
        raw_metadata: dict[str, str],
    ) -> Path | None:
        logger.info('Upload complete: %s', session_id)
        try:
            return await self.handle_completion(session_id, raw_metadata)
        except Exception:
            logger.exception(
                'Failed to reconcile session %s (metadata: %s)',
                session_id,
                raw_metadata,
            )
            return None
