"""Publishing of single-file uploads under their original filename."""

import asyncio
import logging
from pathlib import Path
from typing import final

import aiofiles.os

from server.apps.uploads.exceptions import (
    DuplicateFileError,
    StagedContentMissingError,
)
from server.apps.uploads.infrastructure.metadata import UploadMetadata
from server.apps.uploads.infrastructure.staging import StagingStore
from server.apps.uploads.logic.naming import (
    claim_filename,
    release_claim,
    sanitize_filename,
)
from server.apps.uploads.logic.paths import resolve_target_dir

logger = logging.getLogger(__name__)


@final
class SingleFilePublisher:
    """Moves the staged bytes of a finished session to their final path.

    Failures are logged and swallowed: the client already got its success
    acknowledgement from the transfer engine, and one broken publish must
    not disturb the handling of unrelated uploads.
    """

    def __init__(
        self,
        storage_root: Path,
        staging: StagingStore,
        flush_poll_interval: float = 0.25,
        flush_poll_attempts: int = 8,
    ) -> None:
        """Initialize the publisher.

        Args:
            storage_root: Root of the user-visible volume.
            staging: Staging store holding session bytes.
            flush_poll_interval: Seconds between staged size checks.
            flush_poll_attempts: Maximum number of staged size checks.
        """
        self._storage_root = storage_root
        self._staging = staging
        self._flush_poll_interval = flush_poll_interval
        self._flush_poll_attempts = flush_poll_attempts

    async def publish(
        self,
        session_id: str,
        metadata: UploadMetadata,
    ) -> Path | None:
        """Publish a completed session.

        Args:
            session_id: Completed session.
            metadata: Parsed session metadata.

        Returns:
            Final path of the published file, or None if publishing failed.
        """
        try:
            return await self._publish(session_id, metadata)
        except StagedContentMissingError:
            logger.error(  # noqa: TRY400
                'File not found in staging for session %s, '
                'upload of %s is lost',
                session_id,
                metadata.filename,
            )
        except DuplicateFileError as error:
            logger.warning(
                'Rejecting session %s at publish time: %s',
                session_id,
                error,
            )
        except Exception:
            logger.exception(
                'Failed to publish session %s as %s',
                session_id,
                metadata.filename,
            )
        return None

    async def _publish(
        self,
        session_id: str,
        metadata: UploadMetadata,
    ) -> Path:
        filename = sanitize_filename(metadata.filename)
        target_dir = await asyncio.to_thread(
            resolve_target_dir,
            self._storage_root,
            metadata.path,
        )

        is_present = await self._staging.wait_until_flushed(
            session_id,
            self._flush_poll_interval,
            self._flush_poll_attempts,
        )
        if not is_present:
            raise StagedContentMissingError(session_id)

        try:
            final_path, is_claimed = await asyncio.to_thread(
                claim_filename,
                target_dir,
                filename,
                metadata.duplicate_policy,
            )
        except DuplicateFileError:
            # Prevented duplicate that appeared after the pre-create check
            await self._staging.discard(session_id)
            raise

        staged_path = self._staging.content_path(session_id)
        try:
            logger.info('Renaming %s to %s', staged_path, final_path)
            await aiofiles.os.replace(staged_path, final_path)
        except Exception:
            if is_claimed:
                await asyncio.to_thread(release_claim, final_path)
            raise

        await self._staging.discard_sidecar(session_id)
        logger.info(
            'Successfully processed file: %s to %s',
            final_path.name,
            target_dir,
        )
        return final_path
