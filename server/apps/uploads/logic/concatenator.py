"""Reassembly of split uploads into one published file."""

import asyncio
import logging
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Final, final

import aiofiles
import aiofiles.os

from server.apps.uploads.exceptions import PartReconstructionError
from server.apps.uploads.infrastructure.staging import StagingStore
from server.apps.uploads.logic.naming import (
    claim_filename,
    release_claim,
    sanitize_filename,
)
from server.apps.uploads.logic.part_tracker import PartGroup

if TYPE_CHECKING:
    from aiofiles.threadpool.binary import AsyncBufferedIOBase

logger = logging.getLogger(__name__)

_DEFAULT_CHUNK_SIZE: Final = 32 * 1024 * 1024
_TEMP_SUFFIX: Final = '.tmp'


@final
class PartConcatenator:
    """Streams the parts of a complete group into the final file.

    Parts are appended strictly in ascending part-number order through a
    temporary file next to the destination, read in bounded chunks so
    memory use does not depend on the file size. Every reassembly creates
    its own uniquely named temporary file exclusively, so two uploads of
    the same name never write into one file. The temporary file is renamed
    onto the destination only when every part was written.
    """

    def __init__(
        self,
        staging: StagingStore,
        chunk_size: int = _DEFAULT_CHUNK_SIZE,
    ) -> None:
        """Initialize the concatenator.

        Args:
            staging: Staging store holding the part sessions.
            chunk_size: Bytes read from a part per step.
        """
        self._staging = staging
        self._chunk_size = chunk_size

    async def concatenate(self, group: PartGroup) -> Path:
        """Reassemble a complete group and publish it.

        On failure no file is left at the destination, and the group's
        staged parts are discarded: the group already left the tracker and
        nothing can resume it.

        Args:
            group: Complete group handed over by the part tracker.

        Returns:
            Final path of the reassembled file.

        Raises:
            PartReconstructionError: If a declared part is not staged.
            OSError: If reading parts or writing the file fails.
        """
        filename = sanitize_filename(group.original_filename)
        logger.info(
            'Reassembling %s from %d parts',
            group.original_filename,
            group.total_parts,
        )

        try:
            final_path = await self._reassemble(group, filename)
        except BaseException:  # noqa: WPS424
            logger.error(  # noqa: TRY400
                'Abandoning reassembly of %s, discarding its parts',
                group.original_filename,
            )
            await self._discard_parts(group)
            raise

        await self._discard_parts(group)
        logger.info(
            'Successfully reassembled %s to %s',
            group.original_filename,
            final_path,
        )
        return final_path

    async def _reassemble(self, group: PartGroup, filename: str) -> Path:
        await self._ensure_parts_staged(group)

        await aiofiles.os.makedirs(group.target_dir, exist_ok=True)
        final_path, is_claimed = await asyncio.to_thread(
            claim_filename,
            group.target_dir,
            filename,
            group.metadata.duplicate_policy,
        )
        temp_path = final_path.with_name(
            f'{final_path.name}.{uuid.uuid4().hex}{_TEMP_SUFFIX}',
        )

        try:
            await self._write_parts(group, temp_path)
            await aiofiles.os.replace(temp_path, final_path)
        except BaseException:  # noqa: WPS424
            await _remove_quietly(temp_path)
            if is_claimed:
                await asyncio.to_thread(release_claim, final_path)
            raise

        return final_path

    async def _ensure_parts_staged(self, group: PartGroup) -> None:
        for part_number in range(1, group.total_parts + 1):
            session_id = group.parts.get(part_number)
            if session_id is None:
                raise PartReconstructionError(
                    group.original_filename,
                    part_number,
                    'was never received',
                )
            if not await self._staging.has_content(session_id):
                raise PartReconstructionError(
                    group.original_filename,
                    part_number,
                    f'not found in staging (session {session_id})',
                )

    async def _write_parts(self, group: PartGroup, temp_path: Path) -> None:
        async with aiofiles.open(temp_path, 'xb') as output:
            for part_number in range(1, group.total_parts + 1):
                session_id = group.parts[part_number]
                part_path = self._staging.content_path(session_id)
                try:
                    written = await self._append_part(part_path, output)
                except FileNotFoundError as error:
                    raise PartReconstructionError(
                        group.original_filename,
                        part_number,
                        f'disappeared from staging (session {session_id})',
                    ) from error
                logger.debug(
                    'Appended part %d/%d of %s (%d bytes)',
                    part_number,
                    group.total_parts,
                    group.original_filename,
                    written,
                )

    async def _append_part(
        self,
        part_path: Path,
        output: 'AsyncBufferedIOBase',
    ) -> int:
        written = 0
        async with aiofiles.open(part_path, 'rb') as part_file:
            while chunk := await part_file.read(self._chunk_size):
                await output.write(chunk)
                written += len(chunk)
        return written

    async def _discard_parts(self, group: PartGroup) -> None:
        for session_id in group.staged_session_ids:
            try:
                await self._staging.discard(session_id)
            except OSError:
                logger.exception(
                    'Failed to discard staged part %s of %s',
                    session_id,
                    group.original_filename,
                )


async def _remove_quietly(path: Path) -> None:
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        return
    except OSError:
        logger.exception('Failed to remove temporary file: %s', path)
