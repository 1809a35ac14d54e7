"""Staging store written by the tus transfer engine.

The engine keeps every session as two files in the staging root:
``<session_id>`` with the uploaded bytes and ``<session_id>.json`` with the
session info (declared size, metadata). This module only addresses,
inspects and discards them; writing is the engine's job.
"""

import asyncio
import json
import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final, final

import aiofiles
import aiofiles.os

from server.apps.uploads.exceptions import InvalidSessionIdError

logger = logging.getLogger(__name__)

_SESSION_ID_PATTERN: Final = re.compile(r'^[A-Za-z0-9._+-]+$')


def validate_session_id(session_id: str) -> str:
    """Ensure a session id addresses exactly one file in the staging root.

    Args:
        session_id: Opaque id reported by the transfer engine.

    Returns:
        The same session id.

    Raises:
        InvalidSessionIdError: If the id could escape the staging root.
    """
    if (
        not _SESSION_ID_PATTERN.fullmatch(session_id)
        or not session_id.strip('.')
    ):
        raise InvalidSessionIdError(f'Invalid session id: {session_id!r}')
    return session_id


@final
@dataclass(frozen=True, slots=True)
class StagedSession:
    """A session found on disk in the staging root."""

    session_id: str
    metadata: dict[str, str]
    modified_at: datetime
    has_content: bool


@final
class StagingStore:
    """Filesystem view over the transfer engine's staging directory."""

    def __init__(self, root: Path, sidecar_suffix: str = '.json') -> None:
        """Initialize the staging store.

        Args:
            root: Directory where the engine stages sessions.
            sidecar_suffix: Suffix of the per-session info file.
        """
        self._root = root
        self._sidecar_suffix = sidecar_suffix

    @property
    def root(self) -> Path:
        """Get the staging root directory."""
        return self._root

    def content_path(self, session_id: str) -> Path:
        """Get the path of the staged bytes of a session."""
        return self._root / validate_session_id(session_id)

    def sidecar_path(self, session_id: str) -> Path:
        """Get the path of the session info sidecar."""
        session_id = validate_session_id(session_id)
        return self._root / f'{session_id}{self._sidecar_suffix}'

    async def has_content(self, session_id: str) -> bool:
        """Check whether the staged bytes of a session exist.

        Args:
            session_id: Session to look up.

        Returns:
            True if a regular file holds the session's bytes.
        """
        return await aiofiles.os.path.isfile(self.content_path(session_id))

    async def read_sidecar(self, session_id: str) -> dict[str, Any] | None:
        """Read the session info sidecar.

        Args:
            session_id: Session to look up.

        Returns:
            Parsed sidecar, or None if it is missing or unreadable.
        """
        sidecar = self.sidecar_path(session_id)
        try:
            async with aiofiles.open(sidecar, encoding='utf-8') as info_file:
                raw = await info_file.read()
        except FileNotFoundError:
            return None

        try:
            info = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning('Unreadable session sidecar: %s', sidecar)
            return None
        return info if isinstance(info, dict) else None

    async def wait_until_flushed(
        self,
        session_id: str,
        poll_interval: float,
        attempts: int,
    ) -> bool:
        """Wait until the engine finished writing the staged bytes.

        The engine may report completion before its last write reaches
        the disk. Content counts as flushed once it reaches the size
        declared in the sidecar, or, without a declared size, once it is
        unchanged across two consecutive checks.

        Args:
            session_id: Session to wait for.
            poll_interval: Seconds between checks.
            attempts: Maximum number of checks.

        Returns:
            True if the content exists, False if it never appeared.
        """
        declared_size = _declared_size(await self.read_sidecar(session_id))
        content = self.content_path(session_id)
        previous_size: int | None = None
        current_size: int | None = None

        for attempt in range(attempts):
            try:
                current_size = await aiofiles.os.path.getsize(content)
            except FileNotFoundError:
                current_size = None

            if current_size is not None:
                if declared_size is not None and current_size >= declared_size:
                    return True
                if declared_size is None and current_size == previous_size:
                    return True

            previous_size = current_size
            if attempt + 1 < attempts:
                await asyncio.sleep(poll_interval)

        if current_size is None:
            return False

        logger.warning(
            'Staged content for %s still changing after %d checks '
            '(size: %d, declared: %s), publishing anyway',
            session_id,
            attempts,
            current_size,
            declared_size,
        )
        return True

    async def discard(self, session_id: str) -> None:
        """Delete the staged bytes and the sidecar of a session.

        Missing files are ignored.

        Args:
            session_id: Session to discard.
        """
        await _remove_if_exists(self.content_path(session_id))
        await self.discard_sidecar(session_id)

    async def discard_sidecar(self, session_id: str) -> None:
        """Delete only the sidecar of a session.

        Args:
            session_id: Session whose sidecar to delete.
        """
        await _remove_if_exists(self.sidecar_path(session_id))

    def iter_sessions(self) -> Iterator[StagedSession]:
        """Iterate over every session that has a sidecar on disk.

        Blocking; meant for maintenance commands, not the event loop.

        Yields:
            StagedSession for every sidecar in the staging root.
        """
        if not self._root.is_dir():
            return

        for sidecar in sorted(self._root.glob(f'*{self._sidecar_suffix}')):
            session_id = sidecar.name.removesuffix(self._sidecar_suffix)
            try:
                validate_session_id(session_id)
                info = json.loads(sidecar.read_text(encoding='utf-8'))
                modified_at = datetime.fromtimestamp(
                    sidecar.stat().st_mtime,
                    tz=UTC,
                )
            except (InvalidSessionIdError, ValueError, OSError):
                logger.warning(
                    'Skipping unreadable staged session: %s',
                    sidecar,
                )
                continue

            yield StagedSession(
                session_id=session_id,
                metadata=_sidecar_metadata(info),
                modified_at=modified_at,
                has_content=(self._root / session_id).is_file(),
            )


def _declared_size(info: dict[str, Any] | None) -> int | None:
    if not info:
        return None
    size = info.get('size', info.get('Size'))
    return size if isinstance(size, int) and size >= 0 else None


def _sidecar_metadata(info: Any) -> dict[str, str]:
    if not isinstance(info, dict):
        return {}
    raw = info.get('metadata', info.get('MetaData')) or {}
    if not isinstance(raw, dict):
        return {}
    return {str(key): str(value) for key, value in raw.items()}


async def _remove_if_exists(path: Path) -> None:
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        return
    logger.debug('Removed staged file: %s', path)
