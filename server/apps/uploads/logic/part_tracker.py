"""Tracking of split uploads until every part has arrived.

A client may split one large file into several sessions. Each finished
part is recorded in a group keyed by the original filename. Once the
group holds as many parts as declared it leaves the tracker and is
handed over for reassembly; groups that never complete are removed by
the orphan reaper.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import final

from django.utils import timezone

from server.apps.uploads.infrastructure.metadata import UploadMetadata

logger = logging.getLogger(__name__)


@final
@dataclass(slots=True)
class PartGroup:
    """Parts received so far for one logical file."""

    original_filename: str
    total_parts: int
    target_dir: Path
    metadata: UploadMetadata
    created_at: datetime
    parts: dict[int, str] = field(default_factory=dict)
    superseded: list[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        """Whether every declared part has arrived."""
        return len(self.parts) == self.total_parts

    @property
    def session_ids(self) -> list[str]:
        """Get the session ids of all recorded parts, in part order."""
        return [self.parts[number] for number in sorted(self.parts)]

    @property
    def staged_session_ids(self) -> list[str]:
        """Get every session this group owns in staging, replaced ones too."""
        return [*self.session_ids, *self.superseded]


@final
class PartTracker:
    """Registry of incomplete split uploads.

    Registration and removal happen without any suspension point and under
    a lock, so a group is handed over for reassembly at most once even when
    completions for its last part race each other.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = timezone.now,
    ) -> None:
        """Initialize an empty tracker.

        Args:
            clock: Source of the current time, injectable for tests.
        """
        self._clock = clock
        self._groups: dict[str, PartGroup] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        """Get the number of incomplete groups."""
        return len(self._groups)

    def groups(self) -> list[PartGroup]:
        """Get a snapshot of all incomplete groups."""
        with self._lock:
            return list(self._groups.values())

    def add_part(
        self,
        session_id: str,
        metadata: UploadMetadata,
        target_dir: Path,
    ) -> PartGroup | None:
        """Record a finished part session.

        The first part seen for a filename creates its group, recording
        the target directory and metadata used later for reassembly.
        Recording a part number twice keeps the latest session.

        Args:
            session_id: Finished part session.
            metadata: Parsed metadata of the session, must be parted.
            target_dir: Resolved directory for the reassembled file.

        Returns:
            The group, removed from the tracker, if this part completed it.
            None while parts are still missing.

        Raises:
            ValueError: If the metadata does not describe a part.
        """
        part = metadata.part
        if part is None:
            raise ValueError(f'Session {session_id} is not a parted upload')

        with self._lock:
            group = self._groups.get(part.original_filename)
            if group is None:
                group = PartGroup(
                    original_filename=part.original_filename,
                    total_parts=part.total_parts,
                    target_dir=target_dir,
                    metadata=metadata,
                    created_at=self._clock(),
                )
                self._groups[part.original_filename] = group
                logger.info(
                    'Collecting %d parts for %s',
                    part.total_parts,
                    part.original_filename,
                )
            elif part.total_parts != group.total_parts:
                logger.warning(
                    'Part %d of %s declares %d parts, group expects %d',
                    part.part_number,
                    part.original_filename,
                    part.total_parts,
                    group.total_parts,
                )

            replaced = group.parts.get(part.part_number)
            group.parts[part.part_number] = session_id
            if replaced is not None and replaced != session_id:
                group.superseded.append(replaced)
                logger.warning(
                    'Part %d of %s re-uploaded: %s replaces %s',
                    part.part_number,
                    part.original_filename,
                    session_id,
                    replaced,
                )

            logger.info(
                'Received part %d/%d for %s',
                len(group.parts),
                group.total_parts,
                part.original_filename,
            )

            if not group.is_complete:
                return None
            del self._groups[part.original_filename]

        return group

    def pop_expired(self, timeout: timedelta) -> list[PartGroup]:
        """Remove every group that has been collecting for too long.

        Args:
            timeout: Maximum age of a group.

        Returns:
            Removed groups, oldest first.
        """
        cutoff = self._clock() - timeout
        with self._lock:
            expired = [
                group
                for group in self._groups.values()
                if group.created_at <= cutoff
            ]
            for group in expired:
                del self._groups[group.original_filename]

        return sorted(expired, key=lambda group: group.created_at)
