"""Shared fixtures for uploads app tests."""

import json
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from server.apps.uploads.infrastructure.staging import StagingStore
from server.apps.uploads.logic.concatenator import PartConcatenator
from server.apps.uploads.logic.part_tracker import PartTracker
from server.apps.uploads.logic.pipeline import UploadPipeline
from server.apps.uploads.logic.publisher import SingleFilePublisher

StageSession = Callable[..., Path]


class FakeClock:
    """Manually advanced clock for the part tracker."""

    def __init__(self) -> None:
        """Start at a fixed point in time."""
        self.now = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        """Get the current fake time."""
        return self.now

    def advance(self, seconds: float) -> None:
        """Move the clock forward."""
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def storage_root(tmp_path, settings):
    """Create an empty volume and point the settings at it.

    Returns:
        Path of the storage root.
    """
    root = tmp_path / 'volume'
    root.mkdir()
    settings.UPLOAD_STORAGE_ROOT = root
    settings.UPLOAD_STAGING_DIR = '.staging'
    settings.UPLOAD_SIDECAR_SUFFIX = '.json'
    return root


@pytest.fixture
def staging(storage_root):
    """Create the staging store inside the volume.

    Returns:
        StagingStore over ``<root>/.staging``.
    """
    staging_root = storage_root / '.staging'
    staging_root.mkdir()
    return StagingStore(staging_root)


@pytest.fixture
def stage_session(staging) -> StageSession:
    """Write a session the way the transfer engine leaves it.

    Returns:
        Function staging bytes plus sidecar, returning the content path.
    """

    def _stage(
        session_id: str,
        content: bytes,
        metadata: dict[str, str] | None = None,
    ) -> Path:
        content_path = staging.root / session_id
        content_path.write_bytes(content)
        staging.sidecar_path(session_id).write_text(
            json.dumps(
                {
                    'id': session_id,
                    'size': len(content),
                    'metadata': metadata or {},
                },
            ),
            encoding='utf-8',
        )
        return content_path

    return _stage


@pytest.fixture
def clock():
    """Create a fake clock.

    Returns:
        FakeClock starting at 2024-01-01 12:00 UTC.
    """
    return FakeClock()


@pytest.fixture
def tracker(clock):
    """Create a part tracker driven by the fake clock.

    Returns:
        Empty PartTracker.
    """
    return PartTracker(clock=clock)


@pytest.fixture
def publisher(storage_root, staging):
    """Create a publisher that does not wait between size checks.

    Returns:
        SingleFilePublisher instance.
    """
    return SingleFilePublisher(
        storage_root,
        staging,
        flush_poll_interval=0,
        flush_poll_attempts=2,
    )


@pytest.fixture
def concatenator(staging):
    """Create a concatenator with a tiny chunk size.

    Returns:
        PartConcatenator reading 4 bytes at a time.
    """
    return PartConcatenator(staging, chunk_size=4)


@pytest.fixture
def pipeline(storage_root, tracker, publisher, concatenator):
    """Create a pipeline wired from the test components.

    Returns:
        UploadPipeline instance.
    """
    return UploadPipeline(storage_root, tracker, publisher, concatenator)


def _single_metadata(
    filename: str,
    path: str = '',
    on_duplicate: str = 'number',
) -> dict[str, str]:
    """Build metadata of a single-file upload keeping its filename."""
    return {
        'filename': filename,
        'filetype': 'application/octet-stream',
        'path': path,
        'useOriginalFilename': 'true',
        'onDuplicateFiles': on_duplicate,
    }


def _part_metadata(
    original_filename: str,
    part_number: int,
    total_parts: int,
    path: str = '',
    on_duplicate: str = 'number',
) -> dict[str, str]:
    """Build metadata of one part of a split upload."""
    return {
        'filename': f'{original_filename}.part{part_number}',
        'path': path,
        'useOriginalFilename': 'true',
        'onDuplicateFiles': on_duplicate,
        'isPartedUpload': 'true',
        'originalFilename': original_filename,
        'partNumber': str(part_number),
        'totalParts': str(total_parts),
        'partId': f'{original_filename}-{part_number}',
    }


@pytest.fixture
def single_metadata():
    """Get the builder of single-file upload metadata.

    Returns:
        Function building a raw metadata map.
    """
    return _single_metadata


@pytest.fixture
def part_metadata():
    """Get the builder of split upload part metadata.

    Returns:
        Function building a raw metadata map.
    """
    return _part_metadata
