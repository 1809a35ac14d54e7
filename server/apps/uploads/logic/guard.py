"""Duplicate check performed before an upload session is created."""

import logging
from collections.abc import Mapping
from pathlib import Path

from server.apps.uploads.exceptions import DuplicateFileError
from server.apps.uploads.infrastructure.metadata import (
    DuplicatePolicy,
    UploadMetadata,
)
from server.apps.uploads.logic.naming import sanitize_filename
from server.apps.uploads.logic.paths import resolve_target_dir

logger = logging.getLogger(__name__)


def ensure_upload_allowed(
    storage_root: Path,
    raw_metadata: Mapping[str, str],
) -> None:
    """Refuse a new upload whose file already exists under PREVENT.

    Only uploads that keep their original filename and ask for duplicates
    to be prevented are checked. Missing target directories are created
    as a side effect. Any internal error lets the upload through: a broken
    check must not block uploads. Parts of a split upload are checked
    against the name of the file they will be reassembled into.

    Args:
        storage_root: Root of the user-visible volume.
        raw_metadata: Decoded metadata of the session creation request.

    Raises:
        DuplicateFileError: If a same-named entry already exists.
    """
    try:
        metadata = UploadMetadata.from_mapping(raw_metadata)
        desired_name = metadata.filename
        if metadata.is_parted:
            desired_name = metadata.part.original_filename
        if not (
            metadata.use_original_filename
            and desired_name
            and metadata.duplicate_policy is DuplicatePolicy.PREVENT
        ):
            return

        target_dir = resolve_target_dir(storage_root, metadata.path)
        filename = sanitize_filename(desired_name)
        exists = (target_dir / filename).exists()
    except Exception:
        logger.exception('Duplicate check failed, allowing upload')
        return

    if exists:
        logger.info(
            'File %s already exists in %s, preventing upload',
            filename,
            target_dir,
        )
        raise DuplicateFileError(desired_name, str(target_dir))
