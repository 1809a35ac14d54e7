"""Filename sanitizing and duplicate resolution."""

import logging
import os
import re
from collections.abc import Iterator
from pathlib import Path
from typing import Final

from server.apps.uploads.exceptions import DuplicateFileError
from server.apps.uploads.infrastructure.metadata import DuplicatePolicy

logger = logging.getLogger(__name__)

_UNSAFE_CHARACTERS: Final = re.compile(r'[^A-Za-z0-9._-]')
_PLACEHOLDER_MODE: Final = 0o644


def sanitize_filename(name: str) -> str:
    """Make a client-supplied filename safe to use on the volume.

    Every character outside ``[A-Za-z0-9._-]`` becomes ``_``. Names made
    only of dots (or empty) become underscores, so a sanitized name never
    addresses ``.`` or ``..``.

    Args:
        name: Desired filename.

    Returns:
        Sanitized filename.
    """
    sanitized = _UNSAFE_CHARACTERS.sub('_', name)
    if not sanitized.strip('.'):
        return '_' * max(len(sanitized), 1)
    return sanitized


def numbered_candidates(name: str) -> Iterator[str]:
    """Generate ``name``, ``base(1)ext``, ``base(2)ext``, ... endlessly.

    Args:
        name: Sanitized filename.

    Yields:
        Candidate filenames in the order they should be tried.
    """
    base, extension = os.path.splitext(name)
    yield name
    number = 1
    while True:
        yield f'{base}({number}){extension}'
        number += 1


def resolve_duplicate(
    target_dir: Path,
    name: str,
    policy: DuplicatePolicy,
) -> str:
    """Decide the final filename under a duplicate policy.

    The filesystem is checked again for every candidate; nothing is
    reserved, see :func:`claim_filename` for that.

    Args:
        target_dir: Directory the file will be published into.
        name: Sanitized filename.
        policy: Duplicate policy requested by the client.

    Returns:
        Final filename.

    Raises:
        DuplicateFileError: If the name is taken under PREVENT.
    """
    if policy is DuplicatePolicy.OVERWRITE:
        return name

    if policy is DuplicatePolicy.PREVENT:
        if os.path.lexists(target_dir / name):
            raise DuplicateFileError(name, str(target_dir))
        return name

    return next(
        candidate
        for candidate in numbered_candidates(name)
        if not os.path.lexists(target_dir / candidate)
    )


def claim_filename(
    target_dir: Path,
    name: str,
    policy: DuplicatePolicy,
) -> tuple[Path, bool]:
    """Reserve the final path of an upload.

    Under PREVENT and NUMBER the name is reserved by creating an empty
    placeholder with exclusive-create semantics, so deciding the name and
    taking it is one atomic filesystem operation. The caller replaces the
    placeholder with the real content via ``os.replace``.

    The empty placeholder is visible at the final path until then, which
    for a split upload lasts the whole reassembly. A failed publish
    removes it with :func:`release_claim`; a process that dies in between
    leaves a zero-byte file (next to a ``.tmp`` sibling when reassembling)
    that has to be removed by hand.

    Args:
        target_dir: Directory the file will be published into.
        name: Sanitized filename.
        policy: Duplicate policy requested by the client.

    Returns:
        Final path and whether a placeholder was created for it.

    Raises:
        DuplicateFileError: If the name is taken under PREVENT.
    """
    if policy is DuplicatePolicy.OVERWRITE:
        return target_dir / name, False

    if policy is DuplicatePolicy.PREVENT:
        final_path = target_dir / name
        if not _create_placeholder(final_path):
            raise DuplicateFileError(name, str(target_dir))
        return final_path, True

    final_path = next(
        target_dir / candidate
        for candidate in numbered_candidates(name)
        if _create_placeholder(target_dir / candidate)
    )
    if final_path.name != name:
        logger.info(
            'File %s already exists, using numbered filename: %s',
            name,
            final_path.name,
        )
    return final_path, True


def release_claim(final_path: Path) -> None:
    """Remove a placeholder left behind by a failed publish.

    Only empty regular files are removed, a placeholder that was already
    replaced with content stays.

    Args:
        final_path: Path returned by :func:`claim_filename`.
    """
    try:
        if final_path.is_file() and final_path.stat().st_size == 0:
            final_path.unlink()
            logger.info('Released filename claim: %s', final_path)
    except FileNotFoundError:
        return


def _create_placeholder(path: Path) -> bool:
    try:
        descriptor = os.open(
            path,
            os.O_CREAT | os.O_EXCL | os.O_WRONLY,
            _PLACEHOLDER_MODE,
        )
    except FileExistsError:
        return False
    os.close(descriptor)
    return True
