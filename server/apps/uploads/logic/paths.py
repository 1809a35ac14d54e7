"""Target directory resolution for uploads.

Client metadata carries a ``path`` relative to the storage root, e.g.
``docs/2024``. It is confined to the root by stripping every ``..``
and leading slash before joining.
"""

import logging
import os
from pathlib import Path
from typing import Final

from django.conf import settings

from server.apps.uploads.exceptions import PathTraversalError

logger = logging.getLogger(__name__)

_PARENT_REFERENCE: Final = '..'
_PATH_SEPARATOR: Final = '/'


def get_reserved_names() -> frozenset[str]:
    """Get names at the top of the storage root that uploads cannot use.

    Returns:
        The staging directory name from settings.
    """
    return frozenset((getattr(settings, 'UPLOAD_STAGING_DIR', '.staging'),))


def confine_relative_path(relative_path: str | None) -> str:
    """Strip traversal sequences from a client-supplied relative path.

    Args:
        relative_path: Raw ``path`` metadata, may be empty or missing.

    Returns:
        Relative path without ``..`` substrings or leading slashes.

    Raises:
        PathTraversalError: If the path contains a NUL byte.
    """
    if not relative_path:
        return ''
    if '\x00' in relative_path:
        raise PathTraversalError('Path contains a NUL byte')

    # A run of n dots collapses to n % 2 dots, so one pass is enough
    confined = relative_path.replace(_PARENT_REFERENCE, '')
    return confined.lstrip(_PATH_SEPARATOR)


def resolve_target_dir(
    storage_root: Path,
    relative_path: str | None,
    *,
    create: bool = True,
) -> Path:
    """Resolve the directory an upload should be published into.

    Args:
        storage_root: Root of the user-visible volume.
        relative_path: Client ``path`` metadata, relative to the root.
        create: Create the directory (with parents) if it is missing.

    Returns:
        Absolute directory under (or equal to) the storage root.

    Raises:
        PathTraversalError: If the result would leave the storage root or
            land in a reserved directory such as the staging area.
    """
    root = Path(os.path.abspath(storage_root))
    target = Path(
        os.path.normpath(root / confine_relative_path(relative_path)),
    )

    if target != root and root not in target.parents:
        raise PathTraversalError(
            f'Resolved path {target} is outside the storage root',
        )
    if target != root:
        top_level = target.relative_to(root).parts[0]
        if top_level in get_reserved_names():
            raise PathTraversalError(
                f'Resolved path {target} is reserved',
            )

    if create and not target.is_dir():
        logger.info('Creating directory: %s', target)
        target.mkdir(parents=True, exist_ok=True)

    return target
