"""Directory operations on the storage root.

Paths are relative to the storage root, e.g. ``docs/2024/report.pdf``;
``/`` or an empty path is the root itself. The staging directory the
transfer engine writes into lives inside the root but is not part of
the volume: it is hidden from listings and cannot be addressed.
"""

import logging
import os
import re
import shutil
from pathlib import Path
from typing import Final, TypedDict

from server.apps.uploads.logic.paths import get_reserved_names
from server.apps.volume.exceptions import (
    AccessDeniedError,
    EntryExistsError,
    EntryNotFoundError,
    InvalidFolderNameError,
)

logger = logging.getLogger(__name__)

_PATH_SEPARATOR: Final = '/'
_PARENT_REFERENCE: Final = '..'
_FOLDER_NAME_PATTERN: Final = re.compile(r'^[a-zA-Z0-9._\-\s]+$')


class DirectoryEntry(TypedDict):
    """One listed file or folder, as returned by the API."""

    name: str
    path: str
    isDirectory: bool  # noqa: N815


def resolve_volume_path(storage_root: Path, relative_path: str) -> Path:
    """Resolve a client path to an absolute path inside the volume.

    Args:
        storage_root: Root of the user-visible volume.
        relative_path: Path relative to the root, ``/`` for the root.

    Returns:
        Absolute, normalized path under (or equal to) the storage root.

    Raises:
        AccessDeniedError: If the path contains ``..``, leaves the root,
            or addresses a reserved directory.
    """
    if _PARENT_REFERENCE in relative_path or '\x00' in relative_path:
        raise AccessDeniedError("Access denied: Path cannot contain '..'")

    root = Path(os.path.abspath(storage_root))
    normalized = _normalize(relative_path)
    full_path = Path(os.path.normpath(root / normalized))

    if full_path != root and root not in full_path.parents:
        raise AccessDeniedError(
            'Access denied: Path must be within the uploads directory',
        )
    if full_path != root:
        top_level = full_path.relative_to(root).parts[0]
        if top_level in get_reserved_names():
            raise AccessDeniedError('Access denied: Path is reserved')
    return full_path


def list_directory(
    storage_root: Path,
    relative_path: str = _PATH_SEPARATOR,
) -> list[DirectoryEntry]:
    """List the entries of a directory, folders and files alike.

    Args:
        storage_root: Root of the user-visible volume.
        relative_path: Directory to list, ``/`` for the root.

    Returns:
        Entries sorted by name, paths relative to the root.

    Raises:
        AccessDeniedError: If the path is not inside the volume.
        EntryNotFoundError: If the directory does not exist.
    """
    directory = resolve_volume_path(storage_root, relative_path)
    if not directory.is_dir():
        raise EntryNotFoundError('Directory not found')

    is_root = directory == Path(os.path.abspath(storage_root))
    reserved = get_reserved_names()
    prefix = _normalize(relative_path)

    entries: list[DirectoryEntry] = []
    for item in sorted(directory.iterdir(), key=lambda entry: entry.name):
        if is_root and item.name in reserved:
            continue
        entries.append(
            DirectoryEntry(
                name=item.name,
                path=f'{prefix}/{item.name}' if prefix else item.name,
                isDirectory=item.is_dir(),
            ),
        )
    return entries


def delete_entry(storage_root: Path, relative_path: str) -> None:
    """Delete a file, or a folder with everything in it.

    Args:
        storage_root: Root of the user-visible volume.
        relative_path: Entry to delete.

    Raises:
        AccessDeniedError: If the path is not inside the volume or is
            the root itself.
        EntryNotFoundError: If nothing exists at the path.
    """
    target = resolve_volume_path(storage_root, relative_path)
    if target == Path(os.path.abspath(storage_root)):
        raise AccessDeniedError('Access denied: Cannot delete the root')
    if not os.path.lexists(target):
        raise EntryNotFoundError('File or directory not found')

    if target.is_dir() and not target.is_symlink():
        shutil.rmtree(target)
    else:
        target.unlink()
    logger.info('Deleted from volume: %s', target)


def move_entry(
    storage_root: Path,
    source_path: str,
    destination_path: str,
) -> None:
    """Move or rename a file or folder.

    Missing parent directories of the destination are created.

    Args:
        storage_root: Root of the user-visible volume.
        source_path: Entry to move.
        destination_path: New path of the entry.

    Raises:
        AccessDeniedError: If a path is not inside the volume or is the
            root itself.
        EntryNotFoundError: If the source does not exist.
    """
    if any(
        _PARENT_REFERENCE in path for path in (source_path, destination_path)
    ):
        raise AccessDeniedError("Access denied: Paths cannot contain '..'")

    root = Path(os.path.abspath(storage_root))
    source = resolve_volume_path(storage_root, source_path)
    destination = resolve_volume_path(storage_root, destination_path)
    if root in {source, destination}:
        raise AccessDeniedError('Access denied: Cannot move the root')
    if not os.path.lexists(source):
        raise EntryNotFoundError('Source file or directory not found')

    destination.parent.mkdir(parents=True, exist_ok=True)
    source.rename(destination)
    logger.info('Moved %s to %s', source, destination)


def create_folder(storage_root: Path, parent_path: str, name: str) -> str:
    """Create a folder inside an existing directory.

    Args:
        storage_root: Root of the user-visible volume.
        parent_path: Directory to create the folder in, ``/`` for the root.
        name: Name of the new folder.

    Returns:
        Path of the new folder relative to the root.

    Raises:
        InvalidFolderNameError: If the name has disallowed characters.
        AccessDeniedError: If the folder would not be inside the volume.
        EntryNotFoundError: If the parent directory does not exist.
        EntryExistsError: If an entry with the name already exists.
    """
    if not _FOLDER_NAME_PATTERN.fullmatch(name):
        raise InvalidFolderNameError('Folder name contains invalid characters')
    if _PARENT_REFERENCE in name:
        raise AccessDeniedError("Access denied: Path cannot contain '..'")

    prefix = _normalize(parent_path)
    relative_folder = f'{prefix}/{name}' if prefix else name
    parent = resolve_volume_path(storage_root, parent_path)
    folder = resolve_volume_path(storage_root, relative_folder)

    if not parent.is_dir():
        raise EntryNotFoundError('Parent directory not found')
    if os.path.lexists(folder):
        raise EntryExistsError('Folder already exists')

    folder.mkdir()
    logger.info('Created folder: %s', folder)
    return relative_folder


def _normalize(relative_path: str) -> str:
    return relative_path.strip(_PATH_SEPARATOR)
