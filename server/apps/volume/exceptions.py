"""Exceptions for volume app."""


class VolumeError(Exception):
    """Base class for errors of directory operations on the volume."""


class AccessDeniedError(VolumeError):
    """Raised when a path is outside the volume or reserved."""


class EntryNotFoundError(VolumeError):
    """Raised when a file or directory does not exist."""


class InvalidFolderNameError(VolumeError):
    """Raised when a folder name contains characters that are not allowed."""


class EntryExistsError(VolumeError):
    """Raised when an entry with the requested name already exists."""
