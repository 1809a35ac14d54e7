"""Exceptions for uploads app."""


class UploadReconciliationError(Exception):
    """Base class for errors raised while reconciling uploads."""


class InvalidUploadMetadataError(UploadReconciliationError):
    """Raised when client-supplied upload metadata cannot be used."""


class InvalidSessionIdError(UploadReconciliationError):
    """Raised when a session id is not a single safe path component."""


class PathTraversalError(UploadReconciliationError):
    """Raised when a resolved path would leave the storage root."""


class DuplicateFileError(UploadReconciliationError):
    """Raised when a file exists and duplicates are not allowed."""

    def __init__(self, filename: str, target_dir: str) -> None:
        """Initialize DuplicateFileError.

        Args:
            filename: Client-supplied filename that collided.
            target_dir: Directory that already holds the name.
        """
        self.filename = filename
        self.target_dir = target_dir
        super().__init__(
            f'File "{filename}" already exists in the target directory '
            'and duplicates are not allowed',
        )


class StagedContentMissingError(UploadReconciliationError):
    """Raised when the staged bytes of a session cannot be found."""

    def __init__(self, session_id: str) -> None:
        """Initialize StagedContentMissingError.

        Args:
            session_id: Session whose content is missing.
        """
        self.session_id = session_id
        super().__init__(f'Staged content not found for session {session_id}')


class PartReconstructionError(UploadReconciliationError):
    """Raised when a multi-part upload cannot be reassembled."""

    def __init__(
        self,
        original_filename: str,
        part_number: int,
        reason: str,
    ) -> None:
        """Initialize PartReconstructionError.

        Args:
            original_filename: Logical file being reassembled.
            part_number: Part that could not be appended.
            reason: Human readable cause.
        """
        self.original_filename = original_filename
        self.part_number = part_number
        super().__init__(
            f'Cannot reconstruct {original_filename}: '
            f'part {part_number} {reason}',
        )
