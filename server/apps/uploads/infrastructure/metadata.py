"""Upload metadata decoding and parsing.

The tus transfer engine carries client metadata in the ``Upload-Metadata``
header as comma separated ``key base64(value)`` pairs. Completed sessions
hand the same keys over already decoded.
"""

import base64
import binascii
import enum
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Final, final

from server.apps.uploads.exceptions import InvalidUploadMetadataError

_TRUE: Final = 'true'
_MEBIBYTE: Final = 1024 * 1024

# (exclusive upper bound in bytes, number of parts)
_PART_TIERS: Final = (
    (32 * _MEBIBYTE, 1),
    (512 * _MEBIBYTE, 2),
    (1024 * _MEBIBYTE, 4),
)
_MAX_PARTS: Final = 6


@final
class DuplicatePolicy(enum.Enum):
    """What to do when the final filename is already taken."""

    PREVENT = 'prevent'
    NUMBER = 'number'
    OVERWRITE = 'overwrite'

    @classmethod
    def from_value(cls, raw_value: str | None) -> 'DuplicatePolicy':
        """Map the ``onDuplicateFiles`` value to a policy.

        Anything that is not ``prevent`` or ``number`` overwrites.

        Args:
            raw_value: Client-supplied value, may be missing.

        Returns:
            Matching policy.
        """
        if raw_value == cls.PREVENT.value:
            return cls.PREVENT
        if raw_value == cls.NUMBER.value:
            return cls.NUMBER
        return cls.OVERWRITE


@final
@dataclass(frozen=True, slots=True)
class PartInfo:
    """Position of one session inside a split upload."""

    original_filename: str
    part_number: int
    total_parts: int
    part_id: str = ''


@final
@dataclass(frozen=True, slots=True)
class UploadMetadata:
    """Typed view of the metadata a client attached to a session."""

    filename: str = ''
    filetype: str = ''
    path: str = ''
    use_original_filename: bool = False
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.OVERWRITE
    part: PartInfo | None = None

    @property
    def is_parted(self) -> bool:
        """Whether this session is one part of a split upload."""
        return self.part is not None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, str]) -> 'UploadMetadata':
        """Build metadata from the raw string map of a session.

        Args:
            raw: Metadata keys and values as supplied by the client.

        Returns:
            Parsed UploadMetadata.

        Raises:
            InvalidUploadMetadataError: If part information is malformed,
                or a filename is required but missing.
        """
        use_original_filename = raw.get('useOriginalFilename') == _TRUE
        part = None
        if raw.get('isPartedUpload') == _TRUE:
            part = _parse_part_info(raw)

        metadata = cls(
            filename=raw.get('filename') or '',
            filetype=raw.get('filetype') or '',
            path=raw.get('path') or '',
            use_original_filename=use_original_filename,
            duplicate_policy=DuplicatePolicy.from_value(
                raw.get('onDuplicateFiles'),
            ),
            part=part,
        )
        if use_original_filename and part is None and not metadata.filename:
            raise InvalidUploadMetadataError('filename is required')
        return metadata


def _parse_part_info(raw: Mapping[str, str]) -> PartInfo:
    original_filename = raw.get('originalFilename') or ''
    if not original_filename:
        raise InvalidUploadMetadataError(
            'originalFilename is required for parted uploads',
        )

    try:
        part_number = int(raw.get('partNumber', ''))
        total_parts = int(raw.get('totalParts', ''))
    except ValueError as error:
        raise InvalidUploadMetadataError(
            'partNumber and totalParts must be integers',
        ) from error

    if total_parts < 1:
        raise InvalidUploadMetadataError(
            f'totalParts must be positive, got {total_parts}',
        )
    if not 1 <= part_number <= total_parts:
        raise InvalidUploadMetadataError(
            f'partNumber {part_number} outside 1..{total_parts}',
        )

    return PartInfo(
        original_filename=original_filename,
        part_number=part_number,
        total_parts=total_parts,
        part_id=raw.get('partId') or '',
    )


def parse_upload_metadata(header: str) -> dict[str, str]:
    """Decode a tus ``Upload-Metadata`` header.

    Args:
        header: Raw header value, e.g. ``filename cmVwb3J0LnBkZg==,path``.

    Returns:
        Decoded metadata. Keys without a value map to an empty string.

    Raises:
        InvalidUploadMetadataError: If a value is not valid base64 or UTF-8.
    """
    metadata: dict[str, str] = {}
    for item in header.split(','):
        key, _, encoded = item.strip().partition(' ')
        if not key:
            continue
        try:
            metadata[key] = base64.b64decode(
                encoded.strip(),
                validate=True,
            ).decode('utf-8')
        except (binascii.Error, UnicodeDecodeError) as error:
            raise InvalidUploadMetadataError(
                f'Metadata value for {key!r} is not valid base64 text',
            ) from error
    return metadata


def recommended_total_parts(file_size: int) -> int:
    """Number of parts a client should split a file of this size into.

    The reconciliation pipeline never recomputes this: it accepts whatever
    ``totalParts`` the client declares.

    Args:
        file_size: File size in bytes.

    Returns:
        1, 2, 4 or 6.
    """
    for upper_bound, parts in _PART_TIERS:
        if file_size < upper_bound:
            return parts
    return _MAX_PARTS
