"""Shared fixtures for volume app tests."""

import pytest


@pytest.fixture
def volume_root(tmp_path, settings):
    """Create a volume with a few folders, files and a staging area.

    Layout::

        docs/report.pdf
        docs/2024/q1.xlsx
        photos/
        notes.txt
        .staging/abc123

    Returns:
        Path of the storage root.
    """
    root = tmp_path / 'volume'
    (root / 'docs' / '2024').mkdir(parents=True)
    (root / 'photos').mkdir()
    (root / '.staging').mkdir()
    (root / 'docs' / 'report.pdf').write_bytes(b'%PDF')
    (root / 'docs' / '2024' / 'q1.xlsx').write_bytes(b'xlsx')
    (root / 'notes.txt').write_text('hello')
    (root / '.staging' / 'abc123').write_bytes(b'partial')

    settings.UPLOAD_STORAGE_ROOT = root
    settings.UPLOAD_STAGING_DIR = '.staging'
    return root
