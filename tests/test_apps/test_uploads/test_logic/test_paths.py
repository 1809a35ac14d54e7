"""Tests for upload target directory resolution."""

import os
from pathlib import Path

import pytest

from server.apps.uploads.exceptions import PathTraversalError
from server.apps.uploads.logic.paths import (
    confine_relative_path,
    resolve_target_dir,
)


class TestConfineRelativePath:
    """Tests for confine_relative_path."""

    @pytest.mark.parametrize(
        ('raw_path', 'expected'),
        [
            (None, ''),
            ('', ''),
            ('docs', 'docs'),
            ('/docs/2024', 'docs/2024'),
            ('../secret', '/secret'),
            ('docs/../../etc', 'docs///etc'),
            ('....//x', '//x'),
        ],
    )
    def test_strips_parent_references(self, raw_path, expected):
        """Test every '..' is removed before leading slashes are."""
        confined = confine_relative_path(raw_path)

        assert confined == expected.lstrip('/')
        assert '..' not in confined

    def test_odd_dot_runs_leave_single_dot(self):
        """Test three dots collapse to one, which is harmless."""
        assert confine_relative_path('.../x') == './x'

    def test_rejects_nul_byte(self):
        """Test NUL bytes are refused outright."""
        with pytest.raises(PathTraversalError):
            confine_relative_path('docs\x00/x')


class TestResolveTargetDir:
    """Tests for resolve_target_dir."""

    def test_empty_path_is_root(self, tmp_path):
        """Test an empty path resolves to the storage root."""
        assert resolve_target_dir(tmp_path, '') == tmp_path

    def test_creates_missing_directories(self, tmp_path):
        """Test nested directories are created on demand."""
        target = resolve_target_dir(tmp_path, 'docs/2024')

        assert target == tmp_path / 'docs' / '2024'
        assert target.is_dir()

    def test_create_false_leaves_disk_untouched(self, tmp_path):
        """Test create=False only computes the path."""
        target = resolve_target_dir(tmp_path, 'docs', create=False)

        assert target == tmp_path / 'docs'
        assert not target.exists()

    @pytest.mark.parametrize(
        'hostile_path',
        [
            '..',
            '../..',
            '../../etc',
            'a/../../..',
            '/etc/passwd',
            '..\\..',
            '.../...',
            '....',
            './../.',
        ],
    )
    def test_never_escapes_root(self, tmp_path, hostile_path):
        """Test no placement of '..' leaves the storage root."""
        root = tmp_path / 'root'
        root.mkdir()

        target = resolve_target_dir(root, hostile_path, create=False)

        assert os.path.commonpath([root, target]) == str(root)

    def test_relative_root_is_made_absolute(self, tmp_path, monkeypatch):
        """Test a relative storage root resolves against the cwd."""
        monkeypatch.chdir(tmp_path)

        target = resolve_target_dir('uploads', 'docs')

        assert target == Path.cwd() / 'uploads' / 'docs'
        assert target.is_dir()

    @pytest.mark.parametrize(
        'staging_path',
        [
            '.staging',
            '/.staging',
            '.staging/nested',
            './.staging',
            '.../.staging',
        ],
    )
    def test_staging_area_is_refused(self, tmp_path, staging_path):
        """Test uploads cannot target the staging directory."""
        with pytest.raises(PathTraversalError, match='reserved'):
            resolve_target_dir(tmp_path, staging_path, create=False)

    def test_staging_dir_follows_settings(self, tmp_path, settings):
        """Test the reserved name is read from settings."""
        settings.UPLOAD_STAGING_DIR = 'incoming'

        with pytest.raises(PathTraversalError):
            resolve_target_dir(tmp_path, 'incoming', create=False)
        assert resolve_target_dir(tmp_path, '.staging', create=False) == (
            tmp_path / '.staging'
        )

    def test_nested_staging_name_is_allowed(self, tmp_path):
        """Test only the top-level staging directory is reserved."""
        target = resolve_target_dir(tmp_path, 'docs/.staging', create=False)

        assert target == tmp_path / 'docs' / '.staging'
