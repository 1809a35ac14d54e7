"""Tests for the single-file publisher."""

import logging

import pytest

from server.apps.uploads.infrastructure.metadata import UploadMetadata


@pytest.mark.asyncio
class TestSingleFilePublisher:
    """Tests for SingleFilePublisher.publish."""

    async def test_publishes_under_original_name(
        self,
        storage_root,
        staging,
        publisher,
        stage_session,
        single_metadata,
    ):
        """Test staged bytes are renamed into the target folder."""
        raw = single_metadata('report.pdf', 'docs')
        stage_session('s1', b'%PDF-1.7', raw)

        final_path = await publisher.publish(
            's1',
            UploadMetadata.from_mapping(raw),
        )

        assert final_path == storage_root / 'docs' / 'report.pdf'
        assert final_path.read_bytes() == b'%PDF-1.7'
        assert not staging.content_path('s1').exists()
        assert not staging.sidecar_path('s1').exists()

    async def test_name_is_sanitized(
        self,
        storage_root,
        publisher,
        stage_session,
        single_metadata,
    ):
        """Test unsafe characters never reach the volume."""
        raw = single_metadata('my report (v2).pdf')
        stage_session('s1', b'x', raw)

        final_path = await publisher.publish(
            's1',
            UploadMetadata.from_mapping(raw),
        )

        assert final_path == storage_root / 'my_report__v2_.pdf'

    async def test_number_policy_picks_free_name(
        self,
        storage_root,
        publisher,
        stage_session,
        single_metadata,
    ):
        """Test NUMBER publishes next to an existing file."""
        (storage_root / 'report.pdf').write_bytes(b'old')
        raw = single_metadata('report.pdf', on_duplicate='number')
        stage_session('s1', b'new', raw)

        final_path = await publisher.publish(
            's1',
            UploadMetadata.from_mapping(raw),
        )

        assert final_path == storage_root / 'report(1).pdf'
        assert (storage_root / 'report.pdf').read_bytes() == b'old'

    async def test_overwrite_policy_replaces_file(
        self,
        storage_root,
        publisher,
        stage_session,
        single_metadata,
    ):
        """Test OVERWRITE replaces the existing content."""
        (storage_root / 'report.pdf').write_bytes(b'old')
        raw = single_metadata('report.pdf', on_duplicate='overwrite')
        stage_session('s1', b'new', raw)

        final_path = await publisher.publish(
            's1',
            UploadMetadata.from_mapping(raw),
        )

        assert final_path == storage_root / 'report.pdf'
        assert final_path.read_bytes() == b'new'

    async def test_prevent_conflict_at_publish_time(
        self,
        storage_root,
        staging,
        publisher,
        stage_session,
        single_metadata,
        caplog,
    ):
        """Test a duplicate that appeared meanwhile is rejected."""
        (storage_root / 'report.pdf').write_bytes(b'old')
        raw = single_metadata('report.pdf', on_duplicate='prevent')
        stage_session('s1', b'new', raw)

        with caplog.at_level(logging.WARNING):
            final_path = await publisher.publish(
                's1',
                UploadMetadata.from_mapping(raw),
            )

        assert final_path is None
        assert (storage_root / 'report.pdf').read_bytes() == b'old'
        assert not staging.content_path('s1').exists()
        assert 'Rejecting session s1' in caplog.text

    async def test_missing_content_is_logged_and_swallowed(
        self,
        storage_root,
        publisher,
        single_metadata,
        caplog,
    ):
        """Test a session without staged bytes publishes nothing."""
        raw = single_metadata('report.pdf')

        with caplog.at_level(logging.ERROR):
            final_path = await publisher.publish(
                'ghost',
                UploadMetadata.from_mapping(raw),
            )

        assert final_path is None
        assert not (storage_root / 'report.pdf').exists()
        assert 'File not found in staging' in caplog.text

    async def test_unexpected_failure_releases_claim(
        self,
        storage_root,
        publisher,
        stage_session,
        single_metadata,
        monkeypatch,
        caplog,
    ):
        """Test a failed rename leaves no placeholder behind."""
        raw = single_metadata('report.pdf', on_duplicate='number')
        stage_session('s1', b'data', raw)

        async def broken_replace(*args, **kwargs):
            raise PermissionError('read-only volume')

        monkeypatch.setattr(
            'server.apps.uploads.logic.publisher.aiofiles.os.replace',
            broken_replace,
        )

        with caplog.at_level(logging.ERROR):
            final_path = await publisher.publish(
                's1',
                UploadMetadata.from_mapping(raw),
            )

        assert final_path is None
        assert not (storage_root / 'report.pdf').exists()
        assert 'Failed to publish session s1' in caplog.text
