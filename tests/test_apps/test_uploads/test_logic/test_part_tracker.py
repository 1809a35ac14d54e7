"""Tests for the part tracker."""

from datetime import timedelta
from itertools import permutations
from pathlib import Path

import pytest

from server.apps.uploads.infrastructure.metadata import UploadMetadata

_TIMEOUT = timedelta(hours=1)
_TARGET_DIR = Path('/volume')


def _add(tracker, part_metadata, session_id, number, total, name='a.bin'):
    metadata = UploadMetadata.from_mapping(part_metadata(name, number, total))
    return tracker.add_part(session_id, metadata, target_dir=_TARGET_DIR)


def _collecting(tracker):
    return {group.original_filename for group in tracker.groups()}


def _collected(tracker, name):
    [group] = [
        group for group in tracker.groups() if group.original_filename == name
    ]
    return group


class TestAddPart:
    """Tests for PartTracker.add_part."""

    def test_first_part_creates_group(self, tracker, part_metadata, clock):
        """Test the first part registers a group with its context."""
        assert _add(tracker, part_metadata, 's1', 1, 3) is None

        group = _collected(tracker, 'a.bin')
        assert 'a.bin' in _collecting(tracker)
        assert len(tracker) == 1
        assert group.total_parts == 3
        assert set(group.parts) == {1}
        assert group.created_at == clock.now
        assert group.target_dir == _TARGET_DIR

    @pytest.mark.parametrize('order', list(permutations([1, 2, 3])))
    def test_completes_exactly_once_in_any_order(
        self,
        tracker,
        part_metadata,
        order,
    ):
        """Test whichever part arrives last completes the group."""
        results = [
            _add(tracker, part_metadata, f's{number}', number, 3)
            for number in order
        ]

        assert results[:2] == [None, None]
        group = results[2]
        assert group.is_complete
        assert group.session_ids == ['s1', 's2', 's3']
        assert 'a.bin' not in _collecting(tracker)

    def test_groups_are_independent(self, tracker, part_metadata):
        """Test parts of different files never mix."""
        _add(tracker, part_metadata, 'a1', 1, 2, name='a.bin')
        _add(tracker, part_metadata, 'b1', 1, 2, name='b.bin')

        group = _add(tracker, part_metadata, 'a2', 2, 2, name='a.bin')

        assert group.session_ids == ['a1', 'a2']
        assert 'b.bin' in _collecting(tracker)

    def test_single_part_group_completes_at_once(self, tracker, part_metadata):
        """Test a one-part upload never lingers in the tracker."""
        group = _add(tracker, part_metadata, 's1', 1, 1)

        assert group.session_ids == ['s1']
        assert len(tracker) == 0

    def test_reuploaded_part_last_write_wins(self, tracker, part_metadata):
        """Test a repeated part number keeps the newest session."""
        _add(tracker, part_metadata, 'old', 1, 2)
        _add(tracker, part_metadata, 'new', 1, 2)

        group = _collected(tracker, 'a.bin')
        assert group.parts == {1: 'new'}
        assert group.superseded == ['old']
        assert not group.is_complete

        complete = _add(tracker, part_metadata, 's2', 2, 2)
        assert complete.session_ids == ['new', 's2']
        assert complete.staged_session_ids == ['new', 's2', 'old']

    def test_same_session_twice_is_not_superseded(
        self,
        tracker,
        part_metadata,
    ):
        """Test a duplicated completion event is harmless."""
        _add(tracker, part_metadata, 's1', 1, 2)
        _add(tracker, part_metadata, 's1', 1, 2)

        assert _collected(tracker, 'a.bin').superseded == []

    def test_group_keeps_first_declared_total(self, tracker, part_metadata):
        """Test a conflicting totalParts does not change the group."""
        _add(tracker, part_metadata, 's1', 1, 2)

        group = _add(tracker, part_metadata, 's2', 2, 3)

        assert group.total_parts == 2
        assert group.is_complete

    def test_non_parted_session_is_refused(self, tracker, single_metadata):
        """Test single-file sessions cannot be tracked."""
        metadata = UploadMetadata.from_mapping(single_metadata('a.bin'))

        with pytest.raises(ValueError, match='not a parted upload'):
            tracker.add_part('s1', metadata, target_dir=_TARGET_DIR)


class TestPopExpired:
    """Tests for PartTracker.pop_expired."""

    def test_group_younger_than_timeout_stays(
        self,
        tracker,
        part_metadata,
        clock,
    ):
        """Test a group just below the timeout is kept."""
        _add(tracker, part_metadata, 's1', 1, 2)
        clock.advance(_TIMEOUT.total_seconds() - 1)

        assert tracker.pop_expired(_TIMEOUT) == []
        assert 'a.bin' in _collecting(tracker)

    def test_group_at_timeout_is_removed(self, tracker, part_metadata, clock):
        """Test a group exactly at the timeout is expired."""
        _add(tracker, part_metadata, 's1', 1, 2)
        clock.advance(_TIMEOUT.total_seconds())

        expired = tracker.pop_expired(_TIMEOUT)

        assert [group.original_filename for group in expired] == ['a.bin']
        assert len(tracker) == 0

    def test_expired_groups_oldest_first(self, tracker, part_metadata, clock):
        """Test only old groups are removed, oldest first."""
        _add(tracker, part_metadata, 'b1', 1, 2, name='b.bin')
        clock.advance(10)
        _add(tracker, part_metadata, 'a1', 1, 2, name='a.bin')
        clock.advance(10)
        _add(tracker, part_metadata, 'c1', 1, 2, name='c.bin')
        clock.advance(_TIMEOUT.total_seconds() - 10)

        expired = tracker.pop_expired(_TIMEOUT)

        assert [group.original_filename for group in expired] == [
            'b.bin',
            'a.bin',
        ]
        assert [group.original_filename for group in tracker.groups()] == [
            'c.bin',
        ]

    def test_age_counts_from_first_part(self, tracker, part_metadata, clock):
        """Test later parts do not refresh the group's age."""
        _add(tracker, part_metadata, 's1', 1, 3)
        clock.advance(_TIMEOUT.total_seconds() - 1)
        _add(tracker, part_metadata, 's2', 2, 3)
        clock.advance(1)

        assert len(tracker.pop_expired(_TIMEOUT)) == 1
