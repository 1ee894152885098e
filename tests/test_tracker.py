"""Tests for identity-keyed dependency and path tracking."""
from objectwatch import ChangeTracker


class TestDependencies:
    """Test new-vs-changed bookkeeping."""

    def test_record_and_query(self):
        tracker = ChangeTracker()
        target = object()

        assert not tracker.has_dependency(id(target), 'x')
        tracker.record_change(id(target), 'x', '')
        assert tracker.has_dependency(id(target), 'x')
        assert not tracker.has_dependency(id(target), 'y')

    def test_identities_are_independent(self):
        """Two instances with identical contents are distinct identities."""
        tracker = ChangeTracker()
        first, second = {'a': 1}, {'a': 1}

        tracker.record_change(id(first), 'a', '')

        assert tracker.has_dependency(id(first), 'a')
        assert not tracker.has_dependency(id(second), 'a')

    def test_removing_last_prop_drops_identity(self):
        tracker = ChangeTracker()
        tracker.record_change(1, 'x', '')
        tracker.record_change(1, 'y', '')

        tracker.remove_dependency(1, 'x')
        assert len(tracker) == 1
        assert tracker.dependencies(1) == frozenset({'y'})

        tracker.remove_dependency(1, 'y')
        assert len(tracker) == 0
        assert tracker.dependencies(1) == frozenset()

    def test_remove_unknown_is_noop(self):
        tracker = ChangeTracker()
        tracker.remove_dependency(42, 'x')
        assert len(tracker) == 0


class TestPaths:
    """Test canonical path assignment."""

    def test_unknown_identity_has_empty_path(self):
        assert ChangeTracker().get_path(12345) == ''

    def test_first_assignment_wins(self):
        tracker = ChangeTracker()
        tracker.assign_path(7, 'a.b')
        tracker.assign_path(7, 'c.d')
        tracker.record_change(7, 'x', 'e.f')

        assert tracker.get_path(7) == 'a.b'

    def test_forget_and_clear(self):
        tracker = ChangeTracker()
        tracker.record_change(1, 'x', 'a')
        tracker.record_change(2, 'y', 'b')

        tracker.forget(1)
        assert tracker.get_path(1) == ''
        assert not tracker.has_dependency(1, 'x')
        assert tracker.get_path(2) == 'b'

        tracker.clear()
        assert tracker.get_path(2) == ''
        assert len(tracker) == 0
