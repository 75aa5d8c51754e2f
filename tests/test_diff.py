"""
Tests for diff.py - identity-keyed snapshot comparison.
"""

import pytest

from hackertracker.diff import diff_snapshots, index_by_identity, sort_changes
from hackertracker.errors import DuplicateIdentityError
from hackertracker.models import Added, Participant, Removed, Updated

from conftest import make_participant, make_report


class TestDiffSnapshots:
    """Test change detection between two snapshots."""

    def test_worked_example(self):
        """One updated participant and one new participant."""
        previous = [make_participant("u1", reputation=10, rank=5)]
        current = [
            make_participant("u1", reputation=15, rank=4),
            make_participant("u2", reputation=1, rank=50),
        ]

        changes = diff_snapshots(previous, current)

        assert changes == [
            Updated(previous[0], current[0]),
            Added(current[1]),
        ]
        assert changes[1].before == Participant.sentinel()

    def test_identical_snapshots_emit_nothing(self):
        """Same identities and attributes should produce zero changes."""
        snapshot = [make_participant(str(i), reputation=i * 10, rank=i) for i in range(1, 6)]
        assert diff_snapshots(snapshot, list(snapshot)) == []

    def test_reordered_snapshot_emits_nothing(self):
        """Order of entities in a snapshot does not matter."""
        snapshot = [make_participant(str(i), reputation=i, rank=i) for i in range(1, 4)]
        assert diff_snapshots(snapshot, list(reversed(snapshot))) == []

    def test_rank_only_change_is_not_an_update(self):
        """Rank is not a tracked attribute of participants."""
        previous = [make_participant("u1", reputation=10, rank=5)]
        current = [make_participant("u1", reputation=10, rank=2)]
        assert diff_snapshots(previous, current) == []

    def test_removed_entity(self):
        """An entity missing from current is reported with an absent after side."""
        gone = make_participant("u1", reputation=10, rank=1)

        changes = diff_snapshots([gone], [])

        assert changes == [Removed(gone)]
        assert changes[0].after.is_sentinel
        assert not changes[0].before.is_sentinel

    def test_same_user_in_two_programs(self):
        """Participants are keyed by user and program together."""
        previous = [make_participant("u1", reputation=10, team_handle="acme")]
        current = [
            make_participant("u1", reputation=10, team_handle="acme"),
            make_participant("u1", reputation=3, team_handle="globex"),
        ]

        changes = diff_snapshots(previous, current)

        assert len(changes) == 1
        assert isinstance(changes[0], Added)
        assert changes[0].after.team_handle == "globex"

    def test_report_disclosure_flip(self):
        """A report becoming disclosed is an update; other fields are ignored."""
        before = make_report("100", disclosed=False, title="old title")
        after = make_report("100", disclosed=True, title="new title")

        assert diff_snapshots([before], [after]) == [Updated(before, after)]
        assert diff_snapshots([make_report("100")], [make_report("100", title="edited")]) == []

    def test_identities_are_partitioned(self):
        """Every identity lands in exactly one of added/updated/kept/removed."""
        previous = [make_participant(str(i), reputation=i, rank=i) for i in range(0, 6)]
        current = [make_participant(str(i), reputation=i + (i % 2), rank=i) for i in range(3, 9)]

        changes = diff_snapshots(previous, current)

        added = {c.after.identity for c in changes if isinstance(c, Added)}
        updated = {c.after.identity for c in changes if isinstance(c, Updated)}
        removed = {c.before.identity for c in changes if isinstance(c, Removed)}
        changed = added | updated | removed
        kept = {e.identity for e in current if e.identity not in changed}

        all_ids = {e.identity for e in previous} | {e.identity for e in current}
        assert added | updated | removed | kept == all_ids
        assert len(added) + len(updated) + len(removed) + len(kept) == len(all_ids)
        assert added == {(str(i), "acme") for i in range(6, 9)}
        assert removed == {(str(i), "acme") for i in range(0, 3)}
        assert updated == {("3", "acme"), ("5", "acme")}

    def test_no_change_has_two_absent_sides(self):
        previous = [make_participant("a", 1), make_participant("b", 2)]
        current = [make_participant("b", 3), make_participant("c", 4)]

        for change in diff_snapshots(previous, current):
            assert not (change.before.is_sentinel and change.after.is_sentinel)
            if isinstance(change, Added):
                assert change.before.is_sentinel
            if isinstance(change, Removed):
                assert change.after.is_sentinel

    def test_duplicate_identity_in_current_fails(self):
        """A repeated identity within one snapshot is fatal."""
        current = [make_participant("u1", 1), make_participant("u1", 2)]
        with pytest.raises(DuplicateIdentityError):
            diff_snapshots([], current)

    def test_duplicate_identity_in_previous_fails(self):
        previous = [make_participant("u1", 1), make_participant("u1", 2)]
        with pytest.raises(DuplicateIdentityError):
            diff_snapshots(previous, [])


class TestIndexAndSort:
    """Test identity indexing and presentation order."""

    def test_index_by_identity(self):
        entities = [make_participant("u1", 1), make_participant("u2", 2)]
        index = index_by_identity(entities)
        assert set(index) == {("u1", "acme"), ("u2", "acme")}

    def test_sort_by_rank_with_unranked_last(self):
        """Changes are presented by rank; unranked participants go last."""
        changes = [
            Added(make_participant("c", 5, rank=-1)),
            Added(make_participant("b", 5, rank=7)),
            Removed(make_participant("a", 5, rank=2)),
        ]

        ordered = sort_changes(changes)

        assert [c.before.user_id if isinstance(c, Removed) else c.after.user_id for c in ordered] == ["a", "b", "c"]

    def test_sort_is_stable(self):
        first = Added(make_participant("x", 1, rank=3))
        second = Added(make_participant("y", 2, rank=3))
        assert sort_changes([first, second]) == [first, second]
        assert sort_changes([second, first]) == [second, first]
