"""Tests for sync/merger.py: three-way merge and diff utilities.

Covers:
- three_way_merge() positional merges, conflicts and absent lines
- aligned_merge() via merge3
- get_merge_function(), create_conflict_markers(), generate_diff()
"""

import pytest

from notesync.sync.merger import (
    END_MARKER,
    MID_MARKER,
    START_MARKER,
    aligned_merge,
    create_conflict_markers,
    generate_diff,
    get_merge_function,
    three_way_merge,
)
from notesync.sync.models import MarkerType

# ---------------------------------------------------------------------------
# three_way_merge tests
# ---------------------------------------------------------------------------


class TestThreeWayMerge:
    """Tests for the positional three_way_merge()."""

    def test_conflict_on_second_line(self):
        """Both sides change line 2: one conflict block starting at line 2."""
        result = three_way_merge("A\nB", "A\nX", "A\nY")

        assert not result.success
        assert result.content == (
            f"A\n{START_MARKER}\nX\n{MID_MARKER}\nY\n{END_MARKER}"
        )
        assert len(result.conflicts) == 1
        marker = result.conflicts[0]
        assert marker.start_line == 2
        assert marker.end_line == 6
        assert marker.type == MarkerType.BOTH
        assert "Line 2" in marker.description

    def test_local_only_change(self):
        result = three_way_merge("A\nB\nC", "A\nX\nC", "A\nB\nC")
        assert result.success
        assert result.content == "A\nX\nC"

    def test_remote_only_change(self):
        result = three_way_merge("A\nB\nC", "A\nB\nC", "A\nB\nZ")
        assert result.success
        assert result.content == "A\nB\nZ"

    def test_changes_on_different_lines(self):
        result = three_way_merge("A\nB\nC", "X\nB\nC", "A\nB\nZ")
        assert result.success
        assert result.content == "X\nB\nZ"

    def test_same_change_both_sides(self):
        result = three_way_merge("A\nB", "A\nQ", "A\nQ")
        assert result.success
        assert result.content == "A\nQ"

    def test_identical_inputs(self):
        result = three_way_merge("same\n", "same\n", "same\n")
        assert result.success
        assert result.content == "same\n"

    def test_appended_line_one_side(self):
        result = three_way_merge("A", "A\nB", "A")
        assert result.success
        assert result.content == "A\nB"

    def test_trailing_delete_merges_cleanly(self):
        """Absent lines are never emitted as blanks."""
        result = three_way_merge("A\nB\nC", "A\nB", "A\nB\nC")
        assert result.success
        assert result.content == "A\nB"

    def test_delete_against_edit_conflicts(self):
        result = three_way_merge("A\nB\nC", "A\nB", "A\nB\nZ")

        assert len(result.conflicts) == 1
        marker = result.conflicts[0]
        assert marker.type == MarkerType.REMOTE
        assert result.content.endswith(
            f"{START_MARKER}\n{MID_MARKER}\nZ\n{END_MARKER}"
        )
        assert marker.end_line - marker.start_line == 3

    def test_carriage_return_ignored_in_comparison(self):
        """Line equality ignores a trailing \\r; emitted text is the winner's."""
        result = three_way_merge("A\r\nB", "A\r\nB", "A\nB\nC")
        assert result.success
        assert result.content == "A\r\nB\nC"

    def test_multiple_conflicts_do_not_overlap(self):
        result = three_way_merge("A\nB\nC", "X\nB\nY", "P\nB\nQ")

        assert len(result.conflicts) == 2
        first, second = result.conflicts
        assert first.start_line == 1
        assert first.end_line == 5
        assert second.start_line == 7
        assert second.end_line == 11
        lines = result.content.split("\n")
        assert lines[5] == "B"
        assert lines[second.start_line - 1] == START_MARKER
        assert lines[second.end_line - 1] == END_MARKER


# ---------------------------------------------------------------------------
# aligned_merge tests
# ---------------------------------------------------------------------------


class TestAlignedMerge:
    """Tests for the merge3-backed aligned_merge()."""

    def test_insertion_does_not_shift_conflicts(self):
        base = "a\nb\nc"
        local = "new\na\nb\nc"
        remote = "a\nb\nC"

        assert not three_way_merge(base, local, remote).success

        result = aligned_merge(base, local, remote)
        assert result.success
        assert result.content == "new\na\nb\nC"

    def test_conflict_block(self):
        result = aligned_merge("A\nB\n", "A\nX\n", "A\nY\n")

        assert result.content == (
            f"A\n{START_MARKER}\nX\n{MID_MARKER}\nY\n{END_MARKER}\n"
        )
        assert len(result.conflicts) == 1
        assert result.conflicts[0].start_line == 2
        assert result.conflicts[0].end_line == 6
        assert result.conflicts[0].type == MarkerType.BOTH

    def test_clean_merge_both_sides(self):
        base = "line1\nline2\n"
        local = "line1\nLOCAL\nline2\n"
        remote = "line1\nline2\nREMOTE\n"

        result = aligned_merge(base, local, remote)
        assert result.success
        assert result.content == "line1\nLOCAL\nline2\nREMOTE\n"

    def test_conflict_without_trailing_newline(self):
        result = aligned_merge("A", "X", "Y")
        assert result.content == (
            f"{START_MARKER}\nX\n{MID_MARKER}\nY\n{END_MARKER}\n"
        )


# ---------------------------------------------------------------------------
# Convergence
# ---------------------------------------------------------------------------


class TestConvergence:
    """A clean merge fed back as both sides merges to itself."""

    @pytest.mark.parametrize("merge", [three_way_merge, aligned_merge])
    @pytest.mark.parametrize(
        ("base", "local", "remote"),
        [
            ("A\nB\nC", "X\nB\nC", "A\nB\nZ"),
            ("A\nB\nC\n", "A\nB\nC\nD\n", "A\nQ\nC\n"),
            ("A\nB", "A", "A\nB"),
        ],
    )
    def test_merged_result_is_stable(self, merge, base, local, remote):
        merged = merge(base, local, remote)
        assert merged.success

        again = merge(base, merged.content, merged.content)

        assert again.conflicts == []
        assert again.content == merged.content


class TestGetMergeFunction:
    """Tests for get_merge_function()."""

    def test_known_algorithms(self):
        assert get_merge_function("positional") is three_way_merge
        assert get_merge_function("aligned") is aligned_merge

    def test_unknown_algorithm(self):
        with pytest.raises(ValueError, match="Unknown merge algorithm"):
            get_merge_function("semantic")


# ---------------------------------------------------------------------------
# Whole-document markers and diff
# ---------------------------------------------------------------------------


class TestCreateConflictMarkers:
    """Tests for create_conflict_markers()."""

    def test_wraps_both_documents(self):
        text = create_conflict_markers("mine\n", "theirs\n")
        assert text == (
            f"{START_MARKER}\nmine\n{MID_MARKER}\ntheirs\n{END_MARKER}\n"
        )

    def test_label_appended(self):
        text = create_conflict_markers("a", "b", label="notes/a.md")
        assert text.startswith(f"{START_MARKER} - notes/a.md\n")
        assert f"{END_MARKER} - notes/a.md" in text


class TestGenerateDiff:
    """Tests for generate_diff()."""

    def test_no_changes_returns_empty(self):
        assert generate_diff("same\n", "same\n") == ""

    def test_addition(self):
        diff = generate_diff("a\n", "a\nb\n", "local", "remote")
        assert "--- local" in diff
        assert "+++ remote" in diff
        assert "+b" in diff

    def test_removal(self):
        diff = generate_diff("a\nb\n", "a\n")
        assert "-b" in diff
