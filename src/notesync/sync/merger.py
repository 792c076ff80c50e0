"""Three-way merge and diff utilities for the sync engine.

Two merge algorithms are available:

* ``three_way_merge`` -- positional: line *N* of each side is compared
  with line *N* of the others.  Cheap and predictable, but an insertion
  near the top shifts every later line.
* ``aligned_merge`` -- sequence-aligned merge via the ``merge3`` library
  (the same algorithm used by Bazaar/Breezy).

Both produce the same ``MergeResult`` shape.  Conflict markers follow Git
convention with custom labels: ``<<<<<<< LOCAL``, ``=======``,
``>>>>>>> REMOTE``.  ``generate_diff`` is a thin wrapper around
``difflib.unified_diff`` for display purposes (conflict review).
"""

from __future__ import annotations

import difflib
from typing import Callable

from merge3 import Merge3

from .models import ConflictMarker, MarkerType, MergeResult

START_MARKER = "<<<<<<< LOCAL"
MID_MARKER = "======="
END_MARKER = ">>>>>>> REMOTE"


def _same(a: str | None, b: str | None) -> bool:
    """Line equality that ignores a trailing carriage return."""
    if a is None or b is None:
        return a is b
    return a.removesuffix("\r") == b.removesuffix("\r")


def _at(lines: list[str], idx: int) -> str | None:
    return lines[idx] if idx < len(lines) else None


def _marker_type(local_present: bool, remote_present: bool) -> MarkerType:
    if local_present and remote_present:
        return MarkerType.BOTH
    return MarkerType.LOCAL if local_present else MarkerType.REMOTE


def three_way_merge(base: str, local: str, remote: str) -> MergeResult:
    """Positional line-by-line three-way merge.

    For each position up to the longest of the three inputs:

    - local equals remote: emit that line.
    - local equals base: only remote changed, emit remote.
    - remote equals base: only local changed, emit local.
    - otherwise: emit a conflict block with the local and remote lines.

    A position past the end of a side counts as an absent line; absent
    lines are never emitted, so a side that deleted trailing lines
    merges cleanly when the other side left them alone.

    Args:
        base: Common ancestor content.
        local: Current local content.
        remote: Current remote content.

    Returns:
        ``MergeResult`` with the merged text and one ``ConflictMarker``
        per conflict block (1-based, inclusive line numbers).
    """
    base_lines = base.split("\n")
    local_lines = local.split("\n")
    remote_lines = remote.split("\n")

    out: list[str] = []
    conflicts: list[ConflictMarker] = []

    for idx in range(max(len(base_lines), len(local_lines), len(remote_lines))):
        b = _at(base_lines, idx)
        lo = _at(local_lines, idx)
        r = _at(remote_lines, idx)

        if _same(lo, r):
            chosen = lo
        elif _same(lo, b):
            chosen = r
        elif _same(r, b):
            chosen = lo
        else:
            start = len(out) + 1
            out.append(START_MARKER)
            if lo is not None:
                out.append(lo)
            out.append(MID_MARKER)
            if r is not None:
                out.append(r)
            out.append(END_MARKER)

            marker_type = _marker_type(lo is not None, r is not None)
            if marker_type == MarkerType.BOTH:
                description = f"Line {idx + 1}: both local and remote changed"
            else:
                description = (
                    f"Line {idx + 1}: {marker_type.value} changed a line "
                    f"the other side removed"
                )
            conflicts.append(
                ConflictMarker(
                    start_line=start,
                    end_line=len(out),
                    type=marker_type,
                    description=description,
                )
            )
            continue

        if chosen is not None:
            out.append(chosen)

    return MergeResult(content="\n".join(out), conflicts=conflicts)


def _terminated(lines: list[str]) -> list[str]:
    if lines and not lines[-1].endswith(("\n", "\r")):
        return [*lines[:-1], lines[-1] + "\n"]
    return list(lines)


def aligned_merge(base: str, local: str, remote: str) -> MergeResult:
    """Sequence-aligned three-way merge using ``merge3``.

    Insertions and deletions are aligned against the base, so edits in
    different regions of the document never collide just because line
    numbers shifted.  Conflict blocks use the same markers as
    ``three_way_merge``.
    """
    m3 = Merge3(
        base.splitlines(True),
        local.splitlines(True),
        remote.splitlines(True),
    )

    out: list[str] = []
    conflicts: list[ConflictMarker] = []

    for group in m3.merge_groups():
        kind = group[0]
        if kind == "conflict":
            _, _, local_part, remote_part = group
            start = len(out) + 1
            out.append(START_MARKER + "\n")
            out.extend(_terminated(local_part))
            out.append(MID_MARKER + "\n")
            out.extend(_terminated(remote_part))
            out.append(END_MARKER + "\n")
            marker_type = _marker_type(bool(local_part), bool(remote_part))
            conflicts.append(
                ConflictMarker(
                    start_line=start,
                    end_line=len(out),
                    type=marker_type,
                    description=(
                        f"{len(local_part)} local vs {len(remote_part)} "
                        f"remote line(s) changed from the same region"
                    ),
                )
            )
        else:
            out.extend(group[1])

    return MergeResult(content="".join(out), conflicts=conflicts)


MERGE_ALGORITHMS: dict[str, Callable[[str, str, str], MergeResult]] = {
    "positional": three_way_merge,
    "aligned": aligned_merge,
}


def get_merge_function(
    algorithm: str,
) -> Callable[[str, str, str], MergeResult]:
    """Look up a merge function by name.

    Raises:
        ValueError: If the algorithm name is not recognised.
    """
    func = MERGE_ALGORITHMS.get(algorithm)
    if func is None:
        raise ValueError(
            f"Unknown merge algorithm: '{algorithm}'. "
            f"Valid algorithms: {sorted(MERGE_ALGORITHMS)}"
        )
    return func


def create_conflict_markers(
    local_content: str, remote_content: str, label: str = ""
) -> str:
    """Wrap two whole documents in a single conflict block.

    Used when no merge is attempted at all and both versions must be
    presented side by side.
    """
    suffix = f" - {label}" if label else ""
    local_body = local_content.rstrip("\n")
    remote_body = remote_content.rstrip("\n")
    return (
        f"{START_MARKER}{suffix}\n"
        f"{local_body}\n"
        f"{MID_MARKER}\n"
        f"{remote_body}\n"
        f"{END_MARKER}{suffix}\n"
    )


def generate_diff(
    old_content: str,
    new_content: str,
    label_old: str = "old",
    label_new: str = "new",
) -> str:
    """Generate a unified diff between two strings.

    Args:
        old_content: The original content.
        new_content: The modified content.
        label_old: Label for the old file in the diff header.
        label_new: Label for the new file in the diff header.

    Returns:
        A unified diff string.  Empty string if the contents are identical.
    """
    diff_lines = difflib.unified_diff(
        old_content.splitlines(True),
        new_content.splitlines(True),
        fromfile=label_old,
        tofile=label_new,
    )
    return "".join(diff_lines)
