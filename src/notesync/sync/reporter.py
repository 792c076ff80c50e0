"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync runs:

- ``format_sync_report`` -- full post-sync summary.
- ``format_conflict`` -- diff, suggestions and merge preview for one
  conflicted document.
- ``format_stats`` -- running engine statistics.
- ``result_to_json`` / ``stats_to_json`` -- structured dicts for JSON
  output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .merger import generate_diff
from .models import SyncStatus
from .resolver import conflict_stats, validate_resolution

if TYPE_CHECKING:
    from .models import ConflictData, SyncAllResult, SyncOperation, SyncStats

PREVIEW_LINES = 20

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def _outcome(op: SyncOperation) -> str:
    """Last status message recorded on *op*, or its status."""
    for event in reversed(op.events):
        if event.message:
            return event.message
    return op.status.value


def format_sync_report(result: SyncAllResult) -> str:
    """Format a complete ``sync_all`` result as human-readable text.

    Sections are only included when they contain at least one operation.
    Skipped documents are summarised by count only.

    Args:
        result: The completed sync result.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    lines.append(f"Started: {result.started_at}")
    if result.completed_at:
        lines.append(f"Completed: {result.completed_at}")
    lines.append(f"Duration: {result.duration_ms:.0f} ms")
    lines.append("")
    lines.append(result.summary())
    lines.append("")

    completed = [
        op for op in result.operations if op.status == SyncStatus.COMPLETED
    ]
    if completed:
        lines.append("Synced:")
        for op in completed:
            lines.append(f"  {op.path}: {_outcome(op)}")
        lines.append("")

    if result.conflicted_operations:
        lines.append("Conflicts:")
        for op in result.conflicted_operations:
            data = op.conflict_data
            count = len(data.conflict_markers) if data else 0
            desc = f"{count} conflicting block(s)"
            if data and data.backup_path:
                desc += f", backup at {data.backup_path}"
            lines.append(f"  {op.path}: {desc}")
        lines.append("")

    if result.failed_operations:
        lines.append("Errors:")
        for op in result.failed_operations:
            if op.error:
                lines.append(
                    f"  {op.path}: [{op.error.type.value}] {op.error.message}"
                )
            else:
                lines.append(f"  {op.path}: unknown error")
        lines.append("")

    if result.skipped > 0:
        lines.append(f"Skipped: {result.skipped} documents")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Conflict detail
# ------------------------------------------------------------------


def format_conflict(path: str, conflict: ConflictData) -> str:
    """Format a single conflict for manual review.

    Shows a unified diff between local and remote content, the resolver's
    suggestions and a preview of the merged content with markers.

    Args:
        path: Store-relative path of the conflicted document.
        conflict: The conflict details from the operation.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    stats = conflict_stats(conflict.conflict_markers)
    lines.append(
        f"Conflict: {path} ({stats['total']} block(s), {stats['lines']} line(s))"
    )
    if conflict.backup_path:
        lines.append(f"Local copy saved to {conflict.backup_path}")
    lines.append("")

    diff_text = generate_diff(
        conflict.local_content,
        conflict.remote_content,
        f"local: {path}",
        f"remote: {path}",
    )
    lines.append(diff_text.rstrip() if diff_text else "(no textual differences)")
    lines.append("")

    if conflict.suggestions:
        lines.append("Suggestions:")
        for suggestion in conflict.suggestions:
            lines.append(f"  - {suggestion}")
        lines.append("")

    if conflict.merged_content is not None:
        lines.append("--- Merge result preview ---")
        merge_lines = conflict.merged_content.splitlines()
        for ml in merge_lines[:PREVIEW_LINES]:
            lines.append(f"  {ml}")
        if len(merge_lines) > PREVIEW_LINES:
            lines.append(f"  ... ({len(merge_lines) - PREVIEW_LINES} more lines)")
        lines.append("")

        if not validate_resolution(conflict.merged_content):
            lines.append("WARNING: Merged content contains conflict markers.")

    return "\n".join(lines).rstrip()


def format_stats(stats: SyncStats) -> str:
    """One-paragraph summary of running engine statistics."""
    last = stats.last_sync_time or "never"
    return (
        f"Total syncs: {stats.total_syncs} "
        f"({stats.successful_syncs} successful, {stats.failed_syncs} failed, "
        f"{stats.conflict_syncs} conflicts)\n"
        f"Average run time: {stats.avg_sync_time:.1f} ms\n"
        f"Last sync: {last}"
    )


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def result_to_json(result: SyncAllResult) -> dict:
    """Convert a sync result to a structured dict for JSON serialisation.

    Args:
        result: The sync result.

    Returns:
        Dict with timing, counts and per-operation details.
    """
    operations = []
    for op in result.operations:
        entry: dict = {
            "id": op.id,
            "path": op.path,
            "direction": op.direction.value,
            "status": op.status.value,
            "retry_count": op.retry_count,
            "outcome": _outcome(op),
        }
        if op.error:
            entry["error"] = op.error.model_dump(mode="json")
        if op.conflict_data:
            entry["conflicts"] = conflict_stats(op.conflict_data.conflict_markers)
            entry["suggestions"] = list(op.conflict_data.suggestions)
            if op.conflict_data.backup_path:
                entry["backup_path"] = op.conflict_data.backup_path
        operations.append(entry)

    return {
        "started_at": result.started_at,
        "completed_at": result.completed_at,
        "duration_ms": result.duration_ms,
        "error": result.error.model_dump(mode="json") if result.error else None,
        "counts": {
            "successful": result.successful,
            "failed": result.failed,
            "conflicts": result.conflicts,
            "skipped": result.skipped,
        },
        "operations": operations,
    }


def stats_to_json(stats: SyncStats) -> dict:
    return stats.model_dump(mode="json")
