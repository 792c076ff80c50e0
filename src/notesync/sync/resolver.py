"""Conflict resolution for the sync engine.

``ConflictResolver.resolve()`` attempts a three-way merge first.  A clean
merge is resolved automatically.  When conflict blocks remain, the
configured policy decides:

- ``LocalWinsPolicy``: Return the entire local document verbatim.
- ``RemoteWinsPolicy``: Return the entire remote document verbatim.
- ``AskPolicy``: Leave the conflict for manual resolution.
- ``NewestPolicy``: Not resolvable from content alone; always manual.

The ``create_policy()`` factory maps config strategy strings to policy
instances.  The resolver does no I/O: it prepares data for the engine.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Protocol

from .merger import get_merge_function
from .metadata import extract_metadata
from .models import ConflictMarker, MarkerType, Resolution, ResolutionType

if TYPE_CHECKING:
    from notesync.config_schema import SyncSettings

logger = logging.getLogger(__name__)

LENGTH_DIFFERENCE_THRESHOLD = 5
KEY_METADATA_FIELDS = ("layer", "framework", "core_message")

_WIKILINK_RE = re.compile(r"\[\[([^\]]+)\]\]")
_MARKER_RE = re.compile(
    r"<{7}(?: |\r?$)|>{7}(?: |\r?$)|^={7}[ \t]*\r?$", re.MULTILINE
)


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


class ResolutionPolicy(Protocol):
    """Protocol that all resolution policies must satisfy."""

    name: str

    def apply(self, local: str, remote: str) -> str | None:
        """Pick final content for a conflicting merge.

        Args:
            local: Full local document.
            remote: Full remote document.

        Returns:
            The content to write, or ``None`` to leave the conflict for
            manual resolution.
        """
        ...  # pragma: no cover


class LocalWinsPolicy:
    """Always resolve conflicts in favour of local content."""

    name = "local"

    def apply(self, local: str, remote: str) -> str | None:
        return local


class RemoteWinsPolicy:
    """Always resolve conflicts in favour of remote content."""

    name = "remote"

    def apply(self, local: str, remote: str) -> str | None:
        return remote


class AskPolicy:
    """Never resolve automatically."""

    name = "ask"

    def apply(self, local: str, remote: str) -> str | None:
        return None


class NewestPolicy:
    """Prefer the newest side.

    Checksums and content carry no reliable notion of "newer" once the
    modification times compared equal, so this always falls through to
    manual resolution.
    """

    name = "newest"

    def apply(self, local: str, remote: str) -> str | None:
        logger.info(
            "Conflict policy 'newest' cannot pick a side from content; "
            "leaving conflict for manual resolution"
        )
        return None


_POLICY_MAP: dict[str, type] = {
    "local": LocalWinsPolicy,
    "remote": RemoteWinsPolicy,
    "ask": AskPolicy,
    "newest": NewestPolicy,
}


def create_policy(strategy: str) -> ResolutionPolicy:
    """Create a resolution policy for the given strategy string.

    Args:
        strategy: One of ``"ask"``, ``"local"``, ``"remote"``,
            ``"newest"``.

    Returns:
        A ``ResolutionPolicy`` implementation instance.

    Raises:
        ValueError: If the strategy string is not recognised.
    """
    cls = _POLICY_MAP.get(strategy)
    if cls is None:
        raise ValueError(
            f"Unknown conflict strategy: '{strategy}'. Valid strategies: {sorted(_POLICY_MAP.keys())}"
        )
    return cls()  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class ConflictResolver:
    """Merge divergent documents and apply the configured policy.

    Args:
        policy: Strategy name passed to ``create_policy()``.
        merge_algorithm: ``"positional"`` or ``"aligned"``.
    """

    def __init__(
        self, policy: str = "ask", merge_algorithm: str = "positional"
    ) -> None:
        self.policy = create_policy(policy)
        self.merge_algorithm = merge_algorithm
        self._merge = get_merge_function(merge_algorithm)

    @classmethod
    def from_settings(cls, settings: SyncSettings) -> ConflictResolver:
        return cls(
            policy=settings.conflict_resolution,
            merge_algorithm=settings.merge_algorithm,
        )

    def resolve(
        self, base: str | None, local: str, remote: str
    ) -> Resolution:
        """Resolve a divergence between *local* and *remote*.

        Without a true common ancestor, *local* stands in as the base.
        This is an approximation: every remote-side difference then looks
        like a remote-only change.

        Returns:
            ``auto`` with the final content, or ``manual`` with the
            conflict blocks, the marked-up merge and suggestions.
        """
        if base is None:
            logger.debug("No common base available; using local as base")
            base = local

        merged = self._merge(base, local, remote)
        if merged.success:
            return Resolution(type=ResolutionType.AUTO, content=merged.content)

        content = self.policy.apply(local, remote)
        if content is not None:
            logger.info(
                "Resolved %d conflict(s) with policy '%s'",
                len(merged.conflicts),
                self.policy.name,
            )
            return Resolution(type=ResolutionType.AUTO, content=content)

        return Resolution(
            type=ResolutionType.MANUAL,
            conflicts=merged.conflicts,
            suggestions=generate_suggestions(merged.conflicts, local, remote),
            merged_content=merged.content,
        )


# ---------------------------------------------------------------------------
# Suggestions and validation
# ---------------------------------------------------------------------------


def _key_fields(content: str) -> dict[str, str | None] | None:
    metadata = extract_metadata(content)
    if metadata is None:
        return None
    return {
        "layer": metadata.layer,
        "framework": metadata.framework,
        "core_message": metadata.metadata.core_message,
    }


def count_references(content: str) -> int:
    """Count cross-document references: metadata connections plus wikilinks."""
    metadata = extract_metadata(content)
    connections = len(metadata.connections) if metadata else 0
    return connections + len(_WIKILINK_RE.findall(content))


def generate_suggestions(
    conflicts: list[ConflictMarker], local: str, remote: str
) -> list[str]:
    """Human-readable hints for resolving *conflicts* by hand."""
    suggestions: list[str] = []

    if len(conflicts) > 1:
        suggestions.append(
            f"{len(conflicts)} sections have conflicting changes"
        )
    if conflicts:
        suggestions.append("Review each conflict marker carefully")

    local_count = len(local.split("\n"))
    remote_count = len(remote.split("\n"))
    if abs(local_count - remote_count) > LENGTH_DIFFERENCE_THRESHOLD:
        longer = "local" if local_count > remote_count else "remote"
        suggestions.append(
            f"{longer} version has significantly more content "
            f"({max(local_count, remote_count)} vs "
            f"{min(local_count, remote_count)} lines)"
        )

    local_meta = _key_fields(local)
    remote_meta = _key_fields(remote)
    if local_meta and remote_meta:
        differing = [
            field
            for field in KEY_METADATA_FIELDS
            if local_meta[field]
            and remote_meta[field]
            and local_meta[field] != remote_meta[field]
        ]
        if differing:
            suggestions.append(
                f"Metadata conflicts detected on: {', '.join(differing)}"
            )
            suggestions.append("Consider merging metadata manually")

    local_refs = count_references(local)
    remote_refs = count_references(remote)
    if local_refs != remote_refs:
        suggestions.append(
            f"Different number of cross-document references "
            f"(local {local_refs}, remote {remote_refs})"
        )
        suggestions.append("Verify all important connections are preserved")

    return suggestions


def validate_resolution(content: str) -> bool:
    """Return ``False`` if *content* still contains conflict marker text.

    Checked everywhere, including inside the metadata block.  A bare
    ``=======`` counts only when it fills the whole line, so runs of ``=``
    inside ordinary text are not flagged.
    """
    return _MARKER_RE.search(content) is None


def conflict_stats(conflicts: list[ConflictMarker]) -> dict[str, int]:
    """Count conflict blocks by type."""
    return {
        "total": len(conflicts),
        "local": sum(1 for c in conflicts if c.type == MarkerType.LOCAL),
        "remote": sum(1 for c in conflicts if c.type == MarkerType.REMOTE),
        "both": sum(1 for c in conflicts if c.type == MarkerType.BOTH),
        "lines": sum(c.end_line - c.start_line + 1 for c in conflicts),
    }
