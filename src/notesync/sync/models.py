"""Pydantic models for the sync engine.

Defines the data contracts shared by the sync modules:

- ``StoredDocument``: A document as returned by a store adapter.
- ``ConflictMarker`` / ``MergeResult``: Output of a three-way merge.
- ``Resolution``: Outcome of conflict resolution (auto or manual).
- ``ConflictData``: Everything a caller needs to present a conflict.
- ``SyncError`` / ``SyncEvent``: Categorised failures and emitted events.
- ``SyncOperation``: One attempt to reconcile a single document.
- ``SyncStats`` / ``SyncAllResult``: Aggregates for full runs.
- ``ChangeNotification``: A settled change reported by the watcher.

All models are frozen (immutable). ``SyncOperation.advance()`` returns a
new operation instead of mutating the current one.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from .errors import InvalidTransitionError


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


class SyncDirection(str, Enum):
    """Which way a sync operation moves content."""

    TO_REMOTE = "to_remote"
    TO_LOCAL = "to_local"
    BIDIRECTIONAL = "bidirectional"


class SyncStatus(str, Enum):
    """Lifecycle status of a sync operation."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CONFLICT = "conflict"

    @property
    def is_terminal(self) -> bool:
        return self in (
            SyncStatus.COMPLETED,
            SyncStatus.FAILED,
            SyncStatus.CONFLICT,
        )


class SyncSource(str, Enum):
    """Side that produced the content recorded in the sync sub-block."""

    LOCAL = "local"
    REMOTE = "remote"


class SyncErrorType(str, Enum):
    """Failure categories reported on a failed operation."""

    NETWORK = "network"
    FILE_SYSTEM = "file_system"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    PERMISSION = "permission"
    UNKNOWN = "unknown"


class MarkerType(str, Enum):
    """Which side(s) contributed the lines of a conflict block."""

    LOCAL = "local"
    REMOTE = "remote"
    BOTH = "both"


class ResolutionType(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


class EventKind(str, Enum):
    """Kinds of events returned alongside operations."""

    STATUS_CHANGED = "status_changed"
    DOCUMENT_WRITTEN = "document_written"
    BACKUP_CREATED = "backup_created"
    DOCUMENT_DELETED = "document_deleted"
    DOCUMENT_RENAMED = "document_renamed"


class ChangeKind(str, Enum):
    """Local change types reported by the watcher."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


# ---------------------------------------------------------------------------
# Documents and merge output
# ---------------------------------------------------------------------------


class StoredDocument(BaseModel):
    """A document read from a store.

    Attributes:
        path: Store-relative path with forward slashes.
        content: Full text including the metadata block.
        modified_time: Store-reported modification time (epoch ms), if known.
        checksum: Checksum of the content excluding the sync sub-block.
    """

    path: str
    content: str
    modified_time: int | None = None
    checksum: str

    model_config = {"frozen": True}


class ConflictMarker(BaseModel):
    """One conflict block in merged output.

    Line numbers are 1-based and inclusive, counted in the merged text,
    and span the whole block from the opening to the closing marker line.
    """

    start_line: int
    end_line: int
    type: MarkerType
    description: str

    model_config = {"frozen": True}


class MergeResult(BaseModel):
    """Merged text plus the conflict blocks it contains."""

    content: str
    conflicts: list[ConflictMarker] = []

    model_config = {"frozen": True}

    @property
    def success(self) -> bool:
        return not self.conflicts


class Resolution(BaseModel):
    """Outcome of ``ConflictResolver.resolve()``.

    ``auto`` carries the final ``content``; ``manual`` carries the
    ``conflicts`` and human-readable ``suggestions``.
    """

    type: ResolutionType
    content: str | None = None
    conflicts: list[ConflictMarker] = []
    suggestions: list[str] = []
    merged_content: str | None = None

    model_config = {"frozen": True}


class ConflictData(BaseModel):
    """Details of an unresolved conflict, handed back to the caller.

    Attributes:
        base_content: Common ancestor, when one was available.
        local_content: Local text at conflict time.
        remote_content: Remote text at conflict time.
        conflict_markers: Conflict blocks in ``merged_content``.
        merged_content: Merge output including conflict markers.
        suggestions: Hints for manual resolution.
        backup_path: Store-relative path of the local backup, if written.
    """

    base_content: str | None = None
    local_content: str
    remote_content: str
    conflict_markers: list[ConflictMarker] = []
    merged_content: str | None = None
    suggestions: list[str] = []
    backup_path: str | None = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Errors and events
# ---------------------------------------------------------------------------


class SyncError(BaseModel):
    """Categorised failure attached to a failed operation."""

    type: SyncErrorType
    message: str
    details: str | None = None

    model_config = {"frozen": True}


class SyncEvent(BaseModel):
    """Something that happened during a sync, for an external dispatcher."""

    kind: EventKind
    path: str
    status: SyncStatus | None = None
    message: str = ""
    timestamp: str = Field(default_factory=utc_now_iso)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

_ALLOWED_TRANSITIONS: dict[SyncStatus, frozenset[SyncStatus]] = {
    SyncStatus.PENDING: frozenset({SyncStatus.IN_PROGRESS}),
    SyncStatus.IN_PROGRESS: frozenset(
        {SyncStatus.COMPLETED, SyncStatus.FAILED, SyncStatus.CONFLICT}
    ),
}


class SyncOperation(BaseModel):
    """One attempt to reconcile a single document.

    Attributes:
        id: Unique operation id (uuid4 hex).
        path: Store-relative document path.
        direction: Requested direction.
        status: Current lifecycle status.
        created_at: ISO 8601 creation timestamp.
        retry_count: Attempts made by the caller before this one.
        error: Set when ``status`` is ``failed``.
        conflict_data: Set when ``status`` is ``conflict``.
        events: Events produced while processing, oldest first.
    """

    id: str
    path: str
    direction: SyncDirection
    status: SyncStatus = SyncStatus.PENDING
    created_at: str = Field(default_factory=utc_now_iso)
    retry_count: int = 0
    error: SyncError | None = None
    conflict_data: ConflictData | None = None
    events: list[SyncEvent] = []

    model_config = {"frozen": True}

    def advance(
        self,
        status: SyncStatus,
        *,
        error: SyncError | None = None,
        conflict_data: ConflictData | None = None,
        message: str = "",
    ) -> SyncOperation:
        """Return a copy moved to *status*, with a status event appended.

        Raises:
            InvalidTransitionError: If the move is not
                ``pending -> in_progress -> terminal``.
        """
        allowed = _ALLOWED_TRANSITIONS.get(self.status, frozenset())
        if status not in allowed:
            raise InvalidTransitionError(
                f"Operation {self.id} cannot move from "
                f"{self.status.value} to {status.value}"
            )
        event = SyncEvent(
            kind=EventKind.STATUS_CHANGED,
            path=self.path,
            status=status,
            message=message,
        )
        update: dict = {"status": status, "events": [*self.events, event]}
        if error is not None:
            update["error"] = error
        if conflict_data is not None:
            update["conflict_data"] = conflict_data
        return self.model_copy(update=update)

    def with_event(self, kind: EventKind, message: str = "") -> SyncOperation:
        """Return a copy with a side-effect event appended."""
        event = SyncEvent(
            kind=kind, path=self.path, status=self.status, message=message
        )
        return self.model_copy(update={"events": [*self.events, event]})


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


class SyncStats(BaseModel):
    """Running statistics, updated once per ``sync_all`` run.

    ``avg_sync_time`` is in milliseconds.
    """

    total_syncs: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    conflict_syncs: int = 0
    last_sync_time: str | None = None
    avg_sync_time: float = 0.0

    model_config = {"frozen": True}


class SyncAllResult(BaseModel):
    """Aggregate result of one ``sync_all`` run.

    ``error`` is set when the run could not start at all (the local store
    could not be listed); per-document failures live on the operations.
    """

    successful: int = 0
    failed: int = 0
    conflicts: int = 0
    skipped: int = 0
    operations: list[SyncOperation] = []
    started_at: str
    completed_at: str | None = None
    duration_ms: float = 0.0
    error: SyncError | None = None

    model_config = {"frozen": True}

    @property
    def events(self) -> list[SyncEvent]:
        """All events of all operations, in operation order."""
        return [e for op in self.operations for e in op.events]

    @property
    def failed_operations(self) -> list[SyncOperation]:
        return [
            op for op in self.operations if op.status == SyncStatus.FAILED
        ]

    @property
    def conflicted_operations(self) -> list[SyncOperation]:
        return [
            op for op in self.operations if op.status == SyncStatus.CONFLICT
        ]

    def summary(self) -> str:
        """One-line human-readable summary."""
        if self.error is not None:
            return (
                f"Sync failed ({self.error.type.value}): {self.error.message}"
            )
        return (
            f"Sync completed: {self.successful} successful, "
            f"{self.failed} failed, {self.conflicts} conflicts"
        )


class ChangeNotification(BaseModel):
    """A local change reported by the watcher.

    ``document`` is populated for created/modified notifications; delete
    and rename notifications carry no content.
    """

    kind: ChangeKind
    path: str
    old_path: str | None = None
    document: StoredDocument | None = None

    model_config = {"frozen": True}
