"""Bidirectional document sync engine.

Public API for keeping a local Markdown vault and a remote document store
in agreement, with metadata stamping, three-way merge and conflict
resolution.

Architecture
------------
Both stores are reached through the async ``DocumentStore`` protocol.
Documents carry a YAML front-matter block under the ``notesync`` key; its
``sync`` sub-block is excluded from checksums so stamping a document never
makes it look changed.  Divergent documents are merged against the last
synced content (the *base*, kept per profile by ``SyncState``).

Modules:

- ``engine``    -- ``SyncEngine``: per-document and full sync runs.
- ``service``   -- ``SyncService``: watcher intake, schedule and retries.
- ``watcher``   -- ``ChangeDetector``: debounced local change detection.
- ``stores``    -- ``DocumentStore`` protocol and ``FileSystemStore``.
- ``state``     -- ``SyncState``: base archive for three-way merges.
- ``metadata``  -- Front-matter metadata codec and sync stamping.
- ``checksum``  -- Content normalisation and hashing.
- ``merger``    -- Line-based three-way merge (positional or ``merge3``).
- ``resolver``  -- Resolution policies, suggestions and validation.
- ``filters``   -- Path, directory and tag eligibility rules.
- ``models``    -- Operations, events, results and statistics.
- ``errors``    -- Failure hierarchy and error categorisation.
- ``reporter``  -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from notesync.config import load_settings
    from notesync.sync import FileSystemStore, SyncEngine, format_sync_report

    config = load_settings()
    engine = SyncEngine.from_settings(
        config.sync,
        local=FileSystemStore("vault"),
        remote=FileSystemStore("/mnt/shared/vault"),
    )

    result = await engine.sync_all()
    print(format_sync_report(result))
"""

from .engine import SyncEngine
from .errors import (
    DocumentValidationError,
    FileSystemError,
    NetworkError,
    PermissionDeniedError,
    StoreConfigurationError,
    SyncFailure,
    categorize_error,
)
from .filters import DocumentFilter
from .metadata import (
    DocumentMetadata,
    create_template,
    extract_metadata,
    update_for_sync,
    update_metadata,
)
from .models import (
    ChangeNotification,
    ConflictData,
    SyncAllResult,
    SyncDirection,
    SyncOperation,
    SyncStats,
    SyncStatus,
)
from .reporter import (
    format_conflict,
    format_sync_report,
    result_to_json,
)
from .resolver import ConflictResolver
from .service import SyncService
from .state import SyncState
from .stores import DocumentStore, FileSystemStore
from .watcher import ChangeDetector

__all__ = [
    "ChangeDetector",
    "ChangeNotification",
    "ConflictData",
    "ConflictResolver",
    "DocumentFilter",
    "DocumentMetadata",
    "DocumentStore",
    "DocumentValidationError",
    "FileSystemError",
    "FileSystemStore",
    "NetworkError",
    "PermissionDeniedError",
    "StoreConfigurationError",
    "SyncAllResult",
    "SyncDirection",
    "SyncEngine",
    "SyncFailure",
    "SyncOperation",
    "SyncService",
    "SyncState",
    "SyncStats",
    "SyncStatus",
    "categorize_error",
    "create_template",
    "extract_metadata",
    "format_conflict",
    "format_sync_report",
    "result_to_json",
    "update_for_sync",
    "update_metadata",
]
