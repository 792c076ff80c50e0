"""Core sync engine that reconciles documents between two stores.

The ``SyncEngine`` ties together the store adapters, metadata codec,
resolver and base archive.  For one document it:

1. Creates a ``SyncOperation`` (``pending``) and registers it in the
   active queue.
2. Takes the per-path lock, so two syncs of one path never interleave.
3. Moves to ``in_progress`` and runs the requested direction:
   ``to_remote`` stamps and pushes local content, ``to_local`` pulls
   remote content, ``bidirectional`` compares checksums and modification
   times and hands ambiguous divergence to the resolver.
4. Ends in ``completed``, ``failed`` (with a categorised ``SyncError``)
   or ``conflict`` (with ``ConflictData``), and leaves the queue.

Side effects are reported as ``SyncEvent`` entries on the returned
operation.  Error handling is per-document: a single failure never aborts
``sync_all``.  The engine never retries; that is the caller's job (see
``SyncService``).
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import AsyncExitStack, asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, Awaitable, Callable

from notesync.config_schema import SyncSettings
from notesync.core.async_utils import gather_in_batches

from .errors import DocumentValidationError, categorize_error
from .filters import DocumentFilter, conflict_backup_path
from .metadata import document_checksum, update_for_sync
from .models import (
    ConflictData,
    EventKind,
    ResolutionType,
    StoredDocument,
    SyncAllResult,
    SyncDirection,
    SyncOperation,
    SyncSource,
    SyncStats,
    SyncStatus,
    utc_now_iso,
)
from .resolver import ConflictResolver, validate_resolution
from .state import SyncState
from .stores import validate_store

if TYPE_CHECKING:
    from .stores import DocumentStore

logger = logging.getLogger(__name__)

Handler = Callable[[SyncOperation], Awaitable[SyncOperation]]


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class SyncEngine:
    """Reconcile documents between a local and a remote store.

    Args:
        local: Adapter for the interactive (local) store.
        remote: Adapter for the managed (remote) store.
        settings: Sync settings; defaults apply when omitted.
        doc_filter: Eligibility rules for ``sync_all``; built from
            *settings* when omitted.
        base_store: Base archive for three-way merges.  Without one, the
            resolver falls back to local content as the base.
        resolver: Conflict resolver; built from *settings* when omitted.

    Raises:
        StoreConfigurationError: If either adapter does not satisfy the
            store contract.
    """

    def __init__(
        self,
        local: DocumentStore,
        remote: DocumentStore,
        settings: SyncSettings | None = None,
        doc_filter: DocumentFilter | None = None,
        base_store: SyncState | None = None,
        resolver: ConflictResolver | None = None,
    ) -> None:
        validate_store(local, "local")
        validate_store(remote, "remote")

        self.local = local
        self.remote = remote
        self.settings = settings or SyncSettings()
        self.filter = doc_filter or DocumentFilter.from_settings(self.settings)
        self.base_store = base_store
        self.resolver = resolver or ConflictResolver.from_settings(self.settings)

        self._queue: dict[str, SyncOperation] = {}
        self._path_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._stats = SyncStats()
        self._stopping = False
        # Bumped by stop(); a run only continues while its generation is current
        self._generation = 0
        self._active_runs = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @classmethod
    def from_settings(
        cls,
        settings: SyncSettings,
        local: DocumentStore,
        remote: DocumentStore,
    ) -> SyncEngine:
        """Build an engine with the base archive configured in *settings*."""
        base_store = (
            SyncState(settings.state_dir, settings.profile)
            if settings.state_dir
            else None
        )
        return cls(local, remote, settings, base_store=base_store)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def sync_all(self) -> SyncAllResult:
        """Sync every eligible local document bidirectionally.

        Documents are processed in batches of ``settings.batch_size``; each
        batch is awaited before the next one starts.  Statistics are
        updated once, with the duration of the whole run.
        """
        started_at = utc_now_iso()
        if self._stopping:
            logger.info("Engine is stopping; sync_all skipped")
            return SyncAllResult(started_at=started_at, completed_at=started_at)

        start = time.monotonic()
        generation = self._generation
        self._active_runs += 1
        self._idle.clear()
        try:
            try:
                paths = await self.local.list()
            except Exception as exc:
                error = categorize_error(exc)
                logger.error(
                    "Failed to list local documents (%s): %s",
                    error.type.value,
                    error.message,
                )
                return SyncAllResult(
                    started_at=started_at,
                    completed_at=utc_now_iso(),
                    duration_ms=(time.monotonic() - start) * 1000,
                    error=error,
                )

            eligible = self.filter.filter_paths(paths)
            logger.info(
                "Syncing %d of %d local documents", len(eligible), len(paths)
            )
            results = await gather_in_batches(
                eligible,
                self._sync_eligible,
                self.settings.batch_size,
                should_continue=lambda: generation == self._generation,
            )
        finally:
            self._active_runs -= 1
            if self._active_runs == 0:
                self._idle.set()

        operations = [op for op in results if op is not None]
        successful = sum(1 for op in operations if op.status == SyncStatus.COMPLETED)
        failed = sum(1 for op in operations if op.status == SyncStatus.FAILED)
        conflicts = sum(1 for op in operations if op.status == SyncStatus.CONFLICT)
        duration_ms = (time.monotonic() - start) * 1000

        self._update_stats(successful, failed, conflicts, duration_ms)

        result = SyncAllResult(
            successful=successful,
            failed=failed,
            conflicts=conflicts,
            skipped=len(results) - len(operations),
            operations=operations,
            started_at=started_at,
            completed_at=utc_now_iso(),
            duration_ms=duration_ms,
        )
        logger.info(result.summary())
        return result

    async def sync_file(
        self,
        path: str,
        direction: SyncDirection | str = SyncDirection.BIDIRECTIONAL,
        retry_count: int = 0,
    ) -> SyncOperation:
        """Sync one document in the given direction.

        Never raises for per-document problems: the returned operation is
        ``completed``, ``failed`` or ``conflict``.
        """
        direction = SyncDirection(direction)
        handlers: dict[SyncDirection, Handler] = {
            SyncDirection.TO_REMOTE: self._to_remote,
            SyncDirection.TO_LOCAL: self._to_local,
            SyncDirection.BIDIRECTIONAL: self._bidirectional,
        }
        return await self._execute(
            path, direction, handlers[direction], retry_count=retry_count
        )

    async def delete_remote(self, path: str) -> SyncOperation:
        """Propagate a local delete to the remote store."""

        async def handler(op: SyncOperation) -> SyncOperation:
            if await self.remote.exists(path):
                await self.remote.delete(path)
                op = op.with_event(EventKind.DOCUMENT_DELETED, "remote")
            else:
                logger.debug("Delete of %s: not present on remote", path)
            if self.base_store is not None:
                await self.base_store.remove(path)
            return op.advance(SyncStatus.COMPLETED, message="deleted")

        return await self._execute(path, SyncDirection.TO_REMOTE, handler)

    async def rename_remote(self, old_path: str, new_path: str) -> SyncOperation:
        """Propagate a local rename to the remote store."""

        async def handler(op: SyncOperation) -> SyncOperation:
            if await self.remote.exists(old_path):
                await self.remote.rename(old_path, new_path)
                op = op.with_event(
                    EventKind.DOCUMENT_RENAMED, f"{old_path} -> {new_path}"
                )
            else:
                logger.debug("Rename of %s: not present on remote", old_path)
            if self.base_store is not None:
                await self.base_store.rename(old_path, new_path)
            return op.advance(SyncStatus.COMPLETED, message="renamed")

        return await self._execute(
            new_path,
            SyncDirection.TO_REMOTE,
            handler,
            lock_paths=(old_path, new_path),
        )

    def get_stats(self) -> SyncStats:
        return self._stats

    def get_queue(self) -> list[SyncOperation]:
        """Operations that have not reached a terminal status yet."""
        return list(self._queue.values())

    @property
    def is_idle(self) -> bool:
        return self._idle.is_set()

    async def stop(self) -> None:
        """Wait for in-flight batches to drain, then clear the queue.

        Every ``sync_all`` running when this is called finishes its current
        batch and starts no further one, and no new run starts while
        stopping.  In-flight I/O is not interrupted.  Runs started after
        this returns proceed normally.
        """
        self._generation += 1
        self._stopping = True
        try:
            await self._idle.wait()
            self._queue.clear()
        finally:
            self._stopping = False
        logger.info("Sync engine stopped")

    # ------------------------------------------------------------------
    # Operation lifecycle
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _locked(self, paths: tuple[str, ...]) -> AsyncIterator[None]:
        """Hold the per-path locks of *paths*; unused locks are dropped."""
        # Sorted so two multi-path operations cannot deadlock
        keys = sorted(set(paths))
        for key in keys:
            self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with AsyncExitStack() as stack:
                for key in keys:
                    lock = self._path_locks.setdefault(key, asyncio.Lock())
                    await stack.enter_async_context(lock)
                yield
        finally:
            for key in keys:
                self._lock_users[key] -= 1
                if self._lock_users[key] == 0:
                    del self._lock_users[key]
                    del self._path_locks[key]

    async def _execute(
        self,
        path: str,
        direction: SyncDirection,
        handler: Handler,
        retry_count: int = 0,
        lock_paths: tuple[str, ...] | None = None,
    ) -> SyncOperation:
        op = SyncOperation(
            id=uuid.uuid4().hex,
            path=path,
            direction=direction,
            retry_count=retry_count,
        )
        self._queue[op.id] = op
        try:
            async with self._locked(lock_paths or (path,)):
                op = op.advance(SyncStatus.IN_PROGRESS)
                self._queue[op.id] = op
                try:
                    op = await handler(op)
                except Exception as exc:
                    error = categorize_error(exc)
                    logger.error(
                        "Sync of %s failed (%s): %s",
                        path,
                        error.type.value,
                        error.message,
                    )
                    op = op.advance(
                        SyncStatus.FAILED, error=error, message=error.message
                    )
        finally:
            self._queue.pop(op.id, None)
        return op

    async def _sync_eligible(self, path: str) -> SyncOperation | None:
        """``sync_all`` worker: apply tag rules, then sync bidirectionally."""
        if self.filter.has_tag_rules:
            try:
                document = await self.local.read(path)
            except Exception:
                # Let sync_file record the failure on an operation
                document = None
            if document is not None and not self.filter.accepts_content(
                document.content
            ):
                logger.debug("Skipping %s: excluded by tag rules", path)
                return None
        return await self.sync_file(path, SyncDirection.BIDIRECTIONAL)

    # ------------------------------------------------------------------
    # Direction handlers
    # ------------------------------------------------------------------

    async def _to_remote(self, op: SyncOperation) -> SyncOperation:
        op = await self._push(op, await self.local.read(op.path))
        return op.advance(SyncStatus.COMPLETED, message="pushed to remote")

    async def _to_local(self, op: SyncOperation) -> SyncOperation:
        op = await self._pull(op, await self.remote.read(op.path))
        return op.advance(SyncStatus.COMPLETED, message="pulled from remote")

    async def _bidirectional(self, op: SyncOperation) -> SyncOperation:
        local_doc = await self.local.read(op.path)

        if not await self.remote.exists(op.path):
            op = await self._push(op, local_doc)
            return op.advance(SyncStatus.COMPLETED, message="created on remote")

        remote_doc = await self.remote.read(op.path)
        if local_doc.checksum == remote_doc.checksum:
            return op.advance(SyncStatus.COMPLETED, message="already in sync")

        local_time = local_doc.modified_time
        remote_time = remote_doc.modified_time
        if (
            local_time is not None
            and remote_time is not None
            and local_time != remote_time
        ):
            if local_time > remote_time:
                op = await self._push(op, local_doc)
                return op.advance(SyncStatus.COMPLETED, message="local newer")
            op = await self._pull(op, remote_doc)
            return op.advance(SyncStatus.COMPLETED, message="remote newer")

        return await self._resolve(op, local_doc, remote_doc)

    async def _push(
        self, op: SyncOperation, local_doc: StoredDocument
    ) -> SyncOperation:
        stamped = update_for_sync(
            local_doc.content, SyncSource.LOCAL, local_doc.modified_time
        )
        await self.remote.write(
            op.path, stamped, self._mtime_for(self.remote, local_doc.modified_time)
        )
        op = op.with_event(EventKind.DOCUMENT_WRITTEN, "remote")

        # Write back only when more than the sync sub-block changed
        if document_checksum(stamped) != document_checksum(local_doc.content):
            await self.local.write(
                op.path,
                stamped,
                self._mtime_for(self.local, local_doc.modified_time),
            )
            op = op.with_event(EventKind.DOCUMENT_WRITTEN, "local")

        await self._record_base(op.path, stamped, SyncSource.LOCAL)
        return op

    async def _pull(
        self, op: SyncOperation, remote_doc: StoredDocument
    ) -> SyncOperation:
        await self.local.write(
            op.path,
            remote_doc.content,
            self._mtime_for(self.local, remote_doc.modified_time),
        )
        op = op.with_event(EventKind.DOCUMENT_WRITTEN, "local")
        await self._record_base(op.path, remote_doc.content, SyncSource.REMOTE)
        return op

    async def _resolve(
        self,
        op: SyncOperation,
        local_doc: StoredDocument,
        remote_doc: StoredDocument,
    ) -> SyncOperation:
        base = (
            await self.base_store.get_base(op.path)
            if self.base_store is not None
            else None
        )
        resolution = self.resolver.resolve(
            base, local_doc.content, remote_doc.content
        )

        if resolution.type == ResolutionType.AUTO:
            content = resolution.content or ""
            if not validate_resolution(content):
                raise DocumentValidationError(
                    f"Resolved content for '{op.path}' still contains "
                    f"conflict markers"
                )
            stamped = update_for_sync(content, SyncSource.LOCAL)
            written_at = _now_ms()
            await self.remote.write(
                op.path, stamped, self._mtime_for(self.remote, written_at)
            )
            op = op.with_event(EventKind.DOCUMENT_WRITTEN, "remote")
            await self.local.write(
                op.path, stamped, self._mtime_for(self.local, written_at)
            )
            op = op.with_event(EventKind.DOCUMENT_WRITTEN, "local")
            await self._record_base(op.path, stamped, SyncSource.LOCAL)
            return op.advance(SyncStatus.COMPLETED, message="auto-resolved")

        backup_path = None
        if self.settings.conflict_backup_enabled:
            backup_path = conflict_backup_path(op.path, _now_ms())
            await self.local.write(backup_path, local_doc.content)
            op = op.with_event(EventKind.BACKUP_CREATED, backup_path)

        logger.warning(
            "Conflict in %s: %d block(s) need manual resolution",
            op.path,
            len(resolution.conflicts),
        )
        conflict = ConflictData(
            base_content=base,
            local_content=local_doc.content,
            remote_content=remote_doc.content,
            conflict_markers=resolution.conflicts,
            merged_content=resolution.merged_content,
            suggestions=resolution.suggestions,
            backup_path=backup_path,
        )
        return op.advance(
            SyncStatus.CONFLICT,
            conflict_data=conflict,
            message="manual resolution required",
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _mtime_for(store: DocumentStore, modified_time: int | None) -> int | None:
        if getattr(store, "preserves_mtime", False):
            return modified_time
        return None

    async def _record_base(
        self, path: str, content: str, source: SyncSource
    ) -> None:
        if self.base_store is not None:
            await self.base_store.record(path, content, source)

    def _update_stats(
        self, successful: int, failed: int, conflicts: int, duration_ms: float
    ) -> None:
        increment = successful + failed + conflicts
        total = self._stats.total_syncs + increment
        avg = self._stats.avg_sync_time
        if total > 0:
            avg = avg + increment * (duration_ms - avg) / total
        self._stats = SyncStats(
            total_syncs=total,
            successful_syncs=self._stats.successful_syncs + successful,
            failed_syncs=self._stats.failed_syncs + failed,
            conflict_syncs=self._stats.conflict_syncs + conflicts,
            last_sync_time=utc_now_iso(),
            avg_sync_time=avg,
        )
