"""Local change detection with per-path debouncing.

This module provides:

- ``ChangeDetector``: Watches the local store directory with ``watchdog``
  and puts one ``ChangeNotification`` per settled path onto an
  ``asyncio.Queue``.
- Per-path debounce: each path owns at most one pending
  ``asyncio.TimerHandle``; a new event for the path replaces it.
  Modifications settle after ``debounce_ms``, newly created files after
  the longer ``create_debounce_ms`` so half-written files are not read.
- Deletes and renames are emitted immediately (no content to wait for).

Watchdog delivers events on its observer thread; they are handed to the
event loop with ``call_soon_threadsafe`` and all debounce state lives on
the loop thread.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from notesync.config_schema import SyncSettings
from notesync.core.async_utils import run_sync

from .filters import DocumentFilter
from .models import ChangeKind, ChangeNotification

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

    from .stores import DocumentStore

logger = logging.getLogger(__name__)


class _ChangeHandler(FileSystemEventHandler):
    """Forward file events from the observer thread to the detector."""

    def __init__(self, detector: ChangeDetector) -> None:
        super().__init__()
        self._detector = detector

    def _forward(self, kind: ChangeKind, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        src = os.fsdecode(event.src_path)
        dest = os.fsdecode(event.dest_path) if kind == ChangeKind.RENAMED else None
        self._detector.dispatch_threadsafe(kind, src, dest)

    def on_created(self, event: FileSystemEvent) -> None:
        self._forward(ChangeKind.CREATED, event)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._forward(ChangeKind.MODIFIED, event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._forward(ChangeKind.DELETED, event)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._forward(ChangeKind.RENAMED, event)


class ChangeDetector:
    """Watch a local store directory and emit settled change notifications.

    Args:
        root: Directory backing the local store.
        local_store: Store used to read settled documents.
        doc_filter: Eligibility rules; built from *settings* when omitted.
        settings: Supplies the debounce delays.
        queue: Destination for notifications; a new queue when omitted.
    """

    def __init__(
        self,
        root: Path | str,
        local_store: DocumentStore,
        doc_filter: DocumentFilter | None = None,
        settings: SyncSettings | None = None,
        queue: asyncio.Queue[ChangeNotification] | None = None,
    ) -> None:
        self.root = Path(root).resolve()
        self.local_store = local_store
        self.settings = settings or SyncSettings()
        self.filter = doc_filter or DocumentFilter.from_settings(self.settings)
        self.queue: asyncio.Queue[ChangeNotification] = queue or asyncio.Queue()

        self._timers: dict[str, tuple[asyncio.TimerHandle, ChangeKind]] = {}
        self._settling: set[asyncio.Task] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._observer: BaseObserver | None = None
        self._emitted = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_watching(self) -> bool:
        return self._observer is not None

    async def start(self) -> None:
        """Start the watchdog observer on ``root``."""
        if self._observer is not None:
            return
        if not self.root.is_dir():
            raise ValueError(f"Watch path must be a directory: {self.root}")

        self._loop = asyncio.get_running_loop()
        observer = Observer()
        observer.schedule(_ChangeHandler(self), str(self.root), recursive=True)
        observer.start()
        self._observer = observer
        logger.info("Watching %s for changes", self.root)

    async def stop(self) -> None:
        """Stop watching and drop every pending timer."""
        for handle, _ in self._timers.values():
            handle.cancel()
        self._timers.clear()
        for task in list(self._settling):
            task.cancel()

        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            await run_sync(observer.join, 5.0)
            logger.info("Stopped watching %s", self.root)

    async def __aenter__(self) -> ChangeDetector:
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    def _relative(self, abs_path: str) -> str | None:
        try:
            return Path(abs_path).resolve().relative_to(self.root).as_posix()
        except ValueError:
            return None

    def dispatch_threadsafe(
        self, kind: ChangeKind, src: str, dest: str | None = None
    ) -> None:
        """Hand an absolute-path event from any thread to the event loop."""
        path = self._relative(src)
        new_path = self._relative(dest) if dest is not None else None
        loop = self._loop
        if path is None or loop is None or loop.is_closed():
            return

        if kind == ChangeKind.RENAMED:
            if new_path is None:
                # Moved out of the watched tree
                kind, args = ChangeKind.DELETED, (path,)
            else:
                args = (new_path, path)
        else:
            args = (path,)
        try:
            loop.call_soon_threadsafe(self.notify, kind, *args)
        except RuntimeError:
            logger.debug("Event loop closed; dropping %s event", kind.value)

    def notify(
        self,
        kind: ChangeKind | str,
        path: str,
        old_path: str | None = None,
    ) -> None:
        """Record a change for a store-relative *path* (loop thread only).

        For ``renamed``, *path* is the new path and *old_path* the old one.
        """
        kind = ChangeKind(kind)
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        if kind == ChangeKind.RENAMED:
            self._handle_rename(path, old_path or "")
        elif kind == ChangeKind.DELETED:
            if self.filter.accepts_path(path):
                self._cancel_timer(path)
                self._put(ChangeNotification(kind=kind, path=path))
        elif self.filter.accepts_path(path):
            self._schedule(path, kind)

    def _handle_rename(self, new_path: str, old_path: str) -> None:
        self._cancel_timer(old_path)
        old_ok = bool(old_path) and self.filter.accepts_path(old_path)
        new_ok = self.filter.accepts_path(new_path)

        if old_ok and new_ok:
            self._put(
                ChangeNotification(
                    kind=ChangeKind.RENAMED, path=new_path, old_path=old_path
                )
            )
        elif new_ok:
            # Moved in from an excluded location
            self._schedule(new_path, ChangeKind.CREATED)
        elif old_ok:
            self._put(ChangeNotification(kind=ChangeKind.DELETED, path=old_path))

    # ------------------------------------------------------------------
    # Debounce
    # ------------------------------------------------------------------

    def _schedule(self, path: str, kind: ChangeKind) -> None:
        pending = self._timers.pop(path, None)
        if pending is not None:
            handle, pending_kind = pending
            handle.cancel()
            # A file created and then modified is still new
            if pending_kind == ChangeKind.CREATED:
                kind = ChangeKind.CREATED

        delay_ms = (
            self.settings.create_debounce_ms
            if kind == ChangeKind.CREATED
            else self.settings.debounce_ms
        )
        loop = self._loop or asyncio.get_running_loop()
        handle = loop.call_later(
            delay_ms / 1000, self._on_settle, path, kind
        )
        self._timers[path] = (handle, kind)

    def _cancel_timer(self, path: str) -> None:
        pending = self._timers.pop(path, None)
        if pending is not None:
            pending[0].cancel()

    def _on_settle(self, path: str, kind: ChangeKind) -> None:
        self._timers.pop(path, None)
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(self._emit_settled(path, kind))
        self._settling.add(task)
        task.add_done_callback(self._settling.discard)

    async def _emit_settled(self, path: str, kind: ChangeKind) -> None:
        try:
            document = await self.local_store.read(path)
        except Exception as exc:
            # Usually deleted again before it settled
            logger.warning("Could not read settled document %s: %s", path, exc)
            return

        if not self.filter.accepts_content(document.content):
            logger.debug("Ignoring %s: excluded by tag rules", path)
            return
        self._put(ChangeNotification(kind=kind, path=path, document=document))

    def _put(self, notification: ChangeNotification) -> None:
        self._emitted += 1
        logger.debug(
            "Change detected: %s %s", notification.kind.value, notification.path
        )
        self.queue.put_nowait(notification)

    # ------------------------------------------------------------------
    # Caller helpers
    # ------------------------------------------------------------------

    @property
    def pending_paths(self) -> list[str]:
        """Paths with a debounce timer currently running."""
        return sorted(self._timers)

    async def trigger(self, path: str) -> None:
        """Emit a ``modified`` notification for *path* now, skipping debounce."""
        self._cancel_timer(path)
        await self._emit_settled(path, ChangeKind.MODIFIED)

    def update_filter(self, doc_filter: DocumentFilter) -> None:
        """Swap the eligibility rules and drop timers for excluded paths."""
        self.filter = doc_filter
        for path in [p for p in self._timers if not doc_filter.accepts_path(p)]:
            self._cancel_timer(path)

    def stats(self) -> dict:
        return {
            "watching": self.is_watching,
            "root": str(self.root),
            "pending": len(self._timers),
            "emitted": self._emitted,
            "debounce_ms": self.settings.debounce_ms,
            "create_debounce_ms": self.settings.create_debounce_ms,
        }
