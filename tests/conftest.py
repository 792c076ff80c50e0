"""Shared pytest fixtures for notesync tests."""

from __future__ import annotations

import asyncio

import pytest

from notesync.config_schema import SyncSettings
from notesync.sync.errors import FileSystemError
from notesync.sync.metadata import document_checksum
from notesync.sync.models import StoredDocument


class MemoryStore:
    """In-memory ``DocumentStore`` for engine, watcher and service tests.

    Attributes:
        docs: Path to content.
        mtimes: Path to epoch-ms modification time; absent means unknown.
        read_delay: Seconds each ``read`` sleeps so overlap is observable.
        max_active_reads: Highest number of concurrent ``read`` calls seen.
        writes: Paths written, in order.
    """

    def __init__(self, docs=None, mtimes=None, preserves_mtime=False):
        self.docs: dict[str, str] = dict(docs or {})
        self.mtimes: dict[str, int] = dict(mtimes or {})
        self.preserves_mtime = preserves_mtime
        self.read_delay = 0.0
        self.active_reads = 0
        self.max_active_reads = 0
        self.writes: list[str] = []
        self._failures: dict[str, list] = {}

    def fail(self, method: str, exc: BaseException, times: int | None = None):
        """Make *method* raise *exc*; only for the next *times* calls if given."""
        self._failures[method] = [exc, times]

    def _check(self, method: str) -> None:
        entry = self._failures.get(method)
        if entry is None:
            return
        exc, remaining = entry
        if remaining is not None:
            if remaining <= 0:
                del self._failures[method]
                return
            entry[1] = remaining - 1
        raise exc

    async def exists(self, path):
        self._check("exists")
        return path in self.docs

    async def read(self, path):
        self._check("read")
        self.active_reads += 1
        self.max_active_reads = max(self.max_active_reads, self.active_reads)
        try:
            if self.read_delay:
                await asyncio.sleep(self.read_delay)
            if path not in self.docs:
                raise FileSystemError(f"Document not found: '{path}'")
            content = self.docs[path]
            return StoredDocument(
                path=path,
                content=content,
                modified_time=self.mtimes.get(path),
                checksum=document_checksum(content),
            )
        finally:
            self.active_reads -= 1

    async def write(self, path, content, modified_time=None):
        self._check("write")
        self.docs[path] = content
        self.writes.append(path)
        if modified_time is not None:
            self.mtimes[path] = modified_time
        else:
            self.mtimes.pop(path, None)

    async def delete(self, path):
        self._check("delete")
        self.docs.pop(path, None)
        self.mtimes.pop(path, None)

    async def rename(self, old_path, new_path):
        self._check("rename")
        if old_path not in self.docs:
            raise FileSystemError(f"Document not found: '{old_path}'")
        self.docs[new_path] = self.docs.pop(old_path)
        if old_path in self.mtimes:
            self.mtimes[new_path] = self.mtimes.pop(old_path)

    async def list(self):
        self._check("list")
        return sorted(self.docs)


@pytest.fixture
def local_store():
    return MemoryStore()


@pytest.fixture
def remote_store():
    return MemoryStore()


@pytest.fixture
def settings():
    """Settings with short debounce delays and no tag rules."""
    return SyncSettings(
        state_dir=None,
        exclude_tags=[],
        debounce_ms=20,
        create_debounce_ms=40,
    )


@pytest.fixture
def make_store():
    """Factory for extra ``MemoryStore`` instances."""
    return MemoryStore
