"""Tests for ChangeDetector debouncing, filtering and watchdog intake."""

from __future__ import annotations

import asyncio
import logging

import pytest

from notesync.config_schema import SyncSettings
from notesync.sync.filters import DocumentFilter
from notesync.sync.models import ChangeKind
from notesync.sync.stores import FileSystemStore
from notesync.sync.watcher import ChangeDetector

# Longer than either debounce delay in the ``settings`` fixture
SETTLE = 0.15


@pytest.fixture
def detector(tmp_path, local_store, settings):
    return ChangeDetector(tmp_path, local_store, settings=settings)


async def _next(detector, timeout=1.0):
    return await asyncio.wait_for(detector.queue.get(), timeout)


# ---------------------------------------------------------------------------
# Debounce
# ---------------------------------------------------------------------------


class TestDebounce:
    """Per-path settle timers."""

    async def test_modified_settles_with_content(self, detector, local_store):
        local_store.docs["a.md"] = "body"

        detector.notify("modified", "a.md")
        notification = await _next(detector)

        assert notification.kind == ChangeKind.MODIFIED
        assert notification.path == "a.md"
        assert notification.document.content == "body"

    async def test_bursts_coalesce(self, detector, local_store):
        local_store.docs["a.md"] = "body"

        for _ in range(5):
            detector.notify(ChangeKind.MODIFIED, "a.md")
            await asyncio.sleep(0.005)
        await asyncio.sleep(SETTLE)

        assert detector.queue.qsize() == 1

    async def test_paths_settle_independently(self, detector, local_store):
        local_store.docs.update({"a.md": "a", "b.md": "b"})

        detector.notify("modified", "a.md")
        detector.notify("modified", "b.md")
        await asyncio.sleep(SETTLE)

        paths = {detector.queue.get_nowait().path for _ in range(2)}
        assert paths == {"a.md", "b.md"}

    async def test_created_then_modified_stays_created(self, detector, local_store):
        local_store.docs["a.md"] = "new"

        detector.notify("created", "a.md")
        detector.notify("modified", "a.md")
        notification = await _next(detector)

        assert notification.kind == ChangeKind.CREATED

    async def test_created_uses_longer_delay(self, tmp_path, local_store):
        settings = SyncSettings(
            state_dir=None, debounce_ms=10, create_debounce_ms=300
        )
        detector = ChangeDetector(tmp_path, local_store, settings=settings)
        local_store.docs["a.md"] = "new"

        detector.notify("created", "a.md")
        await asyncio.sleep(0.1)

        assert detector.queue.empty()
        assert detector.pending_paths == ["a.md"]
        assert (await _next(detector)).kind == ChangeKind.CREATED
        assert detector.pending_paths == []

    async def test_unreadable_document_dropped(self, detector, caplog):
        with caplog.at_level(logging.WARNING, logger="notesync.sync.watcher"):
            detector.notify("modified", "vanished.md")
            await asyncio.sleep(SETTLE)

        assert detector.queue.empty()
        assert "vanished.md" in caplog.text


# ---------------------------------------------------------------------------
# Deletes and renames
# ---------------------------------------------------------------------------


class TestImmediateEvents:
    """Deletes and renames skip the debounce."""

    async def test_delete_cancels_pending_change(self, detector, local_store):
        local_store.docs["a.md"] = "x"

        detector.notify("modified", "a.md")
        detector.notify("deleted", "a.md")

        assert detector.queue.get_nowait().kind == ChangeKind.DELETED
        await asyncio.sleep(SETTLE)
        assert detector.queue.empty()

    async def test_rename_within_tree(self, detector):
        detector.notify("renamed", "new.md", old_path="old.md")

        notification = detector.queue.get_nowait()
        assert notification.kind == ChangeKind.RENAMED
        assert notification.path == "new.md"
        assert notification.old_path == "old.md"
        assert notification.document is None

    async def test_rename_from_excluded_location_is_create(
        self, detector, local_store
    ):
        local_store.docs["a.md"] = "restored"

        detector.notify("renamed", "a.md", old_path=".trash/a.md")

        assert detector.queue.empty()
        assert (await _next(detector)).kind == ChangeKind.CREATED

    async def test_rename_into_excluded_location_is_delete(self, detector):
        detector.notify("renamed", ".trash/a.md", old_path="a.md")

        notification = detector.queue.get_nowait()
        assert notification.kind == ChangeKind.DELETED
        assert notification.path == "a.md"

    async def test_rename_of_temp_file_onto_document(self, detector, local_store):
        """Editors that save via a temp file produce a create, not a rename."""
        local_store.docs["a.md"] = "saved"

        detector.notify("renamed", "a.md", old_path="a.md.tmp")

        assert (await _next(detector)).path == "a.md"


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


class TestFiltering:
    """Structural, path and tag rules applied by the detector."""

    @pytest.mark.parametrize(
        "path", [".obsidian/workspace.md", "image.png", "a.conflict.17.md", "x.md~"]
    )
    async def test_ignored_paths(self, detector, path):
        detector.notify("modified", path)
        detector.notify("deleted", path)

        assert detector.pending_paths == []
        assert detector.queue.empty()

    async def test_tag_rules_applied_on_settle(self, tmp_path, local_store):
        settings = SyncSettings(
            state_dir=None, exclude_tags=["#private"], debounce_ms=10
        )
        detector = ChangeDetector(tmp_path, local_store, settings=settings)
        local_store.docs.update({"secret.md": "#private", "open.md": "hello"})

        detector.notify("modified", "secret.md")
        detector.notify("modified", "open.md")
        await asyncio.sleep(SETTLE)

        assert detector.queue.qsize() == 1
        assert detector.queue.get_nowait().path == "open.md"

    async def test_update_filter_drops_excluded_timers(self, detector, local_store):
        local_store.docs.update({"drafts/a.md": "a", "b.md": "b"})
        detector.notify("modified", "drafts/a.md")
        detector.notify("modified", "b.md")

        detector.update_filter(DocumentFilter(exclude_directories=["drafts"]))

        assert detector.pending_paths == ["b.md"]
        assert (await _next(detector)).path == "b.md"


# ---------------------------------------------------------------------------
# Caller helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    """trigger(), stats() and lifecycle."""

    async def test_trigger_skips_debounce(self, detector, local_store):
        local_store.docs["a.md"] = "now"
        detector.notify("modified", "a.md")

        await detector.trigger("a.md")

        assert detector.queue.get_nowait().kind == ChangeKind.MODIFIED
        assert detector.pending_paths == []

    async def test_stats(self, detector, local_store, tmp_path):
        local_store.docs["a.md"] = "x"
        detector.notify("deleted", "gone.md")
        detector.notify("modified", "a.md")

        stats = detector.stats()

        assert stats["watching"] is False
        assert stats["root"] == str(tmp_path.resolve())
        assert stats["pending"] == 1
        assert stats["emitted"] == 1
        assert stats["debounce_ms"] == 20
        assert stats["create_debounce_ms"] == 40

    async def test_start_requires_directory(self, tmp_path, local_store):
        detector = ChangeDetector(tmp_path / "missing", local_store)
        with pytest.raises(ValueError, match="directory"):
            await detector.start()

    async def test_stop_cancels_timers(self, detector, local_store):
        local_store.docs["a.md"] = "x"
        detector.notify("modified", "a.md")

        await detector.stop()
        await asyncio.sleep(SETTLE)

        assert detector.queue.empty()
        assert detector.pending_paths == []


# ---------------------------------------------------------------------------
# watchdog integration
# ---------------------------------------------------------------------------


class TestWatchdogIntake:
    """Events arriving from the observer thread."""

    async def test_moved_out_of_tree_is_delete(self, tmp_path, settings):
        root = tmp_path / "vault"
        root.mkdir()
        detector = ChangeDetector(root, FileSystemStore(root), settings=settings)

        async with detector:
            assert detector.is_watching
            detector.dispatch_threadsafe(
                ChangeKind.RENAMED, str(root / "a.md"), str(tmp_path / "a.md")
            )
            notification = await _next(detector)

        assert not detector.is_watching
        assert notification.kind == ChangeKind.DELETED
        assert notification.path == "a.md"

    async def test_events_outside_root_ignored(self, tmp_path, settings):
        root = tmp_path / "vault"
        root.mkdir()
        detector = ChangeDetector(root, FileSystemStore(root), settings=settings)

        async with detector:
            detector.dispatch_threadsafe(
                ChangeKind.DELETED, str(tmp_path / "elsewhere.md")
            )
            await asyncio.sleep(0.05)

        assert detector.queue.empty()

    async def test_real_file_write_is_detected(self, tmp_path, settings):
        root = tmp_path / "vault"
        root.mkdir()
        detector = ChangeDetector(root, FileSystemStore(root), settings=settings)

        async with detector:
            (root / "note.md").write_text("# Written\n", encoding="utf-8")
            notification = await _next(detector, timeout=5.0)

        assert notification.path == "note.md"
        assert notification.kind in (ChangeKind.CREATED, ChangeKind.MODIFIED)
        assert notification.document.content == "# Written\n"
