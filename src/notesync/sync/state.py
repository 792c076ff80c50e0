"""Base archive: the last content both stores agreed on, per document.

A three-way merge needs a common ancestor.  After every successful sync
the engine records the synced content here, and the next divergence on
that path is merged against it.  Only the latest base is kept; there is
no revision history.

The archive is a JSON file per profile (``sync_{profile}.json``) inside
the configured state directory::

    {
      "version": 1,
      "profile": "default",
      "last_sync": "2026-01-02T10:00:00+00:00",
      "entries": {
        "notes/a.md": {
          "base_content": "...",
          "checksum": "9b1c...",
          "last_synced": "2026-01-02T10:00:00+00:00",
          "source": "local"
        }
      }
    }

Writes are atomic (temp file + ``os.replace()``) so readers never see
partial data.  The file is loaded lazily and cached; all updates go
through one ``asyncio.Lock``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path

from notesync.core.async_utils import run_sync

from .metadata import document_checksum
from .models import SyncSource, utc_now_iso

logger = logging.getLogger(__name__)

STATE_VERSION = 1


class SyncState:
    """Load, save, and query the base archive for a profile.

    Args:
        state_dir: Directory where state files are stored
            (typically ``.notesync/``).
        profile_name: The sync profile name (used in the filename).
    """

    def __init__(self, state_dir: Path | str, profile_name: str = "default") -> None:
        self._state_dir = Path(state_dir)
        self.profile_name = profile_name
        self._state: dict | None = None
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        """Path to the state file for this profile."""
        return self._state_dir / f"sync_{self.profile_name}.json"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> dict:
        """Load state from disk.

        Returns:
            The state dict.  An empty state is returned when the file does
            not exist or cannot be parsed (the archive is a cache; losing
            it only costs merge precision).
        """
        if not self.path.exists():
            return self._empty()
        try:
            with open(self.path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(
                "Ignoring unreadable sync state %s: %s", self.path, exc
            )
            return self._empty()
        if not isinstance(data, dict) or data.get("version") != STATE_VERSION:
            logger.warning(
                "Ignoring sync state %s with unknown layout", self.path
            )
            return self._empty()
        data.setdefault("entries", {})
        return data

    def save(self, state: dict) -> None:
        """Persist *state* to disk atomically.

        Writes to a temporary file in the same directory then atomically
        replaces the target.  Creates the state directory if needed and
        sets ``last_sync`` to the current UTC time.
        """
        self._state_dir.mkdir(parents=True, exist_ok=True)
        state["last_sync"] = utc_now_iso()

        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._state_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(state, fh, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def _empty(self) -> dict:
        return {
            "version": STATE_VERSION,
            "last_sync": None,
            "profile": self.profile_name,
            "entries": {},
        }

    async def _entries(self) -> dict:
        if self._state is None:
            self._state = await run_sync(self.load)
        return self._state["entries"]

    async def _persist(self) -> None:
        await run_sync(self.save, self._state)

    # ------------------------------------------------------------------
    # Entry operations
    # ------------------------------------------------------------------

    async def get_entry(self, path: str) -> dict | None:
        """Return the archived entry for *path*, or ``None``."""
        async with self._lock:
            entry = (await self._entries()).get(path)
            return dict(entry) if entry else None

    async def get_base(self, path: str) -> str | None:
        """Return the last synced content of *path*, or ``None``."""
        entry = await self.get_entry(path)
        return entry.get("base_content") if entry else None

    async def record(
        self, path: str, content: str, source: SyncSource | str
    ) -> None:
        """Store *content* as the new common base for *path*."""
        async with self._lock:
            entries = await self._entries()
            entries[path] = {
                "base_content": content,
                "checksum": document_checksum(content),
                "last_synced": utc_now_iso(),
                "source": SyncSource(source).value,
            }
            await self._persist()

    async def remove(self, path: str) -> None:
        """Forget *path*.  No-op if not present."""
        async with self._lock:
            entries = await self._entries()
            if entries.pop(path, None) is not None:
                await self._persist()

    async def rename(self, old_path: str, new_path: str) -> None:
        """Move the entry for *old_path* to *new_path*."""
        async with self._lock:
            entries = await self._entries()
            entry = entries.pop(old_path, None)
            if entry is not None:
                entries[new_path] = entry
                await self._persist()

    async def paths(self) -> list[str]:
        """All archived paths, sorted."""
        async with self._lock:
            return sorted(await self._entries())
