"""Document store contract and the filesystem reference adapter.

The engine talks to both sides through the ``DocumentStore`` protocol and
never touches storage directly.  Adapters are injected at construction;
``validate_store()`` rejects an object that does not satisfy the
contract before any document is processed.

Adapters may set ``preserves_mtime = True`` to signal that
``write(..., modified_time=...)`` is honoured.
"""

from __future__ import annotations

import inspect
import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Protocol, runtime_checkable

from notesync.core.async_utils import run_sync
from notesync.file_handler import (
    get_modified_time,
    read_file_with_encoding,
    set_modified_time,
    write_file_atomic,
)
from notesync.validators import validate_document_path

from .errors import (
    DocumentValidationError,
    FileSystemError,
    PermissionDeniedError,
    StoreConfigurationError,
)
from .metadata import document_checksum
from .models import StoredDocument

logger = logging.getLogger(__name__)

REQUIRED_METHODS = ("exists", "read", "write", "delete", "rename", "list")


@runtime_checkable
class DocumentStore(Protocol):
    """Uniform async contract a document store must satisfy.

    ``read`` and ``exists`` are idempotent.  ``write`` is atomic from the
    caller's point of view: a later ``read`` never observes a partially
    written value.
    """

    async def exists(self, path: str) -> bool: ...  # pragma: no cover

    async def read(self, path: str) -> StoredDocument: ...  # pragma: no cover

    async def write(
        self, path: str, content: str, modified_time: int | None = None
    ) -> None: ...  # pragma: no cover

    async def delete(self, path: str) -> None: ...  # pragma: no cover

    async def rename(
        self, old_path: str, new_path: str
    ) -> None: ...  # pragma: no cover

    async def list(self) -> list[str]: ...  # pragma: no cover


def validate_store(store: object, label: str) -> None:
    """Check that *store* implements every contract method as a coroutine.

    Raises:
        StoreConfigurationError: If a method is missing or not async.
    """
    if store is None:
        raise StoreConfigurationError(f"{label} store is not configured")

    missing = [m for m in REQUIRED_METHODS if not callable(getattr(store, m, None))]
    if missing:
        raise StoreConfigurationError(
            f"{label} store {type(store).__name__} is missing: "
            f"{', '.join(missing)}"
        )

    not_async = [
        m
        for m in REQUIRED_METHODS
        if not inspect.iscoroutinefunction(getattr(store, m))
    ]
    if not_async:
        raise StoreConfigurationError(
            f"{label} store {type(store).__name__} methods must be async: "
            f"{', '.join(not_async)}"
        )


# ---------------------------------------------------------------------------
# Filesystem adapter
# ---------------------------------------------------------------------------


@contextmanager
def _translate_os_errors(path: str, action: str) -> Iterator[None]:
    try:
        yield
    except PermissionError as exc:
        raise PermissionDeniedError(
            f"Permission denied while trying to {action} '{path}'"
        ) from exc
    except FileNotFoundError as exc:
        raise FileSystemError(f"Document not found: '{path}'") from exc
    except OSError as exc:
        raise FileSystemError(f"Failed to {action} '{path}': {exc}") from exc


def _move_file(src: Path, dst: Path) -> None:
    dst.parent.mkdir(parents=True, exist_ok=True)
    os.replace(src, dst)


def _list_files(root: Path) -> list[str]:
    paths: list[str] = []
    for dirpath, _dirnames, filenames in os.walk(root):
        base = Path(dirpath)
        for name in filenames:
            paths.append((base / name).relative_to(root).as_posix())
    return sorted(paths)


class FileSystemStore:
    """``DocumentStore`` backed by a directory tree.

    Blocking I/O runs in a worker thread via ``run_sync()``.  Files are
    decoded with charset detection and written back in the encoding they
    were read with.

    Args:
        root: Directory holding the documents.
    """

    preserves_mtime = True

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        self._encodings: dict[str, str] = {}

    def __repr__(self) -> str:
        return f"FileSystemStore({str(self.root)!r})"

    def _resolve(self, path: str) -> Path:
        valid, reason = validate_document_path(path)
        if not valid:
            raise DocumentValidationError(reason)
        full = (self.root / path).resolve()
        if not full.is_relative_to(self.root):
            raise DocumentValidationError(
                f"Document path escapes store root: '{path}'"
            )
        return full

    async def exists(self, path: str) -> bool:
        full = self._resolve(path)
        return await run_sync(full.is_file)

    async def read(self, path: str) -> StoredDocument:
        full = self._resolve(path)
        with _translate_os_errors(path, "read"):
            content, encoding = await run_sync(read_file_with_encoding, full)
            modified = await run_sync(get_modified_time, full)
        self._encodings[path] = encoding
        return StoredDocument(
            path=path,
            content=content,
            modified_time=modified,
            checksum=document_checksum(content),
        )

    async def write(
        self, path: str, content: str, modified_time: int | None = None
    ) -> None:
        full = self._resolve(path)
        encoding = self._encodings.get(path, "utf-8")
        with _translate_os_errors(path, "write"):
            written = await run_sync(write_file_atomic, full, content, encoding)
            if modified_time is not None:
                await run_sync(set_modified_time, full, modified_time)
        logger.debug("Wrote %d bytes to %s", written, full)

    async def delete(self, path: str) -> None:
        full = self._resolve(path)
        with _translate_os_errors(path, "delete"):
            await run_sync(full.unlink, missing_ok=True)
        self._encodings.pop(path, None)

    async def rename(self, old_path: str, new_path: str) -> None:
        src = self._resolve(old_path)
        dst = self._resolve(new_path)
        with _translate_os_errors(old_path, "rename"):
            await run_sync(_move_file, src, dst)
        if old_path in self._encodings:
            self._encodings[new_path] = self._encodings.pop(old_path)

    async def list(self) -> list[str]:
        with _translate_os_errors(".", "list"):
            return await run_sync(_list_files, self.root)
