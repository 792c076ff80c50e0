"""Eligibility rules deciding which documents take part in sync.

Three layers, applied in order:

1. Structural exclusions -- configuration and trash directories, version
   control, OS litter, temp/swap files and conflict backups.  Matched
   with ``fnmatch`` against every path segment.
2. Path rules -- markdown files only, then the configured include and
   exclude directory prefixes.
3. Tag rules -- configured include and exclude tags, checked against the
   tags found in the document (metadata block, front matter and inline
   ``#tags``).  Needs the content, so the watcher applies it on settle.
"""

from __future__ import annotations

import fnmatch
import re
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Iterable

import yaml

from notesync.validators import validate_document_path

from .metadata import METADATA_KEY, split_front_matter

if TYPE_CHECKING:
    from notesync.config_schema import SyncSettings

    from .models import StoredDocument

MARKDOWN_SUFFIXES = (".md", ".markdown")

CONFLICT_BACKUP_PATTERN = "*.conflict.[0-9]*"

STRUCTURAL_IGNORE_PATTERNS = [
    ".obsidian",
    ".trash",
    ".git",
    ".notesync",
    "node_modules",
    ".DS_Store",
    "Thumbs.db",
    "*.tmp",
    "*.swp",
    "*~",
    CONFLICT_BACKUP_PATTERN,
]

_INLINE_TAG_RE = re.compile(r"(?<![\w#&/])#([A-Za-z][\w/-]*)")


def conflict_backup_path(path: str, epoch_ms: int) -> str:
    """Return ``<name>.conflict.<epoch-ms>.<ext>`` next to *path*."""
    p = PurePosixPath(path)
    name = f"{p.stem}.conflict.{epoch_ms}{p.suffix}"
    return str(p.with_name(name))


def _normalise_tag(tag: str) -> str:
    tag = tag.strip()
    return tag if tag.startswith("#") else f"#{tag}"


def _prefix_matches(path: str, prefix: str) -> bool:
    prefix = prefix.strip("/")
    return path == prefix or path.startswith(prefix + "/")


def collect_tags(content: str) -> set[str]:
    """Return every tag in *content*, normalised with a leading ``#``.

    Tags come from the metadata block's ``tags`` list, a top-level
    front-matter ``tags`` key, and inline ``#tag`` tokens in the body.
    Headings (``# Title``) are not tags.
    """
    tags: set[str] = set()
    front, body = split_front_matter(content)

    if front is not None:
        try:
            data = yaml.safe_load(front) if front.strip() else None
        except yaml.YAMLError:
            data = None
        if isinstance(data, dict):
            sources = [data.get("tags")]
            block = data.get(METADATA_KEY)
            if isinstance(block, dict):
                sources.append(block.get("tags"))
            for source in sources:
                if isinstance(source, str):
                    source = [source]
                if isinstance(source, list):
                    tags.update(
                        _normalise_tag(str(t)) for t in source if str(t).strip()
                    )

    tags.update(f"#{m}" for m in _INLINE_TAG_RE.findall(body))
    return tags


class DocumentFilter:
    """Apply structural, path and tag rules from ``SyncSettings``.

    Args:
        include_directories: Only paths under these prefixes are eligible
            (empty means everything).
        exclude_directories: Paths under these prefixes are never eligible.
        include_tags: When set, a document needs at least one of these.
        exclude_tags: A document with any of these is never eligible.
        extra_patterns: Additional ``fnmatch`` patterns to ignore.
    """

    def __init__(
        self,
        include_directories: Iterable[str] = (),
        exclude_directories: Iterable[str] = (),
        include_tags: Iterable[str] = (),
        exclude_tags: Iterable[str] = (),
        extra_patterns: Iterable[str] = (),
    ) -> None:
        self.include_directories = [d for d in include_directories if d]
        self.exclude_directories = [d for d in exclude_directories if d]
        self.include_tags = {_normalise_tag(t) for t in include_tags if t}
        self.exclude_tags = {_normalise_tag(t) for t in exclude_tags if t}
        self._patterns = [*STRUCTURAL_IGNORE_PATTERNS, *extra_patterns]

    @classmethod
    def from_settings(cls, settings: SyncSettings) -> DocumentFilter:
        return cls(
            include_directories=settings.include_directories,
            exclude_directories=settings.exclude_directories,
            include_tags=settings.include_tags,
            exclude_tags=settings.exclude_tags,
        )

    # ------------------------------------------------------------------
    # Path rules
    # ------------------------------------------------------------------

    def is_ignored(self, path: str) -> bool:
        """True if any segment of *path* matches a structural pattern."""
        for segment in path.replace("\\", "/").split("/"):
            if any(fnmatch.fnmatch(segment, pat) for pat in self._patterns):
                return True
        return False

    def accepts_path(self, path: str) -> bool:
        """Apply structural and path rules (no content needed)."""
        valid, _ = validate_document_path(path)
        if not valid or self.is_ignored(path):
            return False
        if not path.lower().endswith(MARKDOWN_SUFFIXES):
            return False
        if self.include_directories and not any(
            _prefix_matches(path, d) for d in self.include_directories
        ):
            return False
        return not any(
            _prefix_matches(path, d) for d in self.exclude_directories
        )

    def filter_paths(self, paths: Iterable[str]) -> list[str]:
        return [p for p in paths if self.accepts_path(p)]

    # ------------------------------------------------------------------
    # Tag rules
    # ------------------------------------------------------------------

    @property
    def has_tag_rules(self) -> bool:
        return bool(self.include_tags or self.exclude_tags)

    def accepts_content(self, content: str) -> bool:
        """Apply tag rules to *content*."""
        if not self.has_tag_rules:
            return True
        tags = collect_tags(content)
        if tags & self.exclude_tags:
            return False
        if self.include_tags and not tags & self.include_tags:
            return False
        return True

    def accepts(self, document: StoredDocument) -> bool:
        """Apply every rule to a document read from a store."""
        return self.accepts_path(document.path) and self.accepts_content(
            document.content
        )
