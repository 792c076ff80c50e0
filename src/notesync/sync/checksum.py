"""Content checksums used for divergence detection.

``content_hash()`` normalises only the byte-order mark and line endings
before SHA-256, so hashes are stable across editors that disagree on EOL
conventions while every other character still counts.  Trailing spaces
are content in markdown (two of them make a hard line break).
"""

from __future__ import annotations

import hashlib


def normalise_content(content: str) -> str:
    """Return *content* in the canonical form that gets hashed.

    Strips a leading BOM (``\\ufeff``) and replaces ``\\r\\n`` with
    ``\\n``.  Line content is otherwise left exactly as given.
    """
    text = content[1:] if content.startswith("\ufeff") else content
    return text.replace("\r\n", "\n")


def content_hash(content: str) -> str:
    """Compute a normalised SHA-256 hex digest of *content*.

    Same input always yields the same digest; the result is a 64-character
    lowercase hex string.
    """
    return hashlib.sha256(
        normalise_content(content).encode("utf-8")
    ).hexdigest()
