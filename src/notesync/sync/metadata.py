"""Metadata codec for the embedded document header.

Documents carry their sync metadata under a ``notesync:`` key inside YAML
front matter delimited by ``---`` lines at the very top of the text::

    ---
    title: Other keys are preserved
    notesync:
      version: "2.0"
      layer: mentor
      framework: socratic
      timestamp: "2026-01-01T00:00:00+00:00"
      session_id: 3f2a...
      metadata:
        audience: general
      connections: [doc-a, doc-b]
      tags: ["#idea"]
      sync:
        last_sync: "2026-01-02T10:00:00+00:00"
        sync_source: local
        checksum: 9b1c...
    ---
    # Body

The sync checksum is computed over the document *excluding* the ``sync``
sub-block, otherwise every write-back would change it and synchronisation
would never converge.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .checksum import content_hash
from .errors import DocumentValidationError
from .models import SyncSource, utc_now_iso

logger = logging.getLogger(__name__)

METADATA_KEY = "notesync"
SCHEMA_VERSION = "2.0"
VALID_LAYERS = ("mentor", "creator", "publisher")
FRONT_MATTER_DELIMITER = "---"


def _timestamp_to_str(value: Any) -> Any:
    # Unquoted ISO timestamps come back from safe_load as datetime objects
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class MetadataDetails(BaseModel):
    """Optional free-form fields of the metadata block."""

    depth_level: int | None = None
    voice_profile: str | None = None
    audience: str | None = None
    core_message: str | None = None
    learning_objective: str | None = None

    model_config = {"frozen": True}


class SyncInfo(BaseModel):
    """The ``sync`` sub-block."""

    last_sync: str
    sync_source: SyncSource
    checksum: str = ""

    model_config = {"frozen": True}

    @field_validator("last_sync", mode="before")
    @classmethod
    def _coerce_last_sync(cls, value: Any) -> Any:
        return _timestamp_to_str(value)


class DocumentMetadata(BaseModel):
    """The structured metadata block embedded in a document."""

    version: str = SCHEMA_VERSION
    layer: str | None = None
    framework: str = ""
    timestamp: str = Field(default_factory=utc_now_iso)
    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    metadata: MetadataDetails = Field(default_factory=MetadataDetails)
    connections: list[str] = []
    tags: list[str] = []
    sync: SyncInfo | None = None

    model_config = {"frozen": True}

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> Any:
        return _timestamp_to_str(value)

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_str(cls, value: Any) -> Any:
        # version: 2.0 (unquoted) parses as a float
        if isinstance(value, (int, float)):
            return str(value)
        return value


# ---------------------------------------------------------------------------
# Front matter helpers
# ---------------------------------------------------------------------------


def split_front_matter(content: str) -> tuple[str | None, str]:
    """Split *content* into ``(front_matter_yaml, body)``.

    Returns ``(None, content)`` when the document does not open with a
    ``---`` line or the front matter is never closed.
    """
    lines = content.splitlines(keepends=True)
    if not lines or lines[0].rstrip() != FRONT_MATTER_DELIMITER:
        return None, content
    for idx in range(1, len(lines)):
        if lines[idx].rstrip() == FRONT_MATTER_DELIMITER:
            return "".join(lines[1:idx]), "".join(lines[idx + 1 :])
    return None, content


def _render_front_matter(data: dict) -> str:
    dumped = yaml.safe_dump(
        data,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )
    return f"{FRONT_MATTER_DELIMITER}\n{dumped}{FRONT_MATTER_DELIMITER}\n"


def _load_front_matter(front: str) -> Any:
    return yaml.safe_load(front) if front.strip() else {}


# ---------------------------------------------------------------------------
# Codec operations
# ---------------------------------------------------------------------------


def extract_metadata(content: str) -> DocumentMetadata | None:
    """Parse the metadata block out of *content*.

    Args:
        content: Full document text.

    Returns:
        The parsed metadata, or ``None`` when the block is missing or
        malformed. Documents without a block are valid, untracked
        documents, so this never raises.
    """
    front, _ = split_front_matter(content)
    if front is None:
        return None

    try:
        data = _load_front_matter(front)
    except yaml.YAMLError as exc:
        logger.debug("Unparseable front matter: %s", exc)
        return None

    if not isinstance(data, dict):
        return None
    block = data.get(METADATA_KEY)
    if not isinstance(block, dict):
        return None

    try:
        return DocumentMetadata.model_validate(block)
    except ValidationError as exc:
        logger.debug("Malformed %s block: %s", METADATA_KEY, exc)
        return None


def update_metadata(content: str, metadata: DocumentMetadata) -> str:
    """Write *metadata* into *content*.

    Replaces an existing block in place, keeping every other front-matter
    key, or prepends new front matter when the document has none.

    Raises:
        DocumentValidationError: If the existing front matter is not a
            YAML mapping and therefore cannot be edited safely.
    """
    block = metadata.model_dump(mode="json", exclude_none=True)
    front, body = split_front_matter(content)

    if front is None:
        return _render_front_matter({METADATA_KEY: block}) + content

    try:
        data = _load_front_matter(front)
    except yaml.YAMLError as exc:
        raise DocumentValidationError(
            f"Front matter is not valid YAML: {exc}"
        ) from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise DocumentValidationError(
            f"Front matter must be a mapping, got {type(data).__name__}"
        )

    data[METADATA_KEY] = block
    return _render_front_matter(data) + body


def document_checksum(content: str) -> str:
    """Checksum of *content* excluding the ``sync`` sub-block.

    The front matter is re-serialised canonically (sorted keys) with the
    sync sub-block removed, so re-stamping a document leaves its
    checksum unchanged. Documents without parseable front matter are
    hashed as-is.
    """
    front, body = split_front_matter(content)
    if front is None:
        return content_hash(content)

    try:
        data = _load_front_matter(front)
    except yaml.YAMLError:
        return content_hash(content)
    if not isinstance(data, dict):
        return content_hash(content)

    block = data.get(METADATA_KEY)
    if isinstance(block, dict):
        data = {
            **data,
            METADATA_KEY: {k: v for k, v in block.items() if k != "sync"},
        }

    canonical = yaml.safe_dump(
        data, sort_keys=True, allow_unicode=True, default_flow_style=False
    )
    return content_hash(f"{canonical}{FRONT_MATTER_DELIMITER}\n{body}")


def update_for_sync(
    content: str,
    source: SyncSource | str,
    modified_time: int | None = None,
) -> str:
    """Stamp the sync sub-block on *content*.

    Sets ``last_sync`` to now, ``sync_source`` to *source* and
    ``checksum`` to ``document_checksum()`` of the stamped document.
    Documents without a block get a minimal one (layer ``mentor``,
    framework ``general``) whose timestamp is *modified_time* when given.

    Args:
        content: Full document text.
        source: Side the content is coming from.
        modified_time: Store modification time in epoch milliseconds.

    Returns:
        The stamped document text.
    """
    source = SyncSource(source)
    now = utc_now_iso()
    existing = extract_metadata(content)

    if existing is None:
        timestamp = (
            datetime.fromtimestamp(modified_time / 1000, tz=timezone.utc)
            .isoformat()
            if modified_time is not None
            else now
        )
        existing = DocumentMetadata(
            layer="mentor", framework="general", timestamp=timestamp
        )

    stamped = update_metadata(
        content,
        existing.model_copy(
            update={"sync": SyncInfo(last_sync=now, sync_source=source)}
        ),
    )
    checksum = document_checksum(stamped)
    return update_metadata(
        content,
        existing.model_copy(
            update={
                "sync": SyncInfo(
                    last_sync=now, sync_source=source, checksum=checksum
                )
            }
        ),
    )


# ---------------------------------------------------------------------------
# Helpers for callers
# ---------------------------------------------------------------------------


def validate_metadata(metadata: DocumentMetadata) -> tuple[bool, str]:
    """Check a metadata block for required fields and known values.

    Returns:
        ``(True, "")`` when valid, otherwise ``(False, reason)``.
    """
    if metadata.version != SCHEMA_VERSION:
        return False, f"Unsupported metadata version: {metadata.version}"
    if not metadata.timestamp:
        return False, "Missing timestamp"
    if not metadata.session_id:
        return False, "Missing session_id"
    if metadata.layer is not None and metadata.layer not in VALID_LAYERS:
        return False, (
            f"Unknown layer '{metadata.layer}'. "
            f"Valid layers: {', '.join(VALID_LAYERS)}"
        )
    return True, ""


def metadata_summary(content: str) -> dict:
    """Short description of a document's metadata for status displays."""
    metadata = extract_metadata(content)
    if metadata is None:
        return {"has_metadata": False, "valid": False}

    valid, _ = validate_metadata(metadata)
    return {
        "has_metadata": True,
        "valid": valid,
        "layer": metadata.layer,
        "framework": metadata.framework,
        "tag_count": len(metadata.tags),
        "connection_count": len(metadata.connections),
        "last_sync": metadata.sync.last_sync if metadata.sync else None,
        "sync_source": (
            metadata.sync.sync_source.value if metadata.sync else None
        ),
    }


_TEMPLATE_BODY = """\
# New Document

## Core Message


## Content


## Reflections


## Next Steps
"""


def create_template(
    layer: str = "mentor",
    framework: str = "socratic",
    audience: str = "general",
) -> str:
    """Return a new document skeleton carrying a fresh metadata block.

    Raises:
        DocumentValidationError: If *layer* is not a known layer.
    """
    metadata = DocumentMetadata(
        layer=layer,
        framework=framework,
        metadata=MetadataDetails(audience=audience),
        tags=["#new"],
    )
    valid, reason = validate_metadata(metadata)
    if not valid:
        raise DocumentValidationError(reason)
    return update_metadata("\n" + _TEMPLATE_BODY, metadata)
