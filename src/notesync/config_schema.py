"""Unified configuration schema for notesync.

Defines Pydantic models for the unified config structure with dedicated
sections for synchronisation behaviour and logging.

Usage:
    from notesync.config_schema import UnifiedConfig, build_config

    raw = load_config()
    unified = build_config(raw)
    settings = unified.sync
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class SyncSettings(BaseModel):
    """Settings consumed by the change detector, resolver and engine.

    Every field has a default so ``SyncSettings()`` is always usable.
    ``max_retries`` and ``sync_timeout`` are read by the caller that wraps
    the engine (see ``SyncService``); the engine itself never retries.
    """

    profile: str = Field(
        default="default",
        description="Profile name, used for the base-archive state file",
    )
    conflict_resolution: Literal["ask", "local", "remote", "newest"] = (
        Field(
            default="ask",
            description="Policy applied when a merge has conflicts",
        )
    )
    merge_algorithm: Literal["positional", "aligned"] = Field(
        default="positional",
        description=(
            "positional: compare line N with line N; "
            "aligned: sequence-aligned merge via merge3"
        ),
    )
    sync_mode: Literal["manual", "auto", "realtime"] = Field(
        default="manual",
        description="manual: caller-driven; auto: scheduled sync_all; "
        "realtime: react to watcher notifications",
    )
    auto_sync_interval: int = Field(
        default=15,
        ge=1,
        le=1440,
        description="Minutes between scheduled full syncs (auto mode)",
    )
    watch_direction: Literal["to_remote", "bidirectional"] = Field(
        default="to_remote",
        description="Direction used for watcher-triggered syncs",
    )
    include_directories: list[str] = Field(default_factory=list)
    exclude_directories: list[str] = Field(
        default_factory=lambda: [".obsidian", ".trash"]
    )
    include_tags: list[str] = Field(default_factory=list)
    exclude_tags: list[str] = Field(
        default_factory=lambda: ["#private", "#draft"]
    )
    debounce_ms: int = Field(
        default=1000,
        ge=0,
        le=60_000,
        description="Settle delay for modified paths",
    )
    create_debounce_ms: int = Field(
        default=2000,
        ge=0,
        le=60_000,
        description="Settle delay for newly created paths",
    )
    batch_size: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Maximum documents in flight during sync_all (1-100)",
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        le=20,
        description="Retries applied by the caller on network errors",
    )
    sync_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds allowed per sync attempt (caller-enforced)",
    )
    conflict_backup_enabled: bool = Field(
        default=True,
        description="Write <name>.conflict.<epoch-ms>.<ext> on manual conflicts",
    )
    state_dir: str | None = Field(
        default=".notesync",
        description="Directory for the base archive; None disables it",
    )

    model_config = {"frozen": True}

    @field_validator(
        "include_directories", "exclude_directories", mode="after"
    )
    @classmethod
    def _strip_leading_slash(cls, value: list[str]) -> list[str]:
        return [v.lstrip("/") for v in value if v.strip()]

    @field_validator("include_tags", "exclude_tags", mode="after")
    @classmethod
    def _normalise_tags(cls, value: list[str]) -> list[str]:
        # "#draft" and "draft" name the same tag
        return [v if v.startswith("#") else f"#{v}" for v in value if v]


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: "text" or "json".
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: Literal["text", "json"] = Field(
        default="text", description="Log line format"
    )

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_config()``.

    Missing sections get defaults.
    Unknown top-level sections are ignored with a warning.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    known = set(UnifiedConfig.model_fields)
    unknown = sorted(set(raw_data) - known)
    if unknown:
        logger.warning("Ignoring unknown config sections: %s", unknown)

    return UnifiedConfig(
        **{k: v for k, v in raw_data.items() if k in known}
    )
