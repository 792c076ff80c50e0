"""Settings loading with environment overrides.

Reads sync settings from explicit overrides, environment variables,
.env files, and the vault YAML config.

Precedence (highest to lowest):
    overrides > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    NOTESYNC_CONFLICT_RESOLUTION: ask | local | remote | newest
    NOTESYNC_SYNC_MODE: manual | auto | realtime
    NOTESYNC_BATCH_SIZE: Documents per sync_all batch (1-100)
    NOTESYNC_DEBOUNCE_MS: Settle delay for modified files
    NOTESYNC_MAX_RETRIES: Caller-side retries on network errors
    NOTESYNC_SYNC_TIMEOUT: Seconds per sync attempt
    NOTESYNC_CONFLICT_BACKUP: Write conflict backups (true/false)
    NOTESYNC_STATE_DIR: Base-archive directory
"""

import logging
import os
from typing import Any

from dotenv import load_dotenv

from notesync.config_loader import load_config
from notesync.config_schema import UnifiedConfig, build_config

logger = logging.getLogger(__name__)

_STR_ENV = {
    "NOTESYNC_CONFLICT_RESOLUTION": "conflict_resolution",
    "NOTESYNC_SYNC_MODE": "sync_mode",
    "NOTESYNC_STATE_DIR": "state_dir",
}

_INT_ENV = {
    "NOTESYNC_BATCH_SIZE": "batch_size",
    "NOTESYNC_DEBOUNCE_MS": "debounce_ms",
    "NOTESYNC_MAX_RETRIES": "max_retries",
}


def get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def env_overrides() -> dict[str, Any]:
    """Collect ``sync`` section overrides from the environment.

    Raises:
        ValueError: If a numeric variable is not a number.
    """
    overrides: dict[str, Any] = {}

    for key, field in _STR_ENV.items():
        val = os.getenv(key)
        if val:
            overrides[field] = val.strip()

    for key, field in _INT_ENV.items():
        raw = os.getenv(key)
        if raw is None:
            continue
        try:
            overrides[field] = int(raw)
        except ValueError:
            raise ValueError(
                f"Invalid {key} '{raw}': must be an integer"
            ) from None

    timeout_raw = os.getenv("NOTESYNC_SYNC_TIMEOUT")
    if timeout_raw is not None:
        try:
            overrides["sync_timeout"] = float(timeout_raw)
        except ValueError:
            raise ValueError(
                f"Invalid NOTESYNC_SYNC_TIMEOUT '{timeout_raw}': must be a number"
            ) from None

    backup = get_bool_env("NOTESYNC_CONFLICT_BACKUP")
    if backup is not None:
        overrides["conflict_backup_enabled"] = backup

    return overrides


def load_settings(
    overrides: dict[str, Any] | None = None,
    use_dotenv: bool = True,
    raw_config: dict[str, Any] | None = None,
    config_path: str | None = None,
) -> UnifiedConfig:
    """Load the unified configuration with full precedence applied.

    Args:
        overrides: Explicit ``sync`` section values (highest precedence).
        use_dotenv: Load a ``.env`` file into the environment first.
        raw_config: Pre-loaded YAML dict; read from disk when omitted.
        config_path: Config file to read; discovered from the CWD when
            omitted.

    Returns:
        Validated ``UnifiedConfig``.

    Raises:
        ValueError: If an environment value is malformed.
        ConfigError: If the config file is unreadable or invalid.
        pydantic.ValidationError: If the merged values are out of range.
    """
    if use_dotenv:
        load_dotenv()

    raw = dict(
        raw_config if raw_config is not None else load_config(config_path)
    )
    sync_section = dict(raw.get("sync") or {})
    sync_section.update(env_overrides())
    sync_section.update(overrides or {})
    raw["sync"] = sync_section

    config = build_config(raw)
    logger.debug(
        "Loaded settings: policy=%s mode=%s batch_size=%d",
        config.sync.conflict_resolution,
        config.sync.sync_mode,
        config.sync.batch_size,
    )
    return config
