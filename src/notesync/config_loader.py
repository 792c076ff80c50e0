"""
Locate and read notesync's YAML configuration.

A vault keeps its settings in ``.notesync/config.yml`` at the vault root.
The file is found by walking up from the starting directory, so a command
run from a sub-folder of the vault still picks up the vault's settings.
``NOTESYNC_CONFIG`` names an explicit file instead, and
``~/.config/notesync/config.yml`` applies when no vault file exists.

The file may pull in other files with ``!include`` and reference the
environment as ``${VAR}`` or ``${VAR:-default}``.  Its ``sync`` section is
checked against ``SyncSettings`` while loading, so a bad value is reported
with the file and field it came from rather than later, deep in the engine.

Usage:
    from notesync.config_loader import load_config

    raw = load_config()            # {} when no file applies
    raw = load_config("vault/.notesync/config.yml")
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from notesync.config_schema import SyncSettings

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "NOTESYNC_CONFIG"
CONFIG_DIR = ".notesync"
CONFIG_NAMES = ("config.yml", "config.yaml")

_HEADER = """\
# notesync configuration
#
# Strings may reference the environment as ${VAR} or ${VAR:-default}.
# A relative state_dir is resolved against the vault root.

"""


class ConfigError(ValueError):
    """A config file cannot be read or holds invalid settings."""


# ---------------------------------------------------------------------------
# Environment references
# ---------------------------------------------------------------------------

_ENV_REF = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def expand_env(value: Any) -> Any:
    """Substitute ``${VAR}`` and ``${VAR:-default}`` in every string of *value*.

    An unset or empty variable yields its default, or ``""`` without one.
    Lists and mappings are walked; other scalars are returned unchanged.
    """
    if isinstance(value, str):
        return _ENV_REF.sub(
            lambda m: os.environ.get(m.group(1)) or m.group(2) or "", value
        )
    if isinstance(value, dict):
        return {key: expand_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML reading with !include
# ---------------------------------------------------------------------------


class _IncludeLoader(yaml.SafeLoader):
    """SafeLoader that resolves ``!include`` relative to the including file."""

    def __init__(self, stream, chain: tuple[Path, ...]):
        super().__init__(stream)
        self.chain = chain


def _construct_include(loader: _IncludeLoader, node: yaml.ScalarNode) -> Any:
    target = Path(loader.construct_scalar(node)).expanduser()
    if not target.is_absolute():
        target = loader.chain[-1].parent / target
    target = target.resolve()

    if target in loader.chain:
        cycle = " -> ".join(p.name for p in (*loader.chain, target))
        raise ConfigError(f"Circular include: {cycle}")
    if not target.is_file():
        raise ConfigError(
            f"Included file not found: {target} (from {loader.chain[-1]})"
        )
    return read_yaml(target, loader.chain)


_IncludeLoader.add_constructor("!include", _construct_include)


def read_yaml(path: Path | str, chain: tuple[Path, ...] = ()) -> Any:
    """Parse one YAML file, following ``!include`` directives.

    Raises:
        ConfigError: On a YAML syntax error, a missing include or an
            include cycle.
    """
    path = Path(path).resolve()
    with open(path, encoding="utf-8") as fh:
        loader = _IncludeLoader(fh, (*chain, path))
        try:
            return loader.get_single_data()
        except yaml.YAMLError as exc:
            raise ConfigError(f"{path}: invalid YAML: {exc}") from exc
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def find_config_file(start: Path | str | None = None) -> Path | None:
    """Return the config file that applies to *start* (default: CWD).

    Raises:
        ConfigError: If ``NOTESYNC_CONFIG`` names a file that does not exist.
    """
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        path = Path(explicit).expanduser().resolve()
        if not path.is_file():
            raise ConfigError(f"{CONFIG_ENV_VAR} points at a missing file: {path}")
        return path

    here = Path(start or Path.cwd()).resolve()
    for directory in (here, *here.parents):
        for name in CONFIG_NAMES:
            candidate = directory / CONFIG_DIR / name
            if candidate.is_file():
                return candidate

    user = Path.home() / ".config" / "notesync" / CONFIG_NAMES[0]
    return user if user.is_file() else None


def vault_root(config_path: Path) -> Path:
    """Directory that relative paths in *config_path* are anchored to."""
    parent = config_path.resolve().parent
    return parent.parent if parent.name == CONFIG_DIR else parent


# ---------------------------------------------------------------------------
# Loading and validation
# ---------------------------------------------------------------------------


def check_sync_section(
    section: dict[str, Any], source: str = "config"
) -> SyncSettings:
    """Validate a raw ``sync`` section, naming every bad field.

    Unknown keys are ignored with a warning.

    Raises:
        ConfigError: If any value is out of range or of the wrong type.
    """
    unknown = sorted(set(section) - set(SyncSettings.model_fields))
    if unknown:
        logger.warning("%s: ignoring unknown sync settings: %s", source, unknown)

    try:
        return SyncSettings.model_validate(section)
    except ValidationError as exc:
        problems = "; ".join(
            "sync.{}: {}".format(
                ".".join(str(part) for part in err["loc"]), err["msg"]
            )
            for err in exc.errors()
        )
        raise ConfigError(f"{source}: {problems}") from exc


def _anchor_state_dir(section: dict[str, Any], root: Path) -> dict[str, Any]:
    section = dict(section)
    state_dir = section.get("state_dir", CONFIG_DIR)
    if isinstance(state_dir, str) and state_dir and not Path(state_dir).is_absolute():
        section["state_dir"] = str(root / state_dir)
    return section


def load_config(
    path: Path | str | None = None, start: Path | str | None = None
) -> dict[str, Any]:
    """Read the applicable config file into a raw settings dict.

    Args:
        path: Explicit config file; discovered from *start* when omitted.
        start: Directory to search from (default: CWD).

    Returns:
        The file's sections, with environment references expanded and the
        ``sync.state_dir`` anchored at the vault root.  ``{}`` when no
        file applies.

    Raises:
        ConfigError: If the file is unreadable, its top level is not a
            mapping, or its ``sync`` section is invalid.
    """
    config_path = Path(path).resolve() if path else find_config_file(start)
    if config_path is None:
        logger.debug("No config file found, using defaults")
        return {}

    logger.debug("Loading config: %s", config_path)
    data = expand_env(read_yaml(config_path))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"{config_path}: top level must be a mapping, "
            f"got {type(data).__name__}"
        )

    section = data.get("sync")
    if section is None:
        return data
    if not isinstance(section, dict):
        raise ConfigError(f"{config_path}: 'sync' must be a mapping")

    section = _anchor_state_dir(section, vault_root(config_path))
    check_sync_section(section, source=str(config_path))
    return {**data, "sync": section}


def write_config(
    vault: Path | str,
    settings: SyncSettings | None = None,
    overwrite: bool = False,
) -> Path:
    """Write ``.notesync/config.yml`` for *vault* from *settings*.

    An existing file is left untouched unless *overwrite* is set.

    Returns:
        Path to the config file.
    """
    path = Path(vault) / CONFIG_DIR / CONFIG_NAMES[0]
    if path.exists() and not overwrite:
        logger.debug("Config file already exists: %s", path)
        return path

    settings = settings or SyncSettings()
    body = yaml.safe_dump(
        {"sync": settings.model_dump(mode="json")},
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_HEADER + body, encoding="utf-8")
    logger.info("Wrote config: %s", path)
    return path
