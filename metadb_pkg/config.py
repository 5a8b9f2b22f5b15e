"""User configuration management for metadb.

This module handles loading and saving settings from ~/.metadb/config.yaml
(or the file named by METADB_CONFIG). Configuration is optional - the tool
works with defaults if no config file exists.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

import yaml

from .enums import OrphanPolicy


@dataclass
class MetadbConfig:
    """User configuration for metadb.

    All settings are optional and fall back to defaults if not specified.
    """

    dsn: Optional[str] = None
    """Connection descriptor for the accounts database (overridden by --dsn / METADB_DSN)."""

    backup_dir: Optional[str] = None
    """Directory for pre-migration snapshots (default: beside the SQLite file, or cwd for MySQL)."""

    orphan_policy: str = OrphanPolicy.SKIP.value
    """What to do with uploads whose owner cannot be mapped: 'skip' or 'fail'."""

    log_path: Optional[str] = None
    """Path to log file (default: ~/.metadb/metadb.log)."""

    debug_logging: bool = False
    """Enable DEBUG level logging (default: False)."""

    no_color: bool = False
    """Disable colored console output (default: False)."""


def get_config_path() -> Path:
    """Get the path to the user's config file.

    Returns:
        Path from METADB_CONFIG, else ~/.metadb/config.yaml
    """
    override = os.environ.get("METADB_CONFIG")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".metadb" / "config.yaml"


def load_config() -> MetadbConfig:
    """Load user configuration, creating the file with defaults if missing.

    Returns:
        MetadbConfig with user preferences, or the defaults if the file
        cannot be read
    """
    config_path = get_config_path()

    if not config_path.exists():
        # Logger isn't initialized yet; write defaults silently
        create_example_config()

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError):
        return MetadbConfig()

    if not data:
        return MetadbConfig()

    policy = str(data.get("orphan_policy", OrphanPolicy.SKIP.value)).lower()
    if policy not in {p.value for p in OrphanPolicy}:
        policy = OrphanPolicy.SKIP.value

    return MetadbConfig(
        dsn=data.get("dsn"),
        backup_dir=data.get("backup_dir"),
        orphan_policy=policy,
        log_path=data.get("log_path"),
        debug_logging=bool(data.get("debug_logging", False)),
        no_color=bool(data.get("no_color", False)),
    )


def save_config(config: MetadbConfig) -> bool:
    """Save configuration to the config file.

    Returns:
        True if successful, False otherwise
    """
    config_path = get_config_path()

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        # Leave unset values out for a cleaner file
        data = {k: v for k, v in asdict(config).items() if v is not None}
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
        return True
    except OSError:
        return False


def create_example_config() -> bool:
    """Write a config file containing the defaults."""
    return save_config(MetadbConfig())
