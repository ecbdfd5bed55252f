"""Configuration system for zfs-backup-ng.

This module provides TOML-based configuration loading, validation,
and schema definitions for automated backup management.
"""

from .loader import ConfigError, find_config_file, load_config
from .schema import (
    Config,
    GlobalConfig,
    RetentionConfig,
    VolumeConfig,
)

__all__ = [
    "GlobalConfig",
    "RetentionConfig",
    "VolumeConfig",
    "Config",
    "load_config",
    "find_config_file",
    "ConfigError",
]
