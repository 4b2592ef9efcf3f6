"""Configuration management: connection profiles, tool paths, TOML loading.

Usage:
    >>> from bbf_backup.config import load_config, ConnectionDescriptor, ToolsConfig
"""

from bbf_backup.config.loader import load_config
from bbf_backup.config.models import BackupConfig, ConnectionDescriptor, ToolsConfig

__all__ = ["load_config", "BackupConfig", "ConnectionDescriptor", "ToolsConfig"]
