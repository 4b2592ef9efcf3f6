"""TOML loader for bbf-backup connection profiles and tool settings."""

import tomllib
from pathlib import Path

from pydantic import ValidationError as ModelValidationError

from bbf_backup.config.models import BackupConfig, ConnectionDescriptor, ToolsConfig

DEFAULT_CONFIG_FILE = "bbf-backup.toml"


def load_config(config_path: Path | None = None) -> BackupConfig:
    """Load profiles and tool settings from a TOML file.

    Args:
        config_path: Path to bbf-backup.toml (default: ./bbf-backup.toml)

    Returns:
        BackupConfig with all profiles and tool settings

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is invalid
    """
    if config_path is None:
        config_path = Path.cwd() / DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise FileNotFoundError(
            f"Backup config not found: {config_path}\n"
            f"Create {DEFAULT_CONFIG_FILE} with a [profiles.<name>] section."
        )

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {config_path}: {e}") from e

    profiles_data = data.get("profiles", {})
    if not isinstance(profiles_data, dict):
        raise ValueError(f"[profiles] must be a table in {config_path}")

    # Parse profiles
    profiles = {}
    for name, profile_data in profiles_data.items():
        if not isinstance(profile_data, dict):
            raise ValueError(f"Profile '{name}' must be a table in {config_path}")
        try:
            profiles[name] = ConnectionDescriptor(**profile_data)
        except ModelValidationError as e:
            raise ValueError(f"Invalid profile '{name}': {e}") from e

    # Parse tool settings
    try:
        tools = ToolsConfig(**data.get("tools", {}))
    except ModelValidationError as e:
        raise ValueError(f"Invalid [tools] section: {e}") from e

    return BackupConfig(
        profiles=profiles,
        tools=tools,
        default_bbf_database=data.get("default_bbf_database", "babelfish_db"),
    )
