"""Connection profile resolution and database client factory.

Profiles live in bbf-backup.toml.  The active profile is chosen by an
explicit name, then the ``BBF_BACKUP_PROFILE`` environment variable
(optionally prefixed), then the single configured profile.
"""

import logging
import os
from collections.abc import Callable

from bbf_backup.adapters.base import DatabaseClient
from bbf_backup.adapters.postgres import AsyncPostgresAdapter
from bbf_backup.config.models import BackupConfig, ConnectionDescriptor
from bbf_backup.errors import ProfileNotFoundError

logger = logging.getLogger(__name__)

PROFILE_ENV_VAR = "BBF_BACKUP_PROFILE"

ClientFactory = Callable[[ConnectionDescriptor, str], DatabaseClient]


# ============================================================================
# Profile Resolution
# ============================================================================


def get_active_profile_name(
    config: BackupConfig,
    profile_name: str | None = None,
    env_prefix: str = "",
) -> str:
    """Get active profile name from argument, env var or config.

    Priority:
    1. ``profile_name`` argument (e.g. ``--profile``)
    2. ``{env_prefix}BBF_BACKUP_PROFILE`` env var
    3. The only profile, when exactly one is configured
    4. Raise ProfileNotFoundError

    Args:
        config: Loaded configuration.
        profile_name: Explicit profile name, if any.
        env_prefix: Prefix for the environment variable lookup.

    Returns:
        Profile name

    Raises:
        ProfileNotFoundError: If no profile can be selected
    """
    if profile_name:
        return profile_name

    env_profile = os.environ.get(f"{env_prefix}{PROFILE_ENV_VAR}")
    if env_profile:
        return env_profile

    if len(config.profiles) == 1:
        return next(iter(config.profiles))

    available = ", ".join(config.profiles) or "(none)"
    raise ProfileNotFoundError(
        "No connection profile selected.\n"
        f"Pass --profile <name> or set {env_prefix}{PROFILE_ENV_VAR}.\n"
        f"Available profiles: {available}"
    )


def resolve_profile(
    config: BackupConfig,
    profile_name: str | None = None,
    env_prefix: str = "",
) -> tuple[str, ConnectionDescriptor]:
    """Get active profile name and its connection descriptor.

    Returns:
        Tuple of (profile_name, ConnectionDescriptor)

    Raises:
        ProfileNotFoundError: If no profile is selected or the name is unknown
    """
    name = get_active_profile_name(config, profile_name, env_prefix)
    if name not in config.profiles:
        raise ProfileNotFoundError(
            f"Profile '{name}' not found in config.\n"
            f"Available profiles: {', '.join(config.profiles) or '(none)'}"
        )
    logger.debug("Using profile %s", name)
    return name, config.profiles[name]


# ============================================================================
# Database Client Factory
# ============================================================================


def get_client(descriptor: ConnectionDescriptor, database: str) -> DatabaseClient:
    """Create a database client for ``database`` on the descriptor's server.

    This is the default ``ClientFactory`` used by the pipelines; tests
    substitute their own.
    """
    return AsyncPostgresAdapter.from_descriptor(descriptor, database)
