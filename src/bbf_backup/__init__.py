"""bbf-backup: Backup and restore of Babelfish logical databases.

Dumps one logical (T-SQL) database with pg_dump into a store-only zip,
and restores such a zip under a new database name by rewriting the
dump's TOC and catalog data, provisioning ownership roles and running
pg_restore.

Usage:
    from bbf_backup import BackupRequest, run_backup, load_config
    from bbf_backup import RestoreRequest, run_restore, PipelineWorker
    from bbf_backup import rewrite_toc, pack, unpack
"""

__version__ = "0.1.0"

# Adapters
from bbf_backup.adapters.base import DatabaseClient
from bbf_backup.adapters.postgres import (
    AsyncPostgresAdapter,
    check_connection,
    list_databases,
)

# Archive
from bbf_backup.archive.packager import pack, unpack

# Config
from bbf_backup.config.loader import load_config
from bbf_backup.config.models import BackupConfig, ConnectionDescriptor, ToolsConfig

# Errors
from bbf_backup.errors import (
    BackupToolError,
    DatabaseError,
    FileAccessError,
    FormatError,
    ProcessError,
    ProfileNotFoundError,
    RoleRollbackError,
    ValidationError,
)

# Factory
from bbf_backup.factory import get_client, resolve_profile

# Pipelines
from bbf_backup.pipeline import (
    BackupRequest,
    PipelineResult,
    PipelineWorker,
    RestoreRequest,
    Stage,
    run_backup,
    run_restore,
)

# Roles
from bbf_backup.roles.provisioner import provision, rollback

# TOC
from bbf_backup.toc import TocEntry, TocHeader, rewrite_toc

__all__ = [
    # Adapters
    "DatabaseClient",
    "AsyncPostgresAdapter",
    "check_connection",
    "list_databases",
    # Archive
    "pack",
    "unpack",
    # Config
    "load_config",
    "BackupConfig",
    "ConnectionDescriptor",
    "ToolsConfig",
    # Errors
    "BackupToolError",
    "DatabaseError",
    "FileAccessError",
    "FormatError",
    "ProcessError",
    "ProfileNotFoundError",
    "RoleRollbackError",
    "ValidationError",
    # Factory
    "get_client",
    "resolve_profile",
    # Pipelines
    "BackupRequest",
    "PipelineResult",
    "PipelineWorker",
    "RestoreRequest",
    "Stage",
    "run_backup",
    "run_restore",
    # Roles
    "provision",
    "rollback",
    # TOC
    "TocEntry",
    "TocHeader",
    "rewrite_toc",
]
