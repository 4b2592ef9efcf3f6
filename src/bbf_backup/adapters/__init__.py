"""Database adapters package.

Provides the ``DatabaseClient`` Protocol and the async PostgreSQL
adapter used for role provisioning and database-name enumeration.

Usage:
    from bbf_backup.adapters import DatabaseClient, AsyncPostgresAdapter
"""

from bbf_backup.adapters.base import DatabaseClient
from bbf_backup.adapters.postgres import (
    AsyncPostgresAdapter,
    check_connection,
    list_databases,
)

__all__ = [
    "DatabaseClient",
    "AsyncPostgresAdapter",
    "check_connection",
    "list_databases",
]
