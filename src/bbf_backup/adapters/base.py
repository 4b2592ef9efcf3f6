"""Database client protocol definition.

Defines the ``DatabaseClient`` Protocol used by role provisioning and
database-name enumeration.  All methods are ``async def`` -- callers
must ``await`` every operation.

Usage:
    from bbf_backup.adapters.base import DatabaseClient

    async def role_exists(client: DatabaseClient, name: str) -> bool:
        rows = await client.query(
            "SELECT 1 FROM pg_roles WHERE rolname = :name", {"name": name}
        )
        return bool(rows)
"""

from typing import Any, Protocol


class DatabaseClient(Protocol):
    """Database client interface that all adapters must implement.

    The pipelines only need parameterized reads, single statements and
    an explicit close, so the interface is intentionally small.
    """

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        """Run a query and return its rows.

        Args:
            sql: SQL text with ``:name`` style parameters.
            params: Optional dict of named parameters.

        Returns:
            List of dicts, one per row.  Empty list if no rows.

        Example:
            rows = await client.query(
                "SELECT name FROM sys.babelfish_sysdatabases"
            )
        """
        ...

    async def execute(self, sql: str, params: dict[str, Any] | None = None) -> None:
        """Execute a single statement in its own transaction.

        Used for role DDL and GRANT statements.  There is no enclosing
        transaction across calls.

        Args:
            sql: Raw SQL statement to execute.
            params: Optional dict of named parameters for the SQL statement.

        Example:
            await client.execute('CREATE ROLE "bolt_dbo" WITH NOLOGIN')
        """
        ...

    async def close(self) -> None:
        """Close the connection and release resources."""
        ...
