"""Async PostgreSQL database adapter.

Provides ``AsyncPostgresAdapter``, an async implementation of the
``DatabaseClient`` protocol using SQLAlchemy's async engine with the
``asyncpg`` driver, plus the two catalog reads the pipelines need.

Usage:
    from bbf_backup.adapters.postgres import AsyncPostgresAdapter, list_databases

    adapter = AsyncPostgresAdapter.from_descriptor(descriptor, "babelfish_db")
    names = await list_databases(adapter)
    await adapter.close()
"""

import ssl
from typing import Any

from sqlalchemy import URL, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from bbf_backup.adapters.base import DatabaseClient
from bbf_backup.config.models import ConnectionDescriptor
from bbf_backup.errors import DatabaseError

LIST_DATABASES_SQL = "SELECT name FROM sys.babelfish_sysdatabases ORDER BY name"

# Created by Babelfish itself; never a backup target
SYSTEM_DATABASES = ("master", "msdb", "tempdb")


def _ssl_argument(descriptor: ConnectionDescriptor) -> ssl.SSLContext | bool:
    """Map the descriptor's TLS flags to asyncpg's ``ssl`` connect argument."""
    if not descriptor.enable_tls:
        return False
    context = ssl.create_default_context()
    if descriptor.accept_invalid_tls:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def create_async_engine_pooled(url: URL | str, **kwargs: Any) -> AsyncEngine:
    """Create an async SQLAlchemy engine with a small connection pool.

    Default pool settings:

    - ``pool_size=2``: A pipeline run holds at most one connection.
    - ``max_overflow=2``: Allow short bursts (e.g. check + provision).
    - ``pool_pre_ping=True``: Validate connections before checkout.

    Args:
        url: SQLAlchemy URL with the ``postgresql+asyncpg`` driver.
        **kwargs: Additional keyword arguments forwarded to
            ``create_async_engine``.

    Returns:
        Configured ``AsyncEngine``.
    """
    defaults: dict[str, Any] = {
        "pool_size": 2,
        "max_overflow": 2,
        "pool_pre_ping": True,
        "echo": False,
    }
    # Caller kwargs override defaults
    merged = {**defaults, **kwargs}

    return create_async_engine(url, **merged)


class AsyncPostgresAdapter:
    """Async PostgreSQL implementation of the ``DatabaseClient`` protocol.

    Every ``execute`` call runs in its own ``engine.begin()`` block, so
    each statement commits on its own -- role provisioning is a sequence
    of independent statements, not one transaction.

    Args:
        database_url: SQLAlchemy URL or URL string.  ``postgres://`` and
            ``postgresql://`` strings are normalized to
            ``postgresql+asyncpg://``.
        connect_args: Extra asyncpg connect arguments (e.g. ``ssl``).
        **engine_kwargs: Additional keyword arguments forwarded to
            ``create_async_engine_pooled``.

    Example:
        adapter = AsyncPostgresAdapter.from_descriptor(descriptor, "babelfish_db")
        rows = await adapter.query("SELECT rolname FROM pg_roles")
        await adapter.close()
    """

    def __init__(
        self,
        database_url: URL | str,
        connect_args: dict[str, Any] | None = None,
        **engine_kwargs: Any,
    ) -> None:
        url = database_url
        if isinstance(url, str):
            # Normalize URL scheme:
            # 1. postgres:// -> postgresql://
            # 2. postgresql:// -> postgresql+asyncpg://
            if url.startswith("postgres://"):
                url = "postgresql://" + url[len("postgres://"):]
            if url.startswith("postgresql://"):
                url = "postgresql+asyncpg://" + url[len("postgresql://"):]

        if connect_args:
            engine_kwargs["connect_args"] = connect_args
        self._engine: AsyncEngine = create_async_engine_pooled(url, **engine_kwargs)

    @classmethod
    def from_descriptor(
        cls, descriptor: ConnectionDescriptor, database: str, **engine_kwargs: Any
    ) -> "AsyncPostgresAdapter":
        """Build an adapter for ``database`` on the server ``descriptor`` points at.

        With ``use_pgpass`` the password is left out of the URL so the
        driver falls back to the user's pgpass file.
        """
        url = URL.create(
            "postgresql+asyncpg",
            username=descriptor.user,
            password=None if descriptor.use_pgpass else (descriptor.password or None),
            host=descriptor.host,
            port=descriptor.port,
            database=database,
        )
        return cls(url, connect_args={"ssl": _ssl_argument(descriptor)}, **engine_kwargs)

    # ------------------------------------------------------------------
    # DatabaseClient Methods
    # ------------------------------------------------------------------

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        """Run a query and return rows as dicts."""
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(text(sql), params or {})
                col_names = list(result.keys())
                rows = result.fetchall()
        except (SQLAlchemyError, OSError) as e:
            raise DatabaseError(f"Query failed: {sql}\n{e}") from e
        return [dict(zip(col_names, row)) for row in rows]

    async def execute(self, sql: str, params: dict[str, Any] | None = None) -> None:
        """Execute a single statement with automatic commit.

        Uses ``engine.begin()`` for commit on success, rollback on error.

        Args:
            sql: Raw SQL statement to execute.
            params: Optional dict of named parameters for the SQL statement.
        """
        try:
            async with self._engine.begin() as conn:
                await conn.execute(text(sql), params or {})
        except (SQLAlchemyError, OSError) as e:
            raise DatabaseError(f"Statement failed: {sql}\n{e}") from e

    async def close(self) -> None:
        """Close the async engine and dispose of the connection pool."""
        if self._engine:
            await self._engine.dispose()


# ----------------------------------------------------------------------
# Catalog reads
# ----------------------------------------------------------------------


async def check_connection(client: DatabaseClient) -> bool:
    """Return ``True`` if ``SELECT 1`` succeeds.

    Raises:
        DatabaseError: If the database connection fails.
    """
    rows = await client.query("SELECT 1 AS ok")
    return bool(rows) and rows[0].get("ok") == 1


async def list_databases(
    client: DatabaseClient, include_system: bool = True
) -> list[str]:
    """Return the logical (T-SQL) database names known to Babelfish.

    Args:
        client: Connection to the Babelfish host database.
        include_system: Keep ``master``, ``msdb`` and ``tempdb`` in the list.
    """
    rows = await client.query(LIST_DATABASES_SQL)
    names = [row["name"] for row in rows]
    if include_system:
        return names
    return [name for name in names if name.lower() not in SYSTEM_DATABASES]
