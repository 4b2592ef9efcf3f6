"""Ownership roles for a restored Babelfish database.

Every logical database ``X`` needs three roles before its dump can be
restored: ``X_db_owner``, ``X_dbo`` and ``X_guest``.  Roles that already
exist are left alone; only roles created here are reported back, so a
failed restore can drop exactly what it added.

Statements run one at a time without an enclosing transaction.

Usage:
    from bbf_backup.roles.provisioner import provision, rollback

    created = await provision(client, "bolt")
    try:
        ...
    except Exception:
        await rollback(client, "babelfish_db", created)
        raise
"""

import logging
import re

from bbf_backup.adapters.base import DatabaseClient
from bbf_backup.errors import DatabaseError, RoleRollbackError, ValidationError

logger = logging.getLogger(__name__)

ROLE_SUFFIXES = ("db_owner", "dbo", "guest")

ROLE_ATTRIBUTES = (
    "NOSUPERUSER INHERIT NOCREATEROLE NOCREATEDB NOLOGIN NOREPLICATION NOBYPASSRLS"
)

ADMIN_ROLE = "sysadmin"

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_dbname(dbname: str) -> str:
    """Return ``dbname`` if usable as a role-name prefix.

    Raises:
        ValidationError: If it is not a plain identifier.
    """
    if not _IDENTIFIER_RE.match(dbname or ""):
        raise ValidationError(
            f"Invalid database name: '{dbname}' "
            "(letters, digits and underscores only, not starting with a digit)"
        )
    return dbname


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def role_names(dbname: str) -> list[str]:
    """The three ownership role names for ``dbname``, in creation order."""
    return [f"{dbname}_{suffix}" for suffix in ROLE_SUFFIXES]


def grant_statements(dbname: str) -> list[str]:
    db_owner, dbo, guest = (quote_ident(r) for r in role_names(dbname))
    admin = quote_ident(ADMIN_ROLE)
    return [
        f"GRANT {db_owner} TO {dbo} GRANTED BY {admin}",
        f"GRANT {dbo} TO {admin} GRANTED BY {admin}",
        f"GRANT {guest} TO {admin} GRANTED BY {admin}",
        f"GRANT {guest} TO {db_owner} GRANTED BY {admin}",
    ]


async def role_exists(client: DatabaseClient, role: str) -> bool:
    rows = await client.query(
        "SELECT 1 FROM pg_roles WHERE rolname = :name", {"name": role}
    )
    return bool(rows)


async def ensure_role(client: DatabaseClient, dbname: str, suffix: str) -> str | None:
    """Create ``{dbname}_{suffix}`` unless it already exists.

    Returns:
        The role name if this call created it, ``None`` if it pre-existed.

    Raises:
        DatabaseError: If the existence check or CREATE ROLE fails.
    """
    role = f"{dbname}_{suffix}"
    if await role_exists(client, role):
        logger.info("Role %s already exists", role)
        return None
    await client.execute(f"CREATE ROLE {quote_ident(role)} WITH {ROLE_ATTRIBUTES}")
    logger.info("Created role %s", role)
    return role


async def provision(client: DatabaseClient, dbname: str) -> list[str]:
    """Ensure all three ownership roles exist and wire their grants.

    Returns:
        Roles created by this call, in creation order.

    Raises:
        DatabaseError: On the first failing statement.  Roles created
            before the failure are attached to the exception as
            ``created_roles`` so the caller can still roll them back.
    """
    validate_dbname(dbname)
    created: list[str] = []
    try:
        for suffix in ROLE_SUFFIXES:
            role = await ensure_role(client, dbname, suffix)
            if role is not None:
                created.append(role)
        for sql in grant_statements(dbname):
            await client.execute(sql)
    except DatabaseError as e:
        e.created_roles = list(created)
        raise
    return created


async def rollback(client: DatabaseClient, bbf_db: str, created_roles: list[str]) -> None:
    """Drop roles created by a failed restore.

    Best effort: every role is attempted even if an earlier drop fails.
    Roles are dropped in reverse creation order.

    Args:
        client: Connection to the Babelfish host database.
        bbf_db: Name of that database, for log context.
        created_roles: Roles returned by ``provision``.

    Raises:
        RoleRollbackError: After all attempts, if any drop failed.
    """
    failures: dict[str, str] = {}
    for role in reversed(created_roles):
        try:
            await client.execute(f"DROP ROLE IF EXISTS {quote_ident(role)}")
            logger.info("Dropped role %s in %s", role, bbf_db)
        except DatabaseError as e:
            logger.warning("Failed to drop role %s in %s: %s", role, bbf_db, e)
            failures[role] = str(e)
    if failures:
        raise RoleRollbackError(failures)
