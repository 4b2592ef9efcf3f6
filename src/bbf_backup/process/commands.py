"""Immutable command values for the dump and restore tools.

A ``PgCommand`` is built once from the connection descriptor and tool
settings, then handed to the process runner.  Credentials travel only
in ``env``, never on the command line.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

from bbf_backup.config.models import ConnectionDescriptor, ToolsConfig


@dataclass(frozen=True)
class PgCommand:
    """A fully assembled external tool invocation."""

    program: str
    args: tuple[str, ...]
    env: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def display(self) -> str:
        """Command line for progress output (env values are not shown)."""
        return " ".join([self.program, *self.args])


def connection_env(descriptor: ConnectionDescriptor) -> Mapping[str, str]:
    """Per-process environment carrying the password and TLS mode."""
    env = {"PGSSLMODE": descriptor.tls_mode}
    if not descriptor.use_pgpass:
        env["PGPASSWORD"] = descriptor.password
    return MappingProxyType(env)


def _connection_args(descriptor: ConnectionDescriptor, bbf_db: str) -> list[str]:
    return [
        "-h", descriptor.host,
        "-p", str(descriptor.port),
        "-U", descriptor.user,
        "-d", bbf_db,
    ]


def dump_command(
    descriptor: ConnectionDescriptor,
    tools: ToolsConfig,
    bbf_db: str,
    dbname: str,
    dest_dir: Path,
) -> PgCommand:
    """Build the pg_dump invocation for one logical database.

    Directory format, parallel jobs, uncompressed data files (``-Z 0``)
    so catalog table data can be rewritten as text on restore.
    """
    args = [
        "-v",
        *_connection_args(descriptor, bbf_db),
        "--bbf-database-name", dbname,
        "-F", "d",
        "-Z", "0",
        "-j", str(tools.dump_jobs),
        "-f", str(dest_dir),
    ]
    return PgCommand(tools.resolve(tools.pg_dump), tuple(args), connection_env(descriptor))


def restore_command(
    descriptor: ConnectionDescriptor,
    tools: ToolsConfig,
    bbf_db: str,
    source_dir: Path,
) -> PgCommand:
    """Build the pg_restore invocation: single transaction, no parallelism."""
    args = [
        "-v",
        *_connection_args(descriptor, bbf_db),
        "-F", "d",
        "--single-transaction",
        str(source_dir),
    ]
    return PgCommand(tools.resolve(tools.pg_restore), tuple(args), connection_env(descriptor))
