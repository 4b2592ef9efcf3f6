"""Pydantic models for connection profiles and tool configuration."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Connection Models
# ============================================================================


class ConnectionDescriptor(BaseModel):
    """Connection settings for one Babelfish-enabled Postgres server.

    Frozen: a pipeline run receives its own copy and never mutates it.
    ``database`` is the physical Postgres database that hosts the
    Babelfish catalog (not a logical T-SQL database name).
    """

    model_config = ConfigDict(frozen=True)

    host: str = "localhost"
    port: int = Field(default=5432, ge=1, le=65535)
    user: str
    password: str = ""
    enable_tls: bool = False
    accept_invalid_tls: bool = False
    use_pgpass: bool = False
    database: str | None = None

    @property
    def tls_mode(self) -> str:
        """libpq ``sslmode`` equivalent of the TLS flags."""
        if not self.enable_tls:
            return "disable"
        # Only meaningful when TLS is on
        if self.accept_invalid_tls:
            return "require"
        return "verify-full"

    def redacted(self) -> str:
        """Short description safe for progress output (no password)."""
        return f"{self.user}@{self.host}:{self.port}"


# ============================================================================
# Tool Configuration
# ============================================================================


class ToolsConfig(BaseModel):
    """Locations of the external dump/restore tools and pipeline pacing."""

    bin_dir: str | None = None
    pg_dump: str = "pg_dump"
    pg_restore: str = "pg_restore"
    dump_jobs: int = Field(default=4, ge=1)
    min_duration: float = Field(default=1.0, ge=0)
    coalesce_window: float = Field(default=0.1, ge=0)

    def resolve(self, program: str) -> str:
        """Return the executable path, joined with ``bin_dir`` when set."""
        if self.bin_dir:
            return str(Path(self.bin_dir) / program)
        return program


class BackupConfig(BaseModel):
    """Complete configuration from bbf-backup.toml."""

    profiles: dict[str, ConnectionDescriptor] = Field(default_factory=dict)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    default_bbf_database: str = "babelfish_db"
