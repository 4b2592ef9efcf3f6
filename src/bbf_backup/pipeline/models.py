"""Request and result models for the backup and restore pipelines."""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class Stage(str, Enum):
    """State-machine stages of both pipelines."""

    PREPARING = "preparing"
    DUMPING = "dumping"
    PACKAGING = "packaging"
    CHECKING = "checking"
    UNPACKING = "unpacking"
    REWRITING = "rewriting"
    PROVISIONING = "provisioning"
    RESTORING = "restoring"
    ROLLBACK = "rollback"
    CLEANING_UP = "cleaning_up"
    DONE = "done"
    FAILED = "failed"


class BackupRequest(BaseModel):
    """Back up one logical database into a zip file."""

    model_config = ConfigDict(frozen=True)

    dbname: str                                 # logical (T-SQL) database to dump
    dest_file: Path                             # zip file to create
    bbf_db_name: str | None = None              # physical Babelfish database (default from config)


class RestoreRequest(BaseModel):
    """Restore a zip produced by a backup under a new logical name."""

    model_config = ConfigDict(frozen=True)

    zip_path: Path
    dest_dbname: str
    bbf_db_name: str | None = None


class PipelineResult(BaseModel):
    """Outcome of one pipeline run.

    ``stage`` is ``Stage.DONE`` on success, otherwise the stage that failed.
    ``error_type`` is the exception class name so callers can branch on
    the failure category without parsing ``error``.

    Example:
        >>> result = PipelineResult(success=False, stage=Stage.DUMPING,
        ...                         error="pg_dump exited 1", error_type="ProcessError")
        >>> result.failed_at
        'dumping'
    """

    success: bool
    stage: Stage = Stage.DONE
    error: str | None = None
    error_type: str | None = None
    warnings: list[str] = Field(default_factory=list)
    output: str = ""

    @property
    def failed_at(self) -> str | None:
        return None if self.success else self.stage.value

    @classmethod
    def failure(cls, stage: Stage, exc: BaseException, **kwargs) -> "PipelineResult":
        """Build a failed result from the exception raised during ``stage``."""
        return cls(
            success=False,
            stage=stage,
            error=str(exc),
            error_type=type(exc).__name__,
            **kwargs,
        )
