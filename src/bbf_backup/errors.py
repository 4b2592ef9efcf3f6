"""Exception hierarchy shared by every pipeline component.

Each class maps to one failure category of the backup/restore pipelines.
Pipelines convert these into a ``PipelineResult`` whose ``error_type``
carries the class name, so callers can tell a malformed archive from a
failed ``pg_restore`` run without parsing message text.

Usage:
    from bbf_backup.errors import FormatError, ProcessError

    try:
        rewrite_toc(toc_path, "bolt")
    except FormatError as e:
        print(f"Not a usable dump: {e}")
"""

from pathlib import Path


class BackupToolError(Exception):
    """Base class for all errors raised by bbf-backup."""

    pass


class FormatError(BackupToolError):
    """Raised when a TOC file fails a header check or is truncated."""

    pass


class FileAccessError(BackupToolError):
    """Raised when a file or directory cannot be read, written or removed.

    Args:
        message: Human-readable description.
        path: The path being accessed, when known.
    """

    def __init__(self, message: str, path: str | Path | None = None) -> None:
        self.path = Path(path) if path is not None else None
        if path is not None:
            message = f"{message}, path: {path}"
        super().__init__(message)


class ProcessError(BackupToolError):
    """Raised when an external tool cannot be spawned or exits non-zero.

    Args:
        program: Executable that was run.
        exit_code: Process exit status, ``None`` if the spawn itself failed.
        output: Combined stdout/stderr captured before the failure.
        message: Optional override for the leading message line.
    """

    def __init__(
        self,
        program: str,
        exit_code: int | None,
        output: str = "",
        message: str | None = None,
    ) -> None:
        self.program = program
        self.exit_code = exit_code
        self.output = output
        if message is None:
            if exit_code is None:
                message = f"Error spawning process: {program}"
            else:
                message = f"Process error, program: {program}, status code: {exit_code}"
        if output:
            message = f"{message}\n\noutput:\n{output}"
        super().__init__(message)


class DatabaseError(BackupToolError):
    """Raised when a connection, query or statement fails."""

    pass


class RoleRollbackError(DatabaseError):
    """Raised after a best-effort rollback when some roles could not be dropped.

    Args:
        failures: Mapping of role name to the error message of its failed drop.
    """

    def __init__(self, failures: dict[str, str]) -> None:
        self.failures = dict(failures)
        details = "; ".join(f"{role}: {err}" for role, err in self.failures.items())
        super().__init__(f"Failed to drop {len(self.failures)} role(s): {details}")


class ValidationError(BackupToolError):
    """Raised by proactive checks made before anything is modified."""

    pass


class ProfileNotFoundError(BackupToolError):
    """Raised when no connection profile is configured."""

    pass
