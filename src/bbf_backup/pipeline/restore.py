"""Restore pipeline: restore a backup zip under a new logical database name.

Stages:
    checking -> unpacking -> rewriting -> provisioning -> restoring
    -> [rollback] -> cleaning_up -> done

Nothing is modified before the checking stage has confirmed that the
destination name is valid and unused.  If a later stage fails, roles
created by this run are dropped again (best effort) and the temporary
directory is always removed.

Usage:
    from bbf_backup.pipeline.models import RestoreRequest
    from bbf_backup.pipeline.restore import run_restore

    result = await run_restore(
        descriptor,
        RestoreRequest(zip_path=Path("backups/acme.zip"), dest_dbname="bolt"),
        progress=print,
    )
"""

import asyncio
import logging
from pathlib import Path

from bbf_backup.adapters.base import DatabaseClient
from bbf_backup.adapters.postgres import list_databases
from bbf_backup.archive.packager import unpack
from bbf_backup.config.models import ConnectionDescriptor, ToolsConfig
from bbf_backup.errors import (
    BackupToolError,
    DatabaseError,
    FileAccessError,
    ProcessError,
    RoleRollbackError,
    ValidationError,
)
from bbf_backup.factory import ClientFactory, get_client
from bbf_backup.pipeline.backup import DEFAULT_BBF_DATABASE
from bbf_backup.pipeline.models import PipelineResult, RestoreRequest, Stage
from bbf_backup.pipeline.workdir import (
    ProgressSink,
    enter_stage,
    make_restore_dir,
    remove_tree,
    report,
    resolve_bbf_database,
)
from bbf_backup.process.commands import restore_command
from bbf_backup.process.runner import run_streamed
from bbf_backup.roles.provisioner import provision, rollback, validate_dbname
from bbf_backup.toc.models import TocHeader
from bbf_backup.toc.rewriter import rewrite_toc

logger = logging.getLogger(__name__)

TOC_FILENAME = "toc.dat"


async def check_destination(client: DatabaseClient, dest_dbname: str) -> None:
    """Fail unless ``dest_dbname`` is a valid, unused logical database name.

    Babelfish database names are case-insensitive, so ``Bolt`` collides
    with an existing ``bolt``.

    Raises:
        ValidationError: If the name is invalid or already taken.
        DatabaseError: If the database list cannot be read.
    """
    validate_dbname(dest_dbname)
    existing = await list_databases(client)
    if dest_dbname.lower() in {name.lower() for name in existing}:
        raise ValidationError(f"Database already exists: {dest_dbname}")


async def run_restore(
    descriptor: ConnectionDescriptor,
    request: RestoreRequest,
    tools: ToolsConfig | None = None,
    progress: ProgressSink | None = None,
    default_bbf_database: str = DEFAULT_BBF_DATABASE,
    client_factory: ClientFactory | None = None,
) -> PipelineResult:
    """Restore ``request.zip_path`` as logical database ``request.dest_dbname``.

    Args:
        descriptor: Server connection settings.
        request: Archive to restore and the new database name.
        tools: Tool locations (defaults when ``None``).
        progress: Sink for tool output and status lines.
        default_bbf_database: Used when neither the request nor the
            profile names the physical Babelfish database.
        client_factory: Builds the database client; defaults to
            ``factory.get_client``.

    Returns:
        ``PipelineResult``.  On failure ``stage`` names the failing
        stage; rollback and cleanup problems are listed in ``warnings``
        and never replace the primary error.
    """
    tools = tools or ToolsConfig()
    client_factory = client_factory or get_client
    bbf_db = resolve_bbf_database(request.bbf_db_name, descriptor, default_bbf_database)
    dest_dbname = request.dest_dbname
    zip_path = Path(request.zip_path)

    stage = enter_stage("Restore", Stage.CHECKING)
    work_dir: Path | None = None
    created_roles: list[str] = []
    output = ""
    client: DatabaseClient | None = None

    try:
        report(progress, f"Checking destination database: {dest_dbname}")
        client = client_factory(descriptor, bbf_db)
        await check_destination(client, dest_dbname)

        stage = enter_stage("Restore", Stage.UNPACKING)
        if not zip_path.is_file():
            raise FileAccessError("Backup file not found", zip_path)
        work_dir = make_restore_dir(zip_path)
        report(progress, f"Unpacking {zip_path}")
        top_level = await asyncio.to_thread(unpack, zip_path, work_dir, progress)
        dump_dir = work_dir / top_level

        stage = enter_stage("Restore", Stage.REWRITING)
        context = await asyncio.to_thread(
            rewrite_toc, dump_dir / TOC_FILENAME, dest_dbname, progress
        )
        if context.header is not None:
            _report_header(progress, context.header)

        stage = enter_stage("Restore", Stage.PROVISIONING)
        report(progress, f"Provisioning roles for {dest_dbname}")
        try:
            created_roles = await provision(client, dest_dbname)
        except DatabaseError as e:
            created_roles = list(getattr(e, "created_roles", []))
            raise
        if created_roles:
            report(progress, f"Created roles: {', '.join(created_roles)}")

        stage = enter_stage("Restore", Stage.RESTORING)
        logger.info("Restoring %s into %s on %s", zip_path, dest_dbname, descriptor.redacted())
        command = restore_command(descriptor, tools, bbf_db, dump_dir)
        report(progress, command.display())
        output = await asyncio.to_thread(
            run_streamed, command.program, command.args, command.env, progress
        )
        result = PipelineResult(success=True, output=output)
    except ProcessError as e:
        result = _failed(stage, e, e.output)
    except BackupToolError as e:
        result = _failed(stage, e, output)
    except Exception as e:
        logger.exception("Unexpected error during %s", stage.value)
        result = _failed(stage, e, output)

    try:
        if not result.success and created_roles and client is not None:
            enter_stage("Restore", Stage.ROLLBACK)
            report(progress, f"Rolling back roles: {', '.join(created_roles)}")
            await _rollback_roles(client, bbf_db, created_roles, result)
    finally:
        if client is not None:
            await _close_client(client, result)
        if work_dir is not None:
            enter_stage("Restore", Stage.CLEANING_UP)
            report(progress, f"Cleaning up {work_dir}")
            try:
                remove_tree(work_dir)
            except FileAccessError as e:
                logger.warning("Cleanup failed: %s", e)
                result.warnings.append(f"Cleanup failed: {e}")

    if result.success:
        report(progress, f"Restore complete: {dest_dbname}")
        logger.info("Restored %s as %s", zip_path, dest_dbname)
    return result


async def _rollback_roles(
    client: DatabaseClient, bbf_db: str, created_roles: list[str], result: PipelineResult
) -> None:
    try:
        await rollback(client, bbf_db, created_roles)
    except RoleRollbackError as e:
        logger.warning("Role rollback incomplete: %s", e)
        result.warnings.extend(
            f"Rollback failed for role {role}: {err}" for role, err in e.failures.items()
        )


async def _close_client(client: DatabaseClient, result: PipelineResult) -> None:
    try:
        await client.close()
    except Exception as e:
        logger.warning("Error closing database connection: %s", e)
        result.warnings.append(f"Error closing database connection: {e}")


def _report_header(progress: ProgressSink | None, header: TocHeader) -> None:
    created = header.created_at.isoformat(sep=" ") if header.created_at else "unknown"
    report(progress, f"Dump created: {created}")
    if header.dbname is not None:
        report(progress, f"Source database: {header.source_dbname}")
    if header.server_version is not None:
        report(progress, f"Server version: {header.server_version.decode(errors='replace')}")
    if header.dump_version is not None:
        report(progress, f"Dump version: {header.dump_version.decode(errors='replace')}")


def _failed(stage: Stage, exc: BaseException, output: str) -> PipelineResult:
    logger.error("Restore failed during %s: %s", stage.value, exc)
    return PipelineResult.failure(stage, exc, output=output)
