"""Backup pipeline: dump one logical database and package it as a zip.

Stages: preparing -> dumping -> packaging -> done.  A failure in any
stage ends the run; the result says which stage failed.

Usage:
    from bbf_backup.pipeline.backup import run_backup
    from bbf_backup.pipeline.models import BackupRequest

    result = await run_backup(
        descriptor,
        BackupRequest(dbname="acme", dest_file=Path("backups/acme.zip")),
        progress=print,
    )
    if not result.success:
        print(f"{result.error_type}: {result.error}")
"""

import asyncio
import logging
from pathlib import Path

from bbf_backup.archive.packager import pack
from bbf_backup.config.models import ConnectionDescriptor, ToolsConfig
from bbf_backup.errors import BackupToolError, FileAccessError, ProcessError
from bbf_backup.pipeline.models import BackupRequest, PipelineResult, Stage
from bbf_backup.pipeline.workdir import (
    ProgressSink,
    enter_stage,
    prepare_dump_dir,
    remove_tree,
    report,
    resolve_bbf_database,
)
from bbf_backup.process.commands import dump_command
from bbf_backup.process.runner import run_streamed

logger = logging.getLogger(__name__)

DEFAULT_BBF_DATABASE = "babelfish_db"

_FAILURE_LABELS = {
    Stage.PREPARING: "Preparation failed",
    Stage.DUMPING: "Dump failed",
    Stage.PACKAGING: "Packaging failed",
}


async def run_backup(
    descriptor: ConnectionDescriptor,
    request: BackupRequest,
    tools: ToolsConfig | None = None,
    progress: ProgressSink | None = None,
    default_bbf_database: str = DEFAULT_BBF_DATABASE,
) -> PipelineResult:
    """Dump ``request.dbname`` and write it to ``request.dest_file``.

    The dump is written to a uniquely named directory next to the
    destination, zipped (stored, uncompressed) and then removed.  The
    directory is also removed after a failed dump or packaging step;
    failing to remove it only adds a warning.

    Args:
        descriptor: Server connection settings.
        request: Database to dump and zip file to create.
        tools: Tool locations and pacing (defaults when ``None``).
        progress: Sink for tool output and status lines.
        default_bbf_database: Used when neither the request nor the
            profile names the physical Babelfish database.

    Returns:
        ``PipelineResult``; never raises for pipeline failures.
    """
    tools = tools or ToolsConfig()
    bbf_db = resolve_bbf_database(request.bbf_db_name, descriptor, default_bbf_database)
    dest_file = Path(request.dest_file)

    stage = enter_stage("Backup", Stage.PREPARING)
    dump_dir: Path | None = None
    output = ""
    result: PipelineResult | None = None
    try:
        dump_dir = prepare_dump_dir(dest_file)

        stage = enter_stage("Backup", Stage.DUMPING)
        logger.info("Dumping %s from %s (%s)", request.dbname, descriptor.redacted(), bbf_db)
        command = dump_command(descriptor, tools, bbf_db, request.dbname, dump_dir)
        report(progress, command.display())
        output = await asyncio.to_thread(
            run_streamed, command.program, command.args, command.env, progress
        )

        stage = enter_stage("Backup", Stage.PACKAGING)
        report(progress, f"Packaging {dump_dir.name} into {dest_file}")
        await asyncio.to_thread(pack, dump_dir, dest_file, 0, progress)

        result = PipelineResult(success=True, output=output)
    except ProcessError as e:
        result = _failed(stage, e, e.output)
    except BackupToolError as e:
        result = _failed(stage, e, output)
    except Exception as e:
        logger.exception("Unexpected error during %s", stage.value)
        result = _failed(stage, e, output)

    if dump_dir is not None and dump_dir.exists():
        enter_stage("Backup", Stage.CLEANING_UP)
        try:
            remove_tree(dump_dir)
        except FileAccessError as e:
            logger.warning("%s", e)
            result.warnings.append(str(e))

    if result.success:
        report(progress, f"Backup complete: {dest_file}")
        logger.info("Backup of %s written to %s", request.dbname, dest_file)
    return result


def _failed(stage: Stage, exc: BaseException, output: str) -> PipelineResult:
    logger.error("%s: %s", _FAILURE_LABELS.get(stage, stage.value), exc)
    result = PipelineResult.failure(stage, exc, output=output)
    result.error = f"{_FAILURE_LABELS.get(stage, 'Backup failed')}: {result.error}"
    return result
