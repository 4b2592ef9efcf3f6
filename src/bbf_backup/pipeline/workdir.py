"""Temporary working directories for pipeline runs.

Each run owns a directory created next to its input or output file, so
the dump never has to cross filesystems on its way into (or out of)
the zip.
"""

import logging
import shutil
import tempfile
import uuid
from collections.abc import Callable
from pathlib import Path

from bbf_backup.config.models import ConnectionDescriptor
from bbf_backup.errors import FileAccessError
from bbf_backup.pipeline.models import Stage

logger = logging.getLogger(__name__)

ProgressSink = Callable[[str], None]


def resolve_bbf_database(
    requested: str | None, descriptor: ConnectionDescriptor, default: str
) -> str:
    """Physical Babelfish database: request, then profile, then config default."""
    return requested or descriptor.database or default


def dump_dir_name(dest_file: Path) -> str:
    """Unique directory name derived from the backup file name.

    ``backup.zip`` -> ``backup_<hex>``; a name without an extension gets
    a ``_dir`` marker so the directory never shadows the file itself.
    """
    dest_file = Path(dest_file)
    stem = dest_file.stem if dest_file.suffix else f"{dest_file.name}_dir"
    return f"{stem}_{uuid.uuid4().hex}"


def prepare_dump_dir(dest_file: Path) -> Path:
    """Return a fresh, not-yet-existing dump directory next to ``dest_file``.

    pg_dump creates the directory itself and refuses to write into an
    existing one, so a leftover with the same name is removed first.

    Raises:
        FileAccessError: If the parent directory is missing or a leftover
            directory cannot be removed.
    """
    dest_file = Path(dest_file)
    parent = dest_file.parent
    if not parent.is_dir():
        raise FileAccessError("Destination directory does not exist", parent)
    dump_dir = parent / dump_dir_name(dest_file)
    if dump_dir.exists():
        remove_tree(dump_dir)
    if dump_dir.exists():
        raise FileAccessError("Error removing existing directory", dump_dir)
    return dump_dir


def make_restore_dir(zip_path: Path) -> Path:
    """Create an empty sibling directory of ``zip_path`` to unpack into.

    Raises:
        FileAccessError: If the directory cannot be created.
    """
    zip_path = Path(zip_path)
    try:
        return Path(
            tempfile.mkdtemp(prefix=f"{zip_path.stem}_restore_", dir=zip_path.parent)
        )
    except OSError as e:
        raise FileAccessError(f"Error creating temporary directory: {e}", zip_path.parent) from e


def remove_tree(path: Path) -> None:
    """Remove ``path`` recursively.

    Raises:
        FileAccessError: If anything could not be removed.
    """
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        return
    except OSError as e:
        raise FileAccessError(f"Error removing directory: {e}", path) from e
    logger.debug("Removed %s", path)


def report(progress: ProgressSink | None, line: str) -> None:
    if progress is not None:
        progress(line)


def enter_stage(pipeline: str, stage: Stage) -> Stage:
    """Log the transition of ``pipeline`` into ``stage`` and return it."""
    logger.info("%s stage: %s", pipeline, stage.value)
    return stage
