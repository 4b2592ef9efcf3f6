"""Directory <-> zip packaging for dump directories.

Archives are always written with the ``stored`` method.  Entry names
are relative to the *parent* of the packed directory, so the archive
root is the directory's own basename and unpacking recreates it.

Usage:
    from bbf_backup.archive.packager import pack, unpack

    pack(Path("work/mydb_20240101"), Path("work/backup.zip"))
    top = unpack(Path("elsewhere/backup.zip"), Path("elsewhere"))
    # top == "mydb_20240101"
"""

import logging
import os
import zipfile
from collections.abc import Callable
from pathlib import Path, PurePosixPath

from bbf_backup.errors import FileAccessError, ValidationError

logger = logging.getLogger(__name__)

ProgressSink = Callable[[str], None]


def pack(
    source_dir: Path,
    dest_zip: Path,
    compression_level: int = 0,
    progress: ProgressSink | None = None,
) -> None:
    """Write ``source_dir`` recursively into a new zip file.

    Files and directories are added in sorted walk order.  Directories
    are written as explicit entries (except the root) because some
    unzip tools do not recreate them from file paths alone.  The source
    directory is left in place; the caller removes it.

    Args:
        source_dir: Directory to pack.
        dest_zip: Zip file to create (overwritten if present).
        compression_level: Only ``0`` (stored) is supported.
        progress: Optional sink receiving each entry name as it is written.

    Raises:
        ValidationError: If ``compression_level`` is not 0.
        FileAccessError: If ``source_dir`` is not a directory or a file
            cannot be read or written.
    """
    if compression_level != 0:
        raise ValidationError(
            f"Unsupported zip compression level: {compression_level} (only 0, stored)"
        )
    source_dir = Path(source_dir)
    if not source_dir.is_dir():
        raise FileAccessError("Source is not a directory", source_dir)

    base = source_dir.parent
    try:
        with zipfile.ZipFile(dest_zip, "w", compression=zipfile.ZIP_STORED) as archive:
            for root, dirs, files in os.walk(source_dir):
                dirs.sort()
                root_path = Path(root)
                if root_path != source_dir:
                    arcname = root_path.relative_to(base).as_posix() + "/"
                    archive.write(root_path, arcname)
                    _report(progress, arcname)
                for name in sorted(files):
                    file_path = root_path / name
                    if not file_path.is_file():
                        continue
                    arcname = file_path.relative_to(base).as_posix()
                    archive.write(file_path, arcname)
                    _report(progress, arcname)
    except OSError as e:
        raise FileAccessError(f"Error writing zip archive: {e}", dest_zip) from e

    logger.info("Packed %s into %s", source_dir, dest_zip)


def unpack(
    zip_path: Path,
    dest_parent_dir: Path,
    progress: ProgressSink | None = None,
) -> str:
    """Extract ``zip_path`` into ``dest_parent_dir``.

    Args:
        zip_path: Archive to extract.
        dest_parent_dir: Directory that receives the archive's top-level
            directory.
        progress: Optional sink receiving each extracted path.

    Returns:
        Name of the single top-level directory found in the archive.

    Raises:
        FileAccessError: If the archive cannot be read, has no single
            top-level directory, or contains members that would land
            outside ``dest_parent_dir``.
    """
    dest_parent_dir = Path(dest_parent_dir)
    try:
        with zipfile.ZipFile(zip_path) as archive:
            members = archive.infolist()
            top_level = _top_level_name(members, zip_path)
            for info in members:
                target = dest_parent_dir / info.filename
                archive.extract(info, dest_parent_dir)
                _report(progress, str(target))
    except zipfile.BadZipFile as e:
        raise FileAccessError(f"Not a zip archive: {e}", zip_path) from e
    except OSError as e:
        raise FileAccessError(f"Unzip error: {e}", zip_path) from e

    logger.info("Unpacked %s into %s", zip_path, dest_parent_dir / top_level)
    return top_level


def _top_level_name(members: list[zipfile.ZipInfo], zip_path: Path) -> str:
    """Return the single top-level directory shared by all members."""
    names: set[str] = set()
    for info in members:
        member = PurePosixPath(info.filename.replace("\\", "/"))
        if member.is_absolute() or ".." in member.parts or not member.parts:
            raise FileAccessError(f"Unsafe archive member: {info.filename}", zip_path)
        # A lone file at the root has no directory to restore from
        if len(member.parts) == 1 and not info.is_dir():
            raise FileAccessError(
                f"Archive member outside top-level directory: {info.filename}", zip_path
            )
        names.add(member.parts[0])

    if len(names) != 1:
        found = ", ".join(sorted(names)) or "(empty archive)"
        raise FileAccessError(
            f"Expected exactly one top-level directory, found: {found}", zip_path
        )
    return names.pop()


def _report(progress: ProgressSink | None, line: str) -> None:
    if progress is not None:
        progress(line)
