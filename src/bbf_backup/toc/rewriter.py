"""Retarget a captured Babelfish database to a new logical name.

A dump of logical database ``acme`` refers to it through three derived
identifiers: ``acme_dbo`` (schema and role), ``acme_db_owner`` and
``acme_guest``.  Restoring under the name ``bolt`` means rewriting
those identifiers in selected TOC entry fields and in the data of four
Babelfish catalog tables.

The original name is discovered during the pass from the entry whose
description is ``SCHEMA`` and whose tag ends in ``_dbo``.

Usage:
    from bbf_backup.toc.rewriter import rewrite_toc

    context = rewrite_toc(Path("/tmp/restore/acme_dump/toc.dat"), "bolt")
    print(context.orig_dbname)   # "acme"
"""

import gzip
import logging
import os
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO

from bbf_backup.errors import FileAccessError, FormatError
from bbf_backup.toc.codec import (
    copy_entry_count,
    copy_header,
    iter_entries,
    write_entry,
)
from bbf_backup.toc.models import TocEntry, TocHeader

logger = logging.getLogger(__name__)

ROLE_SUFFIXES = ("dbo", "db_owner", "guest")

# Catalog tables whose row data embeds the database name
TRACKED_TABLES = (
    "babelfish_authid_user_ext",
    "babelfish_function_ext",
    "babelfish_namespace_ext",
    "babelfish_sysdatabases",
)

ORIG_SUFFIX = ".orig"
REWRITTEN_SUFFIX = ".rewritten"

_IDENT_CHARS = rb"A-Za-z0-9_$"

ProgressSink = Callable[[str], None]


@dataclass
class RewriteContext:
    """State accumulated while scanning entries."""

    new_dbname: str
    orig_dbname: str = ""
    table_files: dict[str, str] = field(default_factory=dict)
    header: TocHeader | None = None
    entry_count: int = 0

    def observe(self, entry: TocEntry) -> None:
        """Record the original name and tracked-table data files from ``entry``."""
        tag = entry.tag_text
        is_schema = entry.description_text == "SCHEMA"
        if not self.orig_dbname and is_schema and tag.endswith("_dbo"):
            self.orig_dbname = tag[: -len("_dbo")]
            logger.info("Original database name: %s", self.orig_dbname)
        if tag in TRACKED_TABLES and entry.filename_text:
            self.table_files[tag] = entry.filename_text


# ----------------------------------------------------------------------
# Field rewriting
# ----------------------------------------------------------------------


def _role_declaration_tags(orig_dbname: str) -> set[bytes]:
    names = [f"{orig_dbname}_{suffix}" for suffix in ROLE_SUFFIXES]
    return {n.encode() for n in names} | {f"SCHEMA {n}".encode() for n in names}


def _token_pattern(orig_dbname: str, qualified: bool) -> re.Pattern[bytes]:
    """Match the derived identifiers as whole tokens.

    Bare form: not followed by an identifier character or a dot.
    Qualified form additionally matches when followed by a dot, as in
    ``acme_dbo.some_table``.
    """
    # Longest first so "acme_db_owner" is never split
    tokens = sorted(
        (re.escape(f"{orig_dbname}_{s}".encode()) for s in ROLE_SUFFIXES),
        key=len,
        reverse=True,
    )
    alternation = b"|".join(tokens)
    stop = _IDENT_CHARS if qualified else _IDENT_CHARS + rb"."
    follow = rb"(?![" + stop + rb"])"
    return re.compile(rb"(?<![" + _IDENT_CHARS + rb"])(" + alternation + rb")" + follow)


def rewrite_field(
    value: bytes | None,
    orig_dbname: str,
    new_dbname: str,
    can_qualify: bool,
    tag: bytes | None = None,
) -> bytes | None:
    """Replace the derived identifiers of ``orig_dbname`` in one field.

    Args:
        value: Field value; ``None`` stays ``None``.
        orig_dbname: Database name the dump was taken from.
        new_dbname: Database name to restore under.
        can_qualify: Also rewrite dot-qualified references
            (``acme_dbo.t`` -> ``bolt_dbo.t``).
        tag: Current tag of the owning entry.  When it is one of the role
            names themselves (or ``SCHEMA <role>``) only bare tokens are
            rewritten.

    Returns:
        The rewritten value; identical bytes when nothing matched.
    """
    if value is None or not orig_dbname:
        return value
    qualified = can_qualify and tag not in _role_declaration_tags(orig_dbname)
    pattern = _token_pattern(orig_dbname, qualified)
    prefix = orig_dbname.encode()
    replacement = new_dbname.encode()
    return pattern.sub(lambda m: replacement + m.group(1)[len(prefix):], value)


def rewrite_entry(entry: TocEntry, orig_dbname: str, new_dbname: str) -> TocEntry:
    """Return ``entry`` with its identity fields rewritten.

    Order matters: each step reads the entry's current tag, so the tag
    is rewritten last.
    """
    if not orig_dbname:
        return entry
    tag = entry.tag
    updates = {
        "definition": rewrite_field(entry.definition, orig_dbname, new_dbname, True, tag),
        "copy_stmt": rewrite_field(entry.copy_stmt, orig_dbname, new_dbname, True, tag),
        "drop_stmt": rewrite_field(entry.drop_stmt, orig_dbname, new_dbname, True, tag),
        "namespace": rewrite_field(entry.namespace, orig_dbname, new_dbname, False, tag),
        "owner": rewrite_field(entry.owner, orig_dbname, new_dbname, False, tag),
    }
    # last
    updates["tag"] = rewrite_field(tag, orig_dbname, new_dbname, False, tag)
    return entry.model_copy(update=updates)


# ----------------------------------------------------------------------
# Catalog table data
# ----------------------------------------------------------------------


def _rewrite_row(line: bytes, orig: bytes, new: bytes) -> bytes:
    if line.endswith(b"\n"):
        body, newline = line[:-1], b"\n"
    else:
        body, newline = line, b""
    parts = [
        part.replace(orig, new) if part.startswith(orig) else part
        for part in body.split(b"\t")
    ]
    return b"\t".join(parts) + newline


def _open_data(path: Path, mode: str, compressed: bool) -> BinaryIO:
    if compressed:
        return gzip.open(path, mode)
    return open(path, mode)


def rewrite_table_rows(
    directory: Path, filename: str, orig_dbname: str, new_dbname: str
) -> None:
    """Rewrite one tab-separated catalog data file in place.

    Each field that starts with ``orig_dbname`` has every occurrence of
    it replaced with ``new_dbname``.  Output goes to a temporary file;
    the original is kept with an ``.orig`` suffix and the temporary file
    is renamed into its place.  A gzip-compressed ``<filename>.gz`` is
    handled when the plain file does not exist.

    Raises:
        FileAccessError: If the data file is missing or cannot be rewritten.
    """
    directory = Path(directory)
    src = directory / filename
    if not src.exists() and (directory / f"{filename}.gz").exists():
        src = directory / f"{filename}.gz"
    if not src.exists():
        raise FileAccessError("Table data file not found", src)

    tmp = src.with_name(src.name + REWRITTEN_SUFFIX)
    orig = orig_dbname.encode()
    new = new_dbname.encode()
    compressed = src.suffix == ".gz"
    try:
        with _open_data(src, "rb", compressed) as reader:
            with _open_data(tmp, "wb", compressed) as writer:
                for line in reader:
                    writer.write(_rewrite_row(line, orig, new))
        os.replace(src, src.with_name(src.name + ORIG_SUFFIX))
        os.replace(tmp, src)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        raise FileAccessError(f"Error rewriting table data: {e}", src) from e
    logger.debug("Rewrote table data %s", src)


def rewrite_tracked_tables(directory: Path, context: RewriteContext) -> None:
    """Rewrite the four tracked catalog tables recorded in ``context``.

    Raises:
        FormatError: If one of the tracked tables has no data file in the TOC.
    """
    # All mappings are checked before any file is touched
    for table in TRACKED_TABLES:
        if not context.table_files.get(table):
            raise FormatError(f"Table not found: {table}")
    for table in TRACKED_TABLES:
        rewrite_table_rows(
            directory, context.table_files[table], context.orig_dbname, context.new_dbname
        )


# ----------------------------------------------------------------------
# TOC pass
# ----------------------------------------------------------------------


def rewrite_toc(
    toc_path: Path,
    new_dbname: str,
    progress: ProgressSink | None = None,
) -> RewriteContext:
    """Rewrite ``toc.dat`` and the tracked table data for ``new_dbname``.

    Single streaming pass: the header and entry count are copied, then
    each entry is read, inspected, rewritten and written before the next
    one is read.  When the pass completes the tracked table files in the
    same directory are rewritten, the original TOC is kept as
    ``toc.dat.orig`` and the rewritten file is renamed into place.

    If no ``SCHEMA`` entry tagged ``<name>_dbo`` is found, every entry is
    copied unchanged and the table data is left alone.

    Args:
        toc_path: Path to ``toc.dat`` inside an unpacked dump directory.
        new_dbname: Logical database name to restore under.
        progress: Optional sink for human-readable status lines.

    Returns:
        The ``RewriteContext`` built during the pass.

    Raises:
        FormatError: On header check failure, truncation, or a missing
            tracked table.
        FileAccessError: If files cannot be read, written or renamed.
    """
    toc_path = Path(toc_path)
    directory = toc_path.parent
    tmp_path = toc_path.with_name(toc_path.name + REWRITTEN_SUFFIX)
    context = RewriteContext(new_dbname=new_dbname)

    try:
        with open(toc_path, "rb") as reader, open(tmp_path, "wb") as writer:
            context.header = copy_header(reader, writer)
            context.entry_count = copy_entry_count(reader, writer)
            for entry in iter_entries(reader, context.entry_count):
                context.observe(entry)
                write_entry(writer, rewrite_entry(entry, context.orig_dbname, new_dbname))
    except FormatError:
        tmp_path.unlink(missing_ok=True)
        raise
    except OSError as e:
        tmp_path.unlink(missing_ok=True)
        raise FileAccessError(f"Error rewriting TOC: {e}", toc_path) from e

    _report(progress, f"TOC entries: {context.entry_count}")
    if context.orig_dbname:
        _report(progress, f"Renaming database: {context.orig_dbname} -> {new_dbname}")
        try:
            rewrite_tracked_tables(directory, context)
        except (FormatError, FileAccessError):
            tmp_path.unlink(missing_ok=True)
            raise
    else:
        _report(progress, "Original database name not found, TOC copied unchanged")

    try:
        os.replace(toc_path, toc_path.with_name(toc_path.name + ORIG_SUFFIX))
        os.replace(tmp_path, toc_path)
    except OSError as e:
        raise FileAccessError(f"Error replacing TOC: {e}", toc_path) from e
    logger.info("Rewrote %s (%d entries)", toc_path, context.entry_count)
    return context


def _report(progress: ProgressSink | None, line: str) -> None:
    if progress is not None:
        progress(line)
