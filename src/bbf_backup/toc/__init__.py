"""Directory-format dump TOC: models, binary codec and identity rewriter.

Usage:
    from bbf_backup.toc import rewrite_toc, read_header, read_entry
"""

from bbf_backup.toc.codec import (
    copy_entry_count,
    copy_header,
    iter_entries,
    read_entry,
    read_entry_count,
    read_header,
    read_int,
    read_string_opt,
    write_entry,
    write_header,
    write_int,
    write_string_opt,
)
from bbf_backup.toc.models import TocEntry, TocHeader
from bbf_backup.toc.rewriter import (
    TRACKED_TABLES,
    RewriteContext,
    rewrite_entry,
    rewrite_field,
    rewrite_table_rows,
    rewrite_toc,
)

__all__ = [
    "TocEntry",
    "TocHeader",
    "RewriteContext",
    "TRACKED_TABLES",
    "copy_entry_count",
    "copy_header",
    "iter_entries",
    "read_entry",
    "read_entry_count",
    "read_header",
    "read_int",
    "read_string_opt",
    "write_entry",
    "write_header",
    "write_int",
    "write_string_opt",
    "rewrite_entry",
    "rewrite_field",
    "rewrite_table_rows",
    "rewrite_toc",
]
