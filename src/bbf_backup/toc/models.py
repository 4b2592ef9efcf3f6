"""Models for the header and entries of a directory-format dump TOC.

String fields hold raw ``bytes`` so values are written back exactly as
read.  ``None`` and ``b""`` are different values: an absent field is
encoded with length -1, an empty one with length 0.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class TocHeader(BaseModel):
    """Header of ``toc.dat``: format checks, timestamp and version strings."""

    magic: bytes
    version: tuple[int, int, int]           # major, minor, revision
    int_size: int
    offset_size: int
    archive_format: int
    compression: int
    timestamp: tuple[int, int, int, int, int, int, int]  # sec, min, hour, mday, mon-1, year-1900, isdst
    dbname: bytes | None = None
    server_version: bytes | None = None
    dump_version: bytes | None = None
    # Fields stored as zero with the sign byte set; written back the same way.
    negative_zero: frozenset[str] = frozenset()

    @property
    def created_at(self) -> datetime | None:
        """Dump creation time, or ``None`` if the stored fields are not a valid date."""
        sec, minute, hour, day, month, year, _is_dst = self.timestamp
        try:
            return datetime(year + 1900, month + 1, day, hour, minute, sec)
        except ValueError:
            return None

    @property
    def source_dbname(self) -> str:
        return _text(self.dbname)


class TocEntry(BaseModel):
    """One catalog object listed in the TOC."""

    dump_id: int
    had_dumper: int
    table_oid: bytes | None = None
    catalog_oid: bytes | None = None
    tag: bytes | None = None
    description: bytes | None = None
    section: int = 0
    definition: bytes | None = None
    drop_stmt: bytes | None = None
    copy_stmt: bytes | None = None
    namespace: bytes | None = None
    tablespace: bytes | None = None
    table_am: bytes | None = None
    owner: bytes | None = None
    table_with_oids: bytes | None = None
    dependencies: list[bytes] = Field(default_factory=list)
    filename: bytes | None = None
    negative_zero: frozenset[str] = frozenset()

    @property
    def tag_text(self) -> str:
        return _text(self.tag)

    @property
    def description_text(self) -> str:
        return _text(self.description)

    @property
    def filename_text(self) -> str:
        return _text(self.filename)


def _text(value: bytes | None) -> str:
    """Decode an optional field for comparisons and display ("" when absent)."""
    if value is None:
        return ""
    return value.decode("utf-8", errors="replace")
