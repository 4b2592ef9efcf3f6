"""Binary reader/writer for the directory-format ``toc.dat`` file.

Layout (all integers use the 5-byte encoding below):

    header:  "PGDMP" | vmaj vmin vrev | intsize offsize format
             | compression | 7 x timestamp int
             | dbname | server version | dump version
    count:   number of entries
    entry:   dump_id | had_dumper | table_oid | catalog_oid | tag
             | description | section | definition | drop_stmt
             | copy_stmt | namespace | tablespace | table_am | owner
             | table_with_oids | dependency* | <-1 terminator> | filename

Integer: one sign byte (0 = non-negative, 1 = negative) followed by
the magnitude as 4 little-endian bytes.  Optional string: an integer
length (-1 = absent, 0 = empty) followed by that many raw bytes.

Every field is re-encoded from what was read, so a read/write pass with
no modifications reproduces the input byte for byte.
"""

from collections.abc import Iterator
from typing import BinaryIO

from bbf_backup.errors import FormatError
from bbf_backup.toc.models import TocEntry, TocHeader

MAGIC = b"PGDMP"
SUPPORTED_VERSION = (1, 14)
INT_SIZE = 4
OFFSET_SIZE = 8
ARCHIVE_FORMAT = 3

_MAX_MAGNITUDE = (1 << (8 * INT_SIZE)) - 1


# ----------------------------------------------------------------------
# Primitives
# ----------------------------------------------------------------------


def _read_exact(reader: BinaryIO, size: int, what: str) -> bytes:
    data = reader.read(size)
    if len(data) != size:
        raise FormatError(
            f"Unexpected end of file reading {what}: expected {size} bytes, got {len(data)}"
        )
    return data


def _read_signed(reader: BinaryIO) -> tuple[int, bool]:
    """Read one integer; the flag is set for a sign byte of 1 with magnitude 0."""
    buf = _read_exact(reader, 1 + INT_SIZE, "integer")
    value = int.from_bytes(buf[1:], "little")
    negative = bool(buf[0])
    return (-value if negative else value), negative and value == 0


def read_int(reader: BinaryIO) -> int:
    """Read one 5-byte signed integer."""
    return _read_signed(reader)[0]


def write_int(writer: BinaryIO, value: int, negative_zero: bool = False) -> None:
    """Write one 5-byte signed integer.

    Args:
        writer: Output stream.
        value: Integer to encode.
        negative_zero: Set the sign byte when ``value`` is 0, reproducing
            a zero that was read with its sign byte set.

    Raises:
        FormatError: If the magnitude does not fit in 4 bytes.
    """
    magnitude = -value if value < 0 else value
    if magnitude > _MAX_MAGNITUDE:
        raise FormatError(f"Integer out of range for TOC encoding: {value}")
    negative = value < 0 or (negative_zero and value == 0)
    writer.write(bytes([1 if negative else 0]) + magnitude.to_bytes(INT_SIZE, "little"))


def _read_string_signed(reader: BinaryIO) -> tuple[bytes | None, bool]:
    length, negative_zero = _read_signed(reader)
    if length < 0:
        return None, False
    if length == 0:
        return b"", negative_zero
    return _read_exact(reader, length, "string"), False


def read_string_opt(reader: BinaryIO) -> bytes | None:
    """Read a length-prefixed optional string (negative length = absent)."""
    return _read_string_signed(reader)[0]


def write_string_opt(
    writer: BinaryIO, value: bytes | None, negative_zero: bool = False
) -> None:
    """Write an optional string; ``None`` is encoded as length -1."""
    if value is None:
        write_int(writer, -1)
        return
    write_int(writer, len(value), negative_zero)
    writer.write(value)


class _FieldReader:
    """Read named fields in order, noting those stored as negative zero."""

    def __init__(self, reader: BinaryIO) -> None:
        self._reader = reader
        self.negative_zero: set[str] = set()

    def integer(self, name: str) -> int:
        value, negative_zero = _read_signed(self._reader)
        if negative_zero:
            self.negative_zero.add(name)
        return value

    def string(self, name: str) -> bytes | None:
        value, negative_zero = _read_string_signed(self._reader)
        if negative_zero:
            self.negative_zero.add(name)
        return value



# ----------------------------------------------------------------------
# Header
# ----------------------------------------------------------------------


def read_header(reader: BinaryIO) -> TocHeader:
    """Read and validate the TOC header.

    Raises:
        FormatError: Naming the failed check (magic, version, int size,
            offset size, format) or a truncated header.
    """
    magic = _read_exact(reader, 5, "magic")
    if magic != MAGIC:
        raise FormatError("Magic check failure")

    vmaj, vmin, vrev = _read_exact(reader, 3, "version")
    if (vmaj, vmin) != SUPPORTED_VERSION:
        raise FormatError(
            f"Version check failure: {vmaj}.{vmin}.{vrev}, "
            f"expected {SUPPORTED_VERSION[0]}.{SUPPORTED_VERSION[1]}"
        )

    int_size, offset_size, archive_format = _read_exact(reader, 3, "flags")
    if int_size != INT_SIZE:
        raise FormatError(f"Int size check failed: {int_size}, expected {INT_SIZE}")
    if offset_size != OFFSET_SIZE:
        raise FormatError(f"Offset check failed: {offset_size}, expected {OFFSET_SIZE}")
    if archive_format != ARCHIVE_FORMAT:
        raise FormatError(f"Format check failed: {archive_format}, expected {ARCHIVE_FORMAT}")

    fields = _FieldReader(reader)
    compression = fields.integer("compression")
    timestamp = tuple(fields.integer(f"timestamp.{i}") for i in range(7))
    return TocHeader(
        magic=magic,
        version=(vmaj, vmin, vrev),
        int_size=int_size,
        offset_size=offset_size,
        archive_format=archive_format,
        compression=compression,
        timestamp=timestamp,
        dbname=fields.string("dbname"),
        server_version=fields.string("server_version"),
        dump_version=fields.string("dump_version"),
        negative_zero=frozenset(fields.negative_zero),
    )


def write_header(writer: BinaryIO, header: TocHeader) -> None:
    neg = header.negative_zero
    writer.write(header.magic)
    writer.write(bytes(header.version))
    writer.write(bytes([header.int_size, header.offset_size, header.archive_format]))
    write_int(writer, header.compression, "compression" in neg)
    for i, value in enumerate(header.timestamp):
        write_int(writer, value, f"timestamp.{i}" in neg)
    write_string_opt(writer, header.dbname, "dbname" in neg)
    write_string_opt(writer, header.server_version, "server_version" in neg)
    write_string_opt(writer, header.dump_version, "dump_version" in neg)


def copy_header(reader: BinaryIO, writer: BinaryIO) -> TocHeader:
    """Validate the header from ``reader`` and write it unchanged to ``writer``."""
    header = read_header(reader)
    write_header(writer, header)
    return header


# ----------------------------------------------------------------------
# Entries
# ----------------------------------------------------------------------

_ENTRY_INTS = ("dump_id", "had_dumper")
_ENTRY_STRINGS_BEFORE_SECTION = ("table_oid", "catalog_oid", "tag", "description")
_ENTRY_STRINGS_AFTER_SECTION = (
    "definition",
    "drop_stmt",
    "copy_stmt",
    "namespace",
    "tablespace",
    "table_am",
    "owner",
    "table_with_oids",
)


def read_entry(reader: BinaryIO) -> TocEntry:
    """Read one TOC entry."""
    fields = _FieldReader(reader)
    values: dict = {name: fields.integer(name) for name in _ENTRY_INTS}
    values.update((name, fields.string(name)) for name in _ENTRY_STRINGS_BEFORE_SECTION)
    values["section"] = fields.integer("section")
    values.update((name, fields.string(name)) for name in _ENTRY_STRINGS_AFTER_SECTION)

    dependencies: list[bytes] = []
    while True:
        dep = fields.string(f"dependencies.{len(dependencies)}")
        if dep is None:
            break
        dependencies.append(dep)

    values["filename"] = fields.string("filename")
    return TocEntry(
        **values,
        dependencies=dependencies,
        negative_zero=frozenset(fields.negative_zero),
    )


def write_entry(writer: BinaryIO, entry: TocEntry) -> None:
    """Write one TOC entry, including the dependency-list terminator."""
    neg = entry.negative_zero
    for name in _ENTRY_INTS:
        write_int(writer, getattr(entry, name), name in neg)
    for name in _ENTRY_STRINGS_BEFORE_SECTION:
        write_string_opt(writer, getattr(entry, name), name in neg)
    write_int(writer, entry.section, "section" in neg)
    for name in _ENTRY_STRINGS_AFTER_SECTION:
        write_string_opt(writer, getattr(entry, name), name in neg)
    for i, dep in enumerate(entry.dependencies):
        write_string_opt(writer, dep, f"dependencies.{i}" in neg)
    write_string_opt(writer, None)
    write_string_opt(writer, entry.filename, "filename" in neg)


def read_entry_count(reader: BinaryIO) -> int:
    count = read_int(reader)
    if count < 0:
        raise FormatError(f"Invalid TOC entry count: {count}")
    return count


def copy_entry_count(reader: BinaryIO, writer: BinaryIO) -> int:
    """Validate the entry count from ``reader`` and write it unchanged to ``writer``."""
    count, negative_zero = _read_signed(reader)
    if count < 0:
        raise FormatError(f"Invalid TOC entry count: {count}")
    write_int(writer, count, negative_zero)
    return count


def iter_entries(reader: BinaryIO, count: int) -> Iterator[TocEntry]:
    """Yield ``count`` entries one at a time; nothing is accumulated."""
    for _ in range(count):
        yield read_entry(reader)
