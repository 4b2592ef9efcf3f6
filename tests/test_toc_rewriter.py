"""Tests for retargeting a dump to a new logical database name."""

import gzip
from pathlib import Path

import pytest

from bbf_backup.errors import FileAccessError, FormatError
from bbf_backup.toc.codec import iter_entries, read_entry_count, read_header
from bbf_backup.toc.rewriter import (
    TRACKED_TABLES,
    rewrite_entry,
    rewrite_field,
    rewrite_table_rows,
    rewrite_toc,
)
from toc_builder import build_dump, grant_entry, schema_entry, table_entry, table_row


def _read_entries(toc_path: Path):
    with open(toc_path, "rb") as reader:
        read_header(reader)
        return list(iter_entries(reader, read_entry_count(reader)))


# ============================================================================
# rewrite_field
# ============================================================================


class TestRewriteField:
    """Token matching for the derived identifiers."""

    def test_bare_tokens(self) -> None:
        """All three derived names are replaced."""
        value = b"GRANT acme_guest TO acme_dbo; ALTER ROLE acme_db_owner"
        assert rewrite_field(value, "acme", "bolt", False) == (
            b"GRANT bolt_guest TO bolt_dbo; ALTER ROLE bolt_db_owner"
        )

    def test_qualified_reference(self) -> None:
        """Dot-qualified references are rewritten when qualification is allowed."""
        value = b"SELECT * FROM acme_dbo.sometable"
        result = rewrite_field(value, "acme", "bolt", True, tag=b"v_customers")
        assert result == b"SELECT * FROM bolt_dbo.sometable"

    def test_qualified_reference_ignored_when_not_eligible(self) -> None:
        """Without qualification only bare tokens change."""
        value = b"acme_dbo.sometable acme_dbo"
        assert rewrite_field(value, "acme", "bolt", False) == b"acme_dbo.sometable bolt_dbo"

    def test_role_tag_stays_bare(self) -> None:
        """A tag equal to a role name is rewritten without a trailing dot."""
        assert rewrite_field(b"acme_dbo", "acme", "bolt", True, tag=b"acme_dbo") == b"bolt_dbo"

    def test_role_declaration_disables_qualification(self) -> None:
        """Entries declaring the role itself only get bare replacements."""
        value = b"ALTER SCHEMA acme_dbo OWNER TO acme_db_owner; -- acme_dbo.x"
        result = rewrite_field(value, "acme", "bolt", True, tag=b"SCHEMA acme_dbo")
        assert result == b"ALTER SCHEMA bolt_dbo OWNER TO bolt_db_owner; -- acme_dbo.x"

    def test_identifier_boundaries(self) -> None:
        """Tokens embedded in longer identifiers are left alone."""
        value = b"xacme_dbo acme_dbox acme_dbo_extra $acme_dbo"
        assert rewrite_field(value, "acme", "bolt", True, tag=b"t") == value

    def test_plain_database_name_untouched(self) -> None:
        """The bare database name is not a derived token."""
        assert rewrite_field(b"USE acme;", "acme", "bolt", True, tag=b"t") == b"USE acme;"

    def test_none_and_unknown_original(self) -> None:
        """None stays None; an empty original name disables rewriting."""
        assert rewrite_field(None, "acme", "bolt", True) is None
        assert rewrite_field(b"acme_dbo", "", "bolt", True) == b"acme_dbo"


class TestRewriteEntry:
    """Field order and scope of entry rewriting."""

    def test_schema_entry(self) -> None:
        """The schema entry gets a new tag, body and owner."""
        entry = rewrite_entry(schema_entry("acme"), "acme", "bolt")
        assert entry.tag == b"bolt_dbo"
        assert entry.definition == b"CREATE SCHEMA bolt_dbo;\n"
        assert entry.drop_stmt == b"DROP SCHEMA bolt_dbo;\n"
        assert entry.owner == b"bolt_db_owner"

    def test_grant_entry(self) -> None:
        """DDL in a dependent entry has all tokens replaced."""
        entry = rewrite_entry(grant_entry("acme"), "acme", "bolt")
        assert entry.definition == b"GRANT bolt_guest TO bolt_dbo;\n"
        assert entry.tag == b"bolt_guest"

    def test_table_entry(self) -> None:
        """Qualified DDL, namespace and owner are rewritten; other fields kept."""
        original = table_entry("acme")
        entry = rewrite_entry(original, "acme", "bolt")
        assert entry.definition == b"CREATE TABLE bolt_dbo.customers (\n    id integer\n);\n"
        assert entry.namespace == b"bolt_dbo"
        assert entry.owner == b"bolt_dbo"
        assert entry.tag == b"customers"
        assert entry.dependencies == original.dependencies
        assert entry.table_am == original.table_am


# ============================================================================
# Catalog table data
# ============================================================================


class TestRewriteTableRows:
    """Tab-separated catalog data rewriting."""

    def test_fields_starting_with_name(self, tmp_path: Path) -> None:
        """Only fields that start with the original name are changed."""
        (tmp_path / "3001.dat").write_bytes(table_row("acme"))
        rewrite_table_rows(tmp_path, "3001.dat", "acme", "bolt")
        assert (tmp_path / "3001.dat").read_bytes() == b"5\tbolt_dbo\tbolt\tnot_acme\n\\.\n"

    def test_original_kept(self, tmp_path: Path) -> None:
        """The pre-image is kept with an .orig suffix."""
        (tmp_path / "3001.dat").write_bytes(table_row("acme"))
        rewrite_table_rows(tmp_path, "3001.dat", "acme", "bolt")
        assert (tmp_path / "3001.dat.orig").read_bytes() == table_row("acme")
        assert not (tmp_path / "3001.dat.rewritten").exists()

    def test_gzip_data_file(self, tmp_path: Path) -> None:
        """A compressed data file is rewritten when the plain one is absent."""
        with gzip.open(tmp_path / "3001.dat.gz", "wb") as f:
            f.write(table_row("acme"))
        rewrite_table_rows(tmp_path, "3001.dat", "acme", "bolt")
        with gzip.open(tmp_path / "3001.dat.gz", "rb") as f:
            assert f.read() == table_row("bolt").replace(b"not_bolt", b"not_acme")

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing data file raises FileAccessError."""
        with pytest.raises(FileAccessError, match="Table data file not found"):
            rewrite_table_rows(tmp_path, "9999.dat", "acme", "bolt")


# ============================================================================
# Full TOC pass
# ============================================================================


class TestRewriteToc:
    """Single-pass rewrite of toc.dat plus tracked tables."""

    def test_scenario_acme_to_bolt(self, tmp_path: Path) -> None:
        """Schema tag and dependent grant DDL are retargeted."""
        toc_path = build_dump(tmp_path / "acme_dump", "acme")
        context = rewrite_toc(toc_path, "bolt")

        assert context.orig_dbname == "acme"
        assert context.entry_count == 3 + len(TRACKED_TABLES)
        entries = _read_entries(toc_path)
        schema = next(e for e in entries if e.description_text == "SCHEMA")
        assert schema.tag == b"bolt_dbo"
        grant = next(e for e in entries if e.description_text == "ACL")
        assert grant.definition == b"GRANT bolt_guest TO bolt_dbo;\n"

    def test_tracked_tables_rewritten(self, tmp_path: Path) -> None:
        """Each tracked table's data file is rewritten for the new name."""
        directory = tmp_path / "acme_dump"
        toc_path = build_dump(directory, "acme")
        context = rewrite_toc(toc_path, "bolt")

        assert set(context.table_files) == set(TRACKED_TABLES)
        for filename in context.table_files.values():
            assert (directory / filename).read_bytes().startswith(b"5\tbolt_dbo\tbolt\t")

    def test_original_toc_kept(self, tmp_path: Path) -> None:
        """The pre-image of toc.dat is kept as toc.dat.orig."""
        toc_path = build_dump(tmp_path / "acme_dump", "acme")
        original = toc_path.read_bytes()
        rewrite_toc(toc_path, "bolt")
        assert (toc_path.parent / "toc.dat.orig").read_bytes() == original
        assert toc_path.read_bytes() != original
        assert not (toc_path.parent / "toc.dat.rewritten").exists()

    def test_same_name_is_identity(self, tmp_path: Path) -> None:
        """Rewriting to the original name reproduces the input byte for byte."""
        directory = tmp_path / "acme_dump"
        toc_path = build_dump(directory, "acme")
        original = toc_path.read_bytes()
        context = rewrite_toc(toc_path, "acme")
        assert toc_path.read_bytes() == original
        for filename in context.table_files.values():
            assert (directory / filename).read_bytes() == table_row("acme")

    def test_no_schema_entry_is_identity(self, tmp_path: Path) -> None:
        """Without a *_dbo schema entry the TOC is copied unchanged."""
        lines: list[str] = []
        toc_path = build_dump(tmp_path / "dump", "acme", with_schema=False)
        original = toc_path.read_bytes()
        context = rewrite_toc(toc_path, "bolt", progress=lines.append)
        assert context.orig_dbname == ""
        assert toc_path.read_bytes() == original
        assert any("not found" in line for line in lines)

    def test_progress_lines(self, tmp_path: Path) -> None:
        """Entry count and the rename are reported."""
        lines: list[str] = []
        toc_path = build_dump(tmp_path / "acme_dump", "acme")
        rewrite_toc(toc_path, "bolt", progress=lines.append)
        assert f"TOC entries: {3 + len(TRACKED_TABLES)}" in lines
        assert "Renaming database: acme -> bolt" in lines

    def test_missing_tracked_table(self, tmp_path: Path) -> None:
        """A tracked table absent from the TOC fails before any file changes."""
        directory = tmp_path / "acme_dump"
        toc_path = build_dump(directory, "acme", tracked=TRACKED_TABLES[:3])
        original = toc_path.read_bytes()

        with pytest.raises(FormatError, match=f"Table not found: {TRACKED_TABLES[3]}"):
            rewrite_toc(toc_path, "bolt")

        assert toc_path.read_bytes() == original
        assert not (directory / "toc.dat.rewritten").exists()
        assert not list(directory.glob("*.orig"))

    def test_bad_header_leaves_no_temp_file(self, tmp_path: Path) -> None:
        """A header failure removes the partial output."""
        directory = tmp_path / "dump"
        toc_path = build_dump(directory, "acme")
        toc_path.write_bytes(b"NOTPG" + toc_path.read_bytes()[5:])
        with pytest.raises(FormatError, match="Magic check failure"):
            rewrite_toc(toc_path, "bolt")
        assert not (directory / "toc.dat.rewritten").exists()
