"""Tests for checksum manifest parsing and verification."""

import pytest

from devfiles.checksums import MISSING, ChecksumTable, normalize_name, parse_shasums
from devfiles.common.exceptions import ChecksumMismatch, ErrorCategory

MANIFEST = """
aaa111  ./node-v20.0.0-headers.tar.gz
bbb222  win-x64/node.lib
ccc333  node-v20.0.0.tar.gz
this line has too many tokens
single
"""


class TestParseShasums:
    def test_two_token_lines_only(self):
        expected = parse_shasums(MANIFEST)
        assert expected == {
            "node-v20.0.0-headers.tar.gz": "aaa111",
            "win-x64/node.lib": "bbb222",
            "node-v20.0.0.tar.gz": "ccc333",
        }

    def test_empty_text(self):
        assert parse_shasums("") == {}

    def test_normalize_name(self):
        assert normalize_name("  ./win-x86/node.lib ") == "win-x86/node.lib"
        assert normalize_name("node.tar.gz") == "node.tar.gz"


class TestChecksumTable:
    @pytest.fixture
    def table(self):
        table = ChecksumTable()
        table.load_expected(MANIFEST)
        return table

    def test_lookup_missing_is_distinct(self, table):
        assert table.lookup("nope.lib") is MISSING
        assert not MISSING
        assert repr(MISSING) == "MISSING"

    def test_lookup_normalizes(self, table):
        assert table.lookup("./win-x64/node.lib") == "bbb222"

    def test_verify_matching(self, table):
        table.record_observed("node-v20.0.0-headers.tar.gz", "aaa111")
        table.record_observed("win-x64/node.lib", "bbb222")
        table.verify()

    def test_extra_manifest_entries_ignored(self, table):
        table.record_observed("node-v20.0.0-headers.tar.gz", "aaa111")
        table.verify()

    def test_verify_mismatch(self, table):
        table.record_observed("win-x64/node.lib", "deadbeef")

        with pytest.raises(ChecksumMismatch) as exc_info:
            table.verify()

        error = exc_info.value
        assert error.file == "win-x64/node.lib"
        assert error.observed == "deadbeef"
        assert error.expected == "bbb222"
        assert str(error) == "win-x64/node.lib local checksum deadbeef not match remote bbb222"
        assert error.category == ErrorCategory.PERMANENT

    def test_verify_missing_entry(self, table):
        table.record_observed("win-arm64/node.lib", "abc")

        with pytest.raises(ChecksumMismatch) as exc_info:
            table.verify()

        assert exc_info.value.expected is None

    def test_empty_table_verifies(self):
        ChecksumTable().verify()
