"""Tests for Windows import library downloads."""

import hashlib
import logging

import aiohttp
import pytest

from devfiles.checksums import ChecksumTable
from devfiles.common.concurrency import CompletionToken
from devfiles.common.exceptions import BadStatus
from devfiles.libs import fetch_import_lib, fetch_import_libs
from devfiles.release import resolve_release

VERSION = "20.0.0"


@pytest.fixture
def install_dir(tmp_path):
    return tmp_path / VERSION


class TestFetchImportLib:
    @pytest.mark.asyncio
    async def test_downloads_and_records_hash(self, dist_server, install_dir):
        body = b"x64 lib" * 1000
        dist_server.add(f"/dist/v{VERSION}/win-x64/node.lib", body)
        release = resolve_release(VERSION, dist_url=dist_server.dist_url)
        table = ChecksumTable()

        async with aiohttp.ClientSession() as session:
            downloaded = await fetch_import_lib(session, release, "x64", install_dir, table)

        assert downloaded is True
        assert (install_dir / "x64" / "node.lib").read_bytes() == body
        assert table.observed == {"win-x64/node.lib": hashlib.sha256(body).hexdigest()}

    @pytest.mark.asyncio
    async def test_arm64_not_found_logged_quietly(self, dist_server, install_dir, caplog):
        release = resolve_release(VERSION, dist_url=dist_server.dist_url)
        table = ChecksumTable()

        with caplog.at_level(logging.DEBUG, logger="devfiles.libs"):
            async with aiohttp.ClientSession() as session:
                downloaded = await fetch_import_lib(session, release, "arm64", install_dir, table)

        assert downloaded is False
        assert table.observed == {}
        record = next(r for r in caplog.records if "was not found" in r.getMessage())
        assert record.levelno == logging.DEBUG

    @pytest.mark.asyncio
    async def test_x64_not_found_warns(self, dist_server, install_dir, caplog):
        release = resolve_release(VERSION, dist_url=dist_server.dist_url)

        async with aiohttp.ClientSession() as session:
            downloaded = await fetch_import_lib(session, release, "x64", install_dir, ChecksumTable())

        assert downloaded is False
        assert any(
            r.levelno == logging.WARNING and "x64 node.lib was not found" in r.getMessage()
            for r in caplog.records
        )

    @pytest.mark.asyncio
    async def test_server_error(self, dist_server, install_dir):
        dist_server.add(f"/dist/v{VERSION}/win-x86/node.lib", b"", status=502)
        release = resolve_release(VERSION, dist_url=dist_server.dist_url)

        async with aiohttp.ClientSession() as session:
            with pytest.raises(BadStatus, match="502 status code downloading ia32 node.lib"):
                await fetch_import_lib(session, release, "ia32", install_dir, ChecksumTable())

    @pytest.mark.asyncio
    async def test_settled_token_discards_hash(self, dist_server, install_dir):
        dist_server.add(f"/dist/v{VERSION}/win-x64/node.lib", b"lib")
        release = resolve_release(VERSION, dist_url=dist_server.dist_url)
        table = ChecksumTable()
        token = CompletionToken()
        token.fail(RuntimeError("sibling failed"))

        async with aiohttp.ClientSession() as session:
            downloaded = await fetch_import_lib(session, release, "x64", install_dir, table, token=token)

        assert downloaded is False
        assert table.observed == {}


class TestFetchImportLibs:
    @pytest.mark.asyncio
    async def test_counts_downloads(self, dist_server, install_dir):
        dist_server.add(f"/dist/v{VERSION}/win-x86/node.lib", b"ia32")
        dist_server.add(f"/dist/v{VERSION}/win-x64/node.lib", b"x64")
        release = resolve_release(VERSION, dist_url=dist_server.dist_url)
        table = ChecksumTable()

        async with aiohttp.ClientSession() as session:
            count = await fetch_import_libs(session, release, install_dir, table)

        assert count == 2
        assert set(table.observed) == {"win-x86/node.lib", "win-x64/node.lib"}
        assert {p.endswith("node.lib") for p in dist_server.requests} == {True}
        assert len(dist_server.requests) == 3
