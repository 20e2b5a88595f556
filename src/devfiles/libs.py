"""
Windows import library fetcher.

On Windows, native modules link against `<name>.lib`, which is published
separately for each architecture. All architectures are fetched concurrently
into `<install_dir>/<arch>/<name>.lib`, hashed while streaming to disk.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import aiofiles
import aiohttp

from devfiles.checksums import ChecksumTable
from devfiles.common.concurrency import CompletionToken, join_all
from devfiles.common.exceptions import FilesystemError
from devfiles.common.logging import get_logger, log_with_context
from devfiles.download.hashing import ContentHasher
from devfiles.download.http_client import CHUNK_SIZE, check_status, fetch
from devfiles.release import ReleaseDescriptor

logger = get_logger(__name__)

# Fixed architecture set
ARCHS = ("ia32", "x64", "arm64")

# Newer architectures not every distribution provides; a 404 is expected
OPTIONAL_ARCHS = frozenset({"arm64"})


async def fetch_import_lib(
    session: aiohttp.ClientSession,
    release: ReleaseDescriptor,
    arch: str,
    install_dir: Path,
    table: ChecksumTable,
    proxy: Optional[str] = None,
    token: Optional[CompletionToken] = None,
) -> bool:
    """
    Download one architecture's import library.

    Args:
        session: HTTP session
        release: Release descriptor
        arch: Architecture name (ia32, x64, arm64)
        install_dir: Version install directory
        table: Checksum table receiving the observed hash
        proxy: Optional proxy URL
        token: Completion token; a settled token discards this result

    Returns:
        True if downloaded, False if tolerated 404

    Raises:
        BadStatus: For any non-200, non-404 response
        FilesystemError: If the arch directory or file cannot be written
    """
    arch_release = release.archs[arch]
    lib_name = f"{release.name}.lib"
    arch_dir = install_dir / arch
    target = arch_dir / lib_name
    name = f"{arch} {lib_name}"

    log_with_context(logger, logging.DEBUG, f"{name} dir {arch_dir}", arch=arch)
    log_with_context(logger, logging.DEBUG, f"{name} url", arch=arch, url=arch_release.lib_url)

    try:
        await asyncio.to_thread(arch_dir.mkdir, parents=True, exist_ok=True)
    except OSError as e:
        raise FilesystemError(f"Failed to create {arch_dir}: {e}", cause=e) from e

    async with fetch(session, arch_release.lib_url, proxy) as response:
        if response.status == 404:
            level = logging.DEBUG if arch in OPTIONAL_ARCHS else logging.WARNING
            log_with_context(
                logger,
                level,
                f"{name} was not found in {arch_release.lib_url}",
                arch=arch,
                http_status=404,
            )
            return False
        check_status(response, arch_release.lib_url, what=name)

        log_with_context(logger, logging.DEBUG, f"streaming {name} to: {target}", arch=arch)
        hasher = ContentHasher()
        try:
            async with aiofiles.open(target, "wb") as f:
                async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                    hasher.update(chunk)
                    await f.write(chunk)
        except OSError as e:
            raise FilesystemError(f"Failed to write {target}: {e}", cause=e) from e

    if token is not None and token.settled:
        return False
    table.record_observed(arch_release.lib_path, hasher.hexdigest())
    return True


async def fetch_import_libs(
    session: aiohttp.ClientSession,
    release: ReleaseDescriptor,
    install_dir: Path,
    table: ChecksumTable,
    proxy: Optional[str] = None,
    token: Optional[CompletionToken] = None,
) -> int:
    """
    Fetch the import library for every architecture concurrently.

    Completes only after every architecture has settled; the first fatal
    error cancels the rest and is re-raised.

    Returns:
        Number of libraries downloaded
    """
    log_with_context(logger, logging.DEBUG, f"on Windows; need to download `{release.name}.lib`...")
    archs = [arch for arch in ARCHS if arch in release.archs]
    results = await join_all(
        *(
            fetch_import_lib(session, release, arch, install_dir, table, proxy, token)
            for arch in archs
        )
    )
    return sum(1 for downloaded in results if downloaded)
