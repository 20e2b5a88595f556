"""
Selective tar extraction.

Only the files needed to compile native modules are kept from a release
archive: C headers and .gypi build metadata. The archive's top-level
directory is stripped, so `node-v20.0.0/include/node/node.h` lands at
`include/node/node.h` under the install directory.

Extraction is streaming: the archive is read once, front to back, with no
seeking, so it can run directly over an HTTP response body.
"""

import asyncio
import logging
import shutil
import tarfile
from pathlib import Path, PurePosixPath
from typing import Callable, Optional

import aiohttp

from devfiles.common.exceptions import ExtractError
from devfiles.common.logging import get_logger, log_with_context
from devfiles.download.hashing import ContentHasher

logger = get_logger(__name__)

# Extensions kept from the archive
DEV_FILE_EXTENSIONS = (".h", ".gypi")

COPY_BUFSIZE = 64 * 1024


def is_dev_file(path: str) -> bool:
    """Default inclusion predicate: header files and .gypi build metadata."""
    return PurePosixPath(path).suffix in DEV_FILE_EXTENSIONS


def strip_leading_component(name: str) -> Optional[str]:
    """
    Drop the first path segment of an archive entry name.

    Returns None for entries that are only the top-level directory, and for
    names that would escape the target directory.
    """
    parts = [p for p in PurePosixPath(name).parts if p not in ("", ".")]
    if parts and parts[0] == "/":
        return None
    if len(parts) < 2:
        return None
    rest = parts[1:]
    if any(p == ".." for p in rest):
        return None
    return "/".join(rest)


class ArchiveExtractor:
    """
    Extracts accepted entries of a tar stream into a target directory.

    Attributes:
        target_dir: Directory receiving the files
        predicate: Called with the stripped relative path; True keeps the entry
        count: Number of entries accepted so far
        ignored: Number of regular files rejected by the predicate

    The extract_* methods are blocking; run them with asyncio.to_thread.
    """

    def __init__(
        self,
        target_dir: Path,
        predicate: Callable[[str], bool] = is_dev_file,
    ):
        self.target_dir = Path(target_dir)
        self.predicate = predicate
        self.count = 0
        self.ignored = 0

    def extract_file(self, archive_path: Path) -> int:
        """Extract from a local archive file. Returns the accepted count."""
        log_with_context(logger, logging.DEBUG, "extracting local tarball", file=str(archive_path))
        try:
            with tarfile.open(name=str(archive_path), mode="r|*") as tar:
                self._extract_members(tar)
        except (tarfile.TarError, EOFError) as e:
            raise ExtractError(f"Invalid tarball {archive_path}: {e}", cause=e) from e
        except FileNotFoundError as e:
            raise ExtractError(f"Tarball not found: {archive_path}", cause=e) from e
        return self.count

    def extract_stream(self, fileobj) -> int:
        """
        Extract from a readable binary stream. Returns the accepted count.

        Corrupt or truncated data raises tarfile.TarError/EOFError unchanged
        so the caller can tell a premature close apart from a bad archive.
        """
        with tarfile.open(fileobj=fileobj, mode="r|*") as tar:
            self._extract_members(tar)
        return self.count

    def _extract_members(self, tar: tarfile.TarFile) -> None:
        for member in tar:
            relative = strip_leading_component(member.name)
            if relative is None or not member.isfile():
                continue
            if not self.predicate(relative):
                self.ignored += 1
                continue

            destination = self.target_dir / relative
            source = tar.extractfile(member)
            if source is None:
                continue
            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
                with open(destination, "wb") as out:
                    shutil.copyfileobj(source, out, COPY_BUFSIZE)
            except OSError as e:
                raise ExtractError(f"Failed to write {destination}: {e}", cause=e) from e

            self.count += 1
            log_with_context(logger, logging.DEBUG, "extracted file from tarball", file=relative)


class ResponseStream:
    """
    Blocking file-like view of an aiohttp response body.

    read() is called from a worker thread and schedules the actual read on
    the event loop. Every chunk that passes through is fed to the hasher, so
    extraction and hashing share one pass over the body.
    """

    def __init__(
        self,
        response: aiohttp.ClientResponse,
        loop: asyncio.AbstractEventLoop,
        hasher: Optional[ContentHasher] = None,
    ):
        self._response = response
        self._loop = loop
        self._hasher = hasher

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            coro = self._response.content.read()
        else:
            coro = self._response.content.read(size)
        chunk = asyncio.run_coroutine_threadsafe(coro, self._loop).result()
        if chunk and self._hasher is not None:
            self._hasher.update(chunk)
        return chunk


async def extract_response(
    response: aiohttp.ClientResponse,
    extractor: ArchiveExtractor,
    hasher: Optional[ContentHasher] = None,
    chunk_size: int = COPY_BUFSIZE,
) -> int:
    """
    Extract a tar response body while hashing it.

    After the archive end marker the rest of the body (compression trailer,
    padding) is drained into the hasher so the digest covers the whole file.

    Returns:
        Number of accepted entries
    """
    loop = asyncio.get_running_loop()
    stream = ResponseStream(response, loop, hasher)
    count = await asyncio.to_thread(extractor.extract_stream, stream)

    async for chunk in response.content.iter_chunked(chunk_size):
        if hasher is not None:
            hasher.update(chunk)
    return count
