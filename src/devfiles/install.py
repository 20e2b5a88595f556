"""
Install pipeline for one runtime version's dev files.

Flow:
    CheckNeeded  -> version checks, optional "ensure" skip check
    Downloading  -> create install dir, GET the headers archive (or open the
                    local tarball)
    Extracting   -> stream the archive through the selective extractor while
                    hashing it
    PostProcessing -> concurrently: write installVersion, fetch Windows
                    import libraries, fetch the checksum manifest
    Verifying    -> compare observed hashes against the manifest

Any failure after the checks rolls back by removing the install directory
before the error is raised. A permission error creating (or checking) the
install directory retries the whole attempt once under the system temp dir.
"""

import asyncio
import getpass
import logging
import re
import tarfile
import tempfile
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

import aiofiles
import aiohttp
from semver import Version

from devfiles.archive import ArchiveExtractor, extract_response
from devfiles.checksums import ChecksumTable
from devfiles.common.concurrency import CompletionToken, join_all
from devfiles.common.exceptions import (
    DevfilesError,
    ExtractError,
    FilesystemError,
    InvalidVersion,
    PermissionDenied,
    PrematureClose,
    PrereleaseUnsupported,
    UnsupportedVersion,
    wrap_exception,
)
from devfiles.common.logging import get_logger, log_exception, log_with_context
from devfiles.config import InstallOptions
from devfiles.download.hashing import ContentHasher
from devfiles.download.http_client import (
    check_status,
    create_session,
    fetch,
    read_text,
    resolve_proxy,
)
from devfiles.libs import fetch_import_libs
from devfiles.release import ReleaseDescriptor
from devfiles.remove import remove_version

logger = get_logger(__name__)

MIN_VERSION = Version.parse("0.8.0")

INSTALL_VERSION_FILE = "installVersion"

# Directory name used under the system temp dir by the permission fallback
FALLBACK_DIR_NAME = ".devfiles"

SessionFactory = Callable[[InstallOptions], aiohttp.ClientSession]


class InstallState(str, Enum):
    """Pipeline states, logged on every transition."""

    IDLE = "idle"
    CHECK_NEEDED = "check_needed"
    SKIP_DONE = "skip_done"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    POST_PROCESSING = "post_processing"
    VERIFYING = "verifying"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class PendingAction:
    """Follow-up command to run after the install completes."""

    name: str
    dev_dir: Path
    version_dir: str


@dataclass
class InstallResult:
    """
    Outcome of a successful install.

    Attributes:
        version: Resolved version string
        install_dir: Directory holding the dev files (None when skipped
            because a user-supplied nodedir is used)
        skipped: True if nothing was downloaded
        extracted: Number of files extracted from the archive
        libs: Number of Windows import libraries downloaded
        pending: Follow-up actions (cleanup of a temp dev dir)
    """

    version: str
    install_dir: Optional[Path]
    skipped: bool = False
    extracted: int = 0
    libs: int = 0
    pending: List[PendingAction] = field(default_factory=list)


class _PermissionFallback(Exception):
    """Internal signal: retry the attempt under the temp dir."""

    def __init__(self, error: PermissionError, install_dir: Path):
        super().__init__(str(error))
        self.error = error
        self.install_dir = install_dir


def parse_install_version(text: str) -> int:
    """Leading integer of the marker file contents, or 0."""
    match = re.match(r"\s*([+-]?\d+)", text or "")
    return int(match.group(1)) if match else 0


class InstallAttempt:
    """
    One pass through the pipeline for a fixed dev dir.

    Owns the completion token, checksum table and extractor for the attempt.
    The token is settled exactly once, by the finalize step; concurrent tasks
    read it to discard results that arrive after the attempt has failed.
    """

    def __init__(
        self,
        release: ReleaseDescriptor,
        options: InstallOptions,
        session_factory: SessionFactory = create_session,
    ):
        self.release = release
        self.options = options
        self.session_factory = session_factory
        self.dev_dir = Path(options.dev_dir).resolve()
        self.install_dir = self.dev_dir / release.version_dir
        self.token = CompletionToken()
        self.table = ChecksumTable()
        self.extractor = ArchiveExtractor(self.install_dir)
        self.state = InstallState.IDLE
        self.libs = 0

    @property
    def verify_checksums(self) -> bool:
        """The manifest is needed for a downloaded archive or Windows libraries."""
        return not self.options.tarball or self.options.is_windows

    def _set_state(self, state: InstallState) -> None:
        self.state = state
        log_with_context(
            logger,
            logging.DEBUG,
            f"install state -> {state.value}",
            state=state.value,
            version=self.release.version,
        )

    async def run(self) -> InstallResult:
        """
        Execute the attempt.

        Raises:
            _PermissionFallback: Permission error on the dev dir, retry allowed
            DevfilesError: Any other failure, after rollback
        """
        self._set_state(InstallState.CHECK_NEEDED)
        try:
            if self.options.ensure:
                log_with_context(logger, logging.DEBUG, "ensure was passed, so won't reinstall if already installed")
                if await self._is_current():
                    self._set_state(InstallState.SKIP_DONE)
                    return self._finalize_success(skipped=True)
            await self._install()
        except _PermissionFallback:
            raise
        except Exception as e:
            error = wrap_exception(e)
            await self._finalize_failure(error)
            if error is e:
                raise
            raise error from e

        return self._finalize_success()

    # ------------------------------------------------------------------
    # CheckNeeded
    # ------------------------------------------------------------------

    async def _is_current(self) -> bool:
        """True if the install dir exists with a current installVersion."""
        try:
            await asyncio.to_thread(self.install_dir.stat)
        except FileNotFoundError:
            log_with_context(
                logger,
                logging.DEBUG,
                "version not already installed, continuing with install",
                version=self.release.version,
            )
            return False
        except PermissionError as e:
            raise self._permission_failure(e)
        except OSError as e:
            raise FilesystemError(f"Cannot access {self.install_dir}: {e}", cause=e) from e

        logger.debug('version is already installed, need to check "installVersion"')
        marker = self.install_dir / INSTALL_VERSION_FILE
        try:
            async with aiofiles.open(marker, "r", encoding="ascii", errors="replace") as f:
                text = await f.read()
        except FileNotFoundError:
            text = ""
        except OSError as e:
            raise FilesystemError(f"Cannot read {marker}: {e}", cause=e) from e

        installed = parse_install_version(text)
        required = self.options.install_version
        log_with_context(
            logger,
            logging.DEBUG,
            f'got "installVersion" {installed}, needs {required}',
            install_version=installed,
            required_version=required,
        )
        if installed < required:
            logger.debug("version is no good; reinstalling")
            return False
        logger.debug("version is good")
        return True

    # ------------------------------------------------------------------
    # Downloading / Extracting / PostProcessing / Verifying
    # ------------------------------------------------------------------

    async def _install(self) -> None:
        self._set_state(InstallState.DOWNLOADING)
        await self._create_install_dir()

        session: Optional[aiohttp.ClientSession] = None
        proxy: Optional[str] = None
        if not self.options.tarball or self.options.is_windows:
            proxy = resolve_proxy(self.options)
            session = self.session_factory(self.options)
        try:
            await self._download_and_extract(session, proxy)
            self._set_state(InstallState.POST_PROCESSING)
            await self._post_process(session, proxy)
        finally:
            if session is not None:
                await session.close()

        self._set_state(InstallState.VERIFYING)
        log_with_context(logger, logging.DEBUG, f"download contents checksum {self.table.observed}")
        if self.verify_checksums:
            self.table.verify()

    async def _create_install_dir(self) -> None:
        log_with_context(
            logger,
            logging.DEBUG,
            "ensuring dev dir is created",
            install_dir=str(self.install_dir),
        )
        try:
            existed = await asyncio.to_thread(self.install_dir.is_dir)
            await asyncio.to_thread(self.install_dir.mkdir, parents=True, exist_ok=True)
        except PermissionError as e:
            raise self._permission_failure(e)
        except OSError as e:
            raise FilesystemError(f"Cannot create {self.install_dir}: {e}", cause=e) from e
        if not existed:
            log_with_context(logger, logging.DEBUG, "created dev dir", install_dir=str(self.install_dir))

    async def _download_and_extract(
        self,
        session: Optional[aiohttp.ClientSession],
        proxy: Optional[str],
    ) -> None:
        tarball = self.options.tarball
        if tarball:
            self._set_state(InstallState.EXTRACTING)
            await asyncio.to_thread(self.extractor.extract_file, tarball)
        else:
            await self._download_tarball(session, proxy)

        if self.extractor.count == 0:
            raise ExtractError("There was a fatal problem while downloading/extracting the tarball")
        log_with_context(
            logger,
            logging.DEBUG,
            f"done parsing tarball ({self.extractor.ignored} files ignored)",
            extracted=self.extractor.count,
        )

    async def _download_tarball(self, session: aiohttp.ClientSession, proxy: Optional[str]) -> None:
        url = self.release.tarball_url
        hasher = ContentHasher()
        async with fetch(session, url, proxy) as response:
            check_status(response, url)
            self._set_state(InstallState.EXTRACTING)
            try:
                await extract_response(response, self.extractor, hasher)
            except (tarfile.TarError, EOFError, aiohttp.ClientPayloadError) as e:
                if self.extractor.count == 0:
                    raise PrematureClose(
                        "Connection closed while downloading tarball file",
                        cause=e,
                        context={"url": url},
                    ) from e
                if isinstance(e, aiohttp.ClientPayloadError):
                    raise
                raise ExtractError(f"Corrupt tarball from {url}: {e}", cause=e) from e

        self.table.record_observed(self.release.tarball_name, hasher.hexdigest())

    async def _post_process(
        self,
        session: Optional[aiohttp.ClientSession],
        proxy: Optional[str],
    ) -> None:
        tasks = [self._write_install_version()]
        if self.options.is_windows:
            tasks.append(self._fetch_libs(session, proxy))
        if self.verify_checksums:
            tasks.append(self._download_shasums(session, proxy))
        await join_all(*tasks)

    async def _write_install_version(self) -> None:
        path = self.install_dir / INSTALL_VERSION_FILE
        try:
            async with aiofiles.open(path, "w", encoding="ascii") as f:
                await f.write(f"{self.options.install_version}\n")
        except OSError as e:
            raise FilesystemError(f"Cannot write {path}: {e}", cause=e) from e

    async def _fetch_libs(self, session: aiohttp.ClientSession, proxy: Optional[str]) -> None:
        self.libs = await fetch_import_libs(
            session,
            self.release,
            self.install_dir,
            self.table,
            proxy=proxy,
            token=self.token,
        )

    async def _download_shasums(self, session: aiohttp.ClientSession, proxy: Optional[str]) -> None:
        url = self.release.shasums_url
        log_with_context(logger, logging.DEBUG, "check download content checksum, need to download `SHASUMS256.txt`...", url=url)
        text = await read_text(session, url, proxy, what="checksum")
        if self.token.settled:
            return
        self.table.load_expected(text)

    # ------------------------------------------------------------------
    # Finalize
    # ------------------------------------------------------------------

    def _permission_failure(self, error: PermissionError) -> Exception:
        if self.options.no_retry:
            return PermissionDenied(
                f"Permission denied for dev dir {self.install_dir}: {error}",
                cause=error,
                context={"install_dir": str(self.install_dir)},
            )
        return _PermissionFallback(error, self.install_dir)

    def _finalize_success(self, skipped: bool = False) -> InstallResult:
        self.token.succeed(self.release.version)
        self._set_state(InstallState.DONE)
        return InstallResult(
            version=self.release.version,
            install_dir=self.install_dir,
            skipped=skipped,
            extracted=self.extractor.count,
            libs=self.libs,
        )

    async def _finalize_failure(self, error: DevfilesError) -> None:
        if not self.token.fail(error):
            return
        self._set_state(InstallState.FAILED)
        logger.warning("got an error, rolling back install")
        try:
            await remove_version(self.dev_dir, self.release.version_dir)
        except Exception as e:
            log_exception(logger, e, "rollback failed", level=logging.WARNING)


def _fallback_options(
    options: InstallOptions,
    fallback: _PermissionFallback,
    release: ReleaseDescriptor,
    pending: List[PendingAction],
) -> InstallOptions:
    """
    Options for the retry under the system temp dir.

    Works around package managers that drop privileges before running build
    scripts, leaving the user unable to create the dev dir.
    """
    tmpdir = Path(tempfile.gettempdir())
    dev_dir = tmpdir / FALLBACK_DIR_NAME

    user_string = ""
    try:
        user_string = f' ("{getpass.getuser()}")'
    except (KeyError, OSError):
        pass

    logger.warning(
        f'current user{user_string} does not have permission to access the dev dir "{fallback.install_dir}"'
    )
    logger.warning(f'attempting to reinstall using temporary dev dir "{dev_dir}"')

    if Path.cwd().resolve() == tmpdir.resolve():
        logger.debug("tmpdir == cwd, automatically will remove dev files after to save disk space")
        pending.append(PendingAction(name="remove", dev_dir=dev_dir, version_dir=release.version_dir))

    return replace(options, dev_dir=dev_dir, no_retry=True)


def check_release(release: ReleaseDescriptor) -> None:
    """
    Validate that a release can be installed at all.

    Raises:
        InvalidVersion: Version string did not parse
        UnsupportedVersion: Version below the minimum supported
    """
    if release.semver is None:
        raise InvalidVersion(f"Invalid version number: {release.version}")
    if release.semver < MIN_VERSION:
        raise UnsupportedVersion(
            f"Minimum target version is `{MIN_VERSION}` or greater. Got: {release.version}"
        )


async def install(
    release: ReleaseDescriptor,
    options: InstallOptions,
    session_factory: SessionFactory = create_session,
) -> InstallResult:
    """
    Install the dev files for `release`.

    Args:
        release: Resolved release descriptor
        options: Install options
        session_factory: Creates the aiohttp session (overridable in tests)

    Returns:
        InstallResult for the version

    Raises:
        DevfilesError: Typed failure; the install dir has been rolled back
    """
    log_with_context(logger, logging.DEBUG, f"input version string {release.version!r}", version=release.version)
    check_release(release)

    # "pre" versions are not published and cannot be installed
    if release.prerelease_tag == "pre":
        logger.debug(f'detected "pre" version {release.version}')
        if options.nodedir:
            logger.debug(f"nodedir was passed; skipping install {options.nodedir}")
            return InstallResult(version=release.version, install_dir=None, skipped=True)
        raise PrereleaseUnsupported(
            '"pre" versions cannot be installed, use the --nodedir flag instead'
        )

    log_with_context(logger, logging.DEBUG, f"installing version: {release.version_dir}", version=release.version)

    pending: List[PendingAction] = []
    attempt_options = options
    # The fallback copy has no_retry set, so this runs at most twice
    while True:
        attempt = InstallAttempt(release, attempt_options, session_factory)
        try:
            result = await attempt.run()
        except _PermissionFallback as fallback:
            attempt_options = _fallback_options(attempt_options, fallback, release, pending)
            continue
        result.pending.extend(pending)
        log_with_context(
            logger,
            logging.INFO,
            f"dev files for {result.version} are ready",
            version=result.version,
            install_dir=str(result.install_dir),
        )
        return result
