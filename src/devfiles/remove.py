"""Removal of an installed version's dev files."""

import asyncio
import logging
import shutil
import stat
from pathlib import Path

from devfiles.common.exceptions import FilesystemError, PermissionDenied
from devfiles.common.logging import get_logger, log_with_context

logger = get_logger(__name__)


def _remove_path(path: Path) -> bool:
    """Blocking removal; False if nothing was there."""
    try:
        st = path.lstat()
    except FileNotFoundError:
        return False
    if stat.S_ISDIR(st.st_mode):
        shutil.rmtree(path)
    else:
        path.unlink()
    return True


async def remove_version(dev_dir: Path, version_dir: str) -> bool:
    """
    Remove `<dev_dir>/<version_dir>` and everything below it.

    Args:
        dev_dir: Base dev directory
        version_dir: Version directory name

    Returns:
        True if something was removed, False if it was not installed

    Raises:
        PermissionDenied: If the directory cannot be checked or removed for permissions
        FilesystemError: For any other removal failure
    """
    install_dir = Path(dev_dir).resolve() / version_dir
    log_with_context(logger, logging.DEBUG, "removing dev files", install_dir=str(install_dir))

    try:
        removed = await asyncio.to_thread(_remove_path, install_dir)
    except PermissionError as e:
        raise PermissionDenied(f"Cannot remove {install_dir}: {e}", cause=e) from e
    except OSError as e:
        raise FilesystemError(f"Cannot remove {install_dir}: {e}", cause=e) from e

    if not removed:
        log_with_context(
            logger,
            logging.DEBUG,
            "version was already uninstalled",
            version=version_dir,
        )
        return False

    log_with_context(logger, logging.DEBUG, "removed dev files", install_dir=str(install_dir))
    return True
