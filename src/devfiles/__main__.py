"""
Command line entry point.

Usage:
    # Install dev files for a version (download, extract, verify)
    python -m devfiles install 20.11.0

    # Only install when missing or stale
    python -m devfiles install 20.11.0 --ensure

    # Use a local headers archive
    python -m devfiles install 20.11.0 --tarball node-v20.11.0-headers.tar.gz

    # Remove an installed version
    python -m devfiles remove 20.11.0

Configuration:
    Options are read from config.yaml (under 'devfiles:'), then DEVFILES_*
    environment variables, then the command line.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from devfiles import __version__
from devfiles.common.exceptions import DevfilesError
from devfiles.common.logging import get_logger, log_exception, setup_logging
from devfiles.config import DEFAULT_CONFIG_PATH, InstallOptions
from devfiles.install import InstallResult, PendingAction, install
from devfiles.release import DEFAULT_DIST_URL, resolve_release
from devfiles.remove import remove_version

logger = get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="devfiles",
        description="Install development headers for native module builds",
    )
    parser.add_argument("--version", action="version", version=f"devfiles {__version__}")
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Path to config.yaml (default: ./config.yaml)",
    )
    parser.add_argument(
        "--devdir",
        type=Path,
        default=None,
        help="Base directory for installed dev files",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit JSON log lines",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    install_parser = sub.add_parser("install", help="Install dev files for a version")
    install_parser.add_argument("target", help="Version to install (e.g. 20.11.0)")
    install_parser.add_argument("--devdir", type=Path, default=argparse.SUPPRESS, help="Base directory for installed dev files")
    install_parser.add_argument("--ensure", action="store_true", default=None, help="Skip if already installed and current")
    install_parser.add_argument("--tarball", type=Path, default=None, help="Local headers archive to extract")
    install_parser.add_argument("--nodedir", type=Path, default=None, help="Directory of pre-existing dev files")
    install_parser.add_argument("--cafile", type=Path, default=None, help="PEM bundle of additional CA certificates")
    install_parser.add_argument("--proxy", default=None, help="Proxy URL")
    install_parser.add_argument("--dist-url", default=DEFAULT_DIST_URL, help="Distribution server base URL")

    remove_parser = sub.add_parser("remove", help="Remove installed dev files for a version")
    remove_parser.add_argument("target", help="Version to remove")
    remove_parser.add_argument("--devdir", type=Path, default=argparse.SUPPRESS, help="Base directory for installed dev files")

    return parser.parse_args(argv)


async def run_pending(actions: List[PendingAction]) -> None:
    """Run follow-up actions recorded during install."""
    for action in actions:
        if action.name == "remove":
            await remove_version(action.dev_dir, action.version_dir)


async def run_install(args: argparse.Namespace) -> InstallResult:
    options = InstallOptions.load_config(
        args.config,
        dev_dir=args.devdir,
        ensure=args.ensure,
        tarball=args.tarball,
        nodedir=args.nodedir,
        cafile=args.cafile,
        proxy=args.proxy,
    )
    release = resolve_release(args.target, dist_url=args.dist_url)
    result = await install(release, options)
    await run_pending(result.pending)
    return result


async def run_remove(args: argparse.Namespace) -> bool:
    options = InstallOptions.load_config(args.config, dev_dir=args.devdir)
    release = resolve_release(args.target)
    removed = await remove_version(options.dev_dir, release.version_dir)
    if removed:
        logger.info(f"removed dev files for {release.version}")
    else:
        logger.info(f"dev files for {release.version} were not installed")
    return removed


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point; returns the process exit status."""
    args = parse_args(argv)
    setup_logging(
        level=getattr(logging, args.log_level),
        json_format=args.json_logs,
    )

    try:
        if args.command == "install":
            asyncio.run(run_install(args))
        else:
            asyncio.run(run_remove(args))
    except DevfilesError as e:
        log_exception(logger, e, f"{args.command} failed: {e.message}")
        if e.is_retryable:
            logger.info("this failure may be temporary; running the command again may succeed")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
