"""
Checksum manifest parsing and verification.

A manifest (SHASUMS256.txt) lists one `<hash>  <path>` pair per line:

    0035d18e2dcf9aad669b1c7c07319e17abfe3762  ./node-v0.11.4.tar.gz
    9c1f0f1f...                               win-x64/node.lib

Paths are normalized by stripping a leading "./" so they can be looked up by
the archive-relative names used while downloading.
"""

import logging
from typing import Dict, Union

from devfiles.common.exceptions import ChecksumMismatch
from devfiles.common.logging import get_logger, log_with_context

logger = get_logger(__name__)


class _Missing:
    """Sentinel for a filename absent from a checksum mapping."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


def normalize_name(name: str) -> str:
    """Strip surrounding whitespace and a leading "./" from a manifest path."""
    name = name.strip()
    if name.startswith("./"):
        name = name[2:]
    return name


def parse_shasums(text: str) -> Dict[str, str]:
    """
    Parse manifest text into a filename -> hash mapping.

    Lines that do not split into exactly two whitespace-separated tokens are
    skipped.

    Args:
        text: Raw manifest contents

    Returns:
        Mapping of normalized path to hex digest
    """
    expected: Dict[str, str] = {}
    for line in text.strip().splitlines():
        items = line.split()
        if len(items) != 2:
            continue
        digest, name = items
        expected[normalize_name(name)] = digest
    return expected


class ChecksumTable:
    """
    Observed and expected hashes keyed by archive-relative filename.

    `observed` is filled while streaming each download, `expected` from the
    parsed manifest. Each producer owns a distinct key, so concurrent tasks
    on the event loop can record without coordination.
    """

    def __init__(self) -> None:
        self.observed: Dict[str, str] = {}
        self.expected: Dict[str, str] = {}

    def record_observed(self, name: str, digest: str) -> None:
        name = normalize_name(name)
        self.observed[name] = digest
        log_with_context(logger, logging.DEBUG, "content checksum", file=name, checksum=digest)

    def load_expected(self, text: str) -> None:
        self.expected.update(parse_shasums(text))
        log_with_context(
            logger,
            logging.DEBUG,
            f"checksum data: {len(self.expected)} entries",
        )

    def lookup(self, name: str) -> Union[str, _Missing]:
        """Expected hash for `name`, or MISSING when the manifest has no entry."""
        return self.expected.get(normalize_name(name), MISSING)

    def verify(self) -> None:
        """
        Compare every observed hash against the manifest.

        Entries only present in the manifest are ignored.

        Raises:
            ChecksumMismatch: For the first observed file whose hash differs
                or has no manifest entry
        """
        for name, digest in self.observed.items():
            expected = self.lookup(name)
            log_with_context(
                logger,
                logging.DEBUG,
                f"validating download checksum for {name}",
                file=name,
                checksum=digest,
                expected=expected if expected is not MISSING else None,
            )
            if expected is MISSING:
                raise ChecksumMismatch(name, digest, None)
            if expected != digest:
                raise ChecksumMismatch(name, digest, expected)
