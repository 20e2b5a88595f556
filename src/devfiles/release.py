"""
Release descriptor for a target runtime version.

The descriptor carries everything the install pipeline needs to know about a
version: where the headers archive, checksum manifest and Windows import
libraries live, and which directory name to install into. It is resolved once
before the pipeline starts and never mutated.
"""

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from semver import Version

DEFAULT_DIST_URL = "https://nodejs.org/dist"
DEFAULT_NAME = "node"

# Windows architectures and the directory names used on the dist server
WINDOWS_ARCH_DIRS: Dict[str, str] = {
    "ia32": "win-x86",
    "x64": "win-x64",
    "arm64": "win-arm64",
}


class ArchRelease(BaseModel):
    """Import library location for one Windows architecture."""

    model_config = ConfigDict(frozen=True)

    lib_url: str = Field(..., description="URL of the import library", min_length=1)
    lib_path: str = Field(
        ...,
        description="Manifest-relative path of the library (checksum lookup key)",
        min_length=1,
    )


class ReleaseDescriptor(BaseModel):
    """
    Immutable description of one installable runtime version.

    Attributes:
        version: Version string as given (without a leading "v")
        semver: Parsed version, or None if the string is not a valid
            semantic version
        name: Runtime name, used for the import library filename
        version_dir: Directory name under the dev dir
        tarball_url: Headers archive URL
        shasums_url: Checksum manifest URL
        archs: Per-architecture import library locations
        base_name: Archive base name (top-level directory inside the archive)
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    version: str
    semver: Optional[Version] = None
    name: str = DEFAULT_NAME
    version_dir: str
    tarball_url: str
    shasums_url: str
    archs: Dict[str, ArchRelease] = Field(default_factory=dict)
    base_name: str

    @property
    def prerelease_tag(self) -> Optional[str]:
        """First pre-release identifier ("pre" for 0.11.4-pre), or None."""
        if self.semver is None or not self.semver.prerelease:
            return None
        return self.semver.prerelease.split(".", 1)[0]

    @property
    def tarball_name(self) -> str:
        """Archive filename, the checksum lookup key for the archive."""
        return self.tarball_url.rstrip("/").rsplit("/", 1)[-1].strip()


def parse_version(version: str) -> Optional[Version]:
    """
    Parse a semantic version string (MAJOR.MINOR.PATCH[-pre][+build]).

    Args:
        version: Version string, optionally prefixed with "v"

    Returns:
        Parsed Version, or None when the string is not a semantic version
    """
    text = version.strip()
    if text[:1] in ("v", "V"):
        text = text[1:]
    try:
        return Version.parse(text)
    except (ValueError, TypeError):
        return None


def prerelease_tag(version: str) -> Optional[str]:
    """Return the first pre-release identifier of a semantic version, or None."""
    parsed = parse_version(version)
    if parsed is None or not parsed.prerelease:
        return None
    return parsed.prerelease.split(".", 1)[0]


def resolve_release(
    version: str,
    dist_url: str = DEFAULT_DIST_URL,
    name: str = DEFAULT_NAME,
) -> ReleaseDescriptor:
    """
    Build a descriptor from a version string using the standard dist layout.

    Layout:
        {dist}/v{version}/{name}-v{version}-headers.tar.gz
        {dist}/v{version}/SHASUMS256.txt
        {dist}/v{version}/win-{x86,x64,arm64}/{name}.lib

    Args:
        version: Version string, optionally prefixed with "v"
        dist_url: Base URL of the distribution server
        name: Runtime name

    Returns:
        ReleaseDescriptor (semver is None for unparsable versions)
    """
    text = version.strip()
    if text[:1] in ("v", "V"):
        text = text[1:]

    base_url = f"{dist_url.rstrip('/')}/v{text}"
    base_name = f"{name}-v{text}"

    archs = {
        arch: ArchRelease(
            lib_url=f"{base_url}/{arch_dir}/{name}.lib",
            lib_path=f"{arch_dir}/{name}.lib",
        )
        for arch, arch_dir in WINDOWS_ARCH_DIRS.items()
    }

    return ReleaseDescriptor(
        version=text,
        semver=parse_version(text),
        name=name,
        version_dir=text,
        tarball_url=f"{base_url}/{base_name}-headers.tar.gz",
        shasums_url=f"{base_url}/SHASUMS256.txt",
        archs=archs,
        base_name=base_name,
    )
