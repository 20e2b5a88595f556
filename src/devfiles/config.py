"""Install configuration from config.yaml and environment variables."""

import os
import sys
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

# Schema version stamped into installVersion. Bump to invalidate existing
# installs when the set of installed files changes.
INSTALL_VERSION = 9

# Default config path: config.yaml in the working directory
DEFAULT_CONFIG_PATH = Path("config.yaml")

_TRUE_VALUES = ("1", "true", "yes", "on")


def default_dev_dir() -> Path:
    """Per-user cache directory holding one subdirectory per version."""
    if sys.platform == "win32":
        base = os.getenv("LOCALAPPDATA")
        if base:
            return Path(base) / "devfiles" / "Cache"
    xdg = os.getenv("XDG_CACHE_HOME")
    if xdg:
        return Path(xdg) / "devfiles"
    return Path.home() / ".cache" / "devfiles"


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


@dataclass(frozen=True)
class InstallOptions:
    """Options for one install invocation.

    Load from environment and config.yaml using InstallOptions.load_config().
    Copies with changed fields are made with dataclasses.replace(); an
    instance is never mutated.
    """

    # Base directory; each version installs into dev_dir / version_dir
    dev_dir: Path = None  # type: ignore[assignment]

    # Skip the install when the version is already present and current
    ensure: bool = False

    # Local headers archive used instead of downloading
    tarball: Optional[Path] = None

    # User-supplied directory of dev files; pre-release versions are accepted
    nodedir: Optional[Path] = None

    # PEM bundle with additional trusted certificates
    cafile: Optional[Path] = None

    # Explicit proxy URL, overrides proxy environment variables
    proxy: Optional[str] = None

    # Target platform (sys.platform style); "win32" fetches import libraries
    platform: str = sys.platform

    # Schema version required of an existing install
    install_version: int = INSTALL_VERSION

    # Total request timeout in seconds (None = aiohttp default)
    timeout: Optional[float] = None

    # Internal: set on the permission fallback retry so it never recurses
    no_retry: bool = False

    def __post_init__(self) -> None:
        # Normalize path-like values; frozen, so go through object.__setattr__
        if self.dev_dir is None:
            object.__setattr__(self, "dev_dir", default_dev_dir())
        for name in ("dev_dir", "tarball", "nodedir", "cafile"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, Path):
                object.__setattr__(self, name, Path(value))

    @property
    def is_windows(self) -> bool:
        return self.platform == "win32"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InstallOptions":
        """Build options from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known and v is not None}
        if "ensure" in values:
            values["ensure"] = _as_bool(values["ensure"])
        if "install_version" in values:
            values["install_version"] = int(values["install_version"])
        if "timeout" in values:
            values["timeout"] = float(values["timeout"])
        return cls(**values)

    @classmethod
    def from_env(cls) -> "InstallOptions":
        """Load options from environment variables only.

        Optional environment variables:
            DEVFILES_DIR: Base dev directory (default: per-user cache dir)
            DEVFILES_ENSURE: Skip install when already current (default: false)
            DEVFILES_TARBALL: Local headers archive path
            DEVFILES_NODEDIR: User-supplied dev files directory
            DEVFILES_CAFILE: PEM bundle of additional CA certificates
            DEVFILES_PROXY: Proxy URL
            DEVFILES_TIMEOUT: Request timeout in seconds
        """
        return cls.from_dict(_env_values())

    @classmethod
    def load_config(
        cls,
        config_path: Optional[Path] = None,
        **overrides: Any,
    ) -> "InstallOptions":
        """Load options from config.yaml and environment variables.

        Priority:
            1. Keyword overrides (command line)
            2. Environment variables
            3. config.yaml file (under 'devfiles:' key)
            4. Dataclass defaults
        """
        config_path = config_path or DEFAULT_CONFIG_PATH

        data: Dict[str, Any] = {}
        if config_path.exists():
            with open(config_path, "r", encoding="utf-8") as f:
                yaml_data = yaml.safe_load(f) or {}
            data.update(yaml_data.get("devfiles", {}) or {})

        data.update(_env_values())
        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls.from_dict(data)


def _env_values() -> Dict[str, Any]:
    mapping = {
        "DEVFILES_DIR": "dev_dir",
        "DEVFILES_ENSURE": "ensure",
        "DEVFILES_TARBALL": "tarball",
        "DEVFILES_NODEDIR": "nodedir",
        "DEVFILES_CAFILE": "cafile",
        "DEVFILES_PROXY": "proxy",
        "DEVFILES_TIMEOUT": "timeout",
    }
    values: Dict[str, Any] = {}
    for env_name, field_name in mapping.items():
        value = os.getenv(env_name)
        if value:
            values[field_name] = value
    return values
