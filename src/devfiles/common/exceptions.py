"""
Exception types and error classification for devfiles.

Provides:
- ErrorCategory enum for handling decisions
- Typed exception hierarchy for install pipeline errors
- Error classification utilities
"""

from enum import Enum
from typing import Optional


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that may succeed on a later run
                   (e.g., network timeouts, 5xx responses)
        PERMANENT: Failures that won't succeed without a change
                   (e.g., 404, bad version, corrupt content)
        PERMISSION: Filesystem permission failures (drive the temp dir fallback)
        UNKNOWN: Unclassified errors
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    PERMISSION = "permission"
    UNKNOWN = "unknown"


class DevfilesError(Exception):
    """
    Base exception for all install pipeline errors.

    Attributes:
        message: Human-readable error description
        category: Error classification
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        context: Optional[dict] = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """Whether re-running the install might succeed without changes."""
        return self.category in (ErrorCategory.TRANSIENT, ErrorCategory.UNKNOWN)

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Version Errors
# =============================================================================


class InvalidVersion(DevfilesError):
    """Version string could not be parsed."""

    category = ErrorCategory.PERMANENT


class UnsupportedVersion(DevfilesError):
    """Version is below the minimum supported floor."""

    category = ErrorCategory.PERMANENT


class PrereleaseUnsupported(DevfilesError):
    """Unpublished "pre" versions cannot be installed."""

    category = ErrorCategory.PERMANENT


# =============================================================================
# Network Errors
# =============================================================================


class NetworkUnreachable(DevfilesError):
    """Host name could not be resolved (DNS, proxy or offline)."""

    category = ErrorCategory.TRANSIENT


class TransportError(DevfilesError):
    """Connection failed or broke while transferring."""

    category = ErrorCategory.TRANSIENT


class BadStatus(DevfilesError):
    """Server answered with a status other than 200."""

    def __init__(
        self,
        status: int,
        url: str,
        message: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            message or f"{status} response downloading {url}",
            cause,
            {"http_status": status, "url": url},
        )
        self.status = status
        self.url = url
        self.category = classify_http_status(status)


class PrematureClose(DevfilesError):
    """Stream ended before any archive entry was extracted."""

    category = ErrorCategory.TRANSIENT


# =============================================================================
# Content Errors
# =============================================================================


class ChecksumMismatch(DevfilesError):
    """Locally computed hash does not match the published one."""

    category = ErrorCategory.PERMANENT

    def __init__(
        self,
        file: str,
        observed: str,
        expected: Optional[str],
    ):
        super().__init__(
            f"{file} local checksum {observed} not match remote {expected}",
            context={"file": file, "observed": observed, "expected": expected},
        )
        self.file = file
        self.observed = observed
        self.expected = expected


class ExtractError(DevfilesError):
    """Archive could not be extracted or yielded no usable entries."""

    category = ErrorCategory.PERMANENT


# =============================================================================
# Filesystem Errors
# =============================================================================


class FilesystemError(DevfilesError):
    """Directory/file creation or I/O failure other than permissions."""

    category = ErrorCategory.PERMANENT


class PermissionDenied(DevfilesError):
    """Permission failure that persisted through the temp dir fallback."""

    category = ErrorCategory.PERMISSION


# =============================================================================
# Error Classification Utilities
# =============================================================================


def classify_http_status(status_code: int) -> ErrorCategory:
    """
    Classify HTTP status code into error category.

    Args:
        status_code: HTTP response status

    Returns:
        Appropriate ErrorCategory
    """
    if 200 <= status_code < 300:
        return ErrorCategory.UNKNOWN  # Not an error

    if status_code == 429:
        return ErrorCategory.TRANSIENT  # Rate limited

    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT

    if status_code >= 500:
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


def wrap_exception(
    exc: BaseException,
    default_class: type = FilesystemError,
    context: Optional[dict] = None,
) -> DevfilesError:
    """
    Wrap a generic exception in the appropriate DevfilesError subclass.

    Args:
        exc: Exception to wrap
        default_class: Class to use if can't classify
        context: Additional context to include

    Returns:
        DevfilesError subclass instance
    """
    if isinstance(exc, DevfilesError):
        if context:
            exc.context.update(context)
        return exc

    if isinstance(exc, PermissionError):
        return PermissionDenied(str(exc), cause=exc, context=context)

    return default_class(str(exc), cause=exc, context=context)
