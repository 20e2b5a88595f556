"""
HTTP client for release downloads.

Provides:
- Session creation with the client identifier header, custom CA bundle
  and request timeout
- Proxy resolution from options and environment
- fetch(): streaming GET whose transport errors are classified into
  NetworkUnreachable / TransportError
"""

import asyncio
import logging
import os
import platform
import re
import socket
import ssl
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Mapping, Optional

import aiohttp

from devfiles import __version__
from devfiles.common.exceptions import (
    BadStatus,
    DevfilesError,
    FilesystemError,
    NetworkUnreachable,
    TransportError,
)
from devfiles.common.logging import get_logger, log_with_context
from devfiles.common.security import sanitize_error_message, sanitize_url
from devfiles.config import InstallOptions

logger = get_logger(__name__)

CHUNK_SIZE = 64 * 1024

# Environment variables consulted for a proxy, in priority order
PROXY_ENV_VARS = ("http_proxy", "HTTP_PROXY", "npm_config_proxy")

# A CA file can contain multiple certificates; [\S\s]*? matches across newlines
_CERT_RE = re.compile(r"(-----BEGIN CERTIFICATE-----[\S\s]*?-----END CERTIFICATE-----)")

_PROXY_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)

NETWORK_HINT = (
    "This is most likely not a problem with devfiles or the package itself and\n"
    "is related to network connectivity. In most cases you are behind a proxy or have bad\n"
    "network settings."
)


def user_agent() -> str:
    """Client identifier sent with every request."""
    return f"devfiles v{__version__} (python {platform.python_version()})"


def read_ca_file(filename: Path) -> List[str]:
    """
    Read a PEM bundle and split it into individual certificates.

    Args:
        filename: Path to the PEM file

    Returns:
        List of PEM certificate strings (may be empty)

    Raises:
        FilesystemError: If the file cannot be read
    """
    try:
        with open(filename, "r", encoding="utf-8") as f:
            ca = f.read()
    except OSError as e:
        raise FilesystemError(f"Cannot read CA file {filename}", cause=e) from e
    return _CERT_RE.findall(ca)


def build_ssl_context(cafile: Optional[Path]) -> Optional[ssl.SSLContext]:
    """
    Build an SSL context trusting the default store plus `cafile` certificates.

    Returns None when no CA file is configured (aiohttp default verification).
    """
    if not cafile:
        return None
    context = ssl.create_default_context()
    for cert in read_ca_file(cafile):
        context.load_verify_locations(cadata=cert)
    return context


def resolve_proxy(
    options: InstallOptions,
    env: Optional[Mapping[str, str]] = None,
) -> Optional[str]:
    """
    Pick the proxy URL for downloads.

    Priority: options.proxy, then http_proxy, HTTP_PROXY, npm_config_proxy.
    A value that is not an http(s) URL is ignored with a warning.

    Args:
        options: Install options
        env: Environment mapping (default: os.environ)

    Returns:
        Proxy URL or None
    """
    env = os.environ if env is None else env
    proxy_url = options.proxy
    if not proxy_url:
        for name in PROXY_ENV_VARS:
            if env.get(name):
                proxy_url = env[name]
                break
    if not proxy_url:
        return None

    if _PROXY_SCHEME_RE.match(proxy_url):
        log_with_context(logger, logging.DEBUG, "using proxy url", proxy=proxy_url)
        return proxy_url

    logger.warning(f'ignoring invalid "proxy" config setting: "{sanitize_url(proxy_url)}"')
    return None


def create_session(options: InstallOptions) -> aiohttp.ClientSession:
    """
    Create an aiohttp session for release downloads.

    Args:
        options: Install options (cafile, timeout)

    Returns:
        Configured ClientSession; caller is responsible for closing it
    """
    ssl_context = build_ssl_context(options.cafile)
    connector = aiohttp.TCPConnector(ssl=ssl_context if ssl_context else True)

    kwargs = {}
    if options.timeout is not None:
        kwargs["timeout"] = aiohttp.ClientTimeout(total=options.timeout)

    return aiohttp.ClientSession(
        connector=connector,
        headers={
            "User-Agent": user_agent(),
            "Connection": "keep-alive",
        },
        trust_env=False,
        **kwargs,
    )


def classify_transport_error(exc: BaseException, url: str) -> DevfilesError:
    """
    Map a transport exception to NetworkUnreachable or TransportError.

    Args:
        exc: Exception raised by aiohttp or the socket layer
        url: URL being fetched

    Returns:
        DevfilesError subclass instance
    """
    if isinstance(exc, DevfilesError):
        return exc

    os_error = getattr(exc, "os_error", None)
    dns_error = getattr(aiohttp, "ClientConnectorDNSError", None)
    if (
        (dns_error is not None and isinstance(exc, dns_error))
        or isinstance(os_error, socket.gaierror)
        or isinstance(exc, socket.gaierror)
    ):
        return NetworkUnreachable(NETWORK_HINT, cause=exc, context={"url": url})

    if isinstance(exc, asyncio.TimeoutError):
        return TransportError(f"Timed out downloading {url}", cause=exc, context={"url": url})

    return TransportError(
        f"Error downloading {url}: {sanitize_error_message(str(exc))}",
        cause=exc,
        context={"url": url},
    )


@asynccontextmanager
async def fetch(
    session: aiohttp.ClientSession,
    url: str,
    proxy: Optional[str] = None,
) -> AsyncIterator[aiohttp.ClientResponse]:
    """
    Issue a GET and yield the response for streaming.

    The status is not checked here; callers decide which statuses they
    tolerate (see check_status). Transport errors raised while connecting or
    while reading the body inside the block are classified.

    Args:
        session: aiohttp session from create_session()
        url: URL to fetch
        proxy: Optional proxy URL

    Raises:
        NetworkUnreachable: Host name could not be resolved
        TransportError: Any other transport failure
    """
    log_with_context(logger, logging.DEBUG, "GET", url=url)
    try:
        async with session.get(url, proxy=proxy) as response:
            log_with_context(logger, logging.DEBUG, f"{response.status} response", url=url, http_status=response.status)
            yield response
    except (aiohttp.ClientError, asyncio.TimeoutError, socket.gaierror) as e:
        raise classify_transport_error(e, url) from e


def check_status(response: aiohttp.ClientResponse, url: str, what: Optional[str] = None) -> None:
    """
    Raise BadStatus unless the response is a 200.

    Args:
        response: Response to check
        url: Requested URL
        what: Optional description used in the message instead of the URL
    """
    if response.status != 200:
        message = f"{response.status} status code downloading {what}" if what else None
        raise BadStatus(response.status, url, message=message)


async def read_text(
    session: aiohttp.ClientSession,
    url: str,
    proxy: Optional[str] = None,
    what: Optional[str] = None,
) -> str:
    """GET a small text document, requiring a 200 response."""
    async with fetch(session, url, proxy) as response:
        check_status(response, url, what)
        body = await response.read()
    return body.decode("utf-8", errors="replace")
