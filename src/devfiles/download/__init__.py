"""
Async download module.

Provides HTTP access for release downloads:
    - Session setup with client identifier, CA bundle and timeout
    - Proxy resolution from options and environment
    - Streaming GET with transport error classification
    - Incremental SHA-256 hashing of response bodies
"""

from devfiles.download.hashing import ContentHasher
from devfiles.download.http_client import (
    check_status,
    create_session,
    fetch,
    read_ca_file,
    read_text,
    resolve_proxy,
)

__all__ = [
    "ContentHasher",
    "check_status",
    "create_session",
    "fetch",
    "read_ca_file",
    "read_text",
    "resolve_proxy",
]
