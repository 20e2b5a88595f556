"""
Shared fixtures: in-memory release archives and a local dist server.
"""

import hashlib
import io
import tarfile
from typing import Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from devfiles.config import InstallOptions

DEFAULT_ENTRIES = {
    "include/node/node.h": b"#define NODE_H 1\n",
    "include/node/v8.h": b"#define V8_H 1\n",
    "include/node/common.gypi": b"{ 'variables': {} }\n",
    "README.md": b"# readme\n",
    "LICENSE": b"license text\n",
}


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def build_tarball(base: str, entries: Dict[str, bytes], compress: bool = True) -> bytes:
    """Build a tar(.gz) archive with every entry under a `base/` directory."""
    buf = io.BytesIO()
    mode = "w:gz" if compress else "w"
    with tarfile.open(fileobj=buf, mode=mode) as tar:
        top = tarfile.TarInfo(base)
        top.type = tarfile.DIRTYPE
        top.mode = 0o755
        tar.addfile(top)
        for name, data in entries.items():
            info = tarfile.TarInfo(f"{base}/{name}")
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


class DistServer:
    """
    Minimal distribution server.

    Routes map a request path to (status, body). Unknown paths answer 404.
    Every requested path is recorded in `requests`.
    """

    def __init__(self):
        self.routes: Dict[str, Tuple[int, bytes]] = {}
        self.requests: List[str] = []
        app = web.Application()
        app.router.add_get("/{tail:.*}", self._handle)
        self.server = TestServer(app)

    async def _handle(self, request: web.Request) -> web.Response:
        self.requests.append(request.path)
        status, body = self.routes.get(request.path, (404, b"not found"))
        return web.Response(status=status, body=body)

    @property
    def dist_url(self) -> str:
        return str(self.server.make_url("/dist"))

    def add(self, path: str, body: bytes, status: int = 200) -> None:
        self.routes[path] = (status, body)

    def publish(
        self,
        version: str,
        entries: Optional[Dict[str, bytes]] = None,
        libs: Optional[Dict[str, bytes]] = None,
        shasums: Optional[str] = None,
    ) -> bytes:
        """
        Publish a release: headers archive, Windows libs and SHASUMS256.txt.

        Args:
            version: Version without leading "v"
            entries: Archive entries (default: DEFAULT_ENTRIES)
            libs: Import library bodies keyed by arch dir (e.g. "win-x64")
            shasums: Manifest text override

        Returns:
            Archive bytes
        """
        base = f"node-v{version}"
        tarball = build_tarball(base, DEFAULT_ENTRIES if entries is None else entries)
        root = f"/dist/v{version}"
        self.add(f"{root}/{base}-headers.tar.gz", tarball)

        lines = [f"{sha256(tarball)}  {base}-headers.tar.gz"]
        for arch_dir, body in (libs or {}).items():
            self.add(f"{root}/{arch_dir}/node.lib", body)
            lines.append(f"{sha256(body)}  {arch_dir}/node.lib")
        if shasums is None:
            shasums = "\n".join(lines) + "\n"
        self.add(f"{root}/SHASUMS256.txt", shasums.encode("utf-8"))
        return tarball

    def requested(self, suffix: str) -> bool:
        return any(path.endswith(suffix) for path in self.requests)


@pytest_asyncio.fixture
async def dist_server():
    server = DistServer()
    await server.server.start_server()
    try:
        yield server
    finally:
        await server.server.close()


@pytest.fixture
def dev_dir(tmp_path):
    """Dev directory for installs."""
    path = tmp_path / "devdir"
    path.mkdir()
    return path


@pytest.fixture
def linux_options(dev_dir):
    return InstallOptions(dev_dir=dev_dir, platform="linux")


@pytest.fixture
def windows_options(dev_dir):
    return InstallOptions(dev_dir=dev_dir, platform="win32")


@pytest.fixture
def make_tarball():
    """Factory building an in-memory archive: make_tarball(base, entries)."""
    return build_tarball
