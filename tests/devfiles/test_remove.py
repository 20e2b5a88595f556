"""Tests for removing installed versions."""

import errno
from pathlib import Path

import pytest

from devfiles.common.exceptions import PermissionDenied
from devfiles.remove import remove_version


@pytest.mark.asyncio
async def test_removes_version_tree(tmp_path):
    install_dir = tmp_path / "20.0.0"
    (install_dir / "include" / "node").mkdir(parents=True)
    (install_dir / "include" / "node" / "node.h").write_text("x")
    (tmp_path / "18.0.0").mkdir()

    assert await remove_version(tmp_path, "20.0.0") is True

    assert not install_dir.exists()
    assert (tmp_path / "18.0.0").exists()


@pytest.mark.asyncio
async def test_missing_version(tmp_path):
    assert await remove_version(tmp_path, "20.0.0") is False


@pytest.mark.asyncio
async def test_removes_stray_file(tmp_path):
    (tmp_path / "20.0.0").write_text("not a directory")

    assert await remove_version(tmp_path, "20.0.0") is True
    assert not (tmp_path / "20.0.0").exists()


@pytest.mark.asyncio
async def test_unreadable_dev_dir_is_typed(tmp_path, monkeypatch):
    (tmp_path / "20.0.0").mkdir()

    def denied_lstat(self):
        raise PermissionError(errno.EACCES, "Permission denied", str(self))

    monkeypatch.setattr(Path, "lstat", denied_lstat)

    with pytest.raises(PermissionDenied):
        await remove_version(tmp_path, "20.0.0")
