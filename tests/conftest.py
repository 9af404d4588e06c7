"""Pytest configuration and fixtures."""

import io
import os
import sys
import tempfile
import zipfile
from pathlib import Path

import pytest

# Add repo root to path (for 'server' and 'zipview_backend' imports)
repo_root = Path(__file__).parent.parent
sys.path.insert(0, str(repo_root))

# server.py builds a module-level app on import; keep it out of the repo tree.
os.environ.setdefault("ZIPVIEW_WORKSPACES_ROOT", tempfile.mkdtemp(prefix="zipview-tests-"))

from zipview_backend.config import Settings  # noqa: E402


@pytest.fixture
def settings(tmp_path):
    """Settings rooted in a fresh temporary directory."""
    s = Settings(root=tmp_path / "ws", temp_dir=tmp_path / "tmp")
    s.ensure_dirs()
    return s


def build_zip(entries: dict) -> bytes:
    """Build ZIP bytes from {member_name: content}; None content means a directory entry."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries.items():
            if data is None:
                zf.writestr(zipfile.ZipInfo(name), b"")
            else:
                zf.writestr(name, data)
    return buf.getvalue()


@pytest.fixture
def make_zip(tmp_path):
    """Write a ZIP built from entries to a temp upload file and return its path."""

    def _make(entries: dict, name: str = "upload.bin") -> Path:
        path = tmp_path / "uploads" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(build_zip(entries))
        return path

    return _make
