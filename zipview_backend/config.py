from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


# Upload limits (best-effort; also enforced by proxy/browser typically).
DEFAULT_MAX_UPLOAD_BYTES = 500 * 1024 * 1024  # 500MB

ALLOWED_ARCHIVE_EXTS = {".zip"}


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, built once at startup and passed around.

    root is the single directory all workspaces live under. It is resolved
    on construction so every containment check compares canonical paths.
    """

    root: Path
    temp_dir: Optional[Path] = None
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        root = Path(self.root).resolve()
        object.__setattr__(self, "root", root)
        temp_dir = self.temp_dir if self.temp_dir is not None else root.parent / ".upload-tmp"
        object.__setattr__(self, "temp_dir", Path(temp_dir).resolve())

    def ensure_dirs(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self.temp_dir.mkdir(parents=True, exist_ok=True)


def load_settings() -> Settings:
    # Default: project-local ./workspaces for easier inspection and cleanup.
    # Override with env var ZIPVIEW_WORKSPACES_ROOT.
    root_raw = os.environ.get("ZIPVIEW_WORKSPACES_ROOT")
    if root_raw and root_raw.strip():
        root = Path(root_raw)
    else:
        # zipview_backend/ -> project root
        root = Path(__file__).resolve().parent.parent / "workspaces"

    temp_raw = os.environ.get("ZIPVIEW_TEMP_DIR")
    temp_dir = Path(temp_raw) if temp_raw and temp_raw.strip() else None

    return Settings(
        root=root,
        temp_dir=temp_dir,
        max_upload_bytes=int(os.environ.get("ZIPVIEW_MAX_UPLOAD_BYTES", str(DEFAULT_MAX_UPLOAD_BYTES))),
        log_level=os.environ.get("ZIPVIEW_LOG_LEVEL", "INFO").upper(),
    )
