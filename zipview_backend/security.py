from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import InvalidArgument


# Parent-directory token, raw or percent-encoded (%2e, %2E, mixed with '.').
_TRAVERSAL_RE = re.compile(r"(?:\.|%2e){2}", re.IGNORECASE)


@dataclass(frozen=True)
class PathResolution:
    valid: bool
    absolute_path: Optional[Path] = None
    error: Optional[str] = None


def has_traversal_token(value: str) -> bool:
    return bool(_TRAVERSAL_RE.search(value))


def is_within(base_dir: Path, candidate: Path) -> bool:
    """Segment-wise containment: base_dir itself or one of candidate's parents.

    A plain string prefix check would accept /data/ws-evil for /data/ws.
    """
    return candidate == base_dir or base_dir in candidate.parents


def is_safe_basename(name: str) -> bool:
    """Allow only simple filenames (no directories)."""
    if not isinstance(name, str) or not name:
        return False
    if name != Path(name).name:
        return False
    if "/" in name or "\\" in name:
        return False
    return True


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir.

    This defends against path traversal when serving or extracting user-controlled paths.
    """
    base_dir = base_dir.resolve()
    candidate = base_dir
    for part in parts:
        candidate = candidate / part
    resolved = candidate.resolve()
    if not is_within(base_dir, resolved):
        raise InvalidArgument("Path traversal attempt")
    return resolved


class PathGuard:
    """Resolves client-supplied relative paths against a fixed root.

    Every rejection happens on the string before the filesystem is touched
    for anything other than canonicalization.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root).resolve()

    def _string_error(self, relative_path: str) -> Optional[str]:
        if not isinstance(relative_path, str):
            return "Invalid path"
        if "\x00" in relative_path:
            return "Invalid path"
        if has_traversal_token(relative_path):
            return "Invalid path: directory traversal detected"
        return None

    def resolve(self, relative_path: str) -> PathResolution:
        error = self._string_error(relative_path)
        if error:
            return PathResolution(valid=False, error=error)

        normalized = posixpath.normpath(relative_path.replace("\\", "/"))
        candidate = (self.root / normalized).resolve()

        if not is_within(self.root, candidate):
            return PathResolution(valid=False, error="Invalid path: outside allowed directory")
        return PathResolution(valid=True, absolute_path=candidate)

    def require(self, relative_path: str) -> Path:
        resolution = self.resolve(relative_path)
        if not resolution.valid:
            raise InvalidArgument(resolution.error or "Invalid path")
        return resolution.absolute_path  # type: ignore[return-value]

    def require_entry(self, relative_path: str) -> Path:
        """Like require, but only the parent is canonicalized.

        The last segment is kept as-is so a symlink names the link itself,
        not whatever it points at.
        """
        error = self._string_error(relative_path)
        if error:
            raise InvalidArgument(error)
        normalized = posixpath.normpath(relative_path.replace("\\", "/"))
        parent_rel, name = posixpath.split(normalized)
        if not name or name == ".":
            return self.require(normalized)
        parent = self.require(parent_rel)
        entry = parent / name
        if not is_within(self.root, entry):
            raise InvalidArgument("Invalid path: outside allowed directory")
        return entry

    def relative(self, path: Path) -> str:
        """Render a path under root as a posix root-relative string."""
        return Path(path).relative_to(self.root).as_posix()
