from __future__ import annotations

import logging
import posixpath
import re
import secrets
import shutil
import stat
import time
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import ALLOWED_ARCHIVE_EXTS, Settings
from .errors import Internal, InvalidArgument, WorkspaceError
from .file_tree import FileNode, build_file_tree
from .security import has_traversal_token, is_safe_basename, safe_join


logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024
_DRIVE_RE = re.compile(r"^[A-Za-z]:")
_DEFAULT_BASE_NAME = "archive"


@dataclass(frozen=True)
class ImportedArchive:
    workspace_name: str
    tree: list[FileNode]


def _now_millis() -> int:
    return int(time.time() * 1000)


def archive_base_name(original_name: str) -> str:
    """Strip directories and the archive extension from a client-supplied name."""
    name = Path((original_name or "").replace("\\", "/")).name
    lowered = name.lower()
    ext = next((e for e in ALLOWED_ARCHIVE_EXTS if lowered.endswith(e)), Path(name).suffix)
    base = name[: len(name) - len(ext)].lstrip(".")
    base = re.sub(r"\.{2,}", ".", base).strip()
    if not base or "\x00" in base or not is_safe_basename(base) or has_traversal_token(base):
        return _DEFAULT_BASE_NAME
    return base


def is_zip_file(path: Path) -> bool:
    try:
        return zipfile.is_zipfile(path)
    except OSError:
        return False


def _is_symlink_member(info: zipfile.ZipInfo) -> bool:
    return stat.S_ISLNK(info.external_attr >> 16)


def _normalize_member_name(name: str) -> str:
    return name.replace("\\", "/")


def _is_bad_zip_member(name: str) -> bool:
    # Zip Slip defenses.
    if not name or name.strip() == "":
        return True
    normalized = _normalize_member_name(name)
    if normalized.startswith("/"):
        return True
    if _DRIVE_RE.match(normalized):
        return True
    if any(part == ".." for part in normalized.split("/")):
        return True
    # Anything PathGuard would refuse later must not land on disk.
    if has_traversal_token(normalized):
        return True
    return False


def _is_escaping_link(member_name: str, target: str) -> bool:
    target = _normalize_member_name(target)
    if not target or target.startswith("/") or _DRIVE_RE.match(target):
        return True
    joined = posixpath.normpath(posixpath.join(posixpath.dirname(_normalize_member_name(member_name)), target))
    return joined == ".." or joined.startswith("../")


def validate_members(zf: zipfile.ZipFile) -> list[zipfile.ZipInfo]:
    """Check every member name before anything is written to disk."""
    members = zf.infolist()
    for info in members:
        if _is_bad_zip_member(info.filename):
            raise InvalidArgument("Unsafe path in ZIP")
        if _is_symlink_member(info):
            target = zf.read(info).decode("utf-8", errors="replace")
            if _is_escaping_link(info.filename, target):
                raise InvalidArgument("Unsafe symlink in ZIP")
    return members


def _extract_member(zf: zipfile.ZipFile, info: zipfile.ZipInfo, dest_dir: Path) -> None:
    name = _normalize_member_name(info.filename)
    out_path = safe_join(dest_dir, name)
    if info.is_dir():
        out_path.mkdir(parents=True, exist_ok=True)
        return
    out_path.parent.mkdir(parents=True, exist_ok=True)
    # Symlink members are written as plain files holding the link text.
    with zf.open(info) as src, out_path.open("wb") as dst:
        shutil.copyfileobj(src, dst, _CHUNK_SIZE)


class ArchiveImporter:
    """Extracts uploaded ZIPs into fresh workspaces directly under the root."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.root = settings.root

    def _unique_dir(self, name: str) -> Path:
        target = self.root / name
        if target.exists():
            target = self.root / f"{name}-{secrets.token_hex(3)}"
        return target

    def _create_extract_dir(self, base: str, stamp: int) -> tuple[Path, str]:
        token = str(stamp)
        target = self.root / f"{base}-{token}"
        try:
            target.mkdir()
        except FileExistsError:
            # Same base name imported within the same millisecond.
            token = f"{stamp}-{secrets.token_hex(3)}"
            target = self.root / f"{base}-{token}"
            target.mkdir()
        return target, token

    def _flatten_single_wrapper(self, extract_dir: Path, token: str) -> Path:
        """Lift a lone top-level directory up to become the workspace itself."""
        entries = list(extract_dir.iterdir())
        if len(entries) != 1:
            return extract_dir
        inner = entries[0]
        if inner.is_symlink() or not inner.is_dir():
            return extract_dir

        wanted = f"{inner.name}-{token}"
        if self.root / wanted == extract_dir:
            # project.zip wrapping project/: the target name is the extract dir itself.
            staging = self.root / f".{extract_dir.name}.unwrap"
            extract_dir.rename(staging)
            inner = staging / inner.name
            extract_dir = staging
            target = self.root / wanted
        else:
            target = self._unique_dir(wanted)

        moved = False
        try:
            inner.rename(target)
            moved = True
            extract_dir.rmdir()
        except OSError:
            shutil.rmtree(extract_dir, ignore_errors=True)
            if moved:
                shutil.rmtree(target, ignore_errors=True)
            raise
        return target

    def import_archive(self, archive_path: Path, original_name: str) -> ImportedArchive:
        archive_path = Path(archive_path)
        base = archive_base_name(original_name)
        stamp = _now_millis()

        if not is_zip_file(archive_path):
            raise Internal("Failed to extract archive: not a readable ZIP file")

        extract_dir: Optional[Path] = None
        final_dir: Optional[Path] = None
        try:
            with zipfile.ZipFile(archive_path) as zf:
                members = validate_members(zf)
                extract_dir, token = self._create_extract_dir(base, stamp)
                for info in members:
                    _extract_member(zf, info, extract_dir)
            final_dir = self._flatten_single_wrapper(extract_dir, token)
            tree = build_file_tree(final_dir, final_dir.name)
        except WorkspaceError:
            self._discard(extract_dir, final_dir)
            raise
        except Exception as exc:
            self._discard(extract_dir, final_dir)
            logger.exception("Extraction of %r failed", original_name)
            raise Internal("Failed to extract archive") from exc

        archive_path.unlink(missing_ok=True)
        logger.info("Imported %r into workspace %s (%d top-level entries)", original_name, final_dir.name, len(tree))
        return ImportedArchive(workspace_name=final_dir.name, tree=tree)

    def _discard(self, *dirs: Optional[Path]) -> None:
        # Best-effort: leave the root as it was before the import started.
        for path in dirs:
            if path is not None and path != self.root and path.exists():
                shutil.rmtree(path, ignore_errors=True)
