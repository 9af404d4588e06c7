from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import Settings
from .errors import Conflict, Internal, InvalidArgument, NotFound
from .file_tree import FileNode, build_file_tree, collation_key
from .security import PathGuard, has_traversal_token, is_safe_basename
from .zip_utils import ArchiveImporter, ImportedArchive


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileContent:
    content: str
    path: str
    extension: str


class WorkspaceStore:
    """File operations on workspaces under a single root.

    Every client-supplied path goes through PathGuard before the filesystem
    is touched. Raw OSErrors are logged and replaced by sanitized errors.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.root = settings.root
        self.guard = PathGuard(settings.root)
        self.importer = ArchiveImporter(settings)

    def list_workspaces(self) -> list[str]:
        if not self.root.exists():
            return []
        try:
            names = [p.name for p in self.root.iterdir() if p.is_dir() and not p.is_symlink()]
        except OSError as exc:
            logger.exception("Listing workspaces failed")
            raise Internal("Failed to list folders") from exc
        return sorted(names, key=collation_key)

    def get_tree(self, relative_path: str) -> list[FileNode]:
        path = self.guard.require(_required(relative_path, "Folder name is required"))
        if not path.is_dir():
            raise NotFound("Folder not found")
        try:
            return build_file_tree(path, self._relative(path))
        except FileNotFoundError as exc:
            raise NotFound("Folder not found") from exc
        except OSError as exc:
            logger.exception("Building tree for %s failed", relative_path)
            raise Internal("Failed to build file tree") from exc

    def read_file(self, relative_path: str) -> FileContent:
        path = self.guard.require(_required(relative_path, "File path is required"))
        if not path.exists():
            raise NotFound("File not found")
        if path.is_dir():
            raise InvalidArgument("Path is not a file")
        try:
            raw = path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFound("File not found") from exc
        except OSError as exc:
            logger.exception("Reading %s failed", relative_path)
            raise Internal("Failed to read file") from exc
        return FileContent(
            content=raw.decode("utf-8", errors="replace"),
            path=relative_path,
            extension=Path(relative_path).suffix.lower(),
        )

    def rename_entry(self, old_path: str, new_name: str) -> str:
        """Rename a file or folder in place; returns its new root-relative path."""
        if not old_path or not new_name:
            raise InvalidArgument("oldPath and newName are required")
        if not is_safe_basename(new_name) or has_traversal_token(new_name):
            raise InvalidArgument("Invalid new name")

        source = self.guard.require_entry(old_path)
        if source == self.root:
            raise InvalidArgument("Invalid path: cannot rename the root")
        if not os.path.lexists(source):
            raise NotFound("File not found")

        resolution = self.guard.resolve(self._relative(source.parent / new_name))
        if not resolution.valid:
            raise InvalidArgument("Invalid new path")
        target = source.parent / new_name
        if os.path.lexists(target):
            raise Conflict("A file with that name already exists")

        try:
            source.rename(target)
        except FileNotFoundError as exc:
            raise NotFound("File not found") from exc
        except OSError as exc:
            logger.exception("Renaming %s failed", old_path)
            raise Internal("Failed to rename") from exc

        new_path = self._relative(target)
        logger.info("Renamed %s -> %s", self._relative(source), new_path)
        return new_path

    def delete_entry(self, relative_path: str) -> None:
        path = self.guard.require_entry(_required(relative_path, "File path is required"))
        if path == self.root:
            raise InvalidArgument("Invalid path: cannot delete the root")
        if not os.path.lexists(path):
            raise NotFound("File not found")

        try:
            # A symlink is removed itself, never what it points at.
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()
        except FileNotFoundError as exc:
            raise NotFound("File not found") from exc
        except OSError as exc:
            logger.exception("Deleting %s failed", relative_path)
            raise Internal("Failed to delete") from exc
        logger.info("Deleted %s", self._relative(path))

    def import_archive(self, archive_path: Path, original_name: str) -> ImportedArchive:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.importer.import_archive(archive_path, original_name)

    def _relative(self, path: Path) -> str:
        rel = self.guard.relative(path)
        return "" if rel == "." else rel


def _required(value: Optional[str], message: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidArgument(message)
    return value
