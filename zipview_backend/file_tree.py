from __future__ import annotations

import os
import unicodedata
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional


NodeType = Literal["file", "directory"]


@dataclass
class FileNode:
    name: str
    path: str  # root-relative, posix separators
    type: NodeType
    children: Optional[list["FileNode"]] = field(default=None)

    def to_dict(self) -> dict:
        data: dict = {"name": self.name, "path": self.path, "type": self.type}
        if self.type == "directory":
            data["children"] = [child.to_dict() for child in self.children or []]
        return data


def collation_key(name: str) -> tuple[str, str]:
    """Human-style ordering: accents folded, case-insensitive, lowercase first on ties."""
    decomposed = unicodedata.normalize("NFKD", name)
    base = "".join(ch for ch in decomposed if not unicodedata.combining(ch)).casefold()
    return base, name.swapcase()


def _node_sort_key(node: FileNode) -> tuple[int, tuple[str, str]]:
    return (0 if node.type == "directory" else 1), collation_key(node.name)


def build_file_tree(directory: Path, relative_prefix: str = "") -> list[FileNode]:
    """Recursively describe directory as an ordered list of FileNodes.

    Symlinks are reported as files and never followed. Any OSError raised
    while reading a level propagates and fails the whole build.
    """
    nodes: list[FileNode] = []
    with os.scandir(directory) as it:
        entries = list(it)

    for entry in entries:
        rel = f"{relative_prefix}/{entry.name}" if relative_prefix else entry.name
        if entry.is_dir(follow_symlinks=False):
            nodes.append(
                FileNode(
                    name=entry.name,
                    path=rel,
                    type="directory",
                    children=build_file_tree(Path(entry.path), rel),
                )
            )
        else:
            nodes.append(FileNode(name=entry.name, path=rel, type="file"))

    nodes.sort(key=_node_sort_key)
    return nodes
