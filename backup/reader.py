"""Inspect archives and turn their entries into a checkable selection tree."""
from __future__ import annotations

import os
import tarfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple, Union

from . import manifest as manifest_codec
from .errors import BackupRestoreError, InvalidFingerprintError
from .types import ArchiveEntry, PathKeyMap

PathInput = Union[str, "os.PathLike[str]"]


@dataclass(slots=True)
class SelectionTreeNode:
    """One path segment of an archive; directories own their children."""

    checked: bool = True
    is_file: bool = False
    children: Dict[str, "SelectionTreeNode"] = field(default_factory=dict)

    def child(self, name: str) -> "SelectionTreeNode":
        node = self.children.get(name)
        if node is None:
            node = SelectionTreeNode()
            self.children[name] = node
        return node

    def find(self, path: str) -> Optional["SelectionTreeNode"]:
        node: Optional[SelectionTreeNode] = self
        for part in _split(path):
            if node is None:
                return None
            node = node.children.get(part)
        return node

    def set_checked(self, value: bool) -> None:
        self.checked = value
        for node in self.children.values():
            node.set_checked(value)

    def fully_checked(self) -> bool:
        return self.checked and all(node.fully_checked() for node in self.children.values())

    def iter_paths(self, prefix: Tuple[str, ...] = ()) -> Iterator[Tuple[str, "SelectionTreeNode"]]:
        for name in sorted(self.children):
            node = self.children[name]
            path = prefix + (name,)
            yield "/".join(path), node
            yield from node.iter_paths(path)


@dataclass(slots=True)
class ArchiveView:
    archive_path: Path
    tree: SelectionTreeNode
    key_map: PathKeyMap
    entries: List[ArchiveEntry]


def _split(name: str) -> List[str]:
    return [part for part in name.replace("\\", "/").split("/") if part and part != "."]


def _read_fingerprint(
    archive: tarfile.TarFile, members: Iterable[tarfile.TarInfo]
) -> Tuple[tarfile.TarInfo, PathKeyMap]:
    # the first matching member is the manifest; a later one is user content
    for member in members:
        if member.name.strip("/") != manifest_codec.FINGERPRINT_NAME or not member.isfile():
            continue
        handle = archive.extractfile(member)
        if handle is None:
            break
        with handle:
            text = handle.read().decode("utf-8", errors="surrogateescape")
        return member, manifest_codec.decode(text)
    raise InvalidFingerprintError("Archive has no fingerprint; it was not created by this tool.")


@contextmanager
def open_archive(path: PathInput) -> Iterator[Tuple[tarfile.TarFile, List[ArchiveEntry], PathKeyMap]]:
    """Open *path* and yield the tar handle, its content entries and key map."""

    archive_path = Path(path)
    if not archive_path.is_file():
        raise BackupRestoreError(f"Archive not found: {archive_path}", archive_path)
    try:
        archive = tarfile.open(archive_path, "r")
    except tarfile.TarError as exc:
        raise InvalidFingerprintError(f"{archive_path} is not a readable archive: {exc}") from exc
    except OSError as exc:
        raise BackupRestoreError(f"Cannot open {archive_path}: {exc}", archive_path) from exc
    with archive:
        try:
            members = archive.getmembers()
        except tarfile.TarError as exc:
            raise InvalidFingerprintError(f"{archive_path} is corrupt: {exc}") from exc
        fingerprint, key_map = _read_fingerprint(archive, members)
        entries = [
            ArchiveEntry(name=member.name.rstrip("/"), is_dir=member.isdir(), size=member.size, member=member)
            for member in members
            if member is not fingerprint
        ]
        yield archive, entries, key_map


def list_entries(path: PathInput) -> Tuple[List[ArchiveEntry], PathKeyMap]:
    with open_archive(path) as (_, entries, key_map):
        return entries, key_map


def build_tree(entries: Iterable[ArchiveEntry]) -> SelectionTreeNode:
    root = SelectionTreeNode()
    for entry in entries:
        parts = _split(entry.name)
        if not parts:
            continue
        node = root
        for part in parts[:-1]:
            node = node.child(part)
            node.is_file = False
        leaf = node.child(parts[-1])
        leaf.is_file = not entry.is_dir and not leaf.children
    root.set_checked(True)
    return root


def collect_paths(tree: SelectionTreeNode) -> Set[str]:
    """Flatten checked nodes into the smallest set of covering tree paths."""

    selected: Set[str] = set()

    def _visit(node: SelectionTreeNode, prefix: Tuple[str, ...]) -> None:
        for name, child in node.children.items():
            path = prefix + (name,)
            if child.is_file:
                if child.checked:
                    selected.add("/".join(path))
            elif child.fully_checked():
                selected.add("/".join(path))
            else:
                _visit(child, path)

    _visit(tree, ())
    return selected


def open_archive_view(path: PathInput) -> ArchiveView:
    entries, key_map = list_entries(path)
    return ArchiveView(archive_path=Path(path), tree=build_tree(entries), key_map=key_map, entries=entries)


def tree_to_dict(node: SelectionTreeNode) -> Dict[str, object]:
    return {
        "checked": node.checked,
        "is_file": node.is_file,
        "children": {name: tree_to_dict(child) for name, child in sorted(node.children.items())},
    }


__all__ = [
    "ArchiveView",
    "SelectionTreeNode",
    "build_tree",
    "collect_paths",
    "list_entries",
    "open_archive",
    "open_archive_view",
    "tree_to_dict",
]
