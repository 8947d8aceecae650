"""Common dataclasses shared across backup modules."""
from __future__ import annotations

import tarfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

PathKeyMap = Dict[str, str]


@dataclass(slots=True)
class ArchiveEntry:
    """Single stored unit inside an archive."""

    name: str
    is_dir: bool
    size: int = 0
    member: Optional[tarfile.TarInfo] = field(default=None, repr=False, compare=False)

    @property
    def segments(self) -> List[str]:
        return [part for part in self.name.split("/") if part]

    @property
    def top_level(self) -> str:
        parts = self.segments
        return parts[0] if parts else ""


@dataclass(slots=True)
class Manifest:
    signature: str
    entries: List[Tuple[int, str]]

    def key_map(self) -> PathKeyMap:
        from .manifest import basename

        mapping: PathKeyMap = {}
        for _, path in self.entries:
            name = basename(path)
            if name:
                mapping[name] = path
        return mapping


@dataclass(slots=True)
class BackupResult:
    archive_path: Path
    manifest: Manifest
    entries: List[str]
    total_bytes: int


@dataclass(slots=True)
class RestoreTarget:
    """Where one archive entry lands on disk."""

    entry: ArchiveEntry
    destination: str


@dataclass(slots=True)
class RestorePlan:
    targets: List[RestoreTarget] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    unresolved: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)


@dataclass(slots=True)
class TemplateLoad:
    valid: List[str]
    skipped: List[str]


__all__ = [
    "ArchiveEntry",
    "BackupResult",
    "Manifest",
    "PathKeyMap",
    "RestorePlan",
    "RestoreTarget",
    "TemplateLoad",
]
