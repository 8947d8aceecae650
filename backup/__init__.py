"""Backup and restore orchestration for Konserve."""
from __future__ import annotations

from .api import BackupService, OperationHandle, OperationOutcome
from .errors import BackupError, InvalidFingerprintError, NothingSelectedError
from .progress import DONE, Progress
from .reader import SelectionTreeNode, build_tree, collect_paths
from .types import ArchiveEntry, BackupResult, Manifest

__all__ = [
    "ArchiveEntry",
    "BackupError",
    "BackupResult",
    "BackupService",
    "DONE",
    "InvalidFingerprintError",
    "Manifest",
    "NothingSelectedError",
    "OperationHandle",
    "OperationOutcome",
    "Progress",
    "SelectionTreeNode",
    "build_tree",
    "collect_paths",
]
