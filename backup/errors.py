"""Error hierarchy for backup and restore operations."""
from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


class BackupError(RuntimeError):
    """Base exception for backup related failures."""


class ArchiveIOError(BackupError):
    """Filesystem failure while reading sources, writing the archive or restoring."""

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None) -> None:
        super().__init__(message)
        self.path = str(path) if path is not None else None


class BackupCreateError(ArchiveIOError):
    """Raised when an archive cannot be produced."""


class NothingSelectedError(BackupCreateError):
    """Raised when a backup is requested for an empty selection."""

    def __init__(self) -> None:
        super().__init__("Nothing selected.")


class NoDestinationError(BackupCreateError):
    """Raised when no output location was chosen for the archive."""

    def __init__(self) -> None:
        super().__init__("No output location chosen.")


class BackupRestoreError(ArchiveIOError):
    """Raised when restoring an archive fails."""


class InvalidFingerprintError(BackupError):
    """Raised when an archive carries no valid fingerprint manifest."""


class TemplateError(BackupError):
    """Raised when a path template cannot be read or parsed."""


class OperationInProgressError(BackupError):
    """Raised when an exclusive operation slot is already taken."""


__all__ = [
    "ArchiveIOError",
    "BackupCreateError",
    "BackupError",
    "BackupRestoreError",
    "InvalidFingerprintError",
    "NoDestinationError",
    "NothingSelectedError",
    "OperationInProgressError",
    "TemplateError",
]
