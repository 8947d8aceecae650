"""Pack selected files and folders into a single restorable tar archive."""
from __future__ import annotations

import io
import os
import tarfile
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from api import __version__ as APP_VERSION

from . import manifest as manifest_codec
from .errors import BackupCreateError, NoDestinationError, NothingSelectedError
from .logs import BackupLogger
from .progress import Progress
from .types import BackupResult

ARCHIVE_SUFFIX = ".tar"

PathInput = Union[str, "os.PathLike[str]"]


@dataclass(slots=True)
class _PlannedEntry:
    name: str
    source: Path
    is_dir: bool


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")


def normalize_selection(paths: Iterable[PathInput]) -> List[Path]:
    """Absolute, deduplicated and sorted copy of *paths* (a selection set)."""

    return sorted(set(_unique_absolute(paths)))


def _unique_absolute(paths: Iterable[PathInput]) -> List[Path]:
    seen: Dict[Path, None] = {}
    for path in paths:
        seen.setdefault(Path(os.path.abspath(os.fspath(path))), None)
    return list(seen)


def _archive_path(destination: Path, prefix: str) -> Path:
    if destination.is_dir():
        return destination / f"{prefix}_{_timestamp()}{ARCHIVE_SUFFIX}"
    return destination


def _walk_error(exc: OSError) -> None:
    raise BackupCreateError(f"Cannot read {exc.filename}: {exc.strerror}", exc.filename) from exc


def _dir_key(path: Path) -> Tuple[int, int]:
    stat = path.stat()
    return stat.st_dev, stat.st_ino


def _plan_directory(root: Path, skipped: List[str]) -> List[_PlannedEntry]:
    """Walk *root* following directory links; a link back to an ancestor is skipped."""

    planned: List[_PlannedEntry] = []
    try:
        lineage: Dict[str, FrozenSet[Tuple[int, int]]] = {str(root): frozenset({_dir_key(root)})}
    except OSError as exc:
        _walk_error(exc)
    for current, dirnames, filenames in os.walk(root, onerror=_walk_error, followlinks=True):
        current_path = Path(current)
        ancestors = lineage.pop(str(current_path), frozenset())
        kept: List[str] = []
        for dirname in sorted(dirnames):
            child = current_path / dirname
            try:
                key = _dir_key(child)
            except OSError as exc:
                _walk_error(exc)
            if key in ancestors:
                skipped.append(str(child))
                continue
            lineage[str(child)] = ancestors | {key}
            kept.append(dirname)
        dirnames[:] = kept
        relative = current_path.relative_to(root)
        # the selected folder itself is implied by its children
        if relative.parts:
            planned.append(_PlannedEntry(f"{root.name}/{relative.as_posix()}", current_path, True))
        for filename in sorted(filenames):
            source = current_path / filename
            name = f"{root.name}/{(relative / filename).as_posix()}"
            planned.append(_PlannedEntry(name, source, False))
    return planned


def plan_entries(selection: Iterable[Path], skipped: Optional[List[str]] = None) -> List[_PlannedEntry]:
    """Expand *selection* into archive entries; looping directory links land in *skipped*."""

    skipped = skipped if skipped is not None else []
    planned: List[_PlannedEntry] = []
    for path in selection:
        if path.is_dir():
            planned.extend(_plan_directory(path, skipped))
        elif path.exists():
            planned.append(_PlannedEntry(path.name, path, False))
        else:
            raise BackupCreateError(f"Selected path does not exist: {path}", path)
    return planned


def _add_manifest(archive: tarfile.TarFile, text: str) -> None:
    payload = text.encode("utf-8", errors="surrogateescape")
    info = tarfile.TarInfo(manifest_codec.FINGERPRINT_NAME)
    info.size = len(payload)
    info.mtime = int(time.time())
    info.mode = 0o644
    archive.addfile(info, io.BytesIO(payload))


def _add_directory(archive: tarfile.TarFile, entry: _PlannedEntry) -> None:
    info = tarfile.TarInfo(entry.name)
    info.type = tarfile.DIRTYPE
    info.mode = 0o755
    info.mtime = int(entry.source.stat().st_mtime)
    archive.addfile(info)


def _add_file(archive: tarfile.TarFile, entry: _PlannedEntry) -> int:
    with entry.source.open("rb") as handle:
        info = archive.gettarinfo(arcname=entry.name, fileobj=handle)
        archive.addfile(info, handle)
    return info.size


def create_backup(
    selection: Iterable[PathInput],
    destination: Optional[PathInput],
    *,
    logger: BackupLogger,
    progress: Optional[Progress] = None,
    archive_prefix: str = "konserve",
) -> BackupResult:
    paths = _unique_absolute(selection)
    if not paths:
        raise NothingSelectedError()
    if destination is None or not os.fspath(destination):
        raise NoDestinationError()

    progress = progress or Progress()
    archive_path = _archive_path(Path(destination), archive_prefix)
    manifest_text = manifest_codec.encode(paths)

    logger.event(
        event="backup_start",
        phase="create",
        ok=True,
        archive=str(archive_path),
        selection=[str(path) for path in paths],
        app_version=APP_VERSION,
    )

    skipped: List[str] = []
    try:
        planned = plan_entries(paths, skipped)
    except BackupCreateError as exc:
        logger.error("backup_failed", archive=str(archive_path), path=exc.path, error=str(exc))
        raise
    for path in skipped:
        logger.warning("backup_skipped", archive=str(archive_path), path=path, reason="directory link loop")

    total = len(planned)
    total_bytes = 0
    current: Optional[Path] = archive_path
    try:
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        with tarfile.open(archive_path, "w", format=tarfile.PAX_FORMAT) as archive:
            _add_manifest(archive, manifest_text)
            for processed, entry in enumerate(planned, start=1):
                current = entry.source
                if entry.is_dir:
                    _add_directory(archive, entry)
                else:
                    total_bytes += _add_file(archive, entry)
                logger.debug("backup_entry", entry=entry.name, directory=entry.is_dir)
                progress.update(processed, total)
            current = archive_path
    except OSError as exc:
        logger.error("backup_failed", archive=str(archive_path), path=str(current), error=str(exc))
        raise BackupCreateError(f"Backup failed at {current}: {exc}", current) from exc

    progress.finish()
    logger.event(
        event="backup_complete",
        phase="create",
        ok=True,
        archive=str(archive_path),
        entries=total,
        size=total_bytes,
    )
    return BackupResult(
        archive_path=archive_path,
        manifest=manifest_codec.parse_manifest(manifest_text),
        entries=[entry.name for entry in planned],
        total_bytes=total_bytes,
    )


__all__ = ["ARCHIVE_SUFFIX", "create_backup", "normalize_selection", "plan_entries"]
