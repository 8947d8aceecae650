"""Restore archive entries to their recorded locations, optionally a subset."""
from __future__ import annotations

import os
import re
import shutil
from pathlib import Path
from typing import Callable, Collection, Dict, Iterable, List, Optional, Sequence, Set, Union

from .errors import BackupRestoreError
from .logs import BackupLogger
from .progress import Progress
from .reader import open_archive
from .remap import DEFAULT_PROFILE_ROOTS, adjust_path, join_under
from .types import ArchiveEntry, PathKeyMap, RestorePlan, RestoreTarget

PathInput = Union[str, "os.PathLike[str]"]

_ABSOLUTE_NAME = re.compile(r"^(?:[\\/]|[A-Za-z]:)")


def _segments(name: str) -> List[str]:
    return [part for part in name.replace("\\", "/").split("/") if part and part != "."]


def selection_filter(selection: Optional[Collection[str]]) -> Callable[[str], bool]:
    """Return a predicate telling whether an entry name falls under *selection*.

    An entry is kept when it is selected, lies below a selected path, or is a
    directory on the way to one.
    """

    if selection is None:
        return lambda name: True
    selected: Set[str] = {"/".join(_segments(path)) for path in selection}
    ancestors: Set[str] = set()
    for path in selected:
        parts = path.split("/")
        for depth in range(1, len(parts)):
            ancestors.add("/".join(parts[:depth]))

    def _included(name: str) -> bool:
        parts = _segments(name)
        joined = "/".join(parts)
        if joined in selected or joined in ancestors:
            return True
        return any("/".join(parts[:depth]) in selected for depth in range(1, len(parts)))

    return _included


def _is_unsafe(entry: ArchiveEntry) -> bool:
    if _ABSOLUTE_NAME.match(entry.name):
        return True
    if ".." in _segments(entry.name):
        return True
    member = entry.member
    return member is not None and not (member.isfile() or member.isdir())


def plan_restore(
    entries: Sequence[ArchiveEntry],
    key_map: PathKeyMap,
    home: PathInput,
    *,
    selection: Optional[Collection[str]] = None,
    profile_roots: Iterable[str] = DEFAULT_PROFILE_ROOTS,
) -> RestorePlan:
    """Work out the destination of every entry without touching the disk."""

    roots = tuple(profile_roots)
    included = selection_filter(selection)
    plan = RestorePlan()
    for entry in entries:
        if not included(entry.name):
            plan.skipped.append(entry.name)
            continue
        if _is_unsafe(entry):
            plan.rejected.append(entry.name)
            continue
        parts = _segments(entry.name)
        if not parts:
            plan.rejected.append(entry.name)
            continue
        original = key_map.get(parts[0])
        if original is None:
            plan.unresolved.append(entry.name)
            continue
        base = adjust_path(original, home, profile_roots=roots)
        destination = base if len(parts) == 1 else join_under(base, parts[1:])
        plan.targets.append(RestoreTarget(entry=entry, destination=destination))
    return plan


def _write_target(archive, target: RestoreTarget) -> None:
    destination = Path(target.destination)
    if target.entry.is_dir:
        destination.mkdir(parents=True, exist_ok=True)
        return
    destination.parent.mkdir(parents=True, exist_ok=True)
    source = archive.extractfile(target.entry.member)
    if source is None:
        raise BackupRestoreError(f"Archive entry {target.entry.name} has no content", destination)
    with source, destination.open("wb") as handle:
        shutil.copyfileobj(source, handle)
    mtime = target.entry.member.mtime
    os.utime(destination, (mtime, mtime))


def restore_backup(
    archive_path: PathInput,
    *,
    home: PathInput,
    logger: BackupLogger,
    selection: Optional[Collection[str]] = None,
    progress: Optional[Progress] = None,
    profile_roots: Iterable[str] = DEFAULT_PROFILE_ROOTS,
) -> Dict[str, object]:
    progress = progress or Progress()
    with open_archive(archive_path) as (archive, entries, key_map):
        plan = plan_restore(entries, key_map, home, selection=selection, profile_roots=profile_roots)
        logger.event(
            event="restore_start",
            phase="restore",
            ok=True,
            archive=str(archive_path),
            home=str(home),
            planned=len(plan.targets),
            selective=selection is not None,
        )
        for name in plan.unresolved:
            logger.warning("restore_unresolved", archive=str(archive_path), entry=name)
        for name in plan.rejected:
            logger.warning("restore_rejected", archive=str(archive_path), entry=name)

        total = len(plan.targets)
        restored: List[str] = []
        for processed, target in enumerate(plan.targets, start=1):
            try:
                _write_target(archive, target)
            except OSError as exc:
                logger.error("restore_failed", archive=str(archive_path), path=target.destination, error=str(exc))
                raise BackupRestoreError(f"Restore failed at {target.destination}: {exc}", target.destination) from exc
            restored.append(target.destination)
            progress.update(processed, total)

    progress.update(total, total)
    progress.finish()
    logger.event(
        event="backup_restored",
        phase="restore",
        ok=True,
        archive=str(archive_path),
        restored=len(restored),
        unresolved=len(plan.unresolved),
    )
    return {
        "archive": str(archive_path),
        "restored": restored,
        "skipped": plan.skipped,
        "unresolved": plan.unresolved,
        "rejected": plan.rejected,
    }


__all__ = ["plan_restore", "restore_backup", "selection_filter"]
