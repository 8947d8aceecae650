"""Public API for backup operations.

Every long-running call starts one daemon worker thread and immediately
returns an :class:`OperationHandle`. Observers poll the handle; they never
block on the worker and there is no cancellation.
"""
from __future__ import annotations

import logging
import os
import queue
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Collection, Dict, Iterable, Optional, Set, Union

from core.paths import current_home, resolve_working_dir
from core.settings import load_settings, profile_roots

from .create import create_backup
from .errors import BackupError, OperationInProgressError
from .logs import BackupLogger
from .progress import Progress
from .reader import open_archive_view
from .restore import restore_backup
from .templates import load_template, save_template
from .types import TemplateLoad

LOGGER = logging.getLogger("konserve.backup.api")

PathInput = Union[str, "os.PathLike[str]"]


@dataclass(slots=True)
class OperationOutcome:
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None
    message: str = ""


class OperationHandle:
    """Progress, status text and a one-shot result for one background operation."""

    def __init__(self, kind: str, *, status: str = "") -> None:
        self.kind = kind
        self.progress = Progress()
        self._status = status
        self._status_lock = threading.Lock()
        self._results: "queue.Queue[OperationOutcome]" = queue.Queue(maxsize=1)
        self._outcome: Optional[OperationOutcome] = None
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    @property
    def status(self) -> str:
        with self._status_lock:
            return self._status

    def set_status(self, message: str) -> None:
        with self._status_lock:
            self._status = message

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ------------------------------------------------------------------
    def poll(self) -> Optional[OperationOutcome]:
        """Return the outcome once the worker has sent it, without blocking."""

        if self._outcome is None:
            try:
                self._outcome = self._results.get_nowait()
            except queue.Empty:
                return None
        return self._outcome

    def wait(self, timeout: Optional[float] = None) -> OperationOutcome:
        if self._outcome is None:
            self._outcome = self._results.get(timeout=timeout)
        return self._outcome

    # ------------------------------------------------------------------
    def _run(self, work: Callable[["OperationHandle"], Any], describe: Callable[[Any], str], failure: str) -> None:
        try:
            value = work(self)
            message = describe(value)
        except BackupError as exc:
            LOGGER.warning("%s operation failed: %s", self.kind, exc)
            outcome = OperationOutcome(ok=False, error=exc, message=f"{failure}: {exc}")
        except Exception as exc:  # delivered to the observer through the outcome
            LOGGER.exception("%s operation crashed", self.kind)
            outcome = OperationOutcome(ok=False, error=exc, message=f"{failure}: {exc}")
        else:
            outcome = OperationOutcome(ok=True, value=value, message=message)
        self.set_status(outcome.message)
        self.progress.finish()
        self._results.put(outcome)

    def start(self, work: Callable[["OperationHandle"], Any], describe: Callable[[Any], str], failure: str) -> None:
        self._thread = threading.Thread(
            target=self._run,
            args=(work, describe, failure),
            name=f"konserve-{self.kind}",
            daemon=True,
        )
        self._thread.start()


class BackupService:
    """Coordinate backup, archive inspection, restore and template workflows."""

    def __init__(
        self,
        *,
        working_dir: Optional[Path] = None,
        settings: Optional[Dict[str, object]] = None,
    ) -> None:
        self._working_dir = Path(working_dir or resolve_working_dir())
        self._settings = dict(settings) if settings is not None else load_settings(self._working_dir)
        self._logger = BackupLogger(self._working_dir)
        self._active: Dict[str, OperationHandle] = {}
        self._active_lock = threading.Lock()

    # ------------------------------------------------------------------
    @property
    def working_dir(self) -> Path:
        return self._working_dir

    @property
    def logger(self) -> BackupLogger:
        return self._logger

    def _section(self, name: str) -> Dict[str, Any]:
        raw = self._settings.get(name)
        return raw if isinstance(raw, dict) else {}

    def _profile_roots(self) -> list[str]:
        return profile_roots(self._settings)

    def _home(self, home: Optional[PathInput]) -> str:
        if home is not None:
            return os.fspath(home)
        configured = self._section("restore").get("home")
        if isinstance(configured, str) and configured.strip():
            return configured
        return current_home()

    @property
    def poll_interval(self) -> float:
        try:
            return max(1, int(self._section("backup").get("poll_ms", 30))) / 1000.0
        except (TypeError, ValueError):
            return 0.03

    # ------------------------------------------------------------------
    def _claim(self, kind: str, status: str) -> OperationHandle:
        handle = OperationHandle(kind, status=status)
        if not self._section("backup").get("exclusive_operations"):
            return handle
        with self._active_lock:
            current = self._active.get(kind)
            if current is not None and current.poll() is None:
                raise OperationInProgressError(f"A {kind} operation is already running.")
            self._active[kind] = handle
        return handle

    # ------------------------------------------------------------------
    def start_backup(self, selection: Iterable[PathInput], destination: Optional[PathInput]) -> OperationHandle:
        paths = list(selection)
        prefix = str(self._section("backup").get("archive_prefix") or "konserve")
        handle = self._claim("backup", "Packing into .tar")

        def work(op: OperationHandle):
            return create_backup(
                paths,
                destination,
                logger=self._logger,
                progress=op.progress,
                archive_prefix=prefix,
            )

        handle.start(work, lambda result: f"Backup created:\n{result.archive_path}", "Backup failed")
        return handle

    def open_archive_for_restore(self, archive_path: PathInput) -> OperationHandle:
        handle = self._claim("open", "Opening archive…")
        handle.start(lambda op: open_archive_view(archive_path), lambda view: "Archive opened", "Failed")
        return handle

    def start_restore(
        self,
        archive_path: PathInput,
        selected_paths: Optional[Collection[str]] = None,
        *,
        home: Optional[PathInput] = None,
    ) -> OperationHandle:
        selection: Optional[Set[str]] = set(selected_paths) if selected_paths is not None else None
        target_home = self._home(home)
        roots = self._profile_roots()
        handle = self._claim("restore", "Restoring…")

        def work(op: OperationHandle):
            return restore_backup(
                archive_path,
                home=target_home,
                logger=self._logger,
                selection=selection,
                progress=op.progress,
                profile_roots=roots,
            )

        def describe(result: Dict[str, object]) -> str:
            message = f"Restore complete: {len(result['restored'])} item(s) restored"
            unresolved = result.get("unresolved") or []
            if unresolved:
                message += f", {len(unresolved)} without a recorded location"
            return message

        handle.start(work, describe, "Restore failed")
        return handle

    # ------------------------------------------------------------------
    def load_template(self, path: PathInput, *, home: Optional[PathInput] = None) -> TemplateLoad:
        return load_template(path, home=self._home(home), profile_roots=self._profile_roots())

    def save_template(self, paths: Iterable[PathInput], path: PathInput) -> Path:
        return save_template(paths, path)


__all__ = ["BackupService", "OperationHandle", "OperationOutcome"]
