from __future__ import annotations

import json
import ntpath
import os
import posixpath
import re
from pathlib import Path
from types import ModuleType
from typing import Any, Dict, Optional

__all__ = [
    "current_home",
    "ensure_working_dir_structure",
    "flavour_for",
    "get_default_settings_paths",
    "get_logs_dir",
    "get_templates_dir",
    "resolve_working_dir",
]

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_WINDOWS_DRIVE = re.compile(r"^[A-Za-z]:")


def flavour_for(path: str | os.PathLike[str]) -> ModuleType:
    """Return ``ntpath`` or ``posixpath`` depending on how *path* is spelled.

    Archives recorded on one platform are restored on another, so recorded
    paths are handled by their own flavour rather than the host's.
    """

    text = os.fspath(path)
    if _WINDOWS_DRIVE.match(text):
        return ntpath
    if "\\" in text and "/" not in text:
        return ntpath
    return posixpath


def current_home() -> str:
    return str(Path.home())


def _expand_path(value: str) -> Path:
    expanded = os.path.expandvars(os.path.expanduser(value))
    return Path(expanded).resolve()


def _ensure_writable_dir(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False
    test_file = path / f".write_test_{os.getpid()}"
    try:
        with open(test_file, "w", encoding="utf-8") as handle:
            handle.write("ok")
        test_file.unlink(missing_ok=True)
        return True
    except OSError:
        return False


def _read_settings(path: Path) -> Optional[Dict[str, Any]]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError):
        return None
    return data if isinstance(data, dict) else None


def resolve_working_dir() -> Path:
    """Resolve the Konserve working directory, creating it if required."""

    env_home = os.environ.get("KONSERVE_HOME")
    if env_home:
        candidate = _expand_path(env_home)
        if _ensure_writable_dir(candidate):
            return candidate

    project_settings = _read_settings(_PROJECT_ROOT / "settings.json")
    if project_settings:
        working_dir_value = project_settings.get("working_dir")
        if isinstance(working_dir_value, str) and working_dir_value.strip():
            candidate = _expand_path(working_dir_value)
            if _ensure_writable_dir(candidate):
                return candidate

    fallback = Path.home() / ".konserve"
    fallback.mkdir(parents=True, exist_ok=True)
    return fallback


def get_logs_dir(working_dir: Path) -> Path:
    return working_dir / "logs"


def get_templates_dir(working_dir: Path) -> Path:
    return working_dir / "templates"


def ensure_working_dir_structure(working_dir: Path) -> None:
    for directory in (
        working_dir,
        get_logs_dir(working_dir),
        get_templates_dir(working_dir),
    ):
        directory.mkdir(parents=True, exist_ok=True)


def get_default_settings_paths(working_dir: Path) -> list[Path]:
    """Return the search order for settings.json files."""

    return [working_dir / "settings.json", _PROJECT_ROOT / "settings.json"]
