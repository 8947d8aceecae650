"""Named path templates: reusable backup selections stored as JSON."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from .errors import TemplateError
from .remap import DEFAULT_PROFILE_ROOTS, adjust_path
from .types import TemplateLoad

PathInput = Union[str, "os.PathLike[str]"]


class BackupTemplate(BaseModel):
    """On-disk shape of a template file."""

    paths: List[str] = Field(default_factory=list, description="Absolute paths to back up.")


def fix_skip(
    path: PathInput,
    home: PathInput,
    *,
    profile_roots: Iterable[str] = DEFAULT_PROFILE_ROOTS,
) -> Optional[str]:
    """Remap *path* onto *home*; ``None`` when the result does not exist here."""

    adjusted = adjust_path(path, home, profile_roots=profile_roots)
    return adjusted if Path(adjusted).exists() else None


def read_template(path: PathInput) -> BackupTemplate:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise TemplateError(f"Cannot read template {path}: {exc}") from exc
    try:
        return BackupTemplate.model_validate_json(text)
    except ValidationError as exc:
        raise TemplateError(f"Bad template format in {path}") from exc


def load_template(
    path: PathInput,
    *,
    home: PathInput,
    profile_roots: Iterable[str] = DEFAULT_PROFILE_ROOTS,
) -> TemplateLoad:
    template = read_template(path)
    roots = tuple(profile_roots)
    valid: List[str] = []
    skipped: List[str] = []
    for candidate in template.paths:
        adjusted = fix_skip(candidate, home, profile_roots=roots)
        if adjusted is None:
            skipped.append(candidate)
        else:
            valid.append(adjusted)
    return TemplateLoad(valid=valid, skipped=skipped)


def save_template(paths: Iterable[PathInput], path: PathInput) -> Path:
    target = Path(path)
    template = BackupTemplate(paths=[os.fspath(item) for item in paths])
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(template.model_dump_json(indent=2), encoding="utf-8")
    except OSError as exc:
        raise TemplateError(f"Couldn't write template {target}: {exc}") from exc
    return target


__all__ = ["BackupTemplate", "fix_skip", "load_template", "read_template", "save_template"]
