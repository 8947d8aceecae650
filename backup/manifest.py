"""Fingerprint manifest embedded as the first entry of every archive.

Layout of ``fingerprint.txt``::

    KONSERVE-FINGERPRINT v1
    Original locations
    Folder 1: /home/alice/Projects
    Folder 2: /home/alice/Notes.txt

Restores key the recorded paths by basename, which is also the name of the
top-level archive entry each selection was stored under.
"""
from __future__ import annotations

import os
import re
from typing import Iterable, List, Tuple, Union

from core.paths import flavour_for

from .errors import InvalidFingerprintError
from .types import Manifest, PathKeyMap

FINGERPRINT_NAME = "fingerprint.txt"
SIGNATURE = "KONSERVE-FINGERPRINT v1"
HEADER = "Original locations"
SEPARATOR = ": "

_FOLDER_LINE = re.compile(r"^Folder (?P<index>\d+): (?P<path>.*)$")

PathLike = Union[str, "os.PathLike[str]"]


def basename(path: PathLike) -> str:
    text = os.fspath(path)
    flavour = flavour_for(text)
    return flavour.basename(text.rstrip("\\/") or text)


def encode(selection: Iterable[PathLike]) -> str:
    lines = [SIGNATURE, HEADER]
    for index, path in enumerate(selection, start=1):
        lines.append(f"Folder {index}{SEPARATOR}{os.fspath(path)}")
    return "\n".join(lines) + "\n"


def _check_signature(text: str) -> None:
    if SIGNATURE not in text:
        raise InvalidFingerprintError("Archive fingerprint is missing or invalid.")


def decode(text: str) -> PathKeyMap:
    """Map top-level basenames to the absolute paths recorded at backup time.

    Colliding basenames resolve to the later line.
    """

    _check_signature(text)
    mapping: PathKeyMap = {}
    for line in text.splitlines():
        if SEPARATOR not in line:
            continue
        _, path = line.split(SEPARATOR, 1)
        path = path.strip("\r\n")
        name = basename(path)
        if not name:
            continue
        mapping[name] = path
    return mapping


def parse_manifest(text: str) -> Manifest:
    _check_signature(text)
    entries: List[Tuple[int, str]] = []
    for line in text.splitlines():
        match = _FOLDER_LINE.match(line.rstrip("\r"))
        if match:
            entries.append((int(match.group("index")), match.group("path")))
    return Manifest(signature=SIGNATURE, entries=entries)


__all__ = [
    "FINGERPRINT_NAME",
    "HEADER",
    "SIGNATURE",
    "basename",
    "decode",
    "encode",
    "parse_manifest",
]
