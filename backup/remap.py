"""Rewrite recorded user-profile paths onto the restoring user's home."""
from __future__ import annotations

import os
import re
from functools import lru_cache
from typing import Iterable, Pattern, Sequence, Tuple, Union

from core.paths import flavour_for

DEFAULT_PROFILE_ROOTS: Tuple[str, ...] = ("Users",)

PathLike = Union[str, "os.PathLike[str]"]


@lru_cache(maxsize=16)
def _profile_pattern(roots: Tuple[str, ...]) -> Pattern[str]:
    alternatives = "|".join(re.escape(root) for root in roots)
    return re.compile(
        rf"^(?P<prefix>(?:[A-Za-z]:)?[\\/]+(?:{alternatives})[\\/]+[^\\/]+)(?P<rest>(?:[\\/].*)?)$",
        re.IGNORECASE | re.DOTALL,
    )


def adjust_path(
    original: PathLike,
    current_home: PathLike,
    *,
    profile_roots: Iterable[str] = DEFAULT_PROFILE_ROOTS,
) -> str:
    """Swap the ``<drive>/<Users>/<name>`` prefix of *original* for *current_home*.

    Paths outside a user profile come back unchanged.
    """

    text = os.fspath(original)
    match = _profile_pattern(tuple(profile_roots)).match(text)
    if not match:
        return text
    home = os.fspath(current_home).rstrip("\\/") or os.fspath(current_home)
    return home + match.group("rest")


def join_under(base: str, segments: Sequence[str]) -> str:
    if not segments:
        return base
    return flavour_for(base).join(base, *segments)


__all__ = ["DEFAULT_PROFILE_ROOTS", "adjust_path", "join_under"]
