"""Snapshot and compare the directory names under the users root."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import AbstractSet, Set

from .models import DirectoryDiff

logger = logging.getLogger("kubsh.differ")


def snapshot(root: Path) -> Set[str]:
    """Return the names of the immediate subdirectories of ``root``.

    Enumeration errors are tolerated; whatever could be listed is returned.
    """

    names: Set[str] = set()
    try:
        with os.scandir(root) as entries:
            for entry in entries:
                try:
                    if entry.is_dir():
                        names.add(entry.name)
                except OSError:
                    continue
    except OSError as exc:
        logger.debug("Unable to list %s: %s", root, exc)
    return names


def diff(previous: AbstractSet[str], current: AbstractSet[str]) -> DirectoryDiff:
    return DirectoryDiff(
        added=frozenset(current - previous),
        removed=frozenset(previous - current),
    )


__all__ = ["diff", "snapshot"]
