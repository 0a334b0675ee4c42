"""Materialise per-user descriptor directories from account records."""
from __future__ import annotations

import logging
from pathlib import Path

from .models import UserRecord

logger = logging.getLogger("kubsh.projector")

DEFAULT_LOGIN_SHELL_SUFFIX = "sh"

DESCRIPTOR_ID = "id"
DESCRIPTOR_HOME = "home"
DESCRIPTOR_SHELL = "shell"


def shell_allows_login(shell: str, suffix: str = DEFAULT_LOGIN_SHELL_SUFFIX) -> bool:
    """Return ``True`` when ``shell`` looks like an interactive login shell."""

    if len(shell) < 2:
        return False
    return shell.endswith(suffix)


class DirectoryProjector:
    """Writes ``<root>/<name>/{id,home,shell}`` for a record.

    The projected tree is a cache of the record file and can be regenerated at
    any time, so filesystem errors are logged and otherwise ignored.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    def tree_for(self, name: str) -> Path:
        return self._root / name

    def ensure_tree(self, record: UserRecord) -> None:
        directory = self.tree_for(record.name)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.debug("Unable to create %s: %s", directory, exc)
            return

        descriptors = {
            DESCRIPTOR_ID: record.uid,
            DESCRIPTOR_HOME: record.home,
            DESCRIPTOR_SHELL: record.shell,
        }
        for filename, value in descriptors.items():
            target = directory / filename
            try:
                target.write_text(value, encoding="utf-8", errors="surrogateescape")
            except OSError as exc:
                logger.debug("Unable to write %s: %s", target, exc)


__all__ = [
    "DEFAULT_LOGIN_SHELL_SUFFIX",
    "DESCRIPTOR_HOME",
    "DESCRIPTOR_ID",
    "DESCRIPTOR_SHELL",
    "DirectoryProjector",
    "shell_allows_login",
]
