"""Domain models shared by the identity synchronization engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class UserRecord:
    """Represents one account line of the passwd-style record file."""

    name: str
    uid: str
    gid: str
    home: str
    shell: str

    @property
    def numeric_uid(self) -> Optional[int]:
        try:
            return int(self.uid)
        except ValueError:
            return None


@dataclass(frozen=True)
class DirectoryDiff:
    """Names that appeared or disappeared under the users root between two snapshots."""

    added: frozenset[str]
    removed: frozenset[str]

    @property
    def empty(self) -> bool:
        return not self.added and not self.removed


__all__ = ["DirectoryDiff", "UserRecord"]
