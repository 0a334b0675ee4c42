"""A single reconciliation pass between the users root and the record store."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional, Set

from . import differ
from .models import DirectoryDiff
from .provisioning import Deprovisioner, Provisioner

logger = logging.getLogger("kubsh.sync")


class Synchronizer:
    """Owns the previous directory snapshot and applies each new diff.

    Only one thread may call :meth:`run_pass`; the snapshot is not locked.
    """

    def __init__(
        self,
        root: Path,
        provisioner: Provisioner,
        deprovisioner: Deprovisioner,
        *,
        previous: Optional[Iterable[str]] = None,
    ) -> None:
        self._root = Path(root)
        self._provisioner = provisioner
        self._deprovisioner = deprovisioner
        self._previous: Set[str] = set(previous or ())

    @property
    def previous(self) -> frozenset[str]:
        return frozenset(self._previous)

    def seed(self) -> Set[str]:
        """Take the initial snapshot and provision every directory already present."""

        current = differ.snapshot(self._root)
        for name in sorted(current):
            self._provision(name)
        self._previous = current
        return set(current)

    def run_pass(self) -> DirectoryDiff:
        current = differ.snapshot(self._root)
        changes = differ.diff(self._previous, current)

        for name in sorted(changes.added):
            self._provision(name)
        for name in sorted(changes.removed):
            self._retire(name)

        self._previous = current
        if not changes.empty:
            logger.debug(
                "Sync pass: added=%s removed=%s",
                sorted(changes.added),
                sorted(changes.removed),
            )
        return changes

    def _provision(self, name: str) -> None:
        try:
            self._provisioner.ensure(name)
        except Exception:
            logger.exception("Failed to provision account for %s", name)

    def _retire(self, name: str) -> None:
        try:
            self._deprovisioner.retire(name)
        except Exception:
            logger.exception("Failed to retire account for %s", name)


__all__ = ["Synchronizer"]
