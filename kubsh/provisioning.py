"""Create and remove accounts so they follow the users root directories."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

from .commands import CommandResult, CommandRunner
from .models import UserRecord
from .projector import DirectoryProjector
from .records import RecordStore, RecordStoreError

logger = logging.getLogger("kubsh.provisioning")

DEFAULT_SHELL = "/bin/sh"

_RESERVED_NAMES = {"", ".", ".."}


class AccountUnavailable(RuntimeError):
    """Raised by a provisioning strategy that could not produce an account."""

    def __init__(self, message: str, result: CommandResult | None = None) -> None:
        super().__init__(message)
        self.result = result


ProvisioningStrategy = Callable[[str], UserRecord]
ArgumentBuilder = Callable[[str, str, str], Sequence[str]]


def is_account_name(name: str) -> bool:
    return name not in _RESERVED_NAMES


def home_for(root: Path, name: str) -> str:
    return str(Path(root) / name)


def _adduser_arguments(name: str, home: str, shell: str) -> Sequence[str]:
    return [
        "adduser",
        "--disabled-password",
        "--gecos",
        "",
        "--home",
        home,
        "--shell",
        shell,
        name,
    ]


def _useradd_arguments(name: str, home: str, shell: str) -> Sequence[str]:
    return ["useradd", "-m", "-d", home, "-s", shell, name]


class CommandStrategy:
    """Create an account with an external tool, then read it back from the store."""

    def __init__(
        self,
        label: str,
        build_args: ArgumentBuilder,
        *,
        runner: CommandRunner,
        store: RecordStore,
        root: Path,
        shell: str = DEFAULT_SHELL,
    ) -> None:
        self.label = label
        self._build_args = build_args
        self._runner = runner
        self._store = store
        self._root = Path(root)
        self._shell = shell

    def __call__(self, name: str) -> UserRecord:
        args = self._build_args(name, home_for(self._root, name), self._shell)
        result = self._runner.run(args)
        record = self._store.find_by_name(name)
        if record is None:
            raise AccountUnavailable(
                f"{self.label} did not create an account for {name!r} (exit status {result.exit_status})",
                result,
            )
        return record

    def __repr__(self) -> str:
        return f"CommandStrategy({self.label!r})"


def default_strategies(
    runner: CommandRunner,
    store: RecordStore,
    root: Path,
    *,
    shell: str = DEFAULT_SHELL,
) -> List[ProvisioningStrategy]:
    """Return the standard ``adduser`` then ``useradd`` fallback chain."""

    return [
        CommandStrategy("adduser", _adduser_arguments, runner=runner, store=store, root=root, shell=shell),
        CommandStrategy("useradd", _useradd_arguments, runner=runner, store=store, root=root, shell=shell),
    ]


class Provisioner:
    """Ensure an account and its projected tree exist for a directory name."""

    def __init__(
        self,
        store: RecordStore,
        projector: DirectoryProjector,
        strategies: Iterable[ProvisioningStrategy],
        *,
        root: Path,
        default_shell: str = DEFAULT_SHELL,
    ) -> None:
        self._store = store
        self._projector = projector
        self._strategies = list(strategies)
        self._root = Path(root)
        self._default_shell = default_shell

    def ensure(self, name: str) -> Optional[UserRecord]:
        """Return the record for ``name``, creating the account if necessary.

        Strategies are tried in order and the first one that yields a record
        wins. When all of them fail the record is synthesised locally with the
        next free id. ``None`` is returned for reserved names and when the
        store cannot be written.
        """

        if not is_account_name(name):
            return None

        record = self._store.find_by_name(name)
        if record is None:
            record = self._create(name)
            if record is None:
                return None

        self._projector.ensure_tree(record)
        return record

    def _create(self, name: str) -> Optional[UserRecord]:
        for strategy in self._strategies:
            try:
                record = strategy(name)
            except AccountUnavailable as exc:
                logger.debug("%s", exc)
                continue
            logger.info("Created account %s (uid %s) via %r", name, record.uid, strategy)
            return record

        uid = self._store.next_free_id()
        record = UserRecord(
            name=name,
            uid=uid,
            gid=uid,
            home=home_for(self._root, name),
            shell=self._default_shell,
        )
        try:
            self._store.append(record)
        except RecordStoreError as exc:
            logger.warning("Unable to synthesise account %s: %s", name, exc)
            return None
        logger.info("Synthesised account %s with uid %s", name, uid)
        return record


class Deprovisioner:
    """Remove the account belonging to a directory that disappeared."""

    def __init__(self, store: RecordStore, runner: CommandRunner) -> None:
        self._store = store
        self._runner = runner

    def retire(self, name: str) -> bool:
        """Remove ``name`` from the account database.

        Returns ``True`` when an account existed. The record is re-checked
        after ``userdel`` succeeds and dropped from the store directly if the
        tool left it behind.
        """

        if not is_account_name(name):
            return False
        if self._store.find_by_name(name) is None:
            return False

        result = self._runner.run(["userdel", "-r", name])
        if result.ok and self._store.find_by_name(name) is None:
            logger.info("Removed account %s via userdel", name)
            return True

        if result.ok:
            logger.debug("userdel succeeded for %s but the record remains; dropping it", name)
        self._store.remove_by_name(name)
        logger.info("Removed record for %s", name)
        return True


__all__ = [
    "AccountUnavailable",
    "CommandStrategy",
    "DEFAULT_SHELL",
    "Deprovisioner",
    "Provisioner",
    "ProvisioningStrategy",
    "default_strategies",
    "home_for",
    "is_account_name",
]
