"""Start and stop the live users directory engine."""
from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from typing import Iterable, Optional

from .channel import PublicationChannel
from .commands import CommandRunner, LocalCommandRunner
from .config import EngineConfig
from .models import DirectoryDiff
from .projector import DirectoryProjector, shell_allows_login
from .provisioning import (
    Deprovisioner,
    Provisioner,
    ProvisioningStrategy,
    default_strategies,
)
from .records import RecordStore, is_fifo
from .sync import Synchronizer

logger = logging.getLogger("kubsh.engine")

FIFO_MODE = 0o644


@dataclass
class EngineContext:
    """State that only exists between :meth:`UsersEngine.start` and :meth:`UsersEngine.stop`."""

    synchronizer: Synchronizer
    channel: PublicationChannel


class UsersEngine:
    """Keeps ``users_root`` and the record file in sync and publishes the records.

    The front end calls :meth:`start` once before reading input and
    :meth:`stop` once afterwards. Between the two calls the well-known path is
    a FIFO served by a background thread; before and after it is a plain copy
    of the backing file.
    """

    def __init__(
        self,
        config: EngineConfig,
        *,
        runner: Optional[CommandRunner] = None,
        strategies: Optional[Iterable[ProvisioningStrategy]] = None,
    ) -> None:
        self._config = config
        self._runner = runner or LocalCommandRunner(timeout=config.tool_timeout)
        self._store = RecordStore(
            config.backing_path,
            config.passwd_path,
            min_uid=config.min_uid,
        )
        self._projector = DirectoryProjector(config.users_root)
        if strategies is None:
            strategies = default_strategies(
                self._runner,
                self._store,
                config.users_root,
                shell=config.default_shell,
            )
        self._provisioner = Provisioner(
            self._store,
            self._projector,
            strategies,
            root=config.users_root,
            default_shell=config.default_shell,
        )
        self._deprovisioner = Deprovisioner(self._store, self._runner)
        self._context: Optional[EngineContext] = None

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def running(self) -> bool:
        return self._context is not None

    def start(self) -> EngineContext:
        if self._context is not None:
            raise RuntimeError("Users engine is already running")

        config = self._config
        try:
            config.users_root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.warning("Unable to create users root %s: %s", config.users_root, exc)
        self._prepare_published_path()
        self._project_login_accounts()

        synchronizer = Synchronizer(config.users_root, self._provisioner, self._deprovisioner)
        synchronizer.seed()

        channel = PublicationChannel(
            config.passwd_path,
            self._store,
            synchronizer,
            poll_interval=config.poll_interval,
            throttle=config.throttle,
        )
        channel.start()
        self._context = EngineContext(synchronizer=synchronizer, channel=channel)
        logger.info(
            "Users engine started: root=%s published=%s backing=%s",
            config.users_root,
            config.passwd_path,
            config.backing_path,
        )
        return self._context

    def stop(self) -> None:
        context = self._context
        if context is None:
            return

        context.channel.stop()
        self._context = None
        self._restore_published_path()
        logger.info("Users engine stopped")

    def sync_once(self) -> DirectoryDiff:
        """Reconcile the users root with the record store without publishing."""

        if self._context is not None:
            raise RuntimeError("sync_once() cannot run while the engine is running")

        self._config.users_root.mkdir(parents=True, exist_ok=True)
        synchronizer = Synchronizer(
            self._config.users_root,
            self._provisioner,
            self._deprovisioner,
            previous=self._known_account_directories(),
        )
        return synchronizer.run_pass()

    def __enter__(self) -> "UsersEngine":
        self.start()
        return self

    def __exit__(self, *_exc_info: object) -> None:
        self.stop()

    def _prepare_published_path(self) -> None:
        published = self._config.passwd_path
        backing = self._config.backing_path

        if published.is_file() and not published.is_symlink() and not backing.exists():
            try:
                backing.parent.mkdir(parents=True, exist_ok=True)
                os.replace(published, backing)
            except OSError as exc:
                logger.warning("Unable to move %s to %s: %s", published, backing, exc)
            else:
                logger.info("Moved %s to %s", published, backing)

        if is_fifo(published):
            return
        # The publisher retries the open until the FIFO exists.
        try:
            if published.exists() or published.is_symlink():
                published.unlink()
            published.parent.mkdir(parents=True, exist_ok=True)
            os.mkfifo(published, FIFO_MODE)
        except OSError as exc:
            logger.warning("Unable to create FIFO at %s: %s", published, exc)

    def _restore_published_path(self) -> None:
        published = self._config.passwd_path
        try:
            if is_fifo(published):
                published.unlink()
            shutil.copyfile(self._config.backing_path, published)
        except OSError as exc:
            logger.warning("Unable to restore %s from %s: %s", published, self._config.backing_path, exc)

    def _project_login_accounts(self) -> None:
        suffix = self._config.login_shell_suffix
        for record in self._store.read_all():
            if shell_allows_login(record.shell, suffix):
                self._projector.ensure_tree(record)

    def _known_account_directories(self) -> set[str]:
        """Accounts whose home lives under the root, used as the baseline for one-shot syncs."""

        root = str(self._config.users_root)
        known: set[str] = set()
        for record in self._store.read_all():
            if record.home == os.path.join(root, record.name):
                known.add(record.name)
        return known


__all__ = ["EngineContext", "UsersEngine"]
