"""Publish the record file to readers of the well-known path through a FIFO."""
from __future__ import annotations

import errno
import logging
import os
import stat
import threading
from enum import Enum
from pathlib import Path
from typing import Optional

from .records import RecordStore
from .sync import Synchronizer

logger = logging.getLogger("kubsh.channel")

DEFAULT_POLL_INTERVAL = 0.05
DEFAULT_THROTTLE = 0.001
DEFAULT_JOIN_TIMEOUT = 5.0

THREAD_NAME = "kubsh-publisher"

# No reader attached, interrupted, or the node is being recreated.
_TRANSIENT_OPEN_ERRORS = {errno.ENXIO, errno.EINTR, errno.EAGAIN, errno.ENOENT}


class ChannelState(str, Enum):
    """Lifecycle state of the publisher thread."""

    RUNNING = "running"
    STOPPED = "stopped"


class PublicationChannel:
    """Background loop serving one sync-and-publish cycle per reader.

    Each time a reader opens the FIFO the loop runs a synchroniser pass, writes
    the backing file through the pipe and closes it so the reader sees EOF.
    Waiting for a reader is a poll on a stop event, so :meth:`stop` always
    interrupts it.
    """

    def __init__(
        self,
        path: Path,
        store: RecordStore,
        synchronizer: Synchronizer,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        throttle: float = DEFAULT_THROTTLE,
        join_timeout: float = DEFAULT_JOIN_TIMEOUT,
    ) -> None:
        self._path = Path(path)
        self._store = store
        self._synchronizer = synchronizer
        self._poll_interval = poll_interval
        self._throttle = throttle
        self._join_timeout = join_timeout
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._state = ChannelState.STOPPED
        self._cycles = 0

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def cycles(self) -> int:
        """Number of completed publications."""

        return self._cycles

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError("Publication channel is already running")

        self._stop_event.clear()
        self._state = ChannelState.RUNNING
        self._thread = threading.Thread(target=self._run, name=THREAD_NAME, daemon=True)
        self._thread.start()
        logger.debug("Publishing %s", self._path)

    def stop(self) -> None:
        thread = self._thread
        if thread is None:
            return

        self._stop_event.set()
        thread.join(self._join_timeout)
        if thread.is_alive():
            logger.warning(
                "Publisher thread did not stop within %.1fs; a tool invocation may be hung",
                self._join_timeout,
            )
        self._thread = None
        self._state = ChannelState.STOPPED

    def _run(self) -> None:
        try:
            while not self._stop_event.is_set():
                fd = self._open_for_reader()
                if fd is None:
                    continue
                try:
                    if self._stop_event.is_set():
                        break
                    self._publish(fd)
                finally:
                    os.close(fd)
                self._stop_event.wait(self._throttle)
        finally:
            self._state = ChannelState.STOPPED

    def _open_for_reader(self) -> Optional[int]:
        try:
            fd = os.open(self._path, os.O_WRONLY | os.O_NONBLOCK)
        except OSError as exc:
            if exc.errno not in _TRANSIENT_OPEN_ERRORS:
                logger.debug("Unable to open %s for writing: %s", self._path, exc)
        else:
            if stat.S_ISFIFO(os.fstat(fd).st_mode):
                return fd
            # A regular file must never be overwritten in place.
            os.close(fd)
            logger.debug("%s is not a FIFO; waiting", self._path)
        self._stop_event.wait(self._poll_interval)
        return None

    def _publish(self, fd: int) -> None:
        try:
            self._synchronizer.run_pass()
        except Exception:
            logger.exception("Sync pass failed; publishing current records anyway")

        payload = self._store.read_bytes()
        os.set_blocking(fd, True)
        view = memoryview(payload)
        try:
            while view:
                written = os.write(fd, view)
                view = view[written:]
        except BrokenPipeError:
            logger.debug("Reader of %s went away before the write completed", self._path)
            return
        except OSError as exc:
            logger.debug("Write to %s failed: %s", self._path, exc)
            return
        self._cycles += 1


__all__ = [
    "ChannelState",
    "DEFAULT_POLL_INTERVAL",
    "DEFAULT_THROTTLE",
    "PublicationChannel",
]
