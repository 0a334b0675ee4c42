"""Passwd-style record file parsing and persistence."""
from __future__ import annotations

import logging
import os
import stat
from pathlib import Path
from typing import List, Optional

from .models import UserRecord

logger = logging.getLogger("kubsh.records")

FIELD_SEPARATOR = ":"
PASSWORD_PLACEHOLDER = "x"
DEFAULT_MIN_UID = 2000

_FIELD_COUNT = 7


class RecordStoreError(RuntimeError):
    """Raised when the backing record file cannot be written."""


def parse_record_line(line: str) -> Optional[UserRecord]:
    """Parse ``name:x:uid:gid:gecos:home:shell`` into a record, or ``None`` if malformed."""

    fields = line.rstrip("\r\n").split(FIELD_SEPARATOR)
    if len(fields) < _FIELD_COUNT:
        return None
    return UserRecord(
        name=fields[0],
        uid=fields[2],
        gid=fields[3],
        home=fields[5],
        shell=fields[6],
    )


def format_record(record: UserRecord) -> str:
    """Render a record as a canonical line (gecos left empty, no trailing newline)."""

    return FIELD_SEPARATOR.join(
        (
            record.name,
            PASSWORD_PLACEHOLDER,
            record.uid,
            record.gid,
            "",
            record.home,
            record.shell,
        )
    )


def is_fifo(path: Path) -> bool:
    try:
        return stat.S_ISFIFO(os.stat(path).st_mode)
    except OSError:
        return False


class RecordStore:
    """CRUD over the backing record file.

    Reads prefer the backing file and fall back to the published path when the
    backing file does not exist yet. All writes go to the backing file. The
    store is not locked; callers guarantee a single writer.
    """

    def __init__(
        self,
        backing_path: Path,
        published_path: Path,
        *,
        min_uid: int = DEFAULT_MIN_UID,
    ) -> None:
        self._backing_path = Path(backing_path)
        self._published_path = Path(published_path)
        self._min_uid = min_uid

    @property
    def backing_path(self) -> Path:
        return self._backing_path

    @property
    def published_path(self) -> Path:
        return self._published_path

    def _source_path(self) -> Optional[Path]:
        if self._backing_path.exists():
            return self._backing_path
        # Reading our own FIFO would block until the publisher writes to it.
        if self._published_path.exists() and not is_fifo(self._published_path):
            return self._published_path
        return None

    def read_all(self) -> List[UserRecord]:
        source = self._source_path()
        if source is None:
            return []
        try:
            content = source.read_text(encoding="utf-8", errors="surrogateescape")
        except OSError as exc:
            logger.debug("Unable to read record file %s: %s", source, exc)
            return []

        records: List[UserRecord] = []
        for line in content.splitlines():
            record = parse_record_line(line)
            if record is not None:
                records.append(record)
        return records

    def find_by_name(self, name: str) -> Optional[UserRecord]:
        for record in self.read_all():
            if record.name == name:
                return record
        return None

    def next_free_id(self) -> str:
        highest = self._min_uid
        for record in self.read_all():
            value = record.numeric_uid
            if value is not None and value > highest:
                highest = value
        return str(highest + 1)

    def append(self, record: UserRecord) -> None:
        line = format_record(record) + "\n"
        if not self._ends_with_newline():
            line = "\n" + line
        try:
            with self._backing_path.open("a", encoding="utf-8", errors="surrogateescape") as handle:
                handle.write(line)
        except OSError as exc:
            raise RecordStoreError(
                f"Unable to append record for {record.name!r} to {self._backing_path}"
            ) from exc
        logger.debug("Appended record for %s to %s", record.name, self._backing_path)

    def _ends_with_newline(self) -> bool:
        """Missing and empty files count as terminated."""

        try:
            with self._backing_path.open("rb") as handle:
                handle.seek(0, os.SEEK_END)
                if handle.tell() == 0:
                    return True
                handle.seek(-1, os.SEEK_END)
                return handle.read(1) == b"\n"
        except OSError:
            return True

    def remove_by_name(self, name: str) -> None:
        try:
            content = self._backing_path.read_text(encoding="utf-8", errors="surrogateescape")
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.debug("Unable to read %s while removing %s: %s", self._backing_path, name, exc)
            return

        prefix = name + FIELD_SEPARATOR
        lines = content.splitlines()
        kept = [line for line in lines if not line.startswith(prefix)]
        if len(kept) == len(lines):
            return

        rendered = "".join(line + "\n" for line in kept)
        try:
            self._backing_path.write_text(rendered, encoding="utf-8", errors="surrogateescape")
        except OSError as exc:
            logger.warning("Unable to rewrite %s while removing %s: %s", self._backing_path, name, exc)
            return
        logger.debug("Removed record for %s from %s", name, self._backing_path)

    def read_bytes(self) -> bytes:
        try:
            return self._backing_path.read_bytes()
        except OSError as exc:
            logger.debug("Unable to read %s for publication: %s", self._backing_path, exc)
            return b""


__all__ = [
    "DEFAULT_MIN_UID",
    "PASSWORD_PLACEHOLDER",
    "RecordStore",
    "RecordStoreError",
    "format_record",
    "is_fifo",
    "parse_record_line",
]
