"""Run account-management tools as local child processes."""
from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

logger = logging.getLogger("kubsh.commands")

COMMAND_NOT_FOUND = 127


@dataclass
class CommandResult:
    """Result of an executed command. Only the exit status is observed."""

    command: Sequence[str]
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


class CommandRunner(Protocol):
    def run(self, args: Sequence[str]) -> CommandResult:
        ...


class LocalCommandRunner:
    """Execute commands synchronously with stdin, stdout and stderr discarded."""

    def __init__(self, *, timeout: Optional[float] = None) -> None:
        self._timeout = timeout

    def run(self, args: Sequence[str]) -> CommandResult:
        command = [str(part) for part in args]
        if not command:
            raise ValueError("Command must not be empty")

        printable = " ".join(shlex.quote(part) for part in command)
        try:
            completed = subprocess.run(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=self._timeout,
                check=False,
            )
        except FileNotFoundError:
            logger.debug("%s: executable not found", command[0])
            return CommandResult(command=tuple(command), exit_status=COMMAND_NOT_FOUND)
        except subprocess.TimeoutExpired:
            logger.warning("Command timed out after %ss: %s", self._timeout, printable)
            return CommandResult(command=tuple(command), exit_status=-1)
        except OSError as exc:
            logger.debug("Unable to execute %s: %s", printable, exc)
            return CommandResult(command=tuple(command), exit_status=-1)

        logger.debug("%s exited with status %s", printable, completed.returncode)
        return CommandResult(command=tuple(command), exit_status=completed.returncode)


__all__ = ["COMMAND_NOT_FOUND", "CommandResult", "CommandRunner", "LocalCommandRunner"]
