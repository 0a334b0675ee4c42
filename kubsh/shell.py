"""Interactive front end that hosts the users engine."""
from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import sys
from pathlib import Path
from typing import Callable, List, Optional, Sequence, TextIO

from .commands import COMMAND_NOT_FOUND
from .engine import UsersEngine

logger = logging.getLogger("kubsh.shell")

HISTORY_ENV = "KUBSH_HISTORY"
HISTORY_FILENAME = ".kubsh_history"
EXIT_COMMAND = "\\q"
ENV_COMMAND = "\\e"
PROMPT = "$ "

Launcher = Callable[[Sequence[str]], int]


def resolve_history_path(env_value: Optional[str] = None) -> Path:
    """Return the history file location, honouring ``KUBSH_HISTORY`` and ``HOME``."""

    if env_value:
        return Path(env_value).expanduser()
    home = os.environ.get("HOME") or "/root"
    return Path(home) / HISTORY_FILENAME


def _strip_matching_quotes(text: str) -> str:
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]
    return text


def launch_process(args: Sequence[str]) -> int:
    """Run an external command in the foreground and return its exit status."""

    try:
        return subprocess.run(list(args), check=False).returncode
    except FileNotFoundError:
        return COMMAND_NOT_FOUND
    except PermissionError:
        return 126


class Shell:
    """Read-eval loop with a handful of built-ins.

    The shell only calls :meth:`UsersEngine.start` before its loop and
    :meth:`UsersEngine.stop` after it; it never reaches into the engine.
    """

    def __init__(
        self,
        engine: Optional[UsersEngine] = None,
        *,
        history_path: Optional[Path] = None,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
        launcher: Launcher = launch_process,
        environ: Optional[dict] = None,
    ) -> None:
        self._engine = engine
        self._history_path = history_path or resolve_history_path(os.environ.get(HISTORY_ENV))
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        self._stderr = stderr or sys.stderr
        self._launcher = launcher
        self._environ = os.environ if environ is None else environ
        self.history: List[str] = []

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------
    def load_history(self) -> None:
        self.history = []
        try:
            with self._history_path.open("r", encoding="utf-8", errors="replace") as handle:
                self.history = [line.rstrip("\n") for line in handle if line.strip("\n")]
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.debug("Unable to read history from %s: %s", self._history_path, exc)

    def record_history(self, line: str) -> None:
        if not line.strip():
            return
        self.history.append(line)
        try:
            self._history_path.parent.mkdir(parents=True, exist_ok=True)
            with self._history_path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except OSError as exc:
            logger.debug("Unable to append to %s: %s", self._history_path, exc)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------
    def run(self) -> int:
        """Start the engine, process input until EOF or ``\\q``, then stop it."""

        self.load_history()
        previous_handler = self._install_sighup_handler()
        try:
            if self._engine is not None:
                self._engine.start()
            while True:
                self._stderr.write(PROMPT)
                self._stderr.flush()
                line = self._stdin.readline()
                if not line:
                    break
                line = line.rstrip("\n")
                self.record_history(line)
                if not self.execute(line):
                    break
        except KeyboardInterrupt:
            self._stdout.write("\n")
        finally:
            if self._engine is not None:
                self._engine.stop()
            self._restore_sighup_handler(previous_handler)
        return 0

    def execute(self, line: str) -> bool:
        """Handle one input line. Returns ``False`` when the shell should exit."""

        stripped = line.lstrip(" \t")
        if stripped == EXIT_COMMAND:
            return False
        if not stripped:
            return True

        command, _, rest = stripped.partition(" ")
        if command in ("echo", "debug"):
            self._print(_strip_matching_quotes(rest.lstrip(" \t")))
            return True
        if command == "history":
            self._print_history()
            return True
        if stripped.startswith(ENV_COMMAND):
            self._print_variable(stripped[len(ENV_COMMAND):].lstrip(" \t"))
            return True

        try:
            args = shlex.split(stripped)
        except ValueError as exc:
            self._print(f"kubsh: {exc}")
            return True
        if args:
            self._run_external(args)
        return True

    # ------------------------------------------------------------------
    # Built-ins
    # ------------------------------------------------------------------
    def _print(self, text: str) -> None:
        self._stdout.write(text + "\n")
        self._stdout.flush()

    def _print_history(self) -> None:
        self._print("Your command history:")
        for entry in self.history:
            self._print(entry)

    def _print_variable(self, argument: str) -> None:
        if not argument.startswith("$"):
            self._print("")
            return
        parts = argument[1:].split()
        name = parts[0] if parts else ""
        value = self._environ.get(name, "")
        if name == "PATH":
            for entry in value.split(":"):
                self._print(entry)
            return
        self._print(value)

    def _run_external(self, args: Sequence[str]) -> None:
        status = self._launcher(args)
        if status == COMMAND_NOT_FOUND:
            self._print(f"{args[0]}: command not found")

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------
    def _on_sighup(self, _signum: int, _frame: object) -> None:
        self._print("Configuration reloaded")

    def _install_sighup_handler(self) -> object:
        if not hasattr(signal, "SIGHUP"):
            return None
        try:
            return signal.signal(signal.SIGHUP, self._on_sighup)
        except ValueError:
            # Only the main thread may install signal handlers.
            return None

    def _restore_sighup_handler(self, previous: object) -> None:
        if previous is None or not hasattr(signal, "SIGHUP"):
            return
        try:
            signal.signal(signal.SIGHUP, previous)  # type: ignore[arg-type]
        except ValueError:
            pass


__all__ = ["HISTORY_ENV", "Shell", "launch_process", "resolve_history_path"]
