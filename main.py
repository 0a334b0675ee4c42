"""Command-line interface for the kubsh shell and its users engine."""

from __future__ import annotations
import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Sequence

from kubsh.config import (
    CONFIG_ENV,
    EngineConfig,
    apply_environment,
    load_engine_config,
    resolve_config_path,
)
from kubsh.engine import UsersEngine
from kubsh.shell import HISTORY_ENV, Shell, resolve_history_path

logger = logging.getLogger("kubsh.main")

LOG_LEVEL_ENV = "KUBSH_LOG_LEVEL"
_KNOWN_COMMANDS = {"shell", "sync", "show-config"}


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="kubsh: a shell with a live users directory")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="shell")

    def add_common(sub: argparse.ArgumentParser) -> None:
        sub.add_argument(
            "--config",
            default=None,
            help=f"Path to the YAML configuration file (default: ${CONFIG_ENV} or ~/.config/kubsh/config.yaml)",
        )
        sub.add_argument(
            "--log-level",
            default=None,
            help=f"Logging level (default: ${LOG_LEVEL_ENV}, WARNING for the shell, INFO otherwise)",
        )
        sub.add_argument("--users-root", default=None, help="Directory whose subdirectories are accounts")
        sub.add_argument("--passwd-path", default=None, help="Well-known path served through a FIFO")
        sub.add_argument("--backing-path", default=None, help="Durable record file")

    shell_parser = subparsers.add_parser("shell", help="Start the interactive shell (default)")
    add_common(shell_parser)
    shell_parser.add_argument(
        "--no-engine",
        action="store_true",
        help="Run the shell without starting the users engine",
    )
    shell_parser.add_argument(
        "--history-file",
        default=None,
        help=f"History file (default: ${HISTORY_ENV} or ~/.kubsh_history)",
    )

    sync_parser = subparsers.add_parser("sync", help="Reconcile the users root once and exit")
    add_common(sync_parser)

    show_parser = subparsers.add_parser("show-config", help="Print the effective configuration")
    add_common(show_parser)

    args_list = list(argv) if argv is not None else sys.argv[1:]

    if not args_list:
        args_list = ["shell"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in _KNOWN_COMMANDS:
            args_list = ["shell", *args_list]

    return parser.parse_args(args_list)


def _configure_logging(requested: str | None, default: int) -> None:
    raw = requested or os.getenv(LOG_LEVEL_ENV)
    level = default
    if raw:
        resolved = logging.getLevelName(raw.strip().upper())
        if isinstance(resolved, int):
            level = resolved
    logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(message)s")


def _load_config(args: argparse.Namespace) -> EngineConfig:
    explicit = args.config or os.getenv(CONFIG_ENV)
    config_path = resolve_config_path(explicit)
    try:
        config = load_engine_config(config_path, required=bool(explicit))
    except FileNotFoundError:
        raise SystemExit(f"Configuration file not found: {config_path}")
    except ValueError as exc:
        raise SystemExit(f"Invalid configuration in {config_path}: {exc}")

    config = apply_environment(config)
    return config.with_overrides(
        users_root=args.users_root,
        passwd_path=args.passwd_path,
        backing_path=args.backing_path,
    )


def _run_shell(config: EngineConfig, args: argparse.Namespace) -> int:
    engine = None if args.no_engine else UsersEngine(config)
    history = Path(args.history_file).expanduser() if args.history_file else resolve_history_path(
        os.getenv(HISTORY_ENV)
    )
    return Shell(engine, history_path=history).run()


def _run_sync(config: EngineConfig) -> int:
    engine = UsersEngine(config)
    changes = engine.sync_once()
    for name in sorted(changes.added):
        print(f"+ {name}")
    for name in sorted(changes.removed):
        print(f"- {name}")
    if changes.empty:
        print("Users root already in sync.")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    args = _parse_args(argv)
    default_level = logging.WARNING if args.command == "shell" else logging.INFO
    _configure_logging(args.log_level, default_level)
    config = _load_config(args)

    if args.command == "shell":
        return _run_shell(config, args)
    if args.command == "sync":
        return _run_sync(config)
    if args.command == "show-config":
        print(json.dumps(config.to_dict(), indent=2, sort_keys=True))
        return 0
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
