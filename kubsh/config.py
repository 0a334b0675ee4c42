"""Configuration management for the users directory engine."""
from __future__ import annotations

import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from .channel import DEFAULT_POLL_INTERVAL, DEFAULT_THROTTLE
from .projector import DEFAULT_LOGIN_SHELL_SUFFIX
from .provisioning import DEFAULT_SHELL
from .records import DEFAULT_MIN_UID

DEFAULT_USERS_ROOT = Path("/opt/users")
DEFAULT_PASSWD_PATH = Path("/etc/passwd")
DEFAULT_BACKING_PATH = Path("/etc/passwd.real")

CONFIG_ENV = "KUBSH_CONFIG"

_PATH_FIELDS = ("users_root", "passwd_path", "backing_path")
_ENV_OVERRIDES = {
    "users_root": "KUBSH_USERS_ROOT",
    "passwd_path": "KUBSH_PASSWD_PATH",
    "backing_path": "KUBSH_BACKING_PATH",
}


def _resolve_path(raw: object, base_path: Path | None) -> Path:
    candidate = Path(str(raw)).expanduser()
    if not candidate.is_absolute() and base_path is not None:
        candidate = base_path / candidate
    return candidate.resolve(strict=False)


@dataclass(frozen=True)
class EngineConfig:
    """Paths and tuning knobs for the identity synchronization engine."""

    users_root: Path = DEFAULT_USERS_ROOT
    passwd_path: Path = DEFAULT_PASSWD_PATH
    backing_path: Path = DEFAULT_BACKING_PATH
    default_shell: str = DEFAULT_SHELL
    login_shell_suffix: str = DEFAULT_LOGIN_SHELL_SUFFIX
    min_uid: int = DEFAULT_MIN_UID
    poll_interval: float = DEFAULT_POLL_INTERVAL
    throttle: float = DEFAULT_THROTTLE
    tool_timeout: Optional[float] = None

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "EngineConfig":
        """Create an :class:`EngineConfig` from raw dictionary data."""

        known = {item.name for item in fields(EngineConfig)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown engine configuration fields: {', '.join(sorted(unknown))}")

        values: Dict[str, object] = {}
        for name in _PATH_FIELDS:
            if data.get(name) is not None:
                values[name] = _resolve_path(data[name], base_path)
        for name in ("default_shell", "login_shell_suffix"):
            if data.get(name) is not None:
                values[name] = str(data[name])
        if data.get("min_uid") is not None:
            min_uid = int(data["min_uid"])  # type: ignore[arg-type]
            if min_uid < DEFAULT_MIN_UID:
                raise ValueError(f"min_uid must be at least {DEFAULT_MIN_UID}")
            values["min_uid"] = min_uid
        for name in ("poll_interval", "throttle"):
            if data.get(name) is not None:
                value = float(data[name])  # type: ignore[arg-type]
                if value < 0:
                    raise ValueError(f"{name} must not be negative")
                values[name] = value
        if data.get("tool_timeout") is not None:
            timeout = float(data["tool_timeout"])  # type: ignore[arg-type]
            values["tool_timeout"] = timeout if timeout > 0 else None

        if not values.get("default_shell", DEFAULT_SHELL):
            raise ValueError("default_shell must not be empty")

        return EngineConfig(**values)  # type: ignore[arg-type]

    def with_overrides(self, **overrides: object) -> "EngineConfig":
        """Return a copy with the non-``None`` overrides applied."""

        changes: Dict[str, object] = {}
        for name, value in overrides.items():
            if value is None:
                continue
            changes[name] = _resolve_path(value, None) if name in _PATH_FIELDS else value
        return replace(self, **changes) if changes else self

    def to_dict(self) -> Dict[str, object]:
        return {
            key: str(value) if isinstance(value, Path) else value
            for key, value in asdict(self).items()
        }


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (Path.home() / ".config" / "kubsh" / "config.yaml").resolve(strict=False)


def load_engine_config(config_path: Path, *, required: bool = False) -> EngineConfig:
    """Load engine settings from a YAML file.

    Settings may sit at the top level or under an ``engine`` key. A missing
    file yields the defaults unless ``required`` is set.
    """

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        if required:
            raise
        return EngineConfig()

    if not isinstance(raw, dict):
        raise ValueError("Configuration file must contain a mapping")
    section = raw.get("engine", raw)
    if not isinstance(section, dict):
        raise ValueError("The 'engine' section must be a mapping")
    return EngineConfig.from_dict(section, base_path=config_path.parent)


def apply_environment(config: EngineConfig, environ: Mapping[str, str] | None = None) -> EngineConfig:
    """Apply ``KUBSH_*`` path overrides from the environment."""

    env = os.environ if environ is None else environ
    overrides = {name: env.get(variable) or None for name, variable in _ENV_OVERRIDES.items()}
    return config.with_overrides(**overrides)


__all__ = [
    "CONFIG_ENV",
    "EngineConfig",
    "apply_environment",
    "load_engine_config",
    "resolve_config_path",
]
