"""Core package for the kubsh shell and its live users directory engine."""

from __future__ import annotations

from .config import EngineConfig, load_engine_config, resolve_config_path
from .engine import EngineContext, UsersEngine
from .models import DirectoryDiff, UserRecord
from .records import RecordStore, RecordStoreError


__all__ = [
    "DirectoryDiff",
    "EngineConfig",
    "EngineContext",
    "RecordStore",
    "RecordStoreError",
    "UserRecord",
    "UsersEngine",
    "load_engine_config",
    "resolve_config_path",
]
