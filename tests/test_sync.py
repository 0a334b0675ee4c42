from __future__ import annotations

import shutil
import sys
from pathlib import Path
from typing import List, Sequence

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from kubsh.commands import CommandResult
from kubsh.projector import DirectoryProjector
from kubsh.provisioning import Deprovisioner, Provisioner, default_strategies
from kubsh.records import RecordStore
from kubsh.sync import Synchronizer


class UserdelRunner:
    """Fails account creation; ``userdel`` succeeds and edits the store."""

    def __init__(self, store: RecordStore) -> None:
        self._store = store
        self.calls: List[List[str]] = []

    def run(self, args: Sequence[str]) -> CommandResult:
        self.calls.append(list(args))
        if args[0] == "userdel":
            self._store.remove_by_name(args[-1])
            return CommandResult(command=tuple(args), exit_status=0)
        return CommandResult(command=tuple(args), exit_status=1)


def _synchronizer(tmp_path: Path):
    users_root = tmp_path / "users"
    users_root.mkdir()
    store = RecordStore(tmp_path / "passwd.real", tmp_path / "passwd")
    runner = UserdelRunner(store)
    provisioner = Provisioner(
        store,
        DirectoryProjector(users_root),
        default_strategies(runner, store, users_root),
        root=users_root,
    )
    return users_root, store, runner, Synchronizer(users_root, provisioner, Deprovisioner(store, runner))


def test_passes_converge_on_directory_changes(tmp_path: Path) -> None:
    users_root, store, runner, synchronizer = _synchronizer(tmp_path)
    (users_root / "A").mkdir()
    (users_root / "B").mkdir()

    first = synchronizer.run_pass()

    assert first.added == {"A", "B"}
    assert first.removed == frozenset()
    assert {record.name for record in store.read_all()} == {"A", "B"}
    assert synchronizer.previous == {"A", "B"}

    shutil.rmtree(users_root / "A")
    second = synchronizer.run_pass()

    assert second.added == frozenset()
    assert second.removed == {"A"}
    assert store.find_by_name("A") is None
    assert store.find_by_name("B") is not None
    assert ["userdel", "-r", "A"] in runner.calls


def test_unchanged_root_yields_empty_diff(tmp_path: Path) -> None:
    users_root, store, runner, synchronizer = _synchronizer(tmp_path)
    (users_root / "A").mkdir()
    synchronizer.run_pass()
    calls = len(runner.calls)

    assert synchronizer.run_pass().empty
    assert len(runner.calls) == calls


def test_seed_provisions_existing_directories(tmp_path: Path) -> None:
    users_root, store, _runner, synchronizer = _synchronizer(tmp_path)
    (users_root / "carol").mkdir()

    assert synchronizer.seed() == {"carol"}
    assert store.find_by_name("carol") is not None
    assert (users_root / "carol" / "id").exists()
    assert synchronizer.run_pass().empty


def test_failure_for_one_name_does_not_stop_the_pass(tmp_path: Path) -> None:
    users_root = tmp_path / "users"
    users_root.mkdir()
    (users_root / "bad").mkdir()
    (users_root / "good").mkdir()
    seen: List[str] = []

    class FlakyProvisioner:
        def ensure(self, name: str):
            seen.append(name)
            if name == "bad":
                raise RuntimeError("boom")
            return None

    store = RecordStore(tmp_path / "passwd.real", tmp_path / "passwd")
    synchronizer = Synchronizer(
        users_root,
        FlakyProvisioner(),  # type: ignore[arg-type]
        Deprovisioner(store, UserdelRunner(store)),
    )

    changes = synchronizer.run_pass()

    assert seen == ["bad", "good"]
    assert changes.added == {"bad", "good"}
