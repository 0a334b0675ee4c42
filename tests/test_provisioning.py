from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from kubsh.commands import CommandResult
from kubsh.models import UserRecord
from kubsh.projector import DirectoryProjector
from kubsh.provisioning import (
    AccountUnavailable,
    Deprovisioner,
    Provisioner,
    default_strategies,
)
from kubsh.records import RecordStore


class ScriptedRunner:
    """Records every invocation and answers from a per-tool table."""

    def __init__(
        self,
        statuses: Optional[Dict[str, int]] = None,
        effects: Optional[Dict[str, Callable[[Sequence[str]], None]]] = None,
    ) -> None:
        self.calls: List[List[str]] = []
        self._statuses = statuses or {}
        self._effects = effects or {}

    def run(self, args: Sequence[str]) -> CommandResult:
        self.calls.append(list(args))
        effect = self._effects.get(args[0])
        if effect is not None:
            effect(args)
        return CommandResult(command=tuple(args), exit_status=self._statuses.get(args[0], 1))

    def tools(self) -> List[str]:
        return [call[0] for call in self.calls]


def _build(tmp_path: Path, runner: ScriptedRunner):
    users_root = tmp_path / "users"
    users_root.mkdir()
    store = RecordStore(tmp_path / "passwd.real", tmp_path / "passwd")
    projector = DirectoryProjector(users_root)
    provisioner = Provisioner(
        store,
        projector,
        default_strategies(runner, store, users_root),
        root=users_root,
    )
    return users_root, store, provisioner


def _tool_appends(store: RecordStore, uid: str) -> Callable[[Sequence[str]], None]:
    def effect(args: Sequence[str]) -> None:
        name = args[-1]
        store.append(UserRecord(name, uid, uid, f"/home/{name}", "/bin/sh"))

    return effect


@pytest.mark.parametrize("name", ["", ".", ".."])
def test_ensure_rejects_reserved_names(tmp_path: Path, name: str) -> None:
    runner = ScriptedRunner()
    _, store, provisioner = _build(tmp_path, runner)

    assert provisioner.ensure(name) is None
    assert runner.calls == []
    assert store.read_all() == []


def test_ensure_projects_existing_record_without_tools(tmp_path: Path) -> None:
    runner = ScriptedRunner()
    users_root, store, provisioner = _build(tmp_path, runner)
    store.backing_path.write_text("alice:x:1500:1500::/home/alice:/bin/bash\n")

    record = provisioner.ensure("alice")

    assert record is not None and record.uid == "1500"
    assert runner.calls == []
    assert (users_root / "alice" / "id").read_text() == "1500"


def test_ensure_uses_first_tool_that_creates_account(tmp_path: Path) -> None:
    runner = ScriptedRunner(statuses={"adduser": 0})
    users_root, store, provisioner = _build(tmp_path, runner)
    runner._effects["adduser"] = _tool_appends(store, "1001")

    record = provisioner.ensure("carol")

    assert record == UserRecord("carol", "1001", "1001", "/home/carol", "/bin/sh")
    assert runner.tools() == ["adduser"]
    assert runner.calls[0] == [
        "adduser",
        "--disabled-password",
        "--gecos",
        "",
        "--home",
        str(users_root / "carol"),
        "--shell",
        "/bin/sh",
        "carol",
    ]
    assert (users_root / "carol" / "home").read_text() == "/home/carol"


def test_ensure_falls_back_to_second_tool(tmp_path: Path) -> None:
    runner = ScriptedRunner(statuses={"useradd": 0})
    users_root, store, provisioner = _build(tmp_path, runner)
    runner._effects["useradd"] = _tool_appends(store, "1002")

    record = provisioner.ensure("dave")

    assert record is not None and record.uid == "1002"
    assert runner.tools() == ["adduser", "useradd"]
    assert runner.calls[1] == ["useradd", "-m", "-d", str(users_root / "dave"), "-s", "/bin/sh", "dave"]


def test_successful_exit_without_record_counts_as_unavailable(tmp_path: Path) -> None:
    runner = ScriptedRunner(statuses={"adduser": 0})
    _, store, provisioner = _build(tmp_path, runner)
    strategy = default_strategies(runner, store, tmp_path / "users")[0]

    with pytest.raises(AccountUnavailable) as excinfo:
        strategy("erin")

    assert excinfo.value.result is not None
    assert excinfo.value.result.exit_status == 0


def test_ensure_synthesises_record_when_tools_fail(tmp_path: Path) -> None:
    runner = ScriptedRunner()
    users_root, store, provisioner = _build(tmp_path, runner)
    store.backing_path.write_text("root:x:0:0:root:/root:/bin/bash\n")

    record = provisioner.ensure("bob")

    assert record is not None
    assert int(record.uid) >= 2001
    assert record.gid == record.uid
    assert record.home == str(users_root / "bob")
    assert record.shell == "/bin/sh"
    assert runner.tools() == ["adduser", "useradd"]
    assert store.backing_path.read_text().endswith(
        f"bob:x:{record.uid}:{record.uid}::{users_root / 'bob'}:/bin/sh\n"
    )
    assert (users_root / "bob" / "id").read_text() == record.uid
    assert (users_root / "bob" / "home").read_text() == record.home
    assert (users_root / "bob" / "shell").read_text() == record.shell


def test_ensure_is_idempotent(tmp_path: Path) -> None:
    runner = ScriptedRunner()
    users_root, store, provisioner = _build(tmp_path, runner)

    first = provisioner.ensure("bob")
    content = store.backing_path.read_text()
    tree = {path.name: path.read_text() for path in (users_root / "bob").iterdir()}

    second = provisioner.ensure("bob")

    assert first == second
    assert store.backing_path.read_text() == content
    assert {path.name: path.read_text() for path in (users_root / "bob").iterdir()} == tree


def test_ensure_aborts_when_store_is_unwritable(tmp_path: Path) -> None:
    runner = ScriptedRunner()
    users_root = tmp_path / "users"
    users_root.mkdir()
    store = RecordStore(tmp_path / "no-such-dir" / "passwd.real", tmp_path / "passwd")
    provisioner = Provisioner(
        store,
        DirectoryProjector(users_root),
        default_strategies(runner, store, users_root),
        root=users_root,
    )

    assert provisioner.ensure("bob") is None
    assert not (users_root / "bob").exists()


def test_retire_ignores_unknown_and_reserved_names(tmp_path: Path) -> None:
    runner = ScriptedRunner()
    store = RecordStore(tmp_path / "passwd.real", tmp_path / "passwd")
    deprovisioner = Deprovisioner(store, runner)

    assert deprovisioner.retire("ghost") is False
    assert deprovisioner.retire("..") is False
    assert runner.calls == []


def test_retire_uses_userdel(tmp_path: Path) -> None:
    store = RecordStore(tmp_path / "passwd.real", tmp_path / "passwd")
    store.backing_path.write_text("alice:x:2001:2001::/opt/users/alice:/bin/sh\nbob:x:2002:2002::/b:/bin/sh\n")
    runner = ScriptedRunner(
        statuses={"userdel": 0},
        effects={"userdel": lambda args: store.remove_by_name(args[-1])},
    )

    assert Deprovisioner(store, runner).retire("alice") is True

    assert runner.calls == [["userdel", "-r", "alice"]]
    assert [record.name for record in store.read_all()] == ["bob"]


def test_retire_drops_record_when_userdel_leaves_it_behind(tmp_path: Path) -> None:
    store = RecordStore(tmp_path / "passwd.real", tmp_path / "passwd")
    store.backing_path.write_text("alice:x:2001:2001::/opt/users/alice:/bin/sh\n")
    runner = ScriptedRunner(statuses={"userdel": 0})

    assert Deprovisioner(store, runner).retire("alice") is True
    assert store.find_by_name("alice") is None


def test_retire_drops_record_when_userdel_fails(tmp_path: Path) -> None:
    store = RecordStore(tmp_path / "passwd.real", tmp_path / "passwd")
    store.backing_path.write_text("alice:x:2001:2001::/opt/users/alice:/bin/sh\nbob:x:2002:2002::/b:/bin/sh\n")
    runner = ScriptedRunner()

    assert Deprovisioner(store, runner).retire("alice") is True
    assert store.backing_path.read_text() == "bob:x:2002:2002::/b:/bin/sh\n"
