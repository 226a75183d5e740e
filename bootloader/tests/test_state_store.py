"""Tests for descriptor persistence, migration and teardown."""

from __future__ import annotations

import dataclasses
import json
import stat
from pathlib import Path

import pytest

from bootloader._errors import BootloaderError, CombinedError, PersistenceError
from bootloader._models import (
    CURRENT_STATE_VERSION,
    LB,
    DirectorState,
    JumpboxState,
    LBType,
    State,
)
from bootloader._state_store import StateStore, migrate, save_after_error


def test_missing_file_loads_empty_state(tmp_path: Path) -> None:
    assert StateStore(tmp_path).get() == State()


def test_round_trip(tmp_path: Path, aws_state: State) -> None:
    state = dataclasses.replace(
        aws_state,
        lb=LB(type=LBType.CF, cert="CERT", key="KEY", domain="cf.example.com"),
        jumpbox=JumpboxState(variables="a: b\n", state={"vm": "j"}, url="1.2.3.4:22"),
        bosh=DirectorState(state={"vm": "d"}, director_name="bosh-lake"),
    )
    store = StateStore(tmp_path)

    store.set(state)

    assert store.get() == state


def test_saved_file_is_private(tmp_path: Path, aws_state: State) -> None:
    store = StateStore(tmp_path)
    store.set(aws_state)

    assert stat.S_IMODE(store.state_path.stat().st_mode) == 0o600
    assert not (tmp_path / "bbl-state.json.tmp").exists()
    assert json.loads(store.state_path.read_text(encoding="utf-8"))["version"] == (
        CURRENT_STATE_VERSION
    )


def test_empty_state_tears_down_layout(tmp_path: Path, aws_state: State) -> None:
    store = StateStore(tmp_path)
    store.set(aws_state)
    for directory in ("vars", "terraform", "bosh-deployment", "cloud-config"):
        (tmp_path / directory).mkdir(exist_ok=True)
    (tmp_path / "create-director.sh").write_text("#!/bin/sh\n", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("keep me", encoding="utf-8")

    store.set(State())

    assert sorted(path.name for path in tmp_path.iterdir()) == ["notes.txt"]


def test_version_one_is_migrated(tmp_path: Path) -> None:
    payload = {
        "version": 1,
        "iaas": "aws",
        "env_id": "lake",
        "bosh_state": {"vm": "d"},
        "jumpbox_state": {"vm": "j"},
    }
    (tmp_path / "bbl-state.json").write_text(json.dumps(payload), encoding="utf-8")

    state = StateStore(tmp_path).get()

    assert state.version == CURRENT_STATE_VERSION
    assert state.bosh.state == {"vm": "d"}
    assert state.jumpbox.state == {"vm": "j"}


def test_version_two_lb_fields_are_nested() -> None:
    migrated = migrate(
        {"version": 2, "lb_type": "concourse", "lb_cert": "CERT", "lb_key": "KEY"}
    )

    assert migrated == {
        "version": 3,
        "lb": {"type": "concourse", "cert": "CERT", "key": "KEY"},
    }


def test_newer_version_is_rejected(tmp_path: Path) -> None:
    (tmp_path / "bbl-state.json").write_text('{"version": 99}', encoding="utf-8")

    with pytest.raises(PersistenceError, match="newer than the supported version"):
        StateStore(tmp_path).get()


@pytest.mark.parametrize(
    "contents",
    ["{", "[]", '{"iaas": "openstack"}', '{"env_id": 7}'],
)
def test_malformed_state_is_a_persistence_error(tmp_path: Path, contents: str) -> None:
    (tmp_path / "bbl-state.json").write_text(contents, encoding="utf-8")

    with pytest.raises(PersistenceError):
        StateStore(tmp_path).get()


def test_write_failure_is_a_persistence_error(tmp_path: Path, aws_state: State) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")

    with pytest.raises(PersistenceError, match="Failed to write state file"):
        StateStore(blocker / "env").set(aws_state)


def test_save_after_error_persists_then_raises(tmp_path: Path, aws_state: State) -> None:
    store = StateStore(tmp_path)
    error = BootloaderError("apply failed")

    with pytest.raises(BootloaderError) as excinfo:
        save_after_error(store, aws_state, error)

    assert excinfo.value is error
    assert store.get() == aws_state


def test_save_after_error_combines_failures(tmp_path: Path, aws_state: State) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    error = BootloaderError("apply failed")

    with pytest.raises(CombinedError) as excinfo:
        save_after_error(StateStore(blocker / "env"), aws_state, error)

    assert excinfo.value.errors[0] is error
    assert isinstance(excinfo.value.errors[1], PersistenceError)


def test_subdirectories_are_created_on_demand(tmp_path: Path) -> None:
    store = StateStore(tmp_path / "env")

    assert store.get_vars_dir() == tmp_path / "env" / "vars"
    assert store.get_terraform_dir().is_dir()
