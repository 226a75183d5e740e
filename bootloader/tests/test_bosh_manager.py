"""Tests for the descriptor-level bosh manager."""

from __future__ import annotations

import dataclasses
import json
from pathlib import Path

import pytest
import yaml

from bootloader._bosh import BoshExecutor
from bootloader._bosh_manager import BoshManager, director_credentials
from bootloader._errors import ManagerError, VersionError
from bootloader._models import (
    IAAS,
    AWSCredentials,
    CommandResult,
    Credentials,
    DirectorState,
    GCPCredentials,
    GCPSettings,
    JumpboxState,
    Outputs,
    State,
)
from bootloader._state_store import StateStore

AWS_OUTPUTS = Outputs(
    {
        "internal_cidr": "10.0.0.0/24",
        "internal_gw": "10.0.0.1",
        "jumpbox_internal_ip": "10.0.0.5",
        "director_internal_ip": "10.0.0.6",
        "external_ip": "203.0.113.7",
        "jumpbox_url": "203.0.113.7:22",
        "director_address": "https://10.0.0.6:25555",
        "az": "us-east-1a",
        "subnet_id": "subnet-1",
        "default_key_name": "bbl-key",
        "private_key": "PRIVATE",
        "iam_instance_profile": "bbl-profile",
        "kms_key_arn": "arn:kms",
        "default_security_groups": ["sg-1"],
    }
)

DIRECTOR_VARS = "admin_password: secret-pw\ndirector_ssl:\n  ca: CA-CERT\n"


class FakeBoshCLI:
    """Shell double that writes what ``bosh create-env`` would leave behind."""

    def __init__(self, state_dir: Path, fail: bool = False) -> None:
        self.vars_dir = state_dir / "vars"
        self.fail = fail
        self.scripts: list[str] = []

    def __call__(self, call) -> CommandResult | None:
        script = Path(call.args[0]).name
        self.scripts.append(script)
        deployment = "jumpbox" if "jumpbox" in script else "director"
        state_file = "jumpbox-state.json" if deployment == "jumpbox" else "bosh-state.json"
        (self.vars_dir / state_file).write_text(
            json.dumps({"current_vm_cid": f"{deployment}-vm"}), encoding="utf-8"
        )
        if self.fail:
            return CommandResult(success=False, stdout="", stderr="", return_code=1)
        if deployment == "director":
            (self.vars_dir / "director-variables.yml").write_text(
                DIRECTOR_VARS, encoding="utf-8"
            )
        return None


def _manager(
    state_dir: Path,
    make_runner,
    *,
    fail: bool = False,
    credentials: Credentials | None = None,
) -> tuple[BoshManager, FakeBoshCLI]:
    cli = FakeBoshCLI(state_dir, fail=fail)
    executor = BoshExecutor(make_runner(binary=Path("/usr/local/bin/bosh")), make_runner(cli))
    manager = BoshManager(
        executor,
        StateStore(state_dir),
        credentials or Credentials(aws=AWSCredentials("AKIA", "secret")),
    )
    return manager, cli


def test_director_credentials_tolerates_missing_values() -> None:
    assert director_credentials("") == ("", "")
    assert director_credentials("admin_password: pw\n") == ("pw", "")


def test_jumpbox_deployment_vars_for_aws(tmp_path: Path, make_runner, aws_state: State) -> None:
    manager, _ = _manager(tmp_path, make_runner)

    variables = yaml.safe_load(manager.get_jumpbox_deployment_vars(aws_state, AWS_OUTPUTS))

    assert variables["internal_ip"] == "10.0.0.5"
    assert variables["external_ip"] == "203.0.113.7"
    assert variables["subnet_id"] == "subnet-1"
    assert variables["default_security_groups"] == ["sg-1"]
    assert variables["region"] == "us-east-1"
    assert variables["access_key_id"] == "AKIA"
    assert "director_name" not in variables


def test_director_deployment_vars_name_the_director(
    tmp_path: Path, make_runner, aws_state: State
) -> None:
    manager, _ = _manager(tmp_path, make_runner)

    variables = yaml.safe_load(manager.get_director_deployment_vars(aws_state, AWS_OUTPUTS))

    assert variables["director_name"] == f"bosh-{aws_state.env_id}"
    assert variables["internal_ip"] == "10.0.0.6"
    assert "external_ip" not in variables


def test_gcp_deployment_vars_use_tags_and_project(tmp_path: Path, make_runner) -> None:
    state = State(
        iaas=IAAS.GCP,
        env_id="bbl-env-lake",
        gcp=GCPSettings(project_id="proj", zone="us-east1-b", region="us-east1"),
    )
    outputs = Outputs(
        {
            "network_name": "net",
            "subnetwork_name": "subnet",
            "internal_tag_name": "bbl-internal",
        }
    )
    manager, _ = _manager(
        tmp_path, make_runner, credentials=Credentials(gcp=GCPCredentials("{}"))
    )

    variables = yaml.safe_load(manager.get_director_deployment_vars(state, outputs))

    assert variables["network"] == "net"
    assert variables["subnetwork"] == "subnet"
    assert variables["tags"] == ["bbl-internal"]
    assert variables["project_id"] == "proj"
    assert variables["gcp_credentials_json"] == "{}"


def test_create_jumpbox_records_state_and_url(
    tmp_path: Path, make_runner, aws_state: State
) -> None:
    manager, cli = _manager(tmp_path, make_runner)
    manager.initialize_jumpbox(aws_state)

    result = manager.create_jumpbox(aws_state, AWS_OUTPUTS)

    assert cli.scripts == ["create-jumpbox.sh"]
    assert result.jumpbox.state == {"current_vm_cid": "jumpbox-vm"}
    assert result.jumpbox.url == "203.0.113.7:22"
    assert result.has_jumpbox


def test_create_director_records_credentials(
    tmp_path: Path, make_runner, aws_state: State
) -> None:
    manager, _ = _manager(tmp_path, make_runner)
    manager.initialize_director(aws_state)

    result = manager.create_director(aws_state, AWS_OUTPUTS)

    assert result.bosh.director_name == f"bosh-{aws_state.env_id}"
    assert result.bosh.director_address == "https://10.0.0.6:25555"
    assert result.bosh.director_username == "admin"
    assert result.bosh.director_password == "secret-pw"
    assert result.bosh.director_ssl_ca == "CA-CERT"
    assert result.bosh.variables == DIRECTOR_VARS


def test_create_director_failure_keeps_partial_state(
    tmp_path: Path, make_runner, aws_state: State
) -> None:
    manager, _ = _manager(tmp_path, make_runner, fail=True)
    manager.initialize_director(aws_state)

    with pytest.raises(ManagerError) as excinfo:
        manager.create_director(aws_state, AWS_OUTPUTS)

    assert excinfo.value.state.bosh.state == {"current_vm_cid": "director-vm"}
    assert "create-env for director" in str(excinfo.value)


def test_delete_is_a_noop_without_components(
    tmp_path: Path, make_runner, aws_state: State
) -> None:
    manager, cli = _manager(tmp_path, make_runner)

    assert manager.delete_director(aws_state, AWS_OUTPUTS) == aws_state
    assert manager.delete_jumpbox(aws_state, AWS_OUTPUTS) == aws_state
    assert cli.scripts == []


def test_delete_director_restages_missing_files(
    tmp_path: Path, make_runner, aws_state: State
) -> None:
    state = dataclasses.replace(
        aws_state,
        jumpbox=JumpboxState(state={"vm": "j"}),
        bosh=DirectorState(state={"vm": "d"}),
    )
    manager, cli = _manager(tmp_path, make_runner)

    result = manager.delete_director(state, AWS_OUTPUTS)

    assert cli.scripts == ["delete-director.sh"]
    assert (tmp_path / "delete-director.sh").exists()
    assert not result.has_director
    assert result.has_jumpbox


def test_validate_version_rejects_old_cli(tmp_path: Path, make_runner) -> None:
    runner = make_runner(
        lambda call: CommandResult(
            success=True, stdout="version 1.9.0-abc\n", stderr="", return_code=0
        )
    )
    manager = BoshManager(BoshExecutor(runner, make_runner()), StateStore(tmp_path), Credentials())

    with pytest.raises(VersionError, match="at least v2.0.0, found v1.9.0"):
        manager.validate_version()
