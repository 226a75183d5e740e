"""Tests for resolving global options against the environment and state."""

from __future__ import annotations

from pathlib import Path

import pytest

from bootloader._config import (
    Config,
    GlobalOptions,
    as_bool,
    load_service_account_key,
    resolve_config,
    resolve_state_dir,
    validate_provider,
)
from bootloader._errors import ValidationError
from bootloader._models import (
    IAAS,
    AWSCredentials,
    AWSSettings,
    Credentials,
    GCPSettings,
    State,
    VSphereSettings,
)


def test_cli_value_beats_environment(tmp_path: Path) -> None:
    env = {"BBL_IAAS": "gcp", "BBL_STATE_DIR": str(tmp_path / "from-env")}

    config = resolve_config(GlobalOptions(iaas="aws", state_dir=tmp_path), State(), env)

    assert config.iaas is IAAS.AWS
    assert config.state_dir == tmp_path


def test_environment_supplies_credentials(tmp_path: Path) -> None:
    env = {
        "BBL_IAAS": "aws",
        "BBL_AWS_ACCESS_KEY_ID": "AKIA",
        "BBL_AWS_SECRET_ACCESS_KEY": "secret",
        "BBL_AWS_REGION": "eu-west-1",
        "BBL_DEBUG": "true",
    }

    config = resolve_config(GlobalOptions(state_dir=tmp_path), State(), env)

    assert config.credentials.aws == AWSCredentials("AKIA", "secret")
    assert config.aws.region == "eu-west-1"
    assert config.debug is True


def test_persisted_settings_fill_gaps(tmp_path: Path) -> None:
    state = State(iaas=IAAS.GCP, gcp=GCPSettings(project_id="p", zone="z", region="r"))

    config = resolve_config(GlobalOptions(state_dir=tmp_path), state, {})

    assert config.iaas is IAAS.GCP
    assert config.gcp == GCPSettings(project_id="p", zone="z", region="r")
    assert config.terraform_binary == "terraform"
    assert config.bosh_binary == "bosh"


def test_gcp_project_id_read_from_key_file(tmp_path: Path) -> None:
    key = tmp_path / "key.json"
    key.write_text('{"project_id": "lake-123"}', encoding="utf-8")

    config = resolve_config(
        GlobalOptions(state_dir=tmp_path, gcp_service_account_key=str(key)), State(), {}
    )

    assert config.gcp.project_id == "lake-123"
    assert config.credentials.gcp is not None
    assert config.credentials.gcp.service_account_key == '{"project_id": "lake-123"}'


def test_unreadable_key_is_a_validation_error(tmp_path: Path) -> None:
    with pytest.raises(ValidationError, match="error reading service account key"):
        load_service_account_key(str(tmp_path / "missing.json"))


def test_unknown_iaas_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValidationError, match="--iaas must be one of: aws, gcp, vsphere"):
        resolve_config(GlobalOptions(state_dir=tmp_path, iaas="openstack"), State(), {})


def test_state_dir_from_environment(tmp_path: Path) -> None:
    assert resolve_state_dir(None, {"BBL_STATE_DIR": str(tmp_path)}) == tmp_path


@pytest.mark.parametrize("value", [".", "env"])
def test_relative_state_dir_is_made_absolute(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, value: str
) -> None:
    monkeypatch.chdir(tmp_path)

    from_flag = resolve_state_dir(Path(value), {})
    from_env = resolve_state_dir(None, {"BBL_STATE_DIR": value})

    assert from_flag == from_env == (tmp_path / value).resolve()
    assert from_flag.is_absolute()


def test_invalid_debug_value_exits() -> None:
    with pytest.raises(SystemExit, match="BBL_DEBUG must be a boolean"):
        as_bool("maybe", env_key="BBL_DEBUG")


def test_validate_provider_requires_iaas(tmp_path: Path) -> None:
    with pytest.raises(ValidationError, match="must be provided or BBL_IAAS must be set"):
        validate_provider(Config(state_dir=tmp_path))


def test_validate_provider_lists_missing_aws_settings(tmp_path: Path) -> None:
    config = Config(state_dir=tmp_path, iaas=IAAS.AWS)

    with pytest.raises(ValidationError) as excinfo:
        validate_provider(config)

    assert str(excinfo.value) == (
        "missing required aws configuration: BBL_AWS_ACCESS_KEY_ID, "
        "BBL_AWS_SECRET_ACCESS_KEY, BBL_AWS_REGION"
    )


def test_validate_provider_lists_missing_vsphere_settings(tmp_path: Path) -> None:
    config = Config(
        state_dir=tmp_path,
        iaas=IAAS.VSPHERE,
        vsphere=VSphereSettings(subnet="10.0.0.0/24", cluster="c"),
    )

    with pytest.raises(ValidationError) as excinfo:
        validate_provider(config)

    assert str(excinfo.value) == (
        "missing required vsphere configuration: BBL_VSPHERE_NETWORK, BBL_VSPHERE_VCENTER_IP"
    )


def test_validate_provider_accepts_complete_aws(tmp_path: Path) -> None:
    validate_provider(
        Config(
            state_dir=tmp_path,
            iaas=IAAS.AWS,
            credentials=Credentials(aws=AWSCredentials("AKIA", "secret")),
            aws=AWSSettings(region="us-east-1"),
        )
    )
