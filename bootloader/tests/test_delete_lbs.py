"""Tests for removing load balancers from an environment."""

from __future__ import annotations

import dataclasses

import pytest

from bootloader._errors import (
    BootloaderError,
    CombinedError,
    EnvironmentNotFoundError,
    ManagerError,
    PersistenceError,
)
from bootloader._lbs import DeleteLBs
from bootloader._models import LB, DirectorState, LBType, State


@pytest.fixture
def lb_state(aws_state: State) -> State:
    return dataclasses.replace(
        aws_state, lb=LB(type=LBType.CF, cert="c", key="k", domain="cf.example.com")
    )


def test_noop_without_load_balancer(store, terraform, cloud_config, aws_state: State) -> None:
    command = DeleteLBs(store, terraform, cloud_config)

    result = command.execute(aws_state)

    assert result == aws_state
    assert terraform.calls == []
    assert cloud_config.updated == []
    assert store.saved == []


def test_updates_cloud_config_before_terraform(
    store, terraform, cloud_config, lb_state: State
) -> None:
    state = dataclasses.replace(lb_state, bosh=DirectorState(state={"vm": "d"}))
    command = DeleteLBs(store, terraform, cloud_config)

    result = command.execute(state)

    assert len(cloud_config.updated) == 1
    assert not cloud_config.updated[0].lb.attached
    assert not store.saved[0].lb.attached
    assert terraform.names() == ["init", "apply"]
    assert result.lb == LB()
    assert store.get().tf_state == terraform.applied_tf_state


def test_skips_cloud_config_without_director(
    store, terraform, cloud_config, lb_state: State
) -> None:
    command = DeleteLBs(store, terraform, cloud_config)

    command.execute(lb_state)

    assert cloud_config.initialized == []
    assert cloud_config.updated == []
    assert terraform.names() == ["init", "apply"]


def test_persists_partial_state_when_apply_fails(
    store, terraform, cloud_config, lb_state: State
) -> None:
    partial = dataclasses.replace(lb_state, lb=LB(), tf_state='{"resources": ["elb"]}')
    terraform.apply_error = ManagerError(partial, BootloaderError("failed to apply"))
    command = DeleteLBs(store, terraform, cloud_config)

    with pytest.raises(ManagerError, match="failed to apply"):
        command.execute(lb_state)

    assert store.saved[-1] == partial


def test_combines_apply_and_persist_errors(
    make_store, terraform, cloud_config, lb_state: State
) -> None:
    store = make_store({1: PersistenceError("disk full")})
    terraform.apply_error = ManagerError(lb_state, BootloaderError("failed to apply"))
    command = DeleteLBs(store, terraform, cloud_config)

    with pytest.raises(CombinedError) as excinfo:
        command.execute(lb_state)

    assert [str(error) for error in excinfo.value.errors] == ["failed to apply", "disk full"]


def test_requires_existing_environment(store, terraform, cloud_config) -> None:
    command = DeleteLBs(store, terraform, cloud_config)

    with pytest.raises(EnvironmentNotFoundError):
        command.execute(State())
