"""Attach and remove the load balancers of an existing environment.

Both transitions persist the descriptor after every effect. When terraform
fails part way, the descriptor carrying its partial state is saved before the
error propagates, so the resources it already created stay tracked.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from pathlib import Path

from bootloader._cloud_config import CloudConfigManager
from bootloader._errors import (
    EnvironmentNotFoundError,
    LBConflictError,
    ManagerError,
    ValidationError,
)
from bootloader._models import IAAS, LB, LBType, State
from bootloader._state_store import StateStore, save_after_error
from bootloader._terraform_manager import TerraformManager
from bootloader._terraform_templates import supports_lb

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CreateLBsOptions:
    """Arguments of ``bbl create-lbs``.

    Attributes
    ----------
    lb_type
        ``cf`` or ``concourse``.
    cert_path, key_path
        PEM files for the load balancer listener.
    chain_path
        Optional PEM certificate chain.
    domain
        System domain; the attached domain is kept when empty.
    """

    lb_type: str
    cert_path: Path
    key_path: Path
    chain_path: Path | None = None
    domain: str = ""


def _require_environment(state: State) -> IAAS:
    if not state.env_id or state.iaas is None:
        msg = (
            "a bbl environment could not be found, please create a new "
            "environment before running this command again"
        )
        raise EnvironmentNotFoundError(msg)
    return state.iaas


def _parse_lb_type(value: str) -> LBType:
    try:
        lb_type = LBType(value)
    except ValueError as exc:
        msg = f"--lb-type must be one of: cf, concourse (got {value!r})"
        raise ValidationError(msg) from exc
    if lb_type is LBType.NONE:
        msg = "--lb-type must be one of: cf, concourse (got 'none')"
        raise ValidationError(msg)
    return lb_type


def _read_pem(path: Path | None, what: str) -> str:
    if path is None:
        return ""
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"failed to read {what}: {exc}"
        raise ValidationError(msg) from exc


class CreateLBs:
    """Attach a ``cf`` or ``concourse`` load balancer to an environment."""

    def __init__(
        self,
        store: StateStore,
        terraform: TerraformManager,
        cloud_config: CloudConfigManager,
    ) -> None:
        self.store = store
        self.terraform = terraform
        self.cloud_config = cloud_config

    def check_fast_fails(self, options: CreateLBsOptions, state: State) -> LBType:
        """Validate the request without touching files or running anything."""

        iaas = _require_environment(state)
        lb_type = _parse_lb_type(options.lb_type)
        if not supports_lb(iaas, lb_type):
            msg = f"{iaas.value} does not support {lb_type.value} load balancers"
            raise ValidationError(msg)
        if state.lb.attached and state.lb.type is not lb_type:
            raise LBConflictError(state.lb.type.value, lb_type.value)
        return lb_type

    def execute(self, options: CreateLBsOptions, state: State) -> State:
        lb_type = self.check_fast_fails(options, state)
        lb = LB(
            type=lb_type,
            cert=_read_pem(options.cert_path, "certificate"),
            key=_read_pem(options.key_path, "key"),
            chain=_read_pem(options.chain_path, "certificate chain"),
            domain=options.domain or state.lb.domain,
        )
        state = dataclasses.replace(state, lb=lb)
        self.store.set(state)

        logger.info("step: creating %s load balancer", lb_type.value)
        self.terraform.init(state)
        try:
            state = self.terraform.apply(state)
        except ManagerError as exc:
            save_after_error(self.store, exc.state, exc)
        self.store.set(state)

        if state.no_director:
            logger.info("step: skipping cloud config, environment has no director")
            return state

        self.cloud_config.initialize(state)
        self.cloud_config.update(state)
        self.store.set(state)
        return state


class DeleteLBs:
    """Remove the attached load balancer from an environment."""

    def __init__(
        self,
        store: StateStore,
        terraform: TerraformManager,
        cloud_config: CloudConfigManager,
    ) -> None:
        self.store = store
        self.terraform = terraform
        self.cloud_config = cloud_config

    def execute(self, state: State) -> State:
        _require_environment(state)
        if not state.lb.attached:
            logger.info("no load balancer attached, nothing to delete")
            return state

        state = dataclasses.replace(state, lb=LB())
        if state.has_director:
            # The director must stop referencing the load balancer first.
            self.cloud_config.initialize(state)
            self.cloud_config.update(state)
        self.store.set(state)

        logger.info("step: deleting load balancer")
        self.terraform.init(state)
        try:
            state = self.terraform.apply(state)
        except ManagerError as exc:
            save_after_error(self.store, exc.state, exc)
        self.store.set(state)
        return state


__all__ = ["CreateLBs", "CreateLBsOptions", "DeleteLBs"]
