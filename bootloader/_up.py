"""Create or reconcile a whole environment."""

from __future__ import annotations

import logging

from bootloader._bosh_manager import BoshManager
from bootloader._cloud_config import CloudConfigManager
from bootloader._errors import ManagerError
from bootloader._models import State
from bootloader._plan import Plan, PlanOptions
from bootloader._state_store import StateStore, save_after_error
from bootloader._terraform_manager import TerraformManager

logger = logging.getLogger(__name__)


class Up:
    """Bring networking, jumpbox, director and cloud config up to date.

    The descriptor is persisted after every step, including failed ones, so a
    rerun picks up from the resources that already exist.
    """

    def __init__(
        self,
        plan: Plan,
        store: StateStore,
        terraform: TerraformManager,
        bosh: BoshManager,
        cloud_config: CloudConfigManager,
    ) -> None:
        self.plan = plan
        self.store = store
        self.terraform = terraform
        self.bosh = bosh
        self.cloud_config = cloud_config

    def execute(self, options: PlanOptions, state: State) -> State:
        self.terraform.validate_version()
        if not (options.no_director or state.no_director):
            self.bosh.validate_version()
        self.plan.check_fast_fails(options, state)

        if self.plan.is_initialized(state):
            state = self.plan.sync(options, state)
        else:
            state = self.plan.initialize(options, state)

        self.terraform.init(state)
        try:
            state = self.terraform.apply(state)
        except ManagerError as exc:
            save_after_error(self.store, exc.state, exc)
        self.store.set(state)

        outputs = self.terraform.get_outputs(state)
        if state.no_director:
            logger.info("step: skipping director, environment has no director")
            return state

        if not self.bosh.is_jumpbox_initialized(state):
            self.bosh.initialize_jumpbox(state)
        try:
            state = self.bosh.create_jumpbox(state, outputs)
        except ManagerError as exc:
            save_after_error(self.store, exc.state, exc)
        self.store.set(state)

        if not self.bosh.is_director_initialized(state):
            self.bosh.initialize_director(state, options.ops_file)
        try:
            state = self.bosh.create_director(state, outputs)
        except ManagerError as exc:
            save_after_error(self.store, exc.state, exc)
        self.store.set(state)

        self.cloud_config.initialize(state)
        self.cloud_config.update(state)
        self.store.set(state)
        return state


__all__ = ["Up"]
