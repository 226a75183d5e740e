"""Prepare an environment's on-disk layout without creating anything."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass

from bootloader._bosh_manager import BoshManager
from bootloader._config import Config, validate_provider
from bootloader._env_id import EnvIDManager
from bootloader._errors import ValidationError
from bootloader._models import State
from bootloader._state_store import StateStore
from bootloader._terraform import TEMPLATE_FILE
from bootloader._terraform_manager import TerraformManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PlanOptions:
    """Options shared by ``plan`` and ``up``.

    Attributes
    ----------
    name
        Requested environment id; generated when empty.
    ops_file
        Contents of a user ops file applied to the director manifest.
    no_director
        Create the networking only, without jumpbox or director.
    """

    name: str = ""
    ops_file: str = ""
    no_director: bool = False


class Plan:
    """Assign identity, stage the terraform template and BOSH scripts."""

    def __init__(
        self,
        config: Config,
        store: StateStore,
        env_ids: EnvIDManager,
        terraform: TerraformManager,
        bosh: BoshManager,
    ) -> None:
        self.config = config
        self.store = store
        self.env_ids = env_ids
        self.terraform = terraform
        self.bosh = bosh

    def check_fast_fails(self, options: PlanOptions, state: State) -> None:
        """Reject requests that cannot succeed before anything runs."""

        validate_provider(self.config)
        if state.iaas is not None and self.config.iaas is not state.iaas:
            msg = (
                "The iaas type cannot be changed for an existing environment. "
                f"The current iaas type is {state.iaas.value}."
            )
            raise ValidationError(msg)
        if options.no_director and state.has_director:
            msg = (
                "Director already exists, you must re-create your environment "
                'to use "--no-director"'
            )
            raise ValidationError(msg)

    def sync(self, options: PlanOptions, state: State) -> State:
        """Record identity and provider settings on *state* and persist it."""

        self.check_fast_fails(options, state)
        state = self.env_ids.sync(state, options.name or self.config.name)
        state = dataclasses.replace(
            state,
            iaas=self.config.iaas,
            no_director=options.no_director or state.no_director,
            aws=self.config.aws,
            gcp=self.config.gcp,
            vsphere=self.config.vsphere,
        )
        self.store.set(state)
        return state

    def is_initialized(self, state: State) -> bool:
        """Return whether ``plan`` already staged everything for *state*."""

        if state.is_empty():
            return False
        template = self.store.get_terraform_dir() / TEMPLATE_FILE
        if not template.exists():
            return False
        if state.no_director:
            return True
        return self.bosh.is_jumpbox_initialized(state) and self.bosh.is_director_initialized(
            state
        )

    def initialize(self, options: PlanOptions, state: State) -> State:
        """Stage the terraform template and the create-env scripts."""

        state = self.sync(options, state)
        logger.info("step: generating terraform template for %s", state.env_id)
        self.terraform.init(state)
        if not state.no_director:
            logger.info("step: generating create-env scripts")
            self.bosh.initialize_jumpbox(state)
            self.bosh.initialize_director(state, options.ops_file)
        self.store.set(state)
        return state

    def execute(self, options: PlanOptions, state: State) -> State:
        return self.initialize(options, state)


__all__ = ["Plan", "PlanOptions"]
