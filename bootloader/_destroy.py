"""Tear down an environment in the reverse order it was created."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from bootloader._bosh_manager import BoshManager
from bootloader._errors import EnvironmentNotFoundError, ManagerError
from bootloader._models import State
from bootloader._state_store import StateStore, save_after_error
from bootloader._terraform_manager import TerraformManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DestroyOptions:
    skip_if_missing: bool = False
    no_confirm: bool = False


class Destroy:
    """Delete the director, the jumpbox and the terraform resources.

    After each deletion the descriptor is saved without the removed component,
    so an interrupted destroy resumes with whatever is left. Once everything
    is gone the whole state directory layout is removed.
    """

    def __init__(
        self,
        store: StateStore,
        terraform: TerraformManager,
        bosh: BoshManager,
    ) -> None:
        self.store = store
        self.terraform = terraform
        self.bosh = bosh

    def execute(self, options: DestroyOptions, state: State) -> State:
        if state.is_empty():
            if options.skip_if_missing:
                logger.info("state file not found and --skip-if-missing given, exiting")
                return state
            msg = (
                "bbl-state.json not found, ensure you're running this command in "
                "the proper state directory or create a new environment with bbl up"
            )
            raise EnvironmentNotFoundError(msg)

        outputs = self.terraform.get_outputs(state)

        try:
            state = self.bosh.delete_director(state, outputs)
        except ManagerError as exc:
            save_after_error(self.store, exc.state, exc)
        self.store.set(state)

        try:
            state = self.bosh.delete_jumpbox(state, outputs)
        except ManagerError as exc:
            save_after_error(self.store, exc.state, exc)
        self.store.set(state)

        try:
            state = self.terraform.destroy(state)
        except ManagerError as exc:
            save_after_error(self.store, exc.state, exc)
        self.store.set(state)

        logger.info("step: removing environment files")
        state = State()
        self.store.set(state)
        return state


__all__ = ["Destroy", "DestroyOptions"]
