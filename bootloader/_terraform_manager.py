"""Descriptor-level wrapper around :class:`TerraformExecutor`."""

from __future__ import annotations

import dataclasses
import logging
from collections import abc as cabc
from typing import Protocol

from bootloader._command import compare_versions
from bootloader._errors import (
    ExecutorError,
    ManagerError,
    VersionError,
    combine_errors,
)
from bootloader._models import Credentials, Outputs, State
from bootloader._terraform_templates import InputGenerator, TemplateGenerator

logger = logging.getLogger(__name__)

MINIMUM_TERRAFORM_VERSION = "0.11.0"


class Executor(Protocol):
    def init(self, template: str, prev_tf_state: str) -> None: ...

    def apply(self, inputs: cabc.Mapping[str, str]) -> str: ...

    def destroy(self, inputs: cabc.Mapping[str, str]) -> str: ...

    def outputs(self, tf_state: str) -> dict[str, object]: ...

    def version(self) -> str: ...


def _partial_failure(state: State, error: ExecutorError) -> ManagerError:
    """Wrap *error* with *state* carrying whatever terraform left on disk."""

    try:
        partial = error.read_tf_state()
    except OSError as read_error:
        return ManagerError(state, combine_errors(error, read_error))
    if partial:
        state = dataclasses.replace(state, tf_state=partial)
    return ManagerError(state, error)


class TerraformManager:
    """Apply, destroy and inspect the terraform side of an environment."""

    def __init__(
        self,
        executor: Executor,
        credentials: Credentials,
        templates: TemplateGenerator | None = None,
        inputs: InputGenerator | None = None,
    ) -> None:
        self.executor = executor
        self.credentials = credentials
        self.templates = templates or TemplateGenerator()
        self.inputs = inputs or InputGenerator()

    def validate_version(self) -> None:
        version = self.executor.version()
        if not compare_versions(version, MINIMUM_TERRAFORM_VERSION):
            msg = (
                f"Terraform version must be at least v{MINIMUM_TERRAFORM_VERSION}, "
                f"found v{version}"
            )
            raise VersionError(msg)

    def init(self, state: State) -> None:
        """Stage the template for *state* and run ``terraform init``."""

        template = self.templates.generate(state)
        self.executor.init(template, state.tf_state)

    def apply(self, state: State) -> State:
        """Apply the template for *state* and return the updated descriptor.

        Raises
        ------
        ManagerError
            Carrying the descriptor with the partial terraform state.
        """

        logger.info("step: applying terraform for %s", state.env_id)
        inputs = self.inputs.generate(state, self.credentials)
        try:
            tf_state = self.executor.apply(inputs)
        except ExecutorError as exc:
            raise _partial_failure(state, exc) from exc
        return dataclasses.replace(state, tf_state=tf_state)

    def destroy(self, state: State) -> State:
        """Destroy the resources recorded in *state*; a no-op without any."""

        if not state.tf_state:
            return state
        logger.info("step: destroying terraform resources for %s", state.env_id)
        inputs = self.inputs.generate(state, self.credentials)
        try:
            tf_state = self.executor.destroy(inputs)
        except ExecutorError as exc:
            raise _partial_failure(state, exc) from exc
        return dataclasses.replace(state, tf_state=tf_state)

    def get_outputs(self, state: State) -> Outputs:
        if not state.tf_state:
            return Outputs()
        return Outputs(self.executor.outputs(state.tf_state))


__all__ = ["MINIMUM_TERRAFORM_VERSION", "TerraformManager"]
