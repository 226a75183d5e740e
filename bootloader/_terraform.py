"""Terraform orchestration helpers.

Every invocation runs inside the ``terraform/`` directory of the state
directory and keeps its state file at ``vars/terraform.tfstate`` so the
environment can be inspected and rerun by hand.
"""

from __future__ import annotations

import json
import logging
import os
from collections import abc as cabc
from pathlib import Path
from typing import Protocol

from bootloader._command import CommandRunner, extract_version
from bootloader._errors import (
    CommandError,
    ExecutorError,
    InitError,
    ParseError,
    PersistenceError,
    ValidationError,
)
from bootloader._models import CommandResult, ImportInput

logger = logging.getLogger(__name__)

TEMPLATE_FILE = "template.tf"
STATE_FILE = "terraform.tfstate"


class Runner(Protocol):
    """The subprocess capability the executors depend on."""

    def run(
        self,
        args: cabc.Sequence[str],
        cwd: Path,
        env: cabc.Mapping[str, str] | None = None,
        *,
        capture: bool = False,
    ) -> CommandResult: ...


class Directories(Protocol):
    """Directory providers from the state store."""

    def get_terraform_dir(self) -> Path: ...

    def get_vars_dir(self) -> Path: ...


def _var_args(inputs: cabc.Mapping[str, str]) -> list[str]:
    """Render *inputs* as discrete ``-var name=value`` arguments.

    Examples
    --------
    >>> _var_args({"env_id": "lake", "region": "us-east-1"})
    ['-var', 'env_id=lake', '-var', 'region=us-east-1']
    """

    args: list[str] = []
    for name, value in inputs.items():
        args.extend(["-var", f"{name}={value}"])
    return args


def _split_address(address: str) -> tuple[str, str]:
    """Return the resource type and name of a terraform address.

    Examples
    --------
    >>> _split_address("aws_elb.cf_router_lb")
    ('aws_elb', 'cf_router_lb')
    >>> _split_address("aws_subnet.lb_subnets[1]")
    ('aws_subnet', 'lb_subnets')
    """

    parts = address.split(".")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        msg = f"invalid terraform address {address!r}"
        raise ValidationError(msg)
    return parts[0], parts[1].split("[", 1)[0]


def _import_template(input_: ImportInput) -> str:
    resource_type, resource_name = _split_address(input_.terraform_address)
    creds = input_.credentials
    return (
        'provider "aws" {\n'
        f"  region     = {json.dumps(input_.region)}\n"
        f"  access_key = {json.dumps(creds.access_key_id)}\n"
        f"  secret_key = {json.dumps(creds.secret_access_key)}\n"
        "}\n\n"
        f"resource {json.dumps(resource_type)} {json.dumps(resource_name)} {{\n"
        "}\n"
    )


class TerraformExecutor:
    """Drive the ``terraform`` binary against the state directory layout.

    Parameters
    ----------
    runner
        Runs the terraform binary.
    dirs
        Provides (and creates) the ``terraform/`` and ``vars/`` directories.
    debug
        Stream verbose terraform logs (``TF_LOG=debug``).
    """

    def __init__(self, runner: Runner, dirs: Directories, *, debug: bool = False) -> None:
        self.runner = runner
        self.dirs = dirs
        self.debug = debug

    def _env(self) -> dict[str, str]:
        return {"TF_LOG": "debug"} if self.debug else {}

    def _state_paths(self) -> tuple[Path, Path, str]:
        terraform_dir = self.dirs.get_terraform_dir()
        state_path = self.dirs.get_vars_dir() / STATE_FILE
        relative = os.path.relpath(state_path, terraform_dir)
        return terraform_dir, state_path, relative

    def _run_init(self, terraform_dir: Path) -> None:
        result = self.runner.run(["init"], terraform_dir, self._env())
        if not result.success:
            msg = f"Run terraform init: exit status {result.return_code}"
            raise InitError(msg, debug=self.debug)

    def init(self, template: str, prev_tf_state: str) -> None:
        """Stage *template* and the previous state, then run ``terraform init``.

        Raises
        ------
        InitError
            If staging any file or the ``init`` invocation fails.
        """

        try:
            terraform_dir = self.dirs.get_terraform_dir()
            (terraform_dir / TEMPLATE_FILE).write_text(template, encoding="utf-8")
            if prev_tf_state:
                state_path = self.dirs.get_vars_dir() / STATE_FILE
                state_path.write_text(prev_tf_state, encoding="utf-8")
            dot_terraform = terraform_dir / ".terraform"
            dot_terraform.mkdir(parents=True, exist_ok=True)
            (dot_terraform / ".gitignore").write_text("*\n", encoding="utf-8")
        except (OSError, PersistenceError) as exc:
            msg = f"Prepare terraform init: {exc}"
            raise InitError(msg, debug=self.debug) from exc
        self._run_init(terraform_dir)

    def _mutate(self, command: list[str], inputs: cabc.Mapping[str, str]) -> str:
        terraform_dir, state_path, relative = self._state_paths()
        args = [*command, "-state", relative, *_var_args(inputs)]
        logger.info("running terraform %s", command[0])
        result = self.runner.run(args, terraform_dir, self._env())
        if not result.success:
            msg = f"Run terraform {command[0]}: exit status {result.return_code}"
            raise ExecutorError(msg, state_path=state_path, debug=self.debug)
        return state_path.read_text(encoding="utf-8")

    def apply(self, inputs: cabc.Mapping[str, str]) -> str:
        """Run ``terraform apply`` and return the resulting state blob."""

        return self._mutate(["apply", "-input=false", "-auto-approve"], inputs)

    def destroy(self, inputs: cabc.Mapping[str, str]) -> str:
        """Run ``terraform destroy`` and return the resulting state blob."""

        return self._mutate(["destroy", "-input=false", "-auto-approve"], inputs)

    def import_(self, input_: ImportInput) -> str:
        """Adopt an existing AWS resource into the terraform state."""

        template = _import_template(input_)
        terraform_dir, state_path, relative = self._state_paths()
        (terraform_dir / TEMPLATE_FILE).write_text(template, encoding="utf-8")
        state_path.write_text(input_.tf_state, encoding="utf-8")
        self._run_init(terraform_dir)

        args = [
            "import",
            "-state",
            relative,
            input_.terraform_address,
            input_.resource_id,
        ]
        result = self.runner.run(args, terraform_dir, self._env())
        if not result.success:
            msg = f"failed to import {input_.terraform_address}: exit status {result.return_code}"
            raise ExecutorError(msg, state_path=state_path, debug=self.debug)
        return state_path.read_text(encoding="utf-8")

    def output(self, tf_state: str, name: str) -> str:
        """Return a single output value from *tf_state*."""

        terraform_dir, state_path, relative = self._state_paths()
        state_path.write_text(tf_state, encoding="utf-8")
        self._run_init(terraform_dir)
        result = self.runner.run(
            ["output", "-state", relative, name],
            terraform_dir,
            self._env(),
            capture=True,
        )
        if not result.success:
            msg = f"Run terraform output -state: {result.stderr.strip()}"
            raise ExecutorError(msg, debug=self.debug)
        return result.stdout.removesuffix("\n")

    def outputs(self, tf_state: str) -> dict[str, object]:
        """Return every output value recorded in *tf_state*."""

        terraform_dir, state_path, relative = self._state_paths()
        state_path.write_text(tf_state, encoding="utf-8")
        self._run_init(terraform_dir)
        result = self.runner.run(
            ["output", "-state", relative, "--json"],
            terraform_dir,
            self._env(),
            capture=True,
        )
        if not result.success:
            msg = f"Run terraform output --json: {result.stderr.strip()}"
            raise ExecutorError(msg, debug=self.debug)
        try:
            payload = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as exc:
            msg = f"Unmarshal terraform output: {exc}"
            raise ParseError(msg) from exc
        if not isinstance(payload, dict):
            msg = "Unmarshal terraform output: expected a JSON object"
            raise ParseError(msg)
        return {
            key: value.get("value") if isinstance(value, dict) else value
            for key, value in payload.items()
        }

    def version(self) -> str:
        """Return the installed terraform version."""

        result = self.runner.run(["version"], Path.cwd(), capture=True)
        if not result.success:
            msg = f"Run terraform version: {result.stderr.strip()}"
            raise CommandError(msg)
        return extract_version(result.stdout, "terraform")


def build_executor(binary: str, dirs: Directories, *, debug: bool = False) -> TerraformExecutor:
    """Return an executor backed by the real *binary*."""

    return TerraformExecutor(CommandRunner(binary), dirs, debug=debug)


__all__ = [
    "Directories",
    "Runner",
    "STATE_FILE",
    "TEMPLATE_FILE",
    "TerraformExecutor",
    "build_executor",
]
