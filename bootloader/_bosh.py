"""``bosh create-env`` orchestration for the jumpbox and the director.

Rather than invoking ``bosh`` directly, the executor writes relocatable
``create-<deployment>.sh`` and ``delete-<deployment>.sh`` scripts into the
state directory and runs those, so operators can rerun them by hand.
"""

from __future__ import annotations

import json
import logging
import os
from collections import abc as cabc
from pathlib import Path
from typing import Any, Protocol

from bootloader import _bosh_assets as assets
from bootloader._command import CommandRunner, extract_version
from bootloader._errors import BoshRunError, CommandError, ParseError, PersistenceError
from bootloader._models import (
    CommandResult,
    CreateEnvInput,
    DeleteEnvInput,
    InterpolateInput,
    SetupFile,
)

logger = logging.getLogger(__name__)

JUMPBOX = "jumpbox"
DIRECTOR = "director"

STATE_FILES = {JUMPBOX: "jumpbox-state.json", DIRECTOR: "bosh-state.json"}
STATE_DIR_VARIABLE = "${BBL_STATE_DIR}"


class BoshRunner(Protocol):
    def which(self) -> Path: ...

    def run(
        self,
        args: cabc.Sequence[str],
        cwd: Path,
        env: cabc.Mapping[str, str] | None = None,
        *,
        capture: bool = False,
    ) -> CommandResult: ...


class ScriptRunner(Protocol):
    def run(
        self,
        args: cabc.Sequence[str],
        cwd: Path,
        env: cabc.Mapping[str, str] | None = None,
        *,
        capture: bool = False,
    ) -> CommandResult: ...


def vars_store_path(vars_dir: Path, deployment: str) -> Path:
    return vars_dir / f"{deployment}-variables.yml"


def deployment_vars_path(vars_dir: Path, deployment: str) -> Path:
    return vars_dir / f"{deployment}-deployment-vars.yml"


def state_path(vars_dir: Path, deployment: str) -> Path:
    return vars_dir / STATE_FILES[deployment]


def script_paths(state_dir: Path, deployment: str) -> tuple[Path, Path]:
    """Return the create and delete script paths for *deployment*."""

    return (
        state_dir / f"create-{deployment}.sh",
        state_dir / f"delete-{deployment}.sh",
    )


def _relocate(arg: str, root: str) -> str:
    """Rewrite *arg* against ``${BBL_STATE_DIR}`` when it lies under *root*.

    Examples
    --------
    >>> _relocate("env/jumpbox.yml", "env")
    '${BBL_STATE_DIR}/jumpbox.yml'
    >>> _relocate("environment/jumpbox.yml", "env")
    'environment/jumpbox.yml'
    """

    if arg == root:
        return STATE_DIR_VARIABLE
    if arg.startswith(root + os.sep):
        return STATE_DIR_VARIABLE + arg[len(root) :]
    return arg


def format_script(
    bosh_path: Path, state_dir: Path, command: str, args: cabc.Sequence[str]
) -> str:
    """Render a ``bosh`` invocation as a relocatable shell script.

    Each flag shares a line with its value and every argument under *state_dir*
    is rewritten relative to ``${BBL_STATE_DIR}``.

    Examples
    --------
    >>> print(format_script(Path("/bin/bosh"), Path("/env"), "create-env",
    ...                     ["/env/jumpbox.yml", "--state", "/env/vars/s.json"]), end="")
    #!/bin/sh
    "/bin/bosh" create-env \\
      "${BBL_STATE_DIR}/jumpbox.yml" \\
      --state "${BBL_STATE_DIR}/vars/s.json"
    """

    root = str(state_dir)
    lines: list[str] = []
    pending: list[str] = []
    for arg in args:
        if arg.startswith("-"):
            pending.append(arg)
            continue
        pending.append(f'"{_relocate(arg, root)}"')
        lines.append("  " + " ".join(pending))
        pending = []
    if pending:
        lines.append("  " + " ".join(pending))
    body = " \\\n".join(lines)
    return f'#!/bin/sh\n"{bosh_path}" {command} \\\n{body}\n'


def _all_exist(paths: cabc.Iterable[Path]) -> bool:
    return all(path.exists() for path in paths)


def _write(files: cabc.Iterable[SetupFile], context: str) -> None:
    for setup_file in files:
        try:
            setup_file.path.parent.mkdir(parents=True, exist_ok=True)
            setup_file.path.write_text(setup_file.contents, encoding="utf-8")
        except OSError as exc:
            msg = f"{context} write setup file: {exc}"
            raise PersistenceError(msg) from exc


class BoshExecutor:
    """Stage manifests and run ``create-env``/``delete-env`` scripts.

    Parameters
    ----------
    runner
        Runs the ``bosh`` binary (``-v`` and path lookup).
    shell
        Runs the generated scripts; defaults to ``sh``.
    """

    def __init__(self, runner: BoshRunner, shell: ScriptRunner | None = None) -> None:
        self.runner = runner
        self.shell = shell or CommandRunner("sh")

    def jumpbox_setup_files(self, input_: InterpolateInput) -> list[SetupFile]:
        return [
            SetupFile(input_.deployment_dir / "jumpbox.yml", assets.JUMPBOX_MANIFEST),
            SetupFile(input_.deployment_dir / "cpi.yml", assets.jumpbox_cpi(input_.iaas)),
        ]

    def director_setup_files(self, input_: InterpolateInput) -> list[SetupFile]:
        return [SetupFile(input_.deployment_dir / "bosh.yml", assets.DIRECTOR_MANIFEST)]

    def director_ops_files(self, input_: InterpolateInput) -> list[SetupFile]:
        """Return the director overlays in the order they are applied."""

        directory = input_.deployment_dir
        files = [
            SetupFile(directory / "cpi.yml", assets.director_cpi(input_.iaas)),
            SetupFile(directory / "jumpbox-user.yml", assets.JUMPBOX_USER_OPS),
            SetupFile(directory / "uaa.yml", assets.UAA_OPS),
            SetupFile(directory / "credhub.yml", assets.CREDHUB_OPS),
        ]
        for name, contents in assets.DIRECTOR_PROVIDER_OPS[input_.iaas]:
            files.append(SetupFile(directory / name, contents))
        return files

    def is_jumpbox_initialized(self, input_: InterpolateInput) -> bool:
        paths = [setup.path for setup in self.jumpbox_setup_files(input_)]
        return _all_exist([*paths, *script_paths(input_.state_dir, JUMPBOX)])

    def is_director_initialized(self, input_: InterpolateInput) -> bool:
        files = [*self.director_setup_files(input_), *self.director_ops_files(input_)]
        paths = [setup.path for setup in files]
        return _all_exist([*paths, *script_paths(input_.state_dir, DIRECTOR)])

    def _write_state(
        self, vars_dir: Path, deployment: str, bosh_state: dict[str, Any] | None
    ) -> Path:
        path = state_path(vars_dir, deployment)
        if bosh_state is not None:
            try:
                path.write_text(json.dumps(bosh_state), encoding="utf-8")
            except (OSError, TypeError, ValueError) as exc:
                msg = f"write {deployment} state json: {exc}"
                raise PersistenceError(msg) from exc
        return path

    def _write_scripts(
        self, input_: InterpolateInput, deployment: str, args: list[str]
    ) -> None:
        bosh_path = self.runner.which()
        create_script, delete_script = script_paths(input_.state_dir, deployment)
        for path, command in ((create_script, "create-env"), (delete_script, "delete-env")):
            try:
                path.write_text(
                    format_script(bosh_path, input_.state_dir, command, args),
                    encoding="utf-8",
                )
                path.chmod(0o755)
            except OSError as exc:
                msg = f"write {path.name}: {exc}"
                raise PersistenceError(msg) from exc

    def jumpbox_create_env_args(self, input_: InterpolateInput) -> None:
        """Materialize the jumpbox manifest, vars store and scripts."""

        setup_files = self.jumpbox_setup_files(input_)
        vars_store = SetupFile(vars_store_path(input_.vars_dir, JUMPBOX), input_.variables)
        _write([*setup_files, vars_store], "Jumpbox")

        jumpbox_state = self._write_state(input_.vars_dir, JUMPBOX, input_.bosh_state)
        args = [
            str(setup_files[0].path),
            "--state",
            str(jumpbox_state),
            "--vars-store",
            str(vars_store.path),
            "--vars-file",
            str(deployment_vars_path(input_.vars_dir, JUMPBOX)),
            "-o",
            str(setup_files[1].path),
        ]
        self._write_scripts(input_, JUMPBOX, args)

    def director_create_env_args(self, input_: InterpolateInput) -> None:
        """Materialize the director manifest, overlays, vars store and scripts."""

        setup_files = self.director_setup_files(input_)
        ops_files = self.director_ops_files(input_)
        vars_store = SetupFile(vars_store_path(input_.vars_dir, DIRECTOR), input_.variables)
        user_ops = SetupFile(input_.vars_dir / "user-ops-file.yml", input_.ops_file)
        _write([*setup_files, *ops_files, vars_store, user_ops], "Director")

        director_state = self._write_state(input_.vars_dir, DIRECTOR, input_.bosh_state)
        args = [
            str(setup_files[0].path),
            "--state",
            str(director_state),
            "--vars-store",
            str(vars_store.path),
            "--vars-file",
            str(deployment_vars_path(input_.vars_dir, DIRECTOR)),
        ]
        for ops_file in ops_files:
            args.extend(["-o", str(ops_file.path)])
        if input_.ops_file:
            args.extend(["-o", str(user_ops.path)])
        self._write_scripts(input_, DIRECTOR, args)

    def _run_script(
        self, script: Path, state_dir: Path, deployment: str, command: str
    ) -> None:
        state_dir = state_dir.resolve()
        logger.info("running %s", script.name)
        result = self.shell.run(
            [str(script.resolve())], state_dir, {"BBL_STATE_DIR": str(state_dir)}
        )
        if not result.success:
            msg = f"Run bosh {command} for {deployment}: exit status {result.return_code}"
            raise BoshRunError(msg, deployment=deployment)

    def create_env(self, input_: CreateEnvInput) -> str:
        """Run ``create-<deployment>.sh`` and return the resulting vars store."""

        vars_file = deployment_vars_path(input_.vars_dir, input_.deployment)
        _write(
            [SetupFile(vars_file, input_.deployment_vars)],
            input_.deployment.capitalize(),
        )
        create_script, _ = script_paths(input_.state_dir, input_.deployment)
        self._run_script(create_script, input_.state_dir, input_.deployment, "create-env")
        try:
            return vars_store_path(input_.vars_dir, input_.deployment).read_text(
                encoding="utf-8"
            )
        except OSError as exc:
            msg = f"Reading vars file for {input_.deployment} deployment: {exc}"
            raise PersistenceError(msg) from exc

    def delete_env(self, input_: DeleteEnvInput) -> None:
        """Run ``delete-<deployment>.sh``."""

        if input_.deployment_vars:
            vars_file = deployment_vars_path(input_.vars_dir, input_.deployment)
            _write(
                [SetupFile(vars_file, input_.deployment_vars)],
                input_.deployment.capitalize(),
            )
        _, delete_script = script_paths(input_.state_dir, input_.deployment)
        self._run_script(delete_script, input_.state_dir, input_.deployment, "delete-env")

    def read_state(self, vars_dir: Path, deployment: str) -> dict[str, Any] | None:
        """Return the state JSON ``bosh`` left for *deployment*, if any."""

        path = state_path(vars_dir, deployment)
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            msg = f"Failed to parse {path.name}: {exc}"
            raise ParseError(msg) from exc
        if not isinstance(payload, dict):
            msg = f"{path.name} must contain a JSON object"
            raise ParseError(msg)
        return payload

    def version(self) -> str:
        """Return the installed BOSH CLI version."""

        result = self.runner.run(["-v"], Path.cwd(), capture=True)
        if not result.success:
            msg = f"Run bosh -v: {result.stderr.strip()}"
            raise CommandError(msg)
        return extract_version(result.stdout, "BOSH")


__all__ = [
    "DIRECTOR",
    "JUMPBOX",
    "BoshExecutor",
    "deployment_vars_path",
    "format_script",
    "script_paths",
    "state_path",
    "vars_store_path",
]
