"""``bbl`` command line: plan, create, update and destroy BOSH environments."""

from __future__ import annotations

import logging
import sys
from collections import abc as cabc
from dataclasses import dataclass
from importlib import metadata
from pathlib import Path
from typing import Annotated

from cyclopts import App, Parameter

from bootloader._bosh import BoshExecutor
from bootloader._bosh_manager import BoshManager
from bootloader._cloud_config import CloudConfigManager
from bootloader._command import CommandRunner
from bootloader._config import (
    Config,
    GlobalOptions,
    InputResolution,
    as_bool,
    resolve_config,
    resolve_input,
    resolve_state_dir,
)
from bootloader._destroy import Destroy, DestroyOptions
from bootloader._env_id import EnvIDManager
from bootloader._errors import BootloaderError, ValidationError
from bootloader._lbs import CreateLBs, CreateLBsOptions, DeleteLBs
from bootloader._models import State
from bootloader._plan import Plan, PlanOptions
from bootloader._state_store import StateStore
from bootloader._terraform import build_executor
from bootloader._terraform_manager import TerraformManager
from bootloader._up import Up

app = App(name="bbl", help="Stand up and tear down BOSH environments.")

logger = logging.getLogger(__name__)

GlobalParams = Annotated[GlobalOptions, Parameter(name="*")]
OpsFileParam = Annotated[
    Path | None, Parameter(help="Ops file applied to the director manifest.")
]
NoDirectorParam = Annotated[bool, Parameter(help="Create networking only.")]


@dataclass(frozen=True, slots=True)
class Components:
    """Lifecycle commands wired to one state directory."""

    store: StateStore
    terraform: TerraformManager
    bosh: BoshManager
    plan: Plan
    up: Up
    create_lbs: CreateLBs
    delete_lbs: DeleteLBs
    destroy: Destroy


def build_components(config: Config, store: StateStore) -> Components:
    """Wire the executors and managers for *config*."""

    terraform = TerraformManager(
        build_executor(config.terraform_binary, store, debug=config.debug),
        config.credentials,
    )
    bosh_runner = CommandRunner(config.bosh_binary)
    bosh = BoshManager(BoshExecutor(bosh_runner), store, config.credentials)
    cloud_config = CloudConfigManager(bosh_runner, store, terraform)
    plan = Plan(config, store, EnvIDManager(), terraform, bosh)
    return Components(
        store=store,
        terraform=terraform,
        bosh=bosh,
        plan=plan,
        up=Up(plan, store, terraform, bosh, cloud_config),
        create_lbs=CreateLBs(store, terraform, cloud_config),
        delete_lbs=DeleteLBs(store, terraform, cloud_config),
        destroy=Destroy(store, terraform, bosh),
    )


def _configure_logging(options: GlobalOptions) -> None:
    debug = as_bool(
        resolve_input(options.debug, InputResolution(env_key="BBL_DEBUG")),
        env_key="BBL_DEBUG",
    )
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _load(options: GlobalOptions) -> tuple[Components, State]:
    store = StateStore(resolve_state_dir(options.state_dir))
    state = store.get()
    config = resolve_config(options, state)
    logger.debug("using state directory %s", config.state_dir)
    return build_components(config, store), state


def _read_ops_file(path: Path | None) -> str:
    if path is None:
        return ""
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"failed to read ops file: {exc}"
        raise ValidationError(msg) from exc


def _run(action: cabc.Callable[[], None]) -> int:
    try:
        action()
    except BootloaderError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


@app.command
def plan(
    ops_file: OpsFileParam = None,
    no_director: NoDirectorParam = False,
    options: GlobalParams = GlobalOptions(),
) -> int:
    """Stage the terraform template and create-env scripts without running them."""

    _configure_logging(options)

    def action() -> None:
        components, state = _load(options)
        plan_options = PlanOptions(
            ops_file=_read_ops_file(ops_file), no_director=no_director
        )
        components.plan.execute(plan_options, state)

    return _run(action)


@app.command
def up(
    ops_file: OpsFileParam = None,
    no_director: NoDirectorParam = False,
    options: GlobalParams = GlobalOptions(),
) -> int:
    """Create or update the environment: networking, jumpbox and director."""

    _configure_logging(options)

    def action() -> None:
        components, state = _load(options)
        components.up.execute(
            PlanOptions(ops_file=_read_ops_file(ops_file), no_director=no_director),
            state,
        )

    return _run(action)


@app.command
def create_lbs(
    lb_type: Annotated[str, Parameter(help="Load balancer type: cf or concourse.")],
    lb_cert: Annotated[Path, Parameter(help="Path to the PEM certificate.")],
    lb_key: Annotated[Path, Parameter(help="Path to the PEM private key.")],
    lb_chain: Annotated[Path | None, Parameter(help="Path to the PEM chain.")] = None,
    lb_domain: Annotated[str | None, Parameter(help="System domain.")] = None,
    options: GlobalParams = GlobalOptions(),
) -> int:
    """Attach load balancers to an existing environment."""

    _configure_logging(options)

    def action() -> None:
        components, state = _load(options)
        components.create_lbs.execute(
            CreateLBsOptions(
                lb_type=lb_type,
                cert_path=lb_cert,
                key_path=lb_key,
                chain_path=lb_chain,
                domain=lb_domain or "",
            ),
            state,
        )

    return _run(action)


@app.command
def delete_lbs(options: GlobalParams = GlobalOptions()) -> int:
    """Remove the attached load balancers."""

    _configure_logging(options)

    def action() -> None:
        components, state = _load(options)
        components.delete_lbs.execute(state)

    return _run(action)


def confirm(env_id: str, prompt: cabc.Callable[[str], str] = input) -> bool:
    """Ask the operator to confirm destroying *env_id*."""

    answer = prompt(
        f"Are you sure you want to delete infrastructure for {env_id}? "
        "This operation cannot be undone! [y/N]: "
    )
    return answer.strip().lower() in {"y", "yes"}


@app.command
def destroy(
    no_confirm: Annotated[bool, Parameter(help="Do not ask for confirmation.")] = False,
    skip_if_missing: Annotated[
        bool, Parameter(help="Succeed when no environment exists.")
    ] = False,
    options: GlobalParams = GlobalOptions(),
) -> int:
    """Delete the director, the jumpbox and all terraform resources."""

    _configure_logging(options)

    def action() -> None:
        components, state = _load(options)
        if not state.is_empty() and not no_confirm and not confirm(state.env_id):
            print("exiting without deleting anything")
            return
        components.destroy.execute(
            DestroyOptions(skip_if_missing=skip_if_missing, no_confirm=no_confirm),
            state,
        )

    return _run(action)


@app.command
def version() -> int:
    """Print the bbl version."""

    try:
        current = metadata.version("bootloader")
    except metadata.PackageNotFoundError:
        current = "dev"
    print(f"bbl {current}")
    return 0


def main() -> None:
    raise SystemExit(app())


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    main()
