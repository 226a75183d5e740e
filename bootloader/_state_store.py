"""Persistence of the environment descriptor and its on-disk layout.

The descriptor lives in ``bbl-state.json`` at the root of the state directory.
Tool artefacts (terraform state, vars stores, generated scripts) live in fixed
subdirectories next to it so scripts can be rerun by hand.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from contextlib import suppress
from pathlib import Path
from typing import Any, NoReturn

from bootloader._errors import BootloaderError, CombinedError, PersistenceError
from bootloader._models import CURRENT_STATE_VERSION, State

logger = logging.getLogger(__name__)

STATE_FILE = "bbl-state.json"
VARS_DIR = "vars"
TERRAFORM_DIR = "terraform"
JUMPBOX_DEPLOYMENT_DIR = "jumpbox-deployment"
DIRECTOR_DEPLOYMENT_DIR = "bosh-deployment"
CLOUD_CONFIG_DIR = "cloud-config"
DEPLOYMENTS = ("jumpbox", "director")

_V2_LB_KEYS = {
    "lb_type": "type",
    "lb_cert": "cert",
    "lb_key": "key",
    "lb_chain": "chain",
    "lb_domain": "domain",
}


def _migrate_v1(payload: dict[str, Any]) -> dict[str, Any]:
    """Nest the flat ``bosh_state``/``jumpbox_state`` keys of version 1.

    Examples
    --------
    >>> _migrate_v1({"version": 1, "bosh_state": {"a": 1}})["bosh"]
    {'state': {'a': 1}}
    """

    migrated = dict(payload)
    for old_key, new_key in (("bosh_state", "bosh"), ("jumpbox_state", "jumpbox")):
        if old_key in migrated:
            section = dict(migrated.get(new_key) or {})
            section["state"] = migrated.pop(old_key)
            migrated[new_key] = section
    migrated["version"] = 2
    return migrated


def _migrate_v2(payload: dict[str, Any]) -> dict[str, Any]:
    """Fold the flat ``lb_*`` keys of version 2 into an ``lb`` record.

    Examples
    --------
    >>> _migrate_v2({"version": 2, "lb_type": "cf", "lb_domain": "x.io"})["lb"]
    {'type': 'cf', 'domain': 'x.io'}
    """

    migrated = dict(payload)
    lb: dict[str, Any] = {}
    for old_key, new_key in _V2_LB_KEYS.items():
        if old_key in migrated:
            lb[new_key] = migrated.pop(old_key)
    if lb:
        migrated["lb"] = lb
    migrated["version"] = 3
    return migrated


_MIGRATIONS = {1: _migrate_v1, 2: _migrate_v2}


def migrate(payload: dict[str, Any]) -> dict[str, Any]:
    """Upgrade a raw descriptor mapping to the current schema version."""

    version = payload.get("version", 1)
    if isinstance(version, bool) or not isinstance(version, int):
        msg = f"State field 'version' must be int, got {version!r}"
        raise PersistenceError(msg)
    if version > CURRENT_STATE_VERSION:
        msg = (
            f"{STATE_FILE} has version {version}, newer than the supported "
            f"version {CURRENT_STATE_VERSION}"
        )
        raise PersistenceError(msg)
    while version < CURRENT_STATE_VERSION:
        logger.info("migrating %s from version %s", STATE_FILE, version)
        payload = _MIGRATIONS[version](payload)
        version = payload["version"]
    return payload


class StateStore:
    """Read and write the descriptor under *state_dir*.

    Examples
    --------
    >>> store = StateStore(Path("env"))
    >>> store.get().is_empty()
    True
    """

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = Path(state_dir).resolve()

    @property
    def state_path(self) -> Path:
        return self.state_dir / STATE_FILE

    def get(self) -> State:
        """Load the descriptor, returning an empty one when none exists."""

        path = self.state_path
        if not path.exists():
            return State()
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            msg = f"Failed to read state file {path}: {exc}"
            raise PersistenceError(msg) from exc
        if not isinstance(payload, dict):
            msg = f"State file {path} must contain a JSON object"
            raise PersistenceError(msg)
        try:
            return State.from_mapping(migrate(payload))
        except (TypeError, ValueError) as exc:
            msg = f"Invalid state file {path}: {exc}"
            raise PersistenceError(msg) from exc

    def set(self, state: State) -> None:
        """Persist *state* atomically, or tear the layout down when empty."""

        if state.is_empty():
            self._teardown()
            return

        path = self.state_path
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(state.to_mapping(), indent=2, sort_keys=True)
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                    handle.flush()
                    os.fsync(handle.fileno())
            except Exception:
                with suppress(FileNotFoundError):
                    os.unlink(tmp_path)
                raise
            tmp_path.replace(path)
            os.chmod(path, 0o600)
        except (OSError, TypeError, ValueError) as exc:
            msg = f"Failed to write state file {path}: {exc}"
            raise PersistenceError(msg) from exc
        logger.debug("saved %s", path)

    def _teardown(self) -> None:
        targets = [
            self.state_dir / VARS_DIR,
            self.state_dir / TERRAFORM_DIR,
            self.state_dir / JUMPBOX_DEPLOYMENT_DIR,
            self.state_dir / DIRECTOR_DEPLOYMENT_DIR,
            self.state_dir / CLOUD_CONFIG_DIR,
        ]
        files = [self.state_path]
        for deployment in DEPLOYMENTS:
            files.append(self.state_dir / f"create-{deployment}.sh")
            files.append(self.state_dir / f"delete-{deployment}.sh")
        try:
            for directory in targets:
                if directory.exists():
                    shutil.rmtree(directory)
            for file in files:
                file.unlink(missing_ok=True)
        except OSError as exc:
            msg = f"Failed to remove environment files in {self.state_dir}: {exc}"
            raise PersistenceError(msg) from exc
        logger.info("removed environment files from %s", self.state_dir)

    def _subdir(self, name: str) -> Path:
        path = self.state_dir / name
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            msg = f"Failed to create directory {path}: {exc}"
            raise PersistenceError(msg) from exc
        return path

    def get_state_dir(self) -> Path:
        return self._subdir("")

    def get_vars_dir(self) -> Path:
        return self._subdir(VARS_DIR)

    def get_terraform_dir(self) -> Path:
        return self._subdir(TERRAFORM_DIR)

    def get_jumpbox_deployment_dir(self) -> Path:
        return self._subdir(JUMPBOX_DEPLOYMENT_DIR)

    def get_director_deployment_dir(self) -> Path:
        return self._subdir(DIRECTOR_DEPLOYMENT_DIR)

    def get_cloud_config_dir(self) -> Path:
        return self._subdir(CLOUD_CONFIG_DIR)


def save_after_error(
    store: StateStore, state: State, error: BaseException
) -> NoReturn:
    """Persist the partial *state* left by a failed step, then raise *error*.

    When persisting fails too, both failures are raised together.
    """

    try:
        store.set(state)
    except BootloaderError as save_error:
        raise CombinedError([error, save_error]) from error
    raise error


__all__ = [
    "CLOUD_CONFIG_DIR",
    "DIRECTOR_DEPLOYMENT_DIR",
    "JUMPBOX_DEPLOYMENT_DIR",
    "STATE_FILE",
    "TERRAFORM_DIR",
    "VARS_DIR",
    "StateStore",
    "migrate",
    "save_after_error",
]
