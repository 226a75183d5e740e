"""Descriptor-level wrapper around :class:`BoshExecutor`."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any

import yaml

from bootloader._bosh import DIRECTOR, JUMPBOX, BoshExecutor
from bootloader._command import compare_versions
from bootloader._errors import (
    BootloaderError,
    BoshRunError,
    ManagerError,
    ParseError,
    ValidationError,
    VersionError,
    combine_errors,
)
from bootloader._models import (
    IAAS,
    CreateEnvInput,
    Credentials,
    DeleteEnvInput,
    DirectorState,
    InterpolateInput,
    JumpboxState,
    Outputs,
    State,
)
from bootloader._state_store import StateStore

logger = logging.getLogger(__name__)

MINIMUM_BOSH_VERSION = "2.0.0"
DIRECTOR_USERNAME = "admin"

# Deployment variable name -> terraform output name, per provider.
_OUTPUT_VARIABLES: dict[IAAS, dict[str, str]] = {
    IAAS.AWS: {
        "az": "az",
        "subnet_id": "subnet_id",
        "default_key_name": "default_key_name",
        "private_key": "private_key",
        "iam_instance_profile": "iam_instance_profile",
        "kms_key_arn": "kms_key_arn",
    },
    IAAS.GCP: {
        "zone": "zone",
        "network": "network_name",
        "subnetwork": "subnetwork_name",
    },
    IAAS.VSPHERE: {
        "network_name": "network_name",
        "vcenter_cluster": "vcenter_cluster",
    },
}

# Tag output applied to each deployment's VMs on GCP.
_GCP_TAG_OUTPUTS = {JUMPBOX: "jumpbox_tag_name", DIRECTOR: "internal_tag_name"}


def _load_yaml(contents: str, what: str) -> dict[str, Any]:
    if not contents:
        return {}
    try:
        payload = yaml.safe_load(contents)
    except yaml.YAMLError as exc:
        msg = f"Failed to parse {what}: {exc}"
        raise ParseError(msg) from exc
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        msg = f"{what} must be a YAML mapping"
        raise ParseError(msg)
    return payload


def director_credentials(variables: str) -> tuple[str, str]:
    """Return the admin password and director CA from a vars store.

    Examples
    --------
    >>> director_credentials("admin_password: pw\\ndirector_ssl:\\n  ca: CA\\n")
    ('pw', 'CA')
    """

    payload = _load_yaml(variables, "director vars store")
    ssl = payload.get("director_ssl") or {}
    ca = ssl.get("ca", "") if isinstance(ssl, dict) else ""
    return str(payload.get("admin_password", "")), str(ca)


class BoshManager:
    """Create and delete the jumpbox and director of an environment."""

    def __init__(
        self,
        executor: BoshExecutor,
        store: StateStore,
        credentials: Credentials,
    ) -> None:
        self.executor = executor
        self.store = store
        self.credentials = credentials

    def validate_version(self) -> None:
        version = self.executor.version()
        if not compare_versions(version, MINIMUM_BOSH_VERSION):
            msg = (
                f"BOSH version must be at least v{MINIMUM_BOSH_VERSION}, "
                f"found v{version}"
            )
            raise VersionError(msg)

    def _iaas(self, state: State) -> IAAS:
        if state.iaas is None:
            msg = "environment has no IAAS configured"
            raise ValidationError(msg)
        return state.iaas

    def _jumpbox_input(self, state: State) -> InterpolateInput:
        return InterpolateInput(
            deployment_dir=self.store.get_jumpbox_deployment_dir(),
            state_dir=self.store.get_state_dir(),
            vars_dir=self.store.get_vars_dir(),
            iaas=self._iaas(state),
            bosh_state=state.jumpbox.state,
            variables=state.jumpbox.variables,
        )

    def _director_input(self, state: State, ops_file: str = "") -> InterpolateInput:
        return InterpolateInput(
            deployment_dir=self.store.get_director_deployment_dir(),
            state_dir=self.store.get_state_dir(),
            vars_dir=self.store.get_vars_dir(),
            iaas=self._iaas(state),
            bosh_state=state.bosh.state,
            variables=state.bosh.variables,
            ops_file=ops_file,
        )

    def is_jumpbox_initialized(self, state: State) -> bool:
        return self.executor.is_jumpbox_initialized(self._jumpbox_input(state))

    def initialize_jumpbox(self, state: State) -> None:
        self.executor.jumpbox_create_env_args(self._jumpbox_input(state))

    def is_director_initialized(self, state: State) -> bool:
        return self.executor.is_director_initialized(self._director_input(state))

    def initialize_director(self, state: State, ops_file: str = "") -> None:
        self.executor.director_create_env_args(self._director_input(state, ops_file))

    def _common_vars(self, state: State, outputs: Outputs, deployment: str) -> dict[str, Any]:
        iaas = self._iaas(state)
        internal_ip_output = (
            "jumpbox_internal_ip" if deployment == JUMPBOX else "director_internal_ip"
        )
        internal_ip = outputs.get_string(internal_ip_output)
        if not internal_ip and deployment == JUMPBOX:
            internal_ip = outputs.get_string("external_ip")
        variables: dict[str, Any] = {
            "internal_cidr": outputs.get_string("internal_cidr"),
            "internal_gw": outputs.get_string("internal_gw"),
            "internal_ip": internal_ip,
        }
        if deployment == JUMPBOX:
            variables["external_ip"] = outputs.get_string("external_ip")
        else:
            variables["director_name"] = f"bosh-{state.env_id}"

        for name, output in _OUTPUT_VARIABLES[iaas].items():
            variables[name] = outputs.get_string(output)

        if iaas is IAAS.AWS:
            variables["default_security_groups"] = outputs.get_list(
                "default_security_groups"
            )
            variables["region"] = state.aws.region
            if self.credentials.aws is not None:
                variables["access_key_id"] = self.credentials.aws.access_key_id
                variables["secret_access_key"] = self.credentials.aws.secret_access_key
        elif iaas is IAAS.GCP:
            variables["tags"] = outputs.get_list(_GCP_TAG_OUTPUTS[deployment])
            variables["project_id"] = state.gcp.project_id
            if self.credentials.gcp is not None:
                variables["gcp_credentials_json"] = (
                    self.credentials.gcp.service_account_key
                )
        elif self.credentials.vsphere is not None:
            creds = self.credentials.vsphere
            variables["vcenter_ip"] = creds.vcenter_ip
            variables["vcenter_user"] = creds.vcenter_user
            variables["vcenter_password"] = creds.vcenter_password
            variables["vcenter_dc"] = creds.datacenter
        return variables

    def get_jumpbox_deployment_vars(self, state: State, outputs: Outputs) -> str:
        """Return the jumpbox ``--vars-file`` contents as YAML."""

        return yaml.safe_dump(
            self._common_vars(state, outputs, JUMPBOX), default_flow_style=False
        )

    def get_director_deployment_vars(self, state: State, outputs: Outputs) -> str:
        """Return the director ``--vars-file`` contents as YAML."""

        return yaml.safe_dump(
            self._common_vars(state, outputs, DIRECTOR), default_flow_style=False
        )

    def _failure(
        self, state: State, deployment: str, error: BootloaderError
    ) -> ManagerError:
        """Wrap *error* with whatever state JSON ``bosh`` left behind."""

        try:
            left = self.executor.read_state(self.store.get_vars_dir(), deployment)
        except BootloaderError as read_error:
            return ManagerError(state, combine_errors(error, read_error))
        if left is None:
            return ManagerError(state, error)
        if deployment == JUMPBOX:
            jumpbox = dataclasses.replace(state.jumpbox, state=left)
            return ManagerError(dataclasses.replace(state, jumpbox=jumpbox), error)
        bosh = dataclasses.replace(state.bosh, state=left)
        return ManagerError(dataclasses.replace(state, bosh=bosh), error)

    def create_jumpbox(self, state: State, outputs: Outputs) -> State:
        """Run ``create-env`` for the jumpbox and record its artefacts."""

        logger.info("step: creating jumpbox")
        vars_dir = self.store.get_vars_dir()
        create_input = CreateEnvInput(
            state_dir=self.store.get_state_dir(),
            vars_dir=vars_dir,
            deployment=JUMPBOX,
            deployment_vars=self.get_jumpbox_deployment_vars(state, outputs),
        )
        try:
            variables = self.executor.create_env(create_input)
        except BoshRunError as exc:
            raise self._failure(state, JUMPBOX, exc) from exc
        jumpbox = JumpboxState(
            variables=variables,
            state=self.executor.read_state(vars_dir, JUMPBOX),
            url=outputs.get_string("jumpbox_url"),
        )
        logger.info("step: created jumpbox")
        return dataclasses.replace(state, jumpbox=jumpbox)

    def create_director(self, state: State, outputs: Outputs) -> State:
        """Run ``create-env`` for the director and record its credentials."""

        logger.info("step: creating bosh director")
        vars_dir = self.store.get_vars_dir()
        create_input = CreateEnvInput(
            state_dir=self.store.get_state_dir(),
            vars_dir=vars_dir,
            deployment=DIRECTOR,
            deployment_vars=self.get_director_deployment_vars(state, outputs),
        )
        try:
            variables = self.executor.create_env(create_input)
        except BoshRunError as exc:
            raise self._failure(state, DIRECTOR, exc) from exc
        password, ca = director_credentials(variables)
        director = DirectorState(
            variables=variables,
            state=self.executor.read_state(vars_dir, DIRECTOR),
            director_name=f"bosh-{state.env_id}",
            director_address=outputs.get_string("director_address"),
            director_username=DIRECTOR_USERNAME,
            director_password=password,
            director_ssl_ca=ca,
        )
        logger.info("step: created bosh director")
        return dataclasses.replace(state, bosh=director)

    def delete_director(self, state: State, outputs: Outputs) -> State:
        """Run ``delete-env`` for the director; a no-op when none exists."""

        if not state.has_director:
            return state
        logger.info("step: deleting bosh director")
        if not self.is_director_initialized(state):
            self.initialize_director(state)
        delete_input = DeleteEnvInput(
            state_dir=self.store.get_state_dir(),
            vars_dir=self.store.get_vars_dir(),
            deployment=DIRECTOR,
            deployment_vars=self.get_director_deployment_vars(state, outputs),
        )
        try:
            self.executor.delete_env(delete_input)
        except BoshRunError as exc:
            raise self._failure(state, DIRECTOR, exc) from exc
        return dataclasses.replace(state, bosh=DirectorState())

    def delete_jumpbox(self, state: State, outputs: Outputs) -> State:
        """Run ``delete-env`` for the jumpbox; a no-op when none exists."""

        if not state.has_jumpbox:
            return state
        logger.info("step: deleting jumpbox")
        if not self.is_jumpbox_initialized(state):
            self.initialize_jumpbox(state)
        delete_input = DeleteEnvInput(
            state_dir=self.store.get_state_dir(),
            vars_dir=self.store.get_vars_dir(),
            deployment=JUMPBOX,
            deployment_vars=self.get_jumpbox_deployment_vars(state, outputs),
        )
        try:
            self.executor.delete_env(delete_input)
        except BoshRunError as exc:
            raise self._failure(state, JUMPBOX, exc) from exc
        return dataclasses.replace(state, jumpbox=JumpboxState())


__all__ = [
    "DIRECTOR_USERNAME",
    "MINIMUM_BOSH_VERSION",
    "BoshManager",
    "director_credentials",
]
