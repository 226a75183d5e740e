"""Data models shared by the executors, managers and lifecycle commands.

The environment descriptor and the external tool state it carries are plain
values: every operation takes the current descriptor and returns the next one
instead of mutating shared state.

Examples
--------
>>> state = State(iaas=IAAS.AWS, env_id="bbl-env-lake")
>>> state.lb.type
<LBType.NONE: 'none'>
>>> State.from_mapping(state.to_mapping()) == state
True
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

CURRENT_STATE_VERSION = 3


class IAAS(StrEnum):
    """Supported infrastructure providers."""

    AWS = "aws"
    GCP = "gcp"
    VSPHERE = "vsphere"


class LBType(StrEnum):
    """Load balancer flavours that can be attached to an environment."""

    NONE = "none"
    CF = "cf"
    CONCOURSE = "concourse"


@dataclass(frozen=True, slots=True)
class LB:
    """Load balancer attached to the environment."""

    type: LBType = LBType.NONE
    cert: str = field(default="", repr=False)
    key: str = field(default="", repr=False)
    chain: str = field(default="", repr=False)
    domain: str = ""

    @property
    def attached(self) -> bool:
        return self.type is not LBType.NONE


@dataclass(frozen=True, slots=True)
class AWSSettings:
    """Non-secret AWS settings persisted with the environment."""

    region: str = ""


@dataclass(frozen=True, slots=True)
class GCPSettings:
    """Non-secret GCP settings persisted with the environment."""

    project_id: str = ""
    zone: str = ""
    region: str = ""


@dataclass(frozen=True, slots=True)
class VSphereSettings:
    """Network placement for vSphere environments."""

    subnet: str = ""
    cluster: str = ""
    network: str = ""


@dataclass(frozen=True, slots=True)
class AWSCredentials:
    """AWS API credentials supplied for a single run."""

    access_key_id: str
    secret_access_key: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class GCPCredentials:
    """GCP service account key (JSON document) supplied for a single run."""

    service_account_key: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class VSphereCredentials:
    """vCenter connection details supplied for a single run."""

    vcenter_ip: str
    vcenter_user: str
    vcenter_password: str = field(repr=False)
    datacenter: str = ""


@dataclass(frozen=True, slots=True)
class Credentials:
    """Secrets for whichever provider the environment uses."""

    aws: AWSCredentials | None = None
    gcp: GCPCredentials | None = None
    vsphere: VSphereCredentials | None = None


@dataclass(frozen=True, slots=True)
class JumpboxState:
    """Artefacts produced by ``bosh create-env`` for the jumpbox.

    Attributes
    ----------
    variables
        Contents of the jumpbox vars store (YAML).
    state
        Decoded ``jumpbox-state.json``; present once the jumpbox was created.
    url
        ``host:port`` of the jumpbox SSH endpoint.
    """

    variables: str = field(default="", repr=False)
    state: dict[str, Any] | None = field(default=None, repr=False)
    url: str = ""


@dataclass(frozen=True, slots=True)
class DirectorState:
    """Artefacts produced by ``bosh create-env`` for the director."""

    variables: str = field(default="", repr=False)
    state: dict[str, Any] | None = field(default=None, repr=False)
    director_name: str = ""
    director_address: str = ""
    director_username: str = ""
    director_password: str = field(default="", repr=False)
    director_ssl_ca: str = field(default="", repr=False)


@dataclass(frozen=True, slots=True)
class State:
    """The environment descriptor persisted as ``bbl-state.json``."""

    version: int = CURRENT_STATE_VERSION
    iaas: IAAS | None = None
    env_id: str = ""
    no_director: bool = False
    lb: LB = field(default_factory=LB)
    tf_state: str = field(default="", repr=False)
    jumpbox: JumpboxState = field(default_factory=JumpboxState)
    bosh: DirectorState = field(default_factory=DirectorState)
    aws: AWSSettings = field(default_factory=AWSSettings)
    gcp: GCPSettings = field(default_factory=GCPSettings)
    vsphere: VSphereSettings = field(default_factory=VSphereSettings)

    def is_empty(self) -> bool:
        return self == State()

    @property
    def has_director(self) -> bool:
        return self.bosh.state is not None

    @property
    def has_jumpbox(self) -> bool:
        return self.jumpbox.state is not None

    def to_mapping(self) -> dict[str, Any]:
        """Return a JSON-serialisable mapping of the descriptor."""

        return {
            "version": self.version,
            "iaas": self.iaas.value if self.iaas is not None else "",
            "env_id": self.env_id,
            "no_director": self.no_director,
            "lb": {
                "type": self.lb.type.value,
                "cert": self.lb.cert,
                "key": self.lb.key,
                "chain": self.lb.chain,
                "domain": self.lb.domain,
            },
            "tf_state": self.tf_state,
            "jumpbox": {
                "variables": self.jumpbox.variables,
                "state": self.jumpbox.state,
                "url": self.jumpbox.url,
            },
            "bosh": {
                "variables": self.bosh.variables,
                "state": self.bosh.state,
                "director_name": self.bosh.director_name,
                "director_address": self.bosh.director_address,
                "director_username": self.bosh.director_username,
                "director_password": self.bosh.director_password,
                "director_ssl_ca": self.bosh.director_ssl_ca,
            },
            "aws": {"region": self.aws.region},
            "gcp": {
                "project_id": self.gcp.project_id,
                "zone": self.gcp.zone,
                "region": self.gcp.region,
            },
            "vsphere": {
                "subnet": self.vsphere.subnet,
                "cluster": self.vsphere.cluster,
                "network": self.vsphere.network,
            },
        }

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> State:
        """Build a descriptor from the current (fully migrated) schema.

        Raises
        ------
        TypeError
            If a field has the wrong type.
        ValueError
            If an enumerated field holds an unknown value.
        """

        lb = _section(payload, "lb")
        jumpbox = _section(payload, "jumpbox")
        bosh = _section(payload, "bosh")
        aws = _section(payload, "aws")
        gcp = _section(payload, "gcp")
        vsphere = _section(payload, "vsphere")
        iaas = _str_field(payload, "iaas")
        return cls(
            version=_int_field(payload, "version"),
            iaas=IAAS(iaas) if iaas else None,
            env_id=_str_field(payload, "env_id"),
            no_director=bool(payload.get("no_director", False)),
            lb=LB(
                type=LBType(_str_field(lb, "type") or LBType.NONE.value),
                cert=_str_field(lb, "cert"),
                key=_str_field(lb, "key"),
                chain=_str_field(lb, "chain"),
                domain=_str_field(lb, "domain"),
            ),
            tf_state=_str_field(payload, "tf_state"),
            jumpbox=JumpboxState(
                variables=_str_field(jumpbox, "variables"),
                state=_dict_field(jumpbox, "state"),
                url=_str_field(jumpbox, "url"),
            ),
            bosh=DirectorState(
                variables=_str_field(bosh, "variables"),
                state=_dict_field(bosh, "state"),
                director_name=_str_field(bosh, "director_name"),
                director_address=_str_field(bosh, "director_address"),
                director_username=_str_field(bosh, "director_username"),
                director_password=_str_field(bosh, "director_password"),
                director_ssl_ca=_str_field(bosh, "director_ssl_ca"),
            ),
            aws=AWSSettings(region=_str_field(aws, "region")),
            gcp=GCPSettings(
                project_id=_str_field(gcp, "project_id"),
                zone=_str_field(gcp, "zone"),
                region=_str_field(gcp, "region"),
            ),
            vsphere=VSphereSettings(
                subnet=_str_field(vsphere, "subnet"),
                cluster=_str_field(vsphere, "cluster"),
                network=_str_field(vsphere, "network"),
            ),
        )


def _section(payload: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = payload.get(key) or {}
    if not isinstance(value, Mapping):
        msg = f"State field {key!r} must be an object"
        raise TypeError(msg)
    return value


def _str_field(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        msg = f"State field {key!r} must be str"
        raise TypeError(msg)
    return value


def _int_field(payload: Mapping[str, Any], key: str) -> int:
    value = payload.get(key, CURRENT_STATE_VERSION)
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"State field {key!r} must be int"
        raise TypeError(msg)
    return value


def _dict_field(payload: Mapping[str, Any], key: str) -> dict[str, Any] | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        msg = f"State field {key!r} must be an object or null"
        raise TypeError(msg)
    return dict(value)


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Result of an external command execution.

    Attributes
    ----------
    success
        Whether the command exited with status code ``0``.
    stdout
        Captured standard output (empty when streamed).
    stderr
        Captured standard error (empty when streamed).
    return_code
        Process exit status code.
    """

    success: bool
    stdout: str
    stderr: str
    return_code: int


@dataclass(frozen=True, slots=True)
class SetupFile:
    """A file staged on disk before an external tool runs."""

    path: Path
    contents: str = ""


@dataclass(frozen=True, slots=True)
class Outputs:
    """Decoded ``terraform output`` values keyed by output name.

    Examples
    --------
    >>> Outputs({"external_ip": "203.0.113.7"}).get_string("external_ip")
    '203.0.113.7'
    >>> Outputs().get_string("missing")
    ''
    """

    values: Mapping[str, object] = field(default_factory=dict)

    def get_string(self, name: str) -> str:
        value = self.values.get(name)
        if value is None:
            return ""
        return str(value)

    def get_list(self, name: str) -> list[str]:
        value = self.values.get(name)
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value]
        return [str(value)]


@dataclass(frozen=True, slots=True)
class ImportInput:
    """Arguments for adopting an existing cloud resource into terraform state."""

    terraform_address: str
    resource_id: str
    tf_state: str
    credentials: AWSCredentials
    region: str


@dataclass(frozen=True, slots=True)
class InterpolateInput:
    """Everything needed to materialize a component's ``create-env`` inputs."""

    deployment_dir: Path
    state_dir: Path
    vars_dir: Path
    iaas: IAAS
    bosh_state: dict[str, Any] | None = None
    variables: str = ""
    ops_file: str = ""


@dataclass(frozen=True, slots=True)
class CreateEnvInput:
    """Arguments for running a generated ``create-<deployment>.sh`` script."""

    state_dir: Path
    vars_dir: Path
    deployment: str
    deployment_vars: str


@dataclass(frozen=True, slots=True)
class DeleteEnvInput:
    """Arguments for running a generated ``delete-<deployment>.sh`` script."""

    state_dir: Path
    vars_dir: Path
    deployment: str
    deployment_vars: str = ""


__all__ = [
    "CURRENT_STATE_VERSION",
    "IAAS",
    "LB",
    "AWSCredentials",
    "AWSSettings",
    "CommandResult",
    "CreateEnvInput",
    "Credentials",
    "DeleteEnvInput",
    "DirectorState",
    "GCPCredentials",
    "GCPSettings",
    "ImportInput",
    "InterpolateInput",
    "JumpboxState",
    "LBType",
    "Outputs",
    "SetupFile",
    "State",
    "VSphereCredentials",
    "VSphereSettings",
]
