"""Cloud config rendering and upload to the BOSH director."""

from __future__ import annotations

import ipaddress
import logging
import os
from collections import abc as cabc
from pathlib import Path
from typing import Any, Protocol

import yaml

from bootloader._errors import BoshRunError, ParseError, PersistenceError
from bootloader._models import IAAS, CommandResult, LBType, Outputs, State

logger = logging.getLogger(__name__)

CLOUD_CONFIG_FILE = "cloud-config.yml"
OPS_FILE = "ops.yml"
VARS_FILE = "vars.yml"
JUMPBOX_KEY_FILE = "jumpbox.key"

_AZS = ("z1", "z2", "z3")

_VM_TYPES = (
    (
        "minimal",
        {
            "aws": {"instance_type": "m3.medium"},
            "gcp": {"machine_type": "n1-standard-1"},
            "vsphere": {"cpu": 1, "ram": 4096, "disk": 10240},
        },
    ),
    (
        "small",
        {
            "aws": {"instance_type": "m3.large"},
            "gcp": {"machine_type": "n1-standard-2"},
            "vsphere": {"cpu": 2, "ram": 8192, "disk": 20480},
        },
    ),
    (
        "default",
        {
            "aws": {"instance_type": "m3.large"},
            "gcp": {"machine_type": "n1-standard-2"},
            "vsphere": {"cpu": 2, "ram": 8192, "disk": 30720},
        },
    ),
)

_DISK_SIZES = (1024, 5120, 10240, 51200, 102400)

# Per provider: the cloud properties of one AZ and of the network subnet.
_AZ_PROPERTIES: dict[IAAS, dict[str, str]] = {
    IAAS.AWS: {"availability_zone": "((az))"},
    IAAS.GCP: {"zone": "((zone))"},
    IAAS.VSPHERE: {"datacenters": "((datacenters))"},
}

_SUBNET_PROPERTIES: dict[IAAS, dict[str, Any]] = {
    IAAS.AWS: {"subnet": "((subnet_id))", "security_groups": "((security_groups))"},
    IAAS.GCP: {
        "network_name": "((network_name))",
        "subnetwork_name": "((subnetwork_name))",
        "ephemeral_external_ip": True,
        "tags": "((tags))",
    },
    IAAS.VSPHERE: {"name": "((network_name))"},
}

# Cloud config variable -> terraform output, per provider.
_OUTPUT_VARIABLES: dict[IAAS, dict[str, str]] = {
    IAAS.AWS: {"az": "az", "subnet_id": "subnet_id"},
    IAAS.GCP: {
        "zone": "zone",
        "network_name": "network_name",
        "subnetwork_name": "subnetwork_name",
    },
    IAAS.VSPHERE: {"network_name": "network_name"},
}

_LIST_OUTPUT_VARIABLES: dict[IAAS, dict[str, str]] = {
    IAAS.AWS: {"security_groups": "default_security_groups"},
    IAAS.GCP: {"tags": "internal_tag_name"},
    IAAS.VSPHERE: {},
}

# (provider, lb type) -> (vm_extension name, cloud properties, lb outputs).
_LB_EXTENSIONS: dict[tuple[IAAS, LBType], tuple[str, dict[str, Any], dict[str, str]]] = {
    (IAAS.AWS, LBType.CF): (
        "cf-router-network-properties",
        {"elbs": ["((cf_router_lb_name))"]},
        {"cf_router_lb_name": "cf_router_lb_name"},
    ),
    (IAAS.AWS, LBType.CONCOURSE): (
        "lb",
        {"elbs": ["((concourse_lb_name))"]},
        {"concourse_lb_name": "concourse_lb_name"},
    ),
    (IAAS.GCP, LBType.CF): (
        "cf-router-network-properties",
        {"backend_service": "((router_backend_service))"},
        {"router_backend_service": "router_backend_service"},
    ),
    (IAAS.GCP, LBType.CONCOURSE): (
        "lb",
        {"target_pool": "((concourse_target_pool))"},
        {"concourse_target_pool": "concourse_target_pool"},
    ),
}


class Runner(Protocol):
    def run(
        self,
        args: cabc.Sequence[str],
        cwd: Path,
        env: cabc.Mapping[str, str] | None = None,
        *,
        capture: bool = False,
    ) -> CommandResult: ...


class OutputSource(Protocol):
    def get_outputs(self, state: State) -> Outputs: ...


class Directories(Protocol):
    def get_cloud_config_dir(self) -> Path: ...

    def get_vars_dir(self) -> Path: ...


def render_cloud_config(iaas: IAAS) -> dict[str, Any]:
    """Return the base cloud config for *iaas*.

    Examples
    --------
    >>> [vm["name"] for vm in render_cloud_config(IAAS.GCP)["vm_types"]]
    ['minimal', 'small', 'default']
    """

    return {
        "azs": [{"name": name, "cloud_properties": dict(_AZ_PROPERTIES[iaas])} for name in _AZS],
        "vm_types": [
            {"name": name, "cloud_properties": properties[iaas.value]}
            for name, properties in _VM_TYPES
        ],
        "disk_types": [{"name": str(size), "disk_size": size} for size in _DISK_SIZES],
        "compilation": {
            "workers": 5,
            "reuse_compilation_vms": True,
            "az": _AZS[0],
            "vm_type": "default",
            "network": "default",
        },
        "networks": [
            {
                "name": "default",
                "type": "manual",
                "subnets": [
                    {
                        "azs": list(_AZS),
                        "range": "((internal_cidr))",
                        "gateway": "((internal_gw))",
                        "reserved": ["((jumpbox__reserved_range))"],
                        "cloud_properties": dict(_SUBNET_PROPERTIES[iaas]),
                    }
                ],
            }
        ],
    }


def render_lb_ops(state: State) -> list[dict[str, Any]]:
    """Return the ops that attach the load balancer ``vm_extension``."""

    if state.iaas is None or not state.lb.attached:
        return []
    extension = _LB_EXTENSIONS.get((state.iaas, state.lb.type))
    if extension is None:
        return []
    name, properties, _ = extension
    return [
        {
            "type": "replace",
            "path": "/vm_extensions?/-",
            "value": {"name": name, "cloud_properties": properties},
        }
    ]


def render_vars(state: State, outputs: Outputs) -> dict[str, Any]:
    """Return the variables interpolated into the cloud config."""

    if state.iaas is None:
        return {}
    variables: dict[str, Any] = {
        "internal_cidr": outputs.get_string("internal_cidr"),
        "internal_gw": outputs.get_string("internal_gw"),
        "jumpbox__reserved_range": _reserved_range(outputs.get_string("internal_cidr")),
    }
    for name, output in _OUTPUT_VARIABLES[state.iaas].items():
        variables[name] = outputs.get_string(output)
    for name, output in _LIST_OUTPUT_VARIABLES[state.iaas].items():
        variables[name] = outputs.get_list(output)
    if state.iaas is IAAS.VSPHERE:
        variables["datacenters"] = [{"clusters": [{outputs.get_string("vcenter_cluster"): {}}]}]
    extension = _LB_EXTENSIONS.get((state.iaas, state.lb.type))
    if state.lb.attached and extension is not None:
        for name, output in extension[2].items():
            variables[name] = outputs.get_string(output)
    return variables


def _reserved_range(cidr: str) -> str:
    """Reserve the first addresses of *cidr* for the gateway, jumpbox and director.

    Examples
    --------
    >>> _reserved_range("10.0.0.0/24")
    '10.0.0.1-10.0.0.6'
    """

    if not cidr:
        return ""
    try:
        network = ipaddress.ip_network(cidr, strict=False)
    except ValueError as exc:
        msg = f"invalid internal_cidr output {cidr!r}: {exc}"
        raise ParseError(msg) from exc
    return f"{network.network_address + 1}-{network.network_address + 6}"


class CloudConfigManager:
    """Render the cloud config for an environment and upload it."""

    def __init__(self, runner: Runner, dirs: Directories, outputs: OutputSource) -> None:
        self.runner = runner
        self.dirs = dirs
        self.outputs = outputs

    def _paths(self) -> tuple[Path, Path, Path]:
        directory = self.dirs.get_cloud_config_dir().resolve()
        return (
            directory / CLOUD_CONFIG_FILE,
            directory / OPS_FILE,
            directory / VARS_FILE,
        )

    def initialize(self, state: State) -> None:
        """Write ``cloud-config.yml``, ``ops.yml`` and ``vars.yml``."""

        if state.iaas is None:
            return
        cloud_config, ops, variables = self._paths()
        documents = (
            (cloud_config, render_cloud_config(state.iaas)),
            (ops, render_lb_ops(state)),
            (variables, render_vars(state, self.outputs.get_outputs(state))),
        )
        for path, document in documents:
            try:
                path.write_text(
                    yaml.safe_dump(document, default_flow_style=False), encoding="utf-8"
                )
            except OSError as exc:
                msg = f"Failed to write {path.name}: {exc}"
                raise PersistenceError(msg) from exc

    def _jumpbox_key(self, state: State) -> Path:
        try:
            payload = yaml.safe_load(state.jumpbox.variables or "{}") or {}
        except yaml.YAMLError as exc:
            msg = f"Failed to parse jumpbox vars store: {exc}"
            raise ParseError(msg) from exc
        ssh = payload.get("jumpbox_ssh") if isinstance(payload, dict) else None
        private_key = ssh.get("private_key", "") if isinstance(ssh, dict) else ""
        path = self.dirs.get_vars_dir() / JUMPBOX_KEY_FILE
        try:
            path.write_text(str(private_key), encoding="utf-8")
            os.chmod(path, 0o600)
        except OSError as exc:
            msg = f"Failed to write {path.name}: {exc}"
            raise PersistenceError(msg) from exc
        return path

    def director_env(self, state: State) -> dict[str, str]:
        """Return the ``BOSH_*`` environment for talking to the director."""

        env = {
            "BOSH_ENVIRONMENT": state.bosh.director_address,
            "BOSH_CLIENT": state.bosh.director_username,
            "BOSH_CLIENT_SECRET": state.bosh.director_password,
            "BOSH_CA_CERT": state.bosh.director_ssl_ca,
        }
        if state.jumpbox.url:
            key = self._jumpbox_key(state)
            env["BOSH_ALL_PROXY"] = (
                f"ssh+socks5://jumpbox@{state.jumpbox.url}?private-key={key}"
            )
        return env

    def update(self, state: State) -> None:
        """Upload the rendered cloud config, rendering it first if missing."""

        cloud_config, ops, variables = self._paths()
        if not all(path.exists() for path in (cloud_config, ops, variables)):
            self.initialize(state)
        logger.info("step: updating cloud config")
        result = self.runner.run(
            [
                "update-cloud-config",
                str(cloud_config),
                "-o",
                str(ops),
                "--vars-file",
                str(variables),
                "-n",
            ],
            cloud_config.parent,
            self.director_env(state),
        )
        if not result.success:
            msg = f"Run bosh update-cloud-config: exit status {result.return_code}"
            raise BoshRunError(msg, deployment="director")


__all__ = [
    "CLOUD_CONFIG_FILE",
    "OPS_FILE",
    "VARS_FILE",
    "CloudConfigManager",
    "render_cloud_config",
    "render_lb_ops",
    "render_vars",
]
