"""Resolution of global options from CLI arguments and the environment."""

from __future__ import annotations

import json
import os
from collections import abc as cabc
from dataclasses import dataclass, field
from pathlib import Path

from bootloader._errors import ValidationError
from bootloader._models import (
    IAAS,
    AWSCredentials,
    AWSSettings,
    Credentials,
    GCPCredentials,
    GCPSettings,
    State,
    VSphereCredentials,
    VSphereSettings,
)

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY = frozenset({"0", "false", "no", "off", ""})


@dataclass(frozen=True, slots=True)
class InputResolution:
    """Configuration for resolving an input from multiple sources."""

    env_key: str
    default: str | Path | None = None
    required: bool = False
    as_path: bool = False


def resolve_input(
    param_value: str | Path | None,
    resolution: InputResolution,
    env: cabc.Mapping[str, str] | None = None,
) -> str | Path | None:
    """Resolve input from parameter, environment variable, or default.

    Examples
    --------
    >>> resolve_input(None, InputResolution("BBL_IAAS"), {"BBL_IAAS": "gcp"})
    'gcp'
    >>> resolve_input("aws", InputResolution("BBL_IAAS"), {"BBL_IAAS": "gcp"})
    'aws'
    """

    if param_value is not None:
        return param_value

    env_value = (os.environ if env is None else env).get(resolution.env_key)
    if env_value is not None:
        return Path(env_value) if resolution.as_path else env_value

    if resolution.required:
        msg = f"{resolution.env_key} is required"
        raise SystemExit(msg)

    return resolution.default


def as_bool(value: bool | str | None, *, env_key: str) -> bool:
    """Interpret a flag supplied either as a bool or an environment string.

    Examples
    --------
    >>> as_bool("yes", env_key="BBL_DEBUG")
    True
    >>> as_bool(None, env_key="BBL_DEBUG")
    False
    """

    if value is None:
        return False
    if isinstance(value, bool):
        return value
    lowered = value.strip().lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    msg = f"{env_key} must be a boolean, got {value!r}"
    raise SystemExit(msg)


@dataclass(frozen=True, slots=True)
class GlobalOptions:
    """Global options as passed on the command line (unresolved)."""

    state_dir: Path | None = None
    debug: bool | None = None
    iaas: str | None = None
    name: str | None = None
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    aws_region: str | None = None
    gcp_service_account_key: str | None = None
    gcp_project_id: str | None = None
    gcp_zone: str | None = None
    gcp_region: str | None = None
    vsphere_subnet: str | None = None
    vsphere_cluster: str | None = None
    vsphere_network: str | None = None
    vsphere_vcenter_ip: str | None = None
    vsphere_vcenter_user: str | None = None
    vsphere_vcenter_password: str | None = None
    vsphere_vcenter_dc: str | None = None
    terraform_binary: str | None = None
    bosh_binary: str | None = None


@dataclass(frozen=True, slots=True)
class Config:
    """Fully resolved global configuration for a single run."""

    state_dir: Path
    debug: bool = False
    iaas: IAAS | None = None
    name: str = ""
    credentials: Credentials = field(default_factory=Credentials)
    aws: AWSSettings = field(default_factory=AWSSettings)
    gcp: GCPSettings = field(default_factory=GCPSettings)
    vsphere: VSphereSettings = field(default_factory=VSphereSettings)
    terraform_binary: str = "terraform"
    bosh_binary: str = "bosh"


def _text(
    value: str | None,
    env_key: str,
    env: cabc.Mapping[str, str],
    fallback: str = "",
) -> str:
    resolved = resolve_input(value, InputResolution(env_key=env_key), env)
    if resolved:
        return str(resolved)
    return fallback


def load_service_account_key(value: str) -> str:
    """Return the service account key JSON from a path or an inline document.

    Examples
    --------
    >>> load_service_account_key('{"project_id": "p"}')
    '{"project_id": "p"}'
    """

    if value.lstrip().startswith("{"):
        return value
    path = Path(value).expanduser()
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"error reading service account key: {exc}"
        raise ValidationError(msg) from exc


def project_id_from_key(key: str) -> str:
    """Return the ``project_id`` recorded in a service account key.

    Examples
    --------
    >>> project_id_from_key('{"project_id": "lake-123"}')
    'lake-123'
    """

    try:
        payload = json.loads(key)
    except json.JSONDecodeError as exc:
        msg = f"error parsing service account key: {exc}"
        raise ValidationError(msg) from exc
    if not isinstance(payload, dict):
        msg = "error parsing service account key: expected a JSON object"
        raise ValidationError(msg)
    project_id = payload.get("project_id", "")
    return project_id if isinstance(project_id, str) else ""


def _resolve_iaas(
    options: GlobalOptions, env: cabc.Mapping[str, str], state: State
) -> IAAS | None:
    raw = _text(options.iaas, "BBL_IAAS", env)
    if not raw:
        return state.iaas
    try:
        return IAAS(raw.lower())
    except ValueError as exc:
        supported = ", ".join(item.value for item in IAAS)
        msg = f"--iaas must be one of: {supported}"
        raise ValidationError(msg) from exc


def _resolve_credentials(
    options: GlobalOptions, env: cabc.Mapping[str, str]
) -> Credentials:
    aws = None
    access_key_id = _text(options.aws_access_key_id, "BBL_AWS_ACCESS_KEY_ID", env)
    secret_access_key = _text(
        options.aws_secret_access_key, "BBL_AWS_SECRET_ACCESS_KEY", env
    )
    if access_key_id or secret_access_key:
        aws = AWSCredentials(
            access_key_id=access_key_id, secret_access_key=secret_access_key
        )

    gcp = None
    key = _text(options.gcp_service_account_key, "BBL_GCP_SERVICE_ACCOUNT_KEY", env)
    if key:
        gcp = GCPCredentials(service_account_key=load_service_account_key(key))

    vsphere = None
    vcenter_ip = _text(options.vsphere_vcenter_ip, "BBL_VSPHERE_VCENTER_IP", env)
    if vcenter_ip:
        vsphere = VSphereCredentials(
            vcenter_ip=vcenter_ip,
            vcenter_user=_text(
                options.vsphere_vcenter_user, "BBL_VSPHERE_VCENTER_USER", env
            ),
            vcenter_password=_text(
                options.vsphere_vcenter_password, "BBL_VSPHERE_VCENTER_PASSWORD", env
            ),
            datacenter=_text(
                options.vsphere_vcenter_dc, "BBL_VSPHERE_VCENTER_DC", env
            ),
        )
    return Credentials(aws=aws, gcp=gcp, vsphere=vsphere)


def resolve_config(
    options: GlobalOptions,
    state: State,
    env: cabc.Mapping[str, str] | None = None,
) -> Config:
    """Resolve *options* against the environment and the persisted *state*.

    CLI values win over ``BBL_*`` environment variables, which win over the
    provider settings recorded in the descriptor.
    """

    environ = os.environ if env is None else env
    state_dir = resolve_input(
        options.state_dir,
        InputResolution(env_key="BBL_STATE_DIR", default=Path.cwd(), as_path=True),
        environ,
    )
    debug_value = resolve_input(
        options.debug, InputResolution(env_key="BBL_DEBUG"), environ
    )
    credentials = _resolve_credentials(options, environ)

    gcp_project_id = _text(
        options.gcp_project_id, "BBL_GCP_PROJECT_ID", environ, state.gcp.project_id
    )
    if not gcp_project_id and credentials.gcp is not None:
        gcp_project_id = project_id_from_key(credentials.gcp.service_account_key)

    return Config(
        state_dir=Path(state_dir or Path.cwd()),
        debug=as_bool(debug_value, env_key="BBL_DEBUG"),
        iaas=_resolve_iaas(options, environ, state),
        name=_text(options.name, "BBL_ENV_ID", environ),
        credentials=credentials,
        aws=AWSSettings(
            region=_text(options.aws_region, "BBL_AWS_REGION", environ, state.aws.region)
        ),
        gcp=GCPSettings(
            project_id=gcp_project_id,
            zone=_text(options.gcp_zone, "BBL_GCP_ZONE", environ, state.gcp.zone),
            region=_text(
                options.gcp_region, "BBL_GCP_REGION", environ, state.gcp.region
            ),
        ),
        vsphere=VSphereSettings(
            subnet=_text(
                options.vsphere_subnet, "BBL_VSPHERE_SUBNET", environ, state.vsphere.subnet
            ),
            cluster=_text(
                options.vsphere_cluster,
                "BBL_VSPHERE_CLUSTER",
                environ,
                state.vsphere.cluster,
            ),
            network=_text(
                options.vsphere_network,
                "BBL_VSPHERE_NETWORK",
                environ,
                state.vsphere.network,
            ),
        ),
        terraform_binary=_text(
            options.terraform_binary, "BBL_TERRAFORM_BINARY", environ, "terraform"
        ),
        bosh_binary=_text(options.bosh_binary, "BBL_BOSH_BINARY", environ, "bosh"),
    )


def resolve_state_dir(
    value: Path | None, env: cabc.Mapping[str, str] | None = None
) -> Path:
    """Return the absolute state directory before the descriptor is loaded."""

    resolved = resolve_input(
        value,
        InputResolution(env_key="BBL_STATE_DIR", default=Path.cwd(), as_path=True),
        env,
    )
    return Path(resolved or Path.cwd()).resolve()


def validate_provider(config: Config) -> None:
    """Ensure the settings and secrets required by ``config.iaas`` are present."""

    if config.iaas is None:
        supported = ", ".join(item.value for item in IAAS)
        msg = f"--iaas [{supported}] must be provided or BBL_IAAS must be set"
        raise ValidationError(msg)
    missing: list[str] = []
    if config.iaas is IAAS.AWS:
        creds = config.credentials.aws
        if creds is None or not creds.access_key_id:
            missing.append("BBL_AWS_ACCESS_KEY_ID")
        if creds is None or not creds.secret_access_key:
            missing.append("BBL_AWS_SECRET_ACCESS_KEY")
        if not config.aws.region:
            missing.append("BBL_AWS_REGION")
    elif config.iaas is IAAS.GCP:
        if config.credentials.gcp is None:
            missing.append("BBL_GCP_SERVICE_ACCOUNT_KEY")
        if not config.gcp.zone:
            missing.append("BBL_GCP_ZONE")
        if not config.gcp.region:
            missing.append("BBL_GCP_REGION")
    else:
        if not config.vsphere.subnet:
            missing.append("BBL_VSPHERE_SUBNET")
        if not config.vsphere.cluster:
            missing.append("BBL_VSPHERE_CLUSTER")
        if not config.vsphere.network:
            missing.append("BBL_VSPHERE_NETWORK")
        if config.credentials.vsphere is None:
            missing.append("BBL_VSPHERE_VCENTER_IP")
    if missing:
        msg = f"missing required {config.iaas.value} configuration: " + ", ".join(
            missing
        )
        raise ValidationError(msg)


__all__ = [
    "Config",
    "GlobalOptions",
    "InputResolution",
    "as_bool",
    "load_service_account_key",
    "project_id_from_key",
    "resolve_config",
    "resolve_input",
    "resolve_state_dir",
    "validate_provider",
]
