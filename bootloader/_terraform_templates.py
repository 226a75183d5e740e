"""Terraform templates and ``-var`` inputs for each supported provider.

Templates are assembled from a base template per provider plus an optional
load balancer fragment, both looked up in tables keyed by provider and load
balancer type.
"""

from __future__ import annotations

import hashlib
import ipaddress
from collections import abc as cabc

from bootloader._errors import ValidationError
from bootloader._models import IAAS, Credentials, LBType, State

_AWS_BASE = """\
variable "access_key" {}
variable "secret_key" {}
variable "region" {}
variable "env_id" {}
variable "short_env_id" {}

provider "aws" {
  access_key = "${var.access_key}"
  secret_key = "${var.secret_key}"
  region     = "${var.region}"
}

data "aws_availability_zones" "available" {}

resource "aws_vpc" "vpc" {
  cidr_block           = "10.0.0.0/16"
  instance_tenancy     = "default"
  enable_dns_hostnames = true

  tags {
    Name = "${var.env_id}-vpc"
  }
}

resource "aws_internet_gateway" "ig" {
  vpc_id = "${aws_vpc.vpc.id}"
}

resource "aws_subnet" "bosh_subnet" {
  vpc_id            = "${aws_vpc.vpc.id}"
  cidr_block        = "10.0.0.0/24"
  availability_zone = "${data.aws_availability_zones.available.names[0]}"

  tags {
    Name = "${var.env_id}-bosh-subnet"
  }
}

resource "aws_route_table" "bosh_route_table" {
  vpc_id = "${aws_vpc.vpc.id}"

  route {
    cidr_block = "0.0.0.0/0"
    gateway_id = "${aws_internet_gateway.ig.id}"
  }
}

resource "aws_route_table_association" "bosh_route_table_association" {
  subnet_id      = "${aws_subnet.bosh_subnet.id}"
  route_table_id = "${aws_route_table.bosh_route_table.id}"
}

resource "aws_security_group" "bosh_security_group" {
  name        = "${var.env_id}-bosh-security-group"
  description = "BOSH director and jumpbox"
  vpc_id      = "${aws_vpc.vpc.id}"

  ingress {
    protocol    = "tcp"
    from_port   = 22
    to_port     = 22
    cidr_blocks = ["0.0.0.0/0"]
  }

  ingress {
    protocol    = "tcp"
    from_port   = 6868
    to_port     = 6868
    cidr_blocks = ["0.0.0.0/0"]
  }

  ingress {
    protocol    = "tcp"
    from_port   = 25555
    to_port     = 25555
    cidr_blocks = ["0.0.0.0/0"]
  }

  ingress {
    protocol  = "-1"
    from_port = 0
    to_port   = 0
    self      = true
  }

  egress {
    protocol    = "-1"
    from_port   = 0
    to_port     = 0
    cidr_blocks = ["0.0.0.0/0"]
  }
}

resource "aws_eip" "jumpbox_eip" {
  depends_on = ["aws_internet_gateway.ig"]
  vpc        = true
}

resource "tls_private_key" "bosh_vms" {
  algorithm = "RSA"
  rsa_bits  = 4096
}

resource "aws_key_pair" "bosh_vms" {
  key_name   = "${var.env_id}_bosh_vms"
  public_key = "${tls_private_key.bosh_vms.public_key_openssh}"
}

resource "aws_kms_key" "kms_key" {
  enable_key_rotation = true
}

resource "aws_iam_instance_profile" "bosh" {
  name = "${var.env_id}-bosh"
  role = "${var.env_id}-bosh"
}

output "external_ip" {
  value = "${aws_eip.jumpbox_eip.public_ip}"
}

output "jumpbox_url" {
  value = "${aws_eip.jumpbox_eip.public_ip}:22"
}

output "director_address" {
  value = "https://10.0.0.6:25555"
}

output "internal_cidr" {
  value = "${aws_subnet.bosh_subnet.cidr_block}"
}

output "internal_gw" {
  value = "10.0.0.1"
}

output "director_internal_ip" {
  value = "10.0.0.6"
}

output "jumpbox_internal_ip" {
  value = "10.0.0.5"
}

output "az" {
  value = "${aws_subnet.bosh_subnet.availability_zone}"
}

output "subnet_id" {
  value = "${aws_subnet.bosh_subnet.id}"
}

output "default_key_name" {
  value = "${aws_key_pair.bosh_vms.key_name}"
}

output "private_key" {
  value     = "${tls_private_key.bosh_vms.private_key_pem}"
  sensitive = true
}

output "default_security_groups" {
  value = ["${aws_security_group.bosh_security_group.id}"]
}

output "iam_instance_profile" {
  value = "${aws_iam_instance_profile.bosh.name}"
}

output "vpc_id" {
  value = "${aws_vpc.vpc.id}"
}

output "kms_key_arn" {
  value = "${aws_kms_key.kms_key.arn}"
}
"""

_AWS_LB = """\
variable "ssl_certificate" {}
variable "ssl_certificate_private_key" {}
variable "ssl_certificate_chain" {}

resource "aws_iam_server_certificate" "lb_cert" {
  name_prefix       = "${var.short_env_id}"
  certificate_body  = "${var.ssl_certificate}"
  private_key       = "${var.ssl_certificate_private_key}"
  certificate_chain = "${var.ssl_certificate_chain}"

  lifecycle {
    create_before_destroy = true
  }
}

resource "aws_security_group" "lb_security_group" {
  name   = "${var.env_id}-lb-security-group"
  vpc_id = "${aws_vpc.vpc.id}"

  ingress {
    protocol    = "tcp"
    from_port   = 443
    to_port     = 443
    cidr_blocks = ["0.0.0.0/0"]
  }

  egress {
    protocol    = "-1"
    from_port   = 0
    to_port     = 0
    cidr_blocks = ["0.0.0.0/0"]
  }
}
"""

_AWS_CF_LB = _AWS_LB + """
variable "system_domain" {
  default = ""
}

resource "aws_elb" "cf_router_lb" {
  name            = "${var.short_env_id}-cf-router-lb"
  subnets         = ["${aws_subnet.bosh_subnet.id}"]
  security_groups = ["${aws_security_group.lb_security_group.id}"]

  listener {
    instance_port      = 80
    instance_protocol  = "http"
    lb_port            = 443
    lb_protocol        = "https"
    ssl_certificate_id = "${aws_iam_server_certificate.lb_cert.arn}"
  }

  health_check {
    target              = "tcp:80"
    healthy_threshold   = 5
    unhealthy_threshold = 2
    interval            = 12
    timeout             = 2
  }
}

output "cf_router_lb_name" {
  value = "${aws_elb.cf_router_lb.name}"
}

output "cf_router_lb_url" {
  value = "${aws_elb.cf_router_lb.dns_name}"
}

output "cf_system_domain" {
  value = "${var.system_domain}"
}
"""

_AWS_CONCOURSE_LB = _AWS_LB + """
resource "aws_elb" "concourse_lb" {
  name            = "${var.short_env_id}-concourse-lb"
  subnets         = ["${aws_subnet.bosh_subnet.id}"]
  security_groups = ["${aws_security_group.lb_security_group.id}"]

  listener {
    instance_port      = 8080
    instance_protocol  = "tcp"
    lb_port            = 443
    lb_protocol        = "ssl"
    ssl_certificate_id = "${aws_iam_server_certificate.lb_cert.arn}"
  }

  health_check {
    target              = "tcp:8080"
    healthy_threshold   = 2
    unhealthy_threshold = 10
    interval            = 30
    timeout             = 5
  }
}

output "concourse_lb_name" {
  value = "${aws_elb.concourse_lb.name}"
}

output "concourse_lb_url" {
  value = "${aws_elb.concourse_lb.dns_name}"
}
"""

_GCP_BASE = """\
variable "project_id" {}
variable "region" {}
variable "zone" {}
variable "env_id" {}
variable "short_env_id" {}
variable "credentials" {}

provider "google" {
  credentials = "${var.credentials}"
  project     = "${var.project_id}"
  region      = "${var.region}"
}

resource "google_compute_network" "bbl-network" {
  name                    = "${var.env_id}-network"
  auto_create_subnetworks = false
}

resource "google_compute_subnetwork" "bbl-subnet" {
  name          = "${var.env_id}-subnet"
  ip_cidr_range = "10.0.0.0/16"
  network       = "${google_compute_network.bbl-network.self_link}"
}

resource "google_compute_address" "jumpbox-ip" {
  name = "${var.env_id}-jumpbox-ip"
}

resource "google_compute_firewall" "external" {
  name    = "${var.env_id}-external"
  network = "${google_compute_network.bbl-network.name}"

  allow {
    protocol = "tcp"
    ports    = ["22", "6868", "25555"]
  }

  source_ranges = ["0.0.0.0/0"]
  target_tags   = ["${var.env_id}-jumpbox"]
}

resource "google_compute_firewall" "internal" {
  name    = "${var.env_id}-internal"
  network = "${google_compute_network.bbl-network.name}"

  allow {
    protocol = "tcp"
  }

  allow {
    protocol = "udp"
  }

  source_tags = ["${var.env_id}-bosh-deployed", "${var.env_id}-jumpbox"]
}

output "external_ip" {
  value = "${google_compute_address.jumpbox-ip.address}"
}

output "jumpbox_url" {
  value = "${google_compute_address.jumpbox-ip.address}:22"
}

output "director_address" {
  value = "https://10.0.0.6:25555"
}

output "network_name" {
  value = "${google_compute_network.bbl-network.name}"
}

output "subnetwork_name" {
  value = "${google_compute_subnetwork.bbl-subnet.name}"
}

output "internal_cidr" {
  value = "${google_compute_subnetwork.bbl-subnet.ip_cidr_range}"
}

output "internal_gw" {
  value = "${google_compute_subnetwork.bbl-subnet.gateway_address}"
}

output "director_internal_ip" {
  value = "10.0.0.6"
}

output "jumpbox_internal_ip" {
  value = "10.0.0.5"
}

output "jumpbox_tag_name" {
  value = "${var.env_id}-jumpbox"
}

output "internal_tag_name" {
  value = "${var.env_id}-bosh-deployed"
}

output "zone" {
  value = "${var.zone}"
}
"""

_GCP_LB = """\
variable "ssl_certificate" {}
variable "ssl_certificate_private_key" {}

resource "google_compute_ssl_certificate" "lb-cert" {
  name_prefix = "${var.short_env_id}"
  certificate = "${var.ssl_certificate}"
  private_key = "${var.ssl_certificate_private_key}"

  lifecycle {
    create_before_destroy = true
  }
}
"""

_GCP_CF_LB = _GCP_LB + """
variable "system_domain" {
  default = ""
}

resource "google_compute_global_address" "cf-address" {
  name = "${var.env_id}-cf"
}

resource "google_compute_instance_group" "router-lb" {
  name    = "${var.env_id}-router-lb"
  zone    = "${var.zone}"
  network = "${google_compute_network.bbl-network.self_link}"

  named_port {
    name = "https"
    port = "443"
  }
}

output "router_backend_service" {
  value = "${var.env_id}-router-lb"
}

output "router_lb_ip" {
  value = "${google_compute_global_address.cf-address.address}"
}

output "cf_system_domain" {
  value = "${var.system_domain}"
}
"""

_GCP_CONCOURSE_LB = _GCP_LB + """
resource "google_compute_address" "concourse-address" {
  name = "${var.env_id}-concourse"
}

resource "google_compute_target_pool" "target-pool" {
  name = "${var.env_id}-concourse"
}

resource "google_compute_forwarding_rule" "concourse-https-forwarding-rule" {
  name        = "${var.env_id}-concourse-https"
  target      = "${google_compute_target_pool.target-pool.self_link}"
  port_range  = "443"
  ip_protocol = "TCP"
  ip_address  = "${google_compute_address.concourse-address.address}"
}

output "concourse_target_pool" {
  value = "${google_compute_target_pool.target-pool.name}"
}

output "concourse_lb_ip" {
  value = "${google_compute_address.concourse-address.address}"
}
"""

_VSPHERE_BASE = """\
variable "env_id" {}
variable "short_env_id" {}
variable "vsphere_subnet" {}
variable "external_ip" {}
variable "internal_gw" {}
variable "vcenter_cluster" {}
variable "network_name" {}

output "internal_cidr" {
  value = "${var.vsphere_subnet}"
}

output "internal_gw" {
  value = "${var.internal_gw}"
}

output "network_name" {
  value = "${var.network_name}"
}

output "vcenter_cluster" {
  value = "${var.vcenter_cluster}"
}

output "external_ip" {
  value = "${var.external_ip}"
}

output "jumpbox_url" {
  value = "${var.external_ip}:22"
}

output "director_internal_ip" {
  value = "${cidrhost(var.vsphere_subnet, 6)}"
}

output "director_address" {
  value = "https://${cidrhost(var.vsphere_subnet, 6)}:25555"
}
"""

BASE_TEMPLATES: dict[IAAS, str] = {
    IAAS.AWS: _AWS_BASE,
    IAAS.GCP: _GCP_BASE,
    IAAS.VSPHERE: _VSPHERE_BASE,
}

LB_TEMPLATES: dict[tuple[IAAS, LBType], str] = {
    (IAAS.AWS, LBType.CF): _AWS_CF_LB,
    (IAAS.AWS, LBType.CONCOURSE): _AWS_CONCOURSE_LB,
    (IAAS.GCP, LBType.CF): _GCP_CF_LB,
    (IAAS.GCP, LBType.CONCOURSE): _GCP_CONCOURSE_LB,
}

# Terraform variables declared by each load balancer fragment.
_LB_VARIABLES: dict[IAAS, tuple[str, ...]] = {
    IAAS.AWS: ("ssl_certificate", "ssl_certificate_private_key", "ssl_certificate_chain"),
    IAAS.GCP: ("ssl_certificate", "ssl_certificate_private_key"),
    IAAS.VSPHERE: (),
}


def supports_lb(iaas: IAAS, lb_type: LBType) -> bool:
    """Return whether *iaas* can host a load balancer of *lb_type*.

    Examples
    --------
    >>> supports_lb(IAAS.GCP, LBType.CONCOURSE)
    True
    >>> supports_lb(IAAS.VSPHERE, LBType.CF)
    False
    """

    return lb_type is LBType.NONE or (iaas, lb_type) in LB_TEMPLATES


def short_env_id(env_id: str) -> str:
    """Shorten *env_id* to fit provider resource name limits.

    Examples
    --------
    >>> short_env_id("bbl-env-lake")
    'bbl-env-lake'
    >>> len(short_env_id("bbl-env-glacier-2017-11-28t19-25z"))
    20
    """

    if len(env_id) <= 20:
        return env_id
    digest = hashlib.sha1(env_id.encode("utf-8")).hexdigest()[:5]
    return f"{env_id[:14]}-{digest}"


def _require_iaas(state: State) -> IAAS:
    if state.iaas is None:
        msg = "environment has no IAAS configured"
        raise ValidationError(msg)
    return state.iaas


class TemplateGenerator:
    """Assemble the terraform template for a descriptor."""

    def generate(self, state: State) -> str:
        iaas = _require_iaas(state)
        template = BASE_TEMPLATES[iaas]
        if not state.lb.attached:
            return template
        fragment = LB_TEMPLATES.get((iaas, state.lb.type))
        if fragment is None:
            msg = f"{iaas.value} does not support {state.lb.type.value} load balancers"
            raise ValidationError(msg)
        return f"{template}\n{fragment}"


def _vsphere_inputs(state: State) -> dict[str, str]:
    try:
        network = ipaddress.ip_network(state.vsphere.subnet, strict=False)
    except ValueError as exc:
        msg = f"invalid vSphere subnet {state.vsphere.subnet!r}: {exc}"
        raise ValidationError(msg) from exc
    return {
        "vsphere_subnet": state.vsphere.subnet,
        "external_ip": str(network.network_address + 5),
        "internal_gw": str(network.network_address + 1),
        "vcenter_cluster": state.vsphere.cluster,
        "network_name": state.vsphere.network,
    }


class InputGenerator:
    """Produce the ``-var`` mapping passed to ``terraform apply``/``destroy``."""

    def generate(
        self, state: State, credentials: Credentials
    ) -> cabc.Mapping[str, str]:
        iaas = _require_iaas(state)
        inputs = {
            "env_id": state.env_id,
            "short_env_id": short_env_id(state.env_id),
        }
        if iaas is IAAS.AWS:
            if credentials.aws is None:
                msg = "AWS credentials are required"
                raise ValidationError(msg)
            inputs.update(
                access_key=credentials.aws.access_key_id,
                secret_key=credentials.aws.secret_access_key,
                region=state.aws.region,
            )
        elif iaas is IAAS.GCP:
            if credentials.gcp is None:
                msg = "GCP service account key is required"
                raise ValidationError(msg)
            inputs.update(
                project_id=state.gcp.project_id,
                region=state.gcp.region,
                zone=state.gcp.zone,
                credentials=credentials.gcp.service_account_key,
            )
        else:
            inputs.update(_vsphere_inputs(state))

        if state.lb.attached:
            lb_values = {
                "ssl_certificate": state.lb.cert,
                "ssl_certificate_private_key": state.lb.key,
                "ssl_certificate_chain": state.lb.chain,
            }
            for name in _LB_VARIABLES[iaas]:
                inputs[name] = lb_values[name]
            if state.lb.type is LBType.CF and state.lb.domain:
                inputs["system_domain"] = state.lb.domain
        return inputs


__all__ = [
    "BASE_TEMPLATES",
    "LB_TEMPLATES",
    "InputGenerator",
    "TemplateGenerator",
    "short_env_id",
    "supports_lb",
]
