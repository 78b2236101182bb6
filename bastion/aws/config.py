"""Bastion configuration.

Immutable configuration dataclass for the AWS bastion.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from types import MappingProxyType
from typing import Any, Literal

type KeyType = Literal["rsa", "ed25519"]

# Amazon Linux 2023, x86_64, published by Amazon
DEFAULT_IMAGE_OWNERS: tuple[str, ...] = ("amazon",)
DEFAULT_IMAGE_FILTERS: Mapping[str, tuple[str, ...]] = MappingProxyType({
    "name": ("al2023-ami-2023.*-kernel-*-x86_64",),
    "architecture": ("x86_64",),
    "root-device-type": ("ebs",),
    "virtualization-type": ("hvm",),
    "state": ("available",),
})


@dataclass(frozen=True, slots=True)
class BastionConfig:
    """Bastion configuration.

    Defines how to connect to AWS and what to provision. All fields have
    defaults.

    Example:
        >>> from bastion.aws.config import BastionConfig
        >>> config = BastionConfig(region="us-west-2")

    Args:
        region: AWS region for resources. Default: us-east-1
        instance_type: EC2 instance type for the bastion host.
        ssh_user: SSH username. Derived from the AMI if None.
        ssh_port: Port opened in the rules and used for the reachability check.
        start_timeout: Seconds to wait for "running", and again for SSH.
        poll_interval: Seconds between instance state polls.
        ssh_retry_interval: Seconds between SSH connection attempts.
        ssh_connect_timeout: Per-attempt SSH connect timeout in seconds.
        request_timeout: botocore connect/read timeout in seconds.
        name_prefix: Prefix for generated key pair and security group names.
        key_type: Key pair type requested from EC2.
        image_owners: Owners passed to DescribeImages.
        image_filters: Filters passed to DescribeImages.
        manage_network_acl: Add entries to the subnet's network ACL.
        ephemeral_ports: Egress port range for return traffic through the ACL.
        rollback_on_failure: Tear down partial resources when provisioning fails.
    """

    region: str = "us-east-1"
    instance_type: str = "t2.nano"
    ssh_user: str | None = None
    ssh_port: int = 22
    start_timeout: float = 300.0
    poll_interval: float = 5.0
    ssh_retry_interval: float = 5.0
    ssh_connect_timeout: float = 10.0
    request_timeout: int = 30
    name_prefix: str = "bastion-"
    key_type: KeyType = "rsa"
    image_owners: tuple[str, ...] = DEFAULT_IMAGE_OWNERS
    image_filters: Mapping[str, tuple[str, ...]] = field(
        default_factory=lambda: DEFAULT_IMAGE_FILTERS,
    )
    manage_network_acl: bool = True
    ephemeral_ports: tuple[int, int] = (1024, 65535)
    rollback_on_failure: bool = True

    def __post_init__(self) -> None:
        if self.start_timeout <= 0:
            raise ValueError(f"start_timeout must be positive, got {self.start_timeout}")
        if self.poll_interval < 0 or self.ssh_retry_interval < 0:
            raise ValueError("poll intervals must not be negative")
        if self.key_type not in ("rsa", "ed25519"):
            raise ValueError(f"Unknown key_type '{self.key_type}'. Valid: rsa, ed25519")
        start, end = self.ephemeral_ports
        if not 0 <= start <= end <= 65535:
            raise ValueError(f"Invalid ephemeral port range {start}-{end}")

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> BastionConfig:
        """Build from a TOML table, converting lists to tuples."""
        valid = {f.name for f in fields(cls)}
        unknown = set(raw) - valid
        if unknown:
            raise ValueError(
                f"Unknown bastion option(s): {', '.join(sorted(unknown))}. "
                f"Valid: {', '.join(sorted(valid))}"
            )

        data = dict(raw)
        if "image_owners" in data:
            data["image_owners"] = tuple(data["image_owners"])
        if "image_filters" in data:
            data["image_filters"] = MappingProxyType({
                str(k): tuple(v) for k, v in data["image_filters"].items()
            })
        if "ephemeral_ports" in data:
            start, end = data["ephemeral_ports"]
            data["ephemeral_ports"] = (int(start), int(end))
        return cls(**data)
