"""Security group lifecycle for the bastion host."""

from __future__ import annotations

import secrets
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from loguru import logger

from .describe import api_errors, describe_subnet

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client

log = logger.bind(component="security-group")

DESCRIPTION = "Bastion host security group"
MANAGED_TAG = "bastion:managed"


@dataclass(frozen=True, slots=True)
class SecurityGroup:
    group_id: str = ""
    group_name: str = ""
    vpc_id: str = ""
    created: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "group_id": self.group_id,
            "group_name": self.group_name,
            "vpc_id": self.vpc_id,
            "created": self.created,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SecurityGroup:
        return cls(
            group_id=str(data["group_id"]),
            group_name=str(data.get("group_name", "")),
            vpc_id=str(data.get("vpc_id", "")),
            created=bool(data.get("created", False)),
        )


def find_vpc_id(ec2: EC2Client, subnet_id: str) -> str:
    """Return the VPC a subnet belongs to."""
    return describe_subnet(ec2, subnet_id)["VpcId"]


def create_security_group(ec2: EC2Client, subnet_id: str, prefix: str = "bastion-") -> SecurityGroup:
    """Create an empty, tagged security group in the subnet's VPC.

    Raises:
        NotFoundError: If the subnet does not exist.
        APIError: If a call fails. ``error.resource`` is the partial group.
    """
    group = SecurityGroup(group_name=f"{prefix}{secrets.randbits(63):x}")
    vpc_id = describe_subnet(ec2, subnet_id, resource=group)["VpcId"]
    group = replace(group, vpc_id=vpc_id)

    with api_errors("CreateSecurityGroup", group):
        resp = ec2.create_security_group(
            GroupName=group.group_name,
            Description=DESCRIPTION,
            VpcId=vpc_id,
            TagSpecifications=[
                {
                    "ResourceType": "security-group",
                    "Tags": [
                        {"Key": "Name", "Value": group.group_name},
                        {"Key": MANAGED_TAG, "Value": "true"},
                    ],
                }
            ],
        )

    log.info(f"Created security group {resp['GroupId']} ({group.group_name}) in {vpc_id}")
    return replace(group, group_id=resp["GroupId"], created=True)


def delete_security_group(ec2: EC2Client, group: SecurityGroup) -> SecurityGroup:
    with api_errors("DeleteSecurityGroup", group):
        ec2.delete_security_group(GroupId=group.group_id)

    log.info(f"Deleted security group {group.group_id}")
    return replace(group, created=False)
