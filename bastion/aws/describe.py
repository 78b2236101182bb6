"""Describe-by-ID helpers and botocore error translation."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from botocore.exceptions import BotoCoreError, ClientError

from bastion.core.exceptions import APIError, MultipleResultsError, NotFoundError

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client

# Error codes AWS returns from describe calls when an ID does not exist
NOT_FOUND_CODES = frozenset({
    "InvalidGroup.NotFound",
    "InvalidGroupId.NotFound",
    "InvalidNetworkAclID.NotFound",
    "InvalidSubnetID.NotFound",
    "InvalidInstanceID.NotFound",
    "InvalidKeyPair.NotFound",
    "InvalidAMIID.NotFound",
})


@contextmanager
def api_errors(operation: str, resource: object | None = None) -> Iterator[None]:
    """Translate botocore failures raised inside the block.

    ``*.NotFound`` codes become NotFoundError; anything else reported by
    AWS or by the transport becomes APIError. The botocore exception is
    kept as ``__cause__``.
    """
    try:
        yield
    except ClientError as e:
        error = e.response.get("Error", {})
        code = error.get("Code", "Unknown")
        message = error.get("Message", str(e))
        if code in NOT_FOUND_CODES:
            raise NotFoundError(f"{operation} - not found: {message}", resource=resource) from e
        raise APIError(
            f"{operation} - AWS error [{code}]: {message}",
            operation=operation,
            code=code,
            resource=resource,
        ) from e
    except BotoCoreError as e:
        raise APIError(f"{operation} - {e}", operation=operation, resource=resource) from e


def single[T](items: Sequence[T], kind: str, resource_id: str, resource: object | None = None) -> T:
    """Return the only element of a describe-by-ID result.

    Raises:
        NotFoundError: If there is no element.
        MultipleResultsError: If there is more than one.
    """
    if not items:
        raise NotFoundError(f"{kind} {resource_id} not found", resource=resource)
    if len(items) > 1:
        raise MultipleResultsError(kind, resource_id, len(items))
    return items[0]


def describe_security_group(
    ec2: EC2Client, group_id: str, resource: object | None = None,
) -> dict[str, Any]:
    with api_errors("DescribeSecurityGroups", resource):
        resp = ec2.describe_security_groups(GroupIds=[group_id])
    return single(resp.get("SecurityGroups", []), "security group", group_id, resource)


def describe_network_acl(
    ec2: EC2Client, acl_id: str, resource: object | None = None,
) -> dict[str, Any]:
    with api_errors("DescribeNetworkAcls", resource):
        resp = ec2.describe_network_acls(NetworkAclIds=[acl_id])
    return single(resp.get("NetworkAcls", []), "network ACL", acl_id, resource)


def describe_subnet(
    ec2: EC2Client, subnet_id: str, resource: object | None = None,
) -> dict[str, Any]:
    with api_errors("DescribeSubnets", resource):
        resp = ec2.describe_subnets(SubnetIds=[subnet_id])
    return single(resp.get("Subnets", []), "subnet", subnet_id, resource)


def find_instance(
    ec2: EC2Client, instance_id: str, resource: object | None = None,
) -> dict[str, Any] | None:
    """Fetch one instance by ID, or None while it is not yet visible.

    Filters by ``instance-id`` rather than passing InstanceIds, so a freshly
    launched instance that is not yet visible yields an empty result instead
    of an InvalidInstanceID.NotFound error.
    """
    with api_errors("DescribeInstances", resource):
        resp = ec2.describe_instances(
            Filters=[{"Name": "instance-id", "Values": [instance_id]}],
        )

    instances = [i for r in resp.get("Reservations", []) for i in r.get("Instances", [])]
    if not instances:
        return None
    if len(instances) > 1:
        raise MultipleResultsError("instance", instance_id, len(instances))
    return instances[0]
