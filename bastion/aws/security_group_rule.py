"""Idempotent TCP allow rules on a VPC security group."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING, Any

from loguru import logger

from bastion.internal.locks import ResourceLocks, default_locks
from bastion.rules import Direction, ObservedRule, SecurityGroupRule, rule_exists

from .describe import api_errors, describe_security_group

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client

log = logger.bind(component="sg-rules")

IP_PROTOCOL = "tcp"


def observed_rules(group: Mapping[str, Any]) -> Iterator[ObservedRule]:
    """Flatten a DescribeSecurityGroups record into one rule per IPv4 range.

    Permissions without ports (protocol "-1") are reported with no port
    bounds, so they never match a TCP port request.
    """
    for key, direction in (("IpPermissions", Direction.INGRESS), ("IpPermissionsEgress", Direction.EGRESS)):
        for permission in group.get(key, []):
            for ip_range in permission.get("IpRanges", []):
                yield ObservedRule(
                    direction=direction,
                    cidr=ip_range.get("CidrIp"),
                    start_port=permission.get("FromPort"),
                    end_port=permission.get("ToPort"),
                )


def _permissions(rule: SecurityGroupRule) -> list[dict[str, Any]]:
    return [{
        "IpProtocol": IP_PROTOCOL,
        "FromPort": rule.start_port,
        "ToPort": rule.end_port,
        "IpRanges": [{"CidrIp": rule.cidr}],
    }]


class SecurityGroupRuleReconciler:
    """Creates and deletes security group rules without duplicating them.

    A requested rule that already exists is reported as pre-existing and
    left alone on delete: bastion never takes ownership of rules it did
    not create.
    """

    def __init__(self, ec2: EC2Client, *, locks: ResourceLocks | None = None) -> None:
        self._ec2 = ec2
        self._locks = default_locks if locks is None else locks

    def find_existing(
        self,
        group_id: str,
        cidr: str,
        start_port: int,
        end_port: int,
        egress: bool,
    ) -> bool:
        """Check whether an equivalent rule is already in the group.

        Raises:
            NotFoundError: If the group does not exist.
            MultipleResultsError: If the ID resolves to more than one group.
            APIError: If DescribeSecurityGroups fails.
        """
        group = describe_security_group(self._ec2, group_id)
        return rule_exists(observed_rules(group), cidr, start_port, end_port, egress)

    def create(
        self,
        group_id: str,
        cidr: str,
        start_port: int,
        end_port: int,
        egress: bool,
    ) -> SecurityGroupRule:
        """Allow TCP traffic for cidr on start_port-end_port.

        Returns:
            The rule, with ``created=True``. ``pre_existing`` is set when an
            equivalent rule was already there and nothing was changed.

        Raises:
            NotFoundError, APIError: The partially built rule is attached
                as ``error.resource`` and must not be treated as live.
            MultipleResultsError: If the ID resolves to more than one group.
        """
        rule = SecurityGroupRule(
            cidr=cidr,
            direction=Direction.of(egress),
            start_port=start_port,
            end_port=end_port,
            group_id=group_id,
        )

        with self._locks.hold(group_id):
            group = describe_security_group(self._ec2, group_id, resource=rule)
            if rule_exists(observed_rules(group), cidr, start_port, end_port, egress):
                log.info(
                    "{direction} rule {cidr}:{start}-{end} already present in {group}",
                    direction=rule.direction.value,
                    cidr=cidr,
                    start=start_port,
                    end=end_port,
                    group=group_id,
                )
                return rule.with_state(created=True, pre_existing=True)

            if egress:
                with api_errors("AuthorizeSecurityGroupEgress", rule):
                    self._ec2.authorize_security_group_egress(
                        GroupId=group_id, IpPermissions=_permissions(rule),
                    )
            else:
                with api_errors("AuthorizeSecurityGroupIngress", rule):
                    self._ec2.authorize_security_group_ingress(
                        GroupId=group_id, IpPermissions=_permissions(rule),
                    )

        log.info(f"Authorized {rule.direction.value} {cidr}:{start_port}-{end_port} on {group_id}")
        return rule.with_state(created=True)

    def delete(self, rule: SecurityGroupRule) -> SecurityGroupRule:
        """Revoke a rule previously returned by create.

        Pre-existing rules are returned unchanged without any API call.
        The flags on ``rule`` are trusted as given.

        Raises:
            APIError: If the revoke call fails. ``error.resource`` is the rule.
        """
        if rule.pre_existing:
            log.debug(f"Skipping revoke of pre-existing rule {rule.cidr} on {rule.group_id}")
            return rule

        with self._locks.hold(rule.group_id):
            if rule.egress:
                with api_errors("RevokeSecurityGroupEgress", rule):
                    self._ec2.revoke_security_group_egress(
                        GroupId=rule.group_id, IpPermissions=_permissions(rule),
                    )
            else:
                with api_errors("RevokeSecurityGroupIngress", rule):
                    self._ec2.revoke_security_group_ingress(
                        GroupId=rule.group_id, IpPermissions=_permissions(rule),
                    )

        log.info(
            f"Revoked {rule.direction.value} {rule.cidr}:{rule.start_port}-{rule.end_port} "
            f"on {rule.group_id}"
        )
        return rule.with_state(created=False)
