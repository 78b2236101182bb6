"""Idempotent TCP allow entries on a VPC network ACL.

Network ACL entries are evaluated in ascending rule number order. New
entries take the lowest free number so manually created lower-numbered
entries keep their precedence and are never disturbed.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING, Any

from loguru import logger

from bastion.core.exceptions import ExhaustedSlotsError
from bastion.internal.locks import ResourceLocks, default_locks
from bastion.rules import Direction, NetworkACLRule, ObservedRule, find_rule, first_vacant_slot

from .describe import api_errors, describe_network_acl, single

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client

log = logger.bind(component="nacl-rules")

MIN_RULE_NUMBER = 1
MAX_RULE_NUMBER = 32766  # 32767-65535 are reserved by AWS

# IANA protocol number for TCP
TCP_PROTOCOL = "6"
RULE_ACTION = "allow"

NOT_FOUND = -1


def observed_entries(acl: Mapping[str, Any]) -> Iterator[ObservedRule]:
    for entry in acl.get("Entries", []):
        port_range = entry.get("PortRange") or {}
        yield ObservedRule(
            direction=Direction.of(bool(entry.get("Egress"))),
            cidr=entry.get("CidrBlock"),
            start_port=port_range.get("From"),
            end_port=port_range.get("To"),
            rule_number=entry.get("RuleNumber"),
        )


def _vacant_slot(acl: Mapping[str, Any], acl_id: str, resource: object | None = None) -> int:
    # Both directions are counted, so a number is never reused across them
    occupied = [e.rule_number for e in observed_entries(acl) if e.rule_number is not None]
    try:
        return first_vacant_slot(occupied, floor=MIN_RULE_NUMBER, ceiling=MAX_RULE_NUMBER)
    except ExhaustedSlotsError as e:
        raise ExhaustedSlotsError(
            f"Network ACL {acl_id} has no free rule number up to {MAX_RULE_NUMBER}",
            resource=resource,
        ) from e


class NetworkACLRuleReconciler:
    """Creates and deletes network ACL entries without duplicating them."""

    def __init__(self, ec2: EC2Client, *, locks: ResourceLocks | None = None) -> None:
        self._ec2 = ec2
        self._locks = default_locks if locks is None else locks

    def find_acl_for_subnet(self, subnet_id: str) -> str:
        """Return the ID of the network ACL associated with a subnet.

        Raises:
            NotFoundError: If no ACL is associated with the subnet.
            MultipleResultsError: If more than one is.
        """
        with api_errors("DescribeNetworkAcls"):
            resp = self._ec2.describe_network_acls(
                Filters=[{"Name": "association.subnet-id", "Values": [subnet_id]}],
            )
        acl = single(resp.get("NetworkAcls", []), "network ACL for subnet", subnet_id)
        return acl["NetworkAclId"]

    def find_vacant_slot(self, acl_id: str) -> int:
        """Return the lowest unused rule number in the ACL.

        Raises:
            ExhaustedSlotsError: If every number up to 32766 is taken.
            NotFoundError, APIError, MultipleResultsError: From the describe call.
        """
        return _vacant_slot(describe_network_acl(self._ec2, acl_id), acl_id)

    def find_existing_slot(
        self,
        acl_id: str,
        cidr: str,
        start_port: int,
        end_port: int,
        egress: bool,
    ) -> int:
        """Return the rule number of an equivalent entry, or -1.

        A fetch failure raises rather than returning a number, so a result of
        0 is always a real rule number.
        """
        acl = describe_network_acl(self._ec2, acl_id)
        match = find_rule(observed_entries(acl), cidr, start_port, end_port, egress)
        if match is None or match.rule_number is None:
            return NOT_FOUND
        return match.rule_number

    def create(
        self,
        acl_id: str,
        cidr: str,
        start_port: int,
        end_port: int,
        egress: bool,
    ) -> NetworkACLRule:
        """Allow TCP traffic for cidr on start_port-end_port.

        The ACL is fetched once; matching and slot allocation both work on
        that snapshot while the ACL's lock is held.

        Returns:
            The entry with ``created=True``. When an equivalent entry was
            already present, its rule number is reported and
            ``pre_existing`` is set.

        Raises:
            NotFoundError, APIError, ExhaustedSlotsError: ``error.resource``
                holds the partially built rule.
            MultipleResultsError: If the ID resolves to more than one ACL.
        """
        rule = NetworkACLRule(
            cidr=cidr,
            direction=Direction.of(egress),
            start_port=start_port,
            end_port=end_port,
            acl_id=acl_id,
        )

        with self._locks.hold(acl_id):
            acl = describe_network_acl(self._ec2, acl_id, resource=rule)

            match = find_rule(observed_entries(acl), cidr, start_port, end_port, egress)
            if match is not None and match.rule_number is not None:
                log.info(
                    "{direction} entry {cidr}:{start}-{end} already present in {acl} as #{n}",
                    direction=rule.direction.value,
                    cidr=cidr,
                    start=start_port,
                    end=end_port,
                    acl=acl_id,
                    n=match.rule_number,
                )
                return NetworkACLRule(
                    cidr=cidr,
                    direction=rule.direction,
                    start_port=start_port,
                    end_port=end_port,
                    created=True,
                    pre_existing=True,
                    acl_id=acl_id,
                    rule_number=match.rule_number,
                )

            slot = _vacant_slot(acl, acl_id, resource=rule)

            with api_errors("CreateNetworkAclEntry", rule):
                self._ec2.create_network_acl_entry(
                    NetworkAclId=acl_id,
                    RuleNumber=slot,
                    Protocol=TCP_PROTOCOL,
                    RuleAction=RULE_ACTION,
                    Egress=egress,
                    CidrBlock=cidr,
                    PortRange={"From": start_port, "To": end_port},
                )

        log.info(f"Created {rule.direction.value} entry #{slot} {cidr}:{start_port}-{end_port} in {acl_id}")
        return NetworkACLRule(
            cidr=cidr,
            direction=rule.direction,
            start_port=start_port,
            end_port=end_port,
            created=True,
            acl_id=acl_id,
            rule_number=slot,
        )

    def delete(self, rule: NetworkACLRule) -> NetworkACLRule:
        """Delete an entry previously returned by create.

        Entries are identified by ACL, direction and rule number only.
        Pre-existing entries are returned unchanged without any API call.
        """
        if rule.pre_existing:
            log.debug(f"Skipping delete of pre-existing entry #{rule.rule_number} in {rule.acl_id}")
            return rule

        with self._locks.hold(rule.acl_id), api_errors("DeleteNetworkAclEntry", rule):
            self._ec2.delete_network_acl_entry(
                NetworkAclId=rule.acl_id,
                RuleNumber=rule.rule_number,
                Egress=rule.egress,
            )

        log.info(f"Deleted {rule.direction.value} entry #{rule.rule_number} in {rule.acl_id}")
        return rule.with_state(created=False)
