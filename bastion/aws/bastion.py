"""Bastion orchestrator.

Provisions the full set of resources for a disposable bastion host, in
dependency order, and tears them down again in reverse:

    security group -> SG ingress rule -> ACL entries -> key pair -> instance

Everything produced is recorded on a BastionState, which can be saved as
JSON and loaded later for teardown. The private key is never written.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger

from bastion.core.exceptions import BastionError, RecoverableError, TeardownError
from bastion.rules import NetworkACLRule, SecurityGroupRule

from .clients import ec2_client
from .config import BastionConfig
from .instance import Instance, InstanceLauncher, InstanceState
from .key_pair import KeyPair, create_key_pair, delete_key_pair
from .nacl_rule import NetworkACLRuleReconciler
from .security_group import SecurityGroup, create_security_group, delete_security_group
from .security_group_rule import SecurityGroupRuleReconciler

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client

    from .ssh import Dialer

log = logger.bind(component="bastion")


@dataclass(slots=True)
class BastionState:
    """Resources produced by one provision run."""

    region: str
    subnet_id: str
    allowed_cidr: str
    security_group: SecurityGroup | None = None
    security_group_rules: list[SecurityGroupRule] = field(default_factory=list)
    acl_rules: list[NetworkACLRule] = field(default_factory=list)
    key_pair: KeyPair | None = None
    instance: Instance | None = None

    @property
    def private_key_pem(self) -> str:
        return self.key_pair.private_key_pem if self.key_pair else ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "region": self.region,
            "subnet_id": self.subnet_id,
            "allowed_cidr": self.allowed_cidr,
            "security_group": self.security_group.to_dict() if self.security_group else None,
            "security_group_rules": [r.to_dict() for r in self.security_group_rules],
            "acl_rules": [r.to_dict() for r in self.acl_rules],
            "key_pair": self.key_pair.to_dict() if self.key_pair else None,
            "instance": self.instance.to_dict() if self.instance else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BastionState:
        sg = data.get("security_group")
        kp = data.get("key_pair")
        inst = data.get("instance")
        return cls(
            region=str(data["region"]),
            subnet_id=str(data["subnet_id"]),
            allowed_cidr=str(data["allowed_cidr"]),
            security_group=SecurityGroup.from_dict(sg) if sg else None,
            security_group_rules=[
                SecurityGroupRule.from_dict(r) for r in data.get("security_group_rules", [])
            ],
            acl_rules=[NetworkACLRule.from_dict(r) for r in data.get("acl_rules", [])],
            key_pair=KeyPair.from_dict(kp) if kp else None,
            instance=Instance.from_dict(inst) if inst else None,
        )


def save_state(state: BastionState, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(state.to_dict(), indent=2))


def load_state(path: Path) -> BastionState:
    return BastionState.from_dict(json.loads(path.read_text()))


class Bastion:
    """Provision and tear down a disposable SSH bastion.

    Example:
        >>> bastion = Bastion(BastionConfig(region="eu-west-1"))
        >>> state = bastion.provision("subnet-0abc", "203.0.113.7/32")
        >>> ...
        >>> bastion.teardown(state)
    """

    def __init__(
        self,
        config: BastionConfig | None = None,
        ec2: EC2Client | None = None,
        dialer: Dialer | None = None,
    ) -> None:
        self.config = config or BastionConfig()
        self._ec2 = ec2
        self._dialer = dialer

    @cached_property
    def ec2(self) -> EC2Client:
        if self._ec2 is not None:
            return self._ec2
        return ec2_client(self.config)

    @cached_property
    def sg_reconciler(self) -> SecurityGroupRuleReconciler:
        return SecurityGroupRuleReconciler(self.ec2)

    @cached_property
    def acl_reconciler(self) -> NetworkACLRuleReconciler:
        return NetworkACLRuleReconciler(self.ec2)

    @cached_property
    def launcher(self) -> InstanceLauncher:
        return InstanceLauncher(self.ec2, self.config, self._dialer)

    def provision(
        self,
        subnet_id: str,
        allowed_cidr: str,
        *,
        cancel: threading.Event | None = None,
    ) -> BastionState:
        """Create every bastion resource and wait until SSH is reachable.

        Raises:
            RecoverableError: Any step failed. Unless rollback is disabled,
                what was created has been torn down. ``error.resource`` is
                the BastionState as it stood after the failure.
            FatalError: Propagated as is, without rollback.
        """
        cfg = self.config
        state = BastionState(region=cfg.region, subnet_id=subnet_id, allowed_cidr=allowed_cidr)

        log.info(f"Provisioning bastion in {subnet_id} for {allowed_cidr}")
        try:
            self._provision(state, cancel)
        except RecoverableError as e:
            self._absorb_partial(state, e.resource)
            log.error(f"Provisioning failed ({type(e).__name__}): {e}")
            if cfg.rollback_on_failure:
                self._rollback(state)
            e.resource = state
            raise

        log.info(
            "Bastion ready: {user}@{address} ({instance})",
            user=state.instance.ssh_user,
            address=state.instance.public_address,
            instance=state.instance.instance_id,
        )
        return state

    def _provision(self, state: BastionState, cancel: threading.Event | None) -> None:
        cfg = self.config
        port = cfg.ssh_port

        state.security_group = create_security_group(self.ec2, state.subnet_id, cfg.name_prefix)
        group_id = state.security_group.group_id

        state.security_group_rules.append(
            self.sg_reconciler.create(group_id, state.allowed_cidr, port, port, egress=False)
        )

        if cfg.manage_network_acl:
            acl_id = self.acl_reconciler.find_acl_for_subnet(state.subnet_id)
            low, high = cfg.ephemeral_ports
            state.acl_rules.append(
                self.acl_reconciler.create(acl_id, state.allowed_cidr, port, port, egress=False)
            )
            state.acl_rules.append(
                self.acl_reconciler.create(acl_id, state.allowed_cidr, low, high, egress=True)
            )

        state.key_pair = create_key_pair(self.ec2, cfg.name_prefix, cfg.key_type)
        state.instance = self.launcher.create(
            state.subnet_id, group_id, state.key_pair, cancel=cancel,
        )

    @staticmethod
    def _absorb_partial(state: BastionState, partial: object | None) -> None:
        # A launched-but-failed instance must still be terminated
        if isinstance(partial, Instance) and partial.instance_id:
            state.instance = partial

    def _rollback(self, state: BastionState) -> None:
        log.warning("Rolling back partially provisioned bastion")
        try:
            self.teardown(state)
        except TeardownError as e:
            log.error(f"Rollback incomplete, resources may be left behind: {e}")

    def teardown(self, state: BastionState) -> BastionState:
        """Delete what provision created, in reverse order.

        Pre-existing rules are left alone. Every step is attempted even if
        an earlier one failed.

        Raises:
            TeardownError: If any step failed. ``errors`` holds each failure
                and ``resource`` the state with what is still live.
        """
        errors: list[BastionError] = []

        instance = state.instance
        if instance is not None and instance.instance_id and instance.state is not InstanceState.TERMINATED:
            try:
                self.launcher.terminate(instance)
                self.launcher.wait_terminated(instance)
            except RecoverableError as e:
                log.error(f"Teardown: instance {instance.instance_id}: {e}")
                errors.append(e)

        key_pair = state.key_pair
        if key_pair is not None and key_pair.created:
            try:
                state.key_pair = delete_key_pair(self.ec2, key_pair)
            except RecoverableError as e:
                log.error(f"Teardown: key pair {key_pair.key_name}: {e}")
                errors.append(e)

        state.acl_rules = [self._delete_acl_rule(r, errors) for r in state.acl_rules[::-1]][::-1]
        state.security_group_rules = [
            self._delete_sg_rule(r, errors) for r in state.security_group_rules[::-1]
        ][::-1]

        group = state.security_group
        if group is not None and group.created:
            try:
                state.security_group = delete_security_group(self.ec2, group)
            except RecoverableError as e:
                log.error(f"Teardown: security group {group.group_id}: {e}")
                errors.append(e)

        if errors:
            raise TeardownError(errors, resource=state)

        log.info("Bastion torn down")
        return state

    def _delete_acl_rule(self, rule: NetworkACLRule, errors: list[BastionError]) -> NetworkACLRule:
        if not rule.created or rule.pre_existing:
            return rule
        try:
            return self.acl_reconciler.delete(rule)
        except RecoverableError as e:
            log.error(f"Teardown: ACL entry #{rule.rule_number} in {rule.acl_id}: {e}")
            errors.append(e)
            return rule

    def _delete_sg_rule(self, rule: SecurityGroupRule, errors: list[BastionError]) -> SecurityGroupRule:
        if not rule.created or rule.pre_existing:
            return rule
        try:
            return self.sg_reconciler.delete(rule)
        except RecoverableError as e:
            log.error(f"Teardown: {rule.direction.value} rule {rule.cidr} on {rule.group_id}: {e}")
            errors.append(e)
            return rule
