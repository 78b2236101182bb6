from __future__ import annotations

import pytest

from bastion.aws.security_group_rule import SecurityGroupRuleReconciler, observed_rules
from bastion.core.exceptions import APIError, MultipleResultsError, NotFoundError
from bastion.rules import Direction, SecurityGroupRule
from tests.fakes import client_error

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]

GROUP_ID = "sg-123456"


@pytest.fixture
def reconciler(ec2, locks) -> SecurityGroupRuleReconciler:
    return SecurityGroupRuleReconciler(ec2, locks=locks)


class TestObservedRules:
    def test_flattens_ranges_and_directions(self):
        group = {
            "IpPermissions": [{
                "IpProtocol": "tcp",
                "FromPort": 22,
                "ToPort": 22,
                "IpRanges": [{"CidrIp": "10.0.0.0/24"}, {"CidrIp": "10.1.0.0/24"}],
            }],
            "IpPermissionsEgress": [{"IpProtocol": "-1", "IpRanges": [{"CidrIp": "0.0.0.0/0"}]}],
        }
        rules = list(observed_rules(group))
        assert [(r.direction, r.cidr, r.start_port) for r in rules] == [
            (Direction.INGRESS, "10.0.0.0/24", 22),
            (Direction.INGRESS, "10.1.0.0/24", 22),
            (Direction.EGRESS, "0.0.0.0/0", None),
        ]


class TestFindExisting:
    def test_present(self, reconciler):
        assert reconciler.find_existing(GROUP_ID, "10.0.0.0/24", 22, 22, egress=False)

    def test_other_direction(self, reconciler):
        assert not reconciler.find_existing(GROUP_ID, "10.0.0.0/24", 22, 22, egress=True)

    def test_all_traffic_rule_does_not_count(self, reconciler):
        assert not reconciler.find_existing(GROUP_ID, "0.0.0.0/0", 0, 65535, egress=True)

    def test_unknown_group(self, reconciler):
        with pytest.raises(NotFoundError):
            reconciler.find_existing("sg-nope", "10.0.0.0/24", 22, 22, egress=False)


class TestCreate:
    def test_existing_rule_is_not_touched(self, reconciler, ec2):
        rule = reconciler.create(GROUP_ID, "10.0.0.0/24", 22, 22, egress=False)

        assert rule.created is True
        assert rule.pre_existing is True
        assert ec2.count("authorize_security_group_ingress") == 0
        assert ec2.count("describe_security_groups") == 1

    def test_authorizes_ingress(self, reconciler, ec2):
        rule = reconciler.create(GROUP_ID, "192.168.0.0/24", 22, 22, egress=False)

        assert rule == SecurityGroupRule(
            "192.168.0.0/24", Direction.INGRESS, 22, 22, created=True, group_id=GROUP_ID,
        )
        assert ec2.last_call("authorize_security_group_ingress") == {
            "GroupId": GROUP_ID,
            "IpPermissions": [{
                "IpProtocol": "tcp",
                "FromPort": 22,
                "ToPort": 22,
                "IpRanges": [{"CidrIp": "192.168.0.0/24"}],
            }],
        }

    def test_authorizes_egress(self, reconciler, ec2):
        rule = reconciler.create(GROUP_ID, "192.168.0.0/24", 1024, 65535, egress=True)
        assert rule.egress and rule.created and not rule.pre_existing
        assert ec2.count("authorize_security_group_egress") == 1
        assert ec2.count("authorize_security_group_ingress") == 0

    def test_idempotent(self, reconciler, ec2):
        first = reconciler.create(GROUP_ID, "192.168.0.0/24", 22, 22, egress=False)
        second = reconciler.create(GROUP_ID, "192.168.0.0/24", 22, 22, egress=False)

        assert not first.pre_existing
        assert second.pre_existing
        assert ec2.count("authorize_security_group_ingress") == 1

    def test_unknown_group_carries_partial_rule(self, reconciler):
        with pytest.raises(NotFoundError) as exc_info:
            reconciler.create("sg-nope", "192.168.0.0/24", 22, 22, egress=False)
        partial = exc_info.value.resource
        assert isinstance(partial, SecurityGroupRule)
        assert partial.created is False

    def test_duplicate_group_is_fatal(self, reconciler, ec2):
        ec2.duplicate.add("describe_security_groups")
        with pytest.raises(MultipleResultsError):
            reconciler.create(GROUP_ID, "192.168.0.0/24", 22, 22, egress=False)
        assert ec2.count("authorize_security_group_ingress") == 0

    def test_authorize_failure(self, reconciler, ec2):
        original = client_error("RulesPerSecurityGroupLimitExceeded", "AuthorizeSecurityGroupIngress")
        ec2.fail_on["authorize_security_group_ingress"] = original

        with pytest.raises(APIError) as exc_info:
            reconciler.create(GROUP_ID, "192.168.0.0/24", 22, 22, egress=False)

        err = exc_info.value
        assert err.__cause__ is original
        assert err.operation == "AuthorizeSecurityGroupIngress"
        assert err.resource.created is False

    def test_invalid_ports(self, reconciler, ec2):
        with pytest.raises(ValueError):
            reconciler.create(GROUP_ID, "192.168.0.0/24", 30, 20, egress=False)
        assert ec2.calls == []


class TestDelete:
    def test_pre_existing_is_left_alone(self, reconciler, ec2):
        rule = reconciler.create(GROUP_ID, "10.0.0.0/24", 22, 22, egress=False)
        ec2.calls.clear()

        assert reconciler.delete(rule) is rule
        assert ec2.calls == []

    def test_revokes_created_rule(self, reconciler, ec2):
        rule = reconciler.create(GROUP_ID, "192.168.0.0/24", 22, 22, egress=False)
        deleted = reconciler.delete(rule)

        assert deleted.created is False
        assert ec2.count("revoke_security_group_ingress") == 1
        assert not reconciler.find_existing(GROUP_ID, "192.168.0.0/24", 22, 22, egress=False)

    def test_revokes_egress(self, reconciler, ec2):
        rule = reconciler.create(GROUP_ID, "192.168.0.0/24", 1024, 65535, egress=True)
        reconciler.delete(rule)
        assert ec2.count("revoke_security_group_egress") == 1

    def test_revoke_failure(self, reconciler, ec2):
        rule = SecurityGroupRule("192.168.0.0/24", Direction.INGRESS, 22, 22, created=True, group_id=GROUP_ID)
        with pytest.raises(APIError) as exc_info:
            reconciler.delete(rule)
        assert exc_info.value.code == "InvalidPermission.NotFound"
        assert exc_info.value.resource is rule
