from __future__ import annotations

import pytest

from bastion.aws.nacl_rule import MAX_RULE_NUMBER, NOT_FOUND, NetworkACLRuleReconciler, observed_entries
from bastion.core.exceptions import APIError, ExhaustedSlotsError, MultipleResultsError, NotFoundError
from bastion.rules import Direction, NetworkACLRule
from tests.fakes import acl_entry, client_error

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]

ACL_ID = "nacl-123456"


@pytest.fixture
def reconciler(ec2, locks) -> NetworkACLRuleReconciler:
    return NetworkACLRuleReconciler(ec2, locks=locks)


class TestObservedEntries:
    def test_entries_without_port_range(self, ec2):
        entries = list(observed_entries(ec2.network_acls[ACL_ID]))
        deny_all = [e for e in entries if e.rule_number == 32767]
        assert len(deny_all) == 2
        assert all(e.start_port is None for e in deny_all)


class TestFindAclForSubnet:
    def test_associated(self, reconciler):
        assert reconciler.find_acl_for_subnet("subnet-123456") == ACL_ID

    def test_unassociated(self, reconciler):
        with pytest.raises(NotFoundError):
            reconciler.find_acl_for_subnet("subnet-nope")


class TestFindVacantSlot:
    def test_fixture(self, reconciler):
        # Occupied {0, 100, 32767}; numbering starts at 1
        assert reconciler.find_vacant_slot(ACL_ID) == 1

    def test_directions_share_numbers(self, reconciler, ec2):
        ec2.add_network_acl("nacl-dir", [acl_entry(1, "10.0.0.0/24", 22, 22, False)])
        ec2.network_acls["nacl-dir"]["Entries"].append(acl_entry(2, "10.0.0.0/24", 22, 22, True))
        assert reconciler.find_vacant_slot("nacl-dir") == 3

    def test_exhausted(self, reconciler, ec2):
        ec2.add_network_acl(
            "nacl-full",
            [acl_entry(n, "10.0.0.0/24", 22, 22, False) for n in range(1, MAX_RULE_NUMBER + 1)],
        )
        with pytest.raises(ExhaustedSlotsError):
            reconciler.find_vacant_slot("nacl-full")

    def test_unknown_acl(self, reconciler):
        with pytest.raises(NotFoundError):
            reconciler.find_vacant_slot("nacl-nope")


class TestFindExistingSlot:
    def test_fixture_match(self, reconciler):
        assert reconciler.find_existing_slot(ACL_ID, "10.0.0.0/24", 22, 22, egress=False) == 100
        assert reconciler.find_existing_slot(ACL_ID, "10.0.0.0/24", 1024, 65535, egress=True) == 100

    def test_zero_is_a_real_rule_number(self, reconciler):
        assert reconciler.find_existing_slot(ACL_ID, "172.16.0.0/24", 22, 22, egress=False) == 0

    def test_no_match(self, reconciler):
        assert reconciler.find_existing_slot(ACL_ID, "10.0.0.0/24", 22, 22, egress=True) == NOT_FOUND

    def test_fetch_error_raises(self, reconciler):
        with pytest.raises(NotFoundError):
            reconciler.find_existing_slot("nacl-nope", "10.0.0.0/24", 22, 22, egress=False)


class TestCreate:
    def test_existing_entry(self, reconciler, ec2):
        rule = reconciler.create(ACL_ID, "10.0.0.0/24", 22, 22, egress=False)

        assert rule.rule_number == 100
        assert rule.created and rule.pre_existing
        assert ec2.count("create_network_acl_entry") == 0
        assert ec2.count("describe_network_acls") == 1

    def test_allocates_lowest_free_number(self, reconciler, ec2):
        rule = reconciler.create(ACL_ID, "192.168.0.0/24", 22, 22, egress=False)

        assert rule == NetworkACLRule(
            "192.168.0.0/24", Direction.INGRESS, 22, 22,
            created=True, acl_id=ACL_ID, rule_number=1,
        )
        assert ec2.last_call("create_network_acl_entry") == {
            "NetworkAclId": ACL_ID,
            "RuleNumber": 1,
            "Protocol": "6",
            "RuleAction": "allow",
            "Egress": False,
            "CidrBlock": "192.168.0.0/24",
            "PortRange": {"From": 22, "To": 22},
        }
        assert ec2.count("describe_network_acls") == 1

    def test_consecutive_creates_take_consecutive_numbers(self, reconciler):
        ingress = reconciler.create(ACL_ID, "192.168.0.0/24", 22, 22, egress=False)
        egress = reconciler.create(ACL_ID, "192.168.0.0/24", 1024, 65535, egress=True)
        assert (ingress.rule_number, egress.rule_number) == (1, 2)

    def test_idempotent(self, reconciler, ec2):
        first = reconciler.create(ACL_ID, "192.168.0.0/24", 22, 22, egress=False)
        second = reconciler.create(ACL_ID, "192.168.0.0/24", 22, 22, egress=False)
        assert second.pre_existing
        assert second.rule_number == first.rule_number
        assert ec2.count("create_network_acl_entry") == 1

    def test_exhausted_carries_partial_rule(self, reconciler, ec2):
        ec2.add_network_acl(
            "nacl-full",
            [acl_entry(n, "10.0.0.0/24", 22, 22, False) for n in range(1, MAX_RULE_NUMBER + 1)],
        )
        with pytest.raises(ExhaustedSlotsError) as exc_info:
            reconciler.create("nacl-full", "192.168.0.0/24", 22, 22, egress=True)
        assert isinstance(exc_info.value.resource, NetworkACLRule)
        assert ec2.count("create_network_acl_entry") == 0

    def test_duplicate_acl_is_fatal(self, reconciler, ec2):
        ec2.duplicate.add("describe_network_acls")
        with pytest.raises(MultipleResultsError):
            reconciler.create(ACL_ID, "192.168.0.0/24", 22, 22, egress=False)

    def test_number_taken_in_other_direction_is_skipped(self, reconciler, ec2):
        ec2.network_acls[ACL_ID]["Entries"].append(acl_entry(1, "1.2.3.4/32", 80, 80, True))
        # Number 1 is taken for egress only, so the allocator skips it
        rule = reconciler.create(ACL_ID, "192.168.0.0/24", 22, 22, egress=False)
        assert rule.rule_number == 2

    def test_api_failure(self, reconciler, ec2):
        ec2.fail_on["create_network_acl_entry"] = client_error("NetworkAclEntryLimitExceeded", "CreateNetworkAclEntry")
        with pytest.raises(APIError) as exc_info:
            reconciler.create(ACL_ID, "192.168.0.0/24", 22, 22, egress=False)
        assert exc_info.value.resource.created is False


class TestDelete:
    def test_pre_existing_is_left_alone(self, reconciler, ec2):
        rule = reconciler.create(ACL_ID, "10.0.0.0/24", 22, 22, egress=False)
        ec2.calls.clear()
        assert reconciler.delete(rule) is rule
        assert ec2.calls == []

    def test_deletes_by_number_and_direction(self, reconciler, ec2):
        rule = reconciler.create(ACL_ID, "192.168.0.0/24", 1024, 65535, egress=True)
        deleted = reconciler.delete(rule)

        assert deleted.created is False
        assert ec2.last_call("delete_network_acl_entry") == {
            "NetworkAclId": ACL_ID,
            "RuleNumber": 1,
            "Egress": True,
        }
        assert reconciler.find_existing_slot(ACL_ID, "192.168.0.0/24", 1024, 65535, egress=True) == NOT_FOUND
