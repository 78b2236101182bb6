"""Traffic rule model, rule matching and slot allocation.

Pure logic shared by the security group and network ACL reconcilers:

- ``ObservedRule`` is what a describe call says already exists.
- ``find_rule`` / ``rule_exists`` decide whether a requested rule is
  already present (exact CIDR string, direction and port bounds).
- ``first_vacant_slot`` picks the lowest free ordering slot.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any, Self

from bastion.core.exceptions import ExhaustedSlotsError

MIN_PORT = 0
MAX_PORT = 65535


class Direction(StrEnum):
    INGRESS = "ingress"
    EGRESS = "egress"

    @classmethod
    def of(cls, egress: bool) -> Direction:
        return cls.EGRESS if egress else cls.INGRESS


def _check_ports(start_port: int, end_port: int) -> None:
    if not MIN_PORT <= start_port <= end_port <= MAX_PORT:
        raise ValueError(
            f"Invalid port range {start_port}-{end_port}: "
            f"expected {MIN_PORT} <= start <= end <= {MAX_PORT}"
        )


# =============================================================================
# Rules
# =============================================================================


@dataclass(frozen=True, slots=True)
class TrafficRule:
    """A single allow rule for TCP traffic on a port range.

    ``created`` is true once the rule is live, or once an equivalent rule
    was found. ``pre_existing`` marks the latter case: the rule belongs to
    someone else and is never deleted by bastion.
    """

    cidr: str
    direction: Direction
    start_port: int
    end_port: int
    created: bool = False
    pre_existing: bool = False

    def __post_init__(self) -> None:
        _check_ports(self.start_port, self.end_port)
        object.__setattr__(self, "direction", Direction(self.direction))

    @property
    def egress(self) -> bool:
        return self.direction is Direction.EGRESS

    def with_state(self, *, created: bool, pre_existing: bool | None = None) -> Self:
        if pre_existing is None:
            return replace(self, created=created)
        return replace(self, created=created, pre_existing=pre_existing)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cidr": self.cidr,
            "direction": self.direction.value,
            "start_port": self.start_port,
            "end_port": self.end_port,
            "created": self.created,
            "pre_existing": self.pre_existing,
        }


@dataclass(frozen=True, slots=True)
class SecurityGroupRule(TrafficRule):
    group_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {**TrafficRule.to_dict(self), "group_id": self.group_id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SecurityGroupRule:
        return cls(
            cidr=str(data["cidr"]),
            direction=Direction(data["direction"]),
            start_port=int(data["start_port"]),
            end_port=int(data["end_port"]),
            created=bool(data.get("created", False)),
            pre_existing=bool(data.get("pre_existing", False)),
            group_id=str(data["group_id"]),
        )


@dataclass(frozen=True, slots=True)
class NetworkACLRule(TrafficRule):
    """A network ACL entry.

    ``rule_number`` orders evaluation within the ACL. Valid numbers are
    1 to 32766; 32767 and up are reserved by AWS.
    """

    acl_id: str = ""
    rule_number: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            **TrafficRule.to_dict(self),
            "acl_id": self.acl_id,
            "rule_number": self.rule_number,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NetworkACLRule:
        return cls(
            cidr=str(data["cidr"]),
            direction=Direction(data["direction"]),
            start_port=int(data["start_port"]),
            end_port=int(data["end_port"]),
            created=bool(data.get("created", False)),
            pre_existing=bool(data.get("pre_existing", False)),
            acl_id=str(data["acl_id"]),
            rule_number=int(data.get("rule_number", 0)),
        )


# =============================================================================
# Rule Matching
# =============================================================================


@dataclass(frozen=True, slots=True)
class ObservedRule:
    """A rule as reported by the cloud API.

    ``cidr`` and the port bounds are None for rules that do not carry them
    (all-traffic rules, IPv6-only entries). Such rules never match a request.
    """

    direction: Direction
    cidr: str | None
    start_port: int | None
    end_port: int | None
    rule_number: int | None = None


def find_rule(
    existing: Iterable[ObservedRule],
    cidr: str,
    start_port: int,
    end_port: int,
    egress: bool,
) -> ObservedRule | None:
    """Return the first existing rule equivalent to the request, if any.

    Equivalence is exact: same direction, byte-identical CIDR string and
    identical port bounds. Overlapping ranges do not match and CIDR
    notation is not normalized ("10.0.0.0/24" != "10.0.0.0/024").
    """
    direction = Direction.of(egress)
    for rule in existing:
        if (
            rule.direction is direction
            and rule.cidr == cidr
            and rule.start_port == start_port
            and rule.end_port == end_port
        ):
            return rule
    return None


def rule_exists(
    existing: Iterable[ObservedRule],
    cidr: str,
    start_port: int,
    end_port: int,
    egress: bool,
) -> bool:
    return find_rule(existing, cidr, start_port, end_port, egress) is not None


# =============================================================================
# Slot Allocation
# =============================================================================


def first_vacant_slot(
    occupied: Iterable[int],
    *,
    floor: int = 0,
    ceiling: int | None = None,
) -> int:
    """Return the lowest slot >= floor not present in occupied.

    The occupied values are sorted and scanned upwards from ``floor``; the
    first value that differs from the expected position is the gap. With
    no gap the result is one past the last contiguous value.

    Raises:
        ExhaustedSlotsError: If the result would exceed ``ceiling``.
    """
    slot = floor
    for value in sorted({v for v in occupied if v >= floor}):
        if value != slot:
            break
        slot += 1

    if ceiling is not None and slot > ceiling:
        raise ExhaustedSlotsError(f"No vacant slot between {floor} and {ceiling}")
    return slot
