"""AWS resources for the bastion host.

- Security group and its rules (SecurityGroupRuleReconciler)
- Network ACL entries (NetworkACLRuleReconciler)
- Key pair (create_key_pair / delete_key_pair)
- EC2 instance and its readiness checks (InstanceLauncher)
- The Bastion orchestrator tying them together
"""

from .ami import image_username, locate_image, most_recent_image
from .bastion import Bastion, BastionState, load_state, save_state
from .clients import ec2_client
from .config import BastionConfig
from .instance import Instance, InstanceLauncher, InstanceState
from .key_pair import KeyPair, create_key_pair, delete_key_pair
from .nacl_rule import NetworkACLRuleReconciler
from .security_group import SecurityGroup, create_security_group, delete_security_group, find_vpc_id
from .security_group_rule import SecurityGroupRuleReconciler
from .ssh import Dialer, ParamikoDialer

__all__ = [
    "Bastion",
    "BastionConfig",
    "BastionState",
    "Dialer",
    "Instance",
    "InstanceLauncher",
    "InstanceState",
    "KeyPair",
    "NetworkACLRuleReconciler",
    "ParamikoDialer",
    "SecurityGroup",
    "SecurityGroupRuleReconciler",
    "create_key_pair",
    "create_security_group",
    "delete_key_pair",
    "delete_security_group",
    "ec2_client",
    "find_vpc_id",
    "image_username",
    "load_state",
    "locate_image",
    "most_recent_image",
    "save_state",
]
