"""bastion - disposable SSH jump hosts on AWS.

Example:

    from bastion import Bastion, BastionConfig

    bastion = Bastion(BastionConfig(region="eu-west-1"))
    state = bastion.provision("subnet-0abc", "203.0.113.7/32")
    print(state.instance.public_address, state.private_key_pem)
    ...
    bastion.teardown(state)
"""

from loguru import logger

# Library logging stays silent until setup_logging is called
logger.disable("bastion")

# AWS resources
from bastion.aws import (  # noqa: E402
    Bastion,
    BastionConfig,
    BastionState,
    Instance,
    InstanceLauncher,
    InstanceState,
    KeyPair,
    NetworkACLRuleReconciler,
    SecurityGroup,
    SecurityGroupRuleReconciler,
    create_key_pair,
    delete_key_pair,
    load_state,
    save_state,
)

# Configuration
from bastion.config import Settings, load_config, resolve_settings  # noqa: E402

# Errors
from bastion.core.exceptions import (  # noqa: E402
    APIError,
    BastionError,
    CancelledError,
    ExhaustedSlotsError,
    FatalError,
    KeyMaterialError,
    LaunchError,
    MultipleResultsError,
    NotFoundError,
    RecoverableError,
    TeardownError,
    TimeoutError,
)

# Logging
from bastion.observability.logging import LogConfig, setup_logging, teardown_logging  # noqa: E402

# Rules
from bastion.rules import (  # noqa: E402
    Direction,
    NetworkACLRule,
    SecurityGroupRule,
    first_vacant_slot,
    rule_exists,
)

__version__ = "0.1.0"

__all__ = [
    "APIError",
    "Bastion",
    "BastionConfig",
    "BastionError",
    "BastionState",
    "CancelledError",
    "Direction",
    "ExhaustedSlotsError",
    "FatalError",
    "Instance",
    "InstanceLauncher",
    "InstanceState",
    "KeyMaterialError",
    "KeyPair",
    "LaunchError",
    "LogConfig",
    "MultipleResultsError",
    "NetworkACLRule",
    "NetworkACLRuleReconciler",
    "NotFoundError",
    "RecoverableError",
    "SecurityGroup",
    "SecurityGroupRule",
    "SecurityGroupRuleReconciler",
    "Settings",
    "TeardownError",
    "TimeoutError",
    "create_key_pair",
    "delete_key_pair",
    "first_vacant_slot",
    "load_config",
    "load_state",
    "resolve_settings",
    "rule_exists",
    "save_state",
    "setup_logging",
    "teardown_logging",
]
