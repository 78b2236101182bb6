"""EC2 key pair lifecycle.

The private key is handed back exactly once, from create_key_pair. EC2 does
not let it be fetched again and bastion never stores it: whoever receives
the KeyPair owns the material and its disposal.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from loguru import logger

from .describe import api_errors

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client

    from .config import KeyType

log = logger.bind(component="key-pair")

DEFAULT_PREFIX = "bastion-"


@dataclass(frozen=True, slots=True)
class KeyPair:
    key_name: str
    fingerprint: str = ""
    private_key_pem: str = field(default="", repr=False)
    created: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary. The private key is left out."""
        return {
            "key_name": self.key_name,
            "fingerprint": self.fingerprint,
            "created": self.created,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> KeyPair:
        return cls(
            key_name=str(data["key_name"]),
            fingerprint=str(data.get("fingerprint", "")),
            created=bool(data.get("created", False)),
        )


def generate_key_name(prefix: str = DEFAULT_PREFIX) -> str:
    """Generate a key pair name as prefix + random hex.

    Collisions are improbable, not impossible; no lookup is made.
    """
    return f"{prefix}{secrets.randbits(63):x}"


def create_key_pair(
    ec2: EC2Client,
    prefix: str = DEFAULT_PREFIX,
    key_type: KeyType = "rsa",
) -> KeyPair:
    """Create a key pair and return it with its PEM private key.

    Raises:
        APIError: If CreateKeyPair fails. ``error.resource`` holds a KeyPair
            with only the name set.
    """
    key_pair = KeyPair(key_name=generate_key_name(prefix))

    with api_errors("CreateKeyPair", key_pair):
        resp = ec2.create_key_pair(
            KeyName=key_pair.key_name,
            KeyType=key_type,
            KeyFormat="pem",
        )

    log.info(f"Created key pair {key_pair.key_name}")
    return replace(
        key_pair,
        fingerprint=resp["KeyFingerprint"],
        private_key_pem=resp["KeyMaterial"],
        created=True,
    )


def delete_key_pair(ec2: EC2Client, key_pair: KeyPair) -> KeyPair:
    """Delete a key pair by name.

    The returned KeyPair has ``created=False`` and no private key.
    """
    with api_errors("DeleteKeyPair", key_pair):
        ec2.delete_key_pair(KeyName=key_pair.key_name)

    log.info(f"Deleted key pair {key_pair.key_name}")
    return replace(key_pair, private_key_pem="", created=False)
