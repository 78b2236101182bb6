"""SSH reachability check.

Only "can a TCP + SSH session be established and authenticated" matters
here; no commands are run.
"""

from __future__ import annotations

import io
from typing import Protocol

import paramiko
from loguru import logger

from bastion.core.exceptions import KeyMaterialError

log = logger.bind(component="ssh")

_KEY_CLASSES: tuple[type[paramiko.PKey], ...] = (
    paramiko.RSAKey,
    paramiko.Ed25519Key,
    paramiko.ECDSAKey,
)


class Dialer(Protocol):
    """Attempts one SSH connection and reports whether it succeeded."""

    def dial(self, host: str, port: int, username: str, private_key_pem: str) -> bool: ...


def load_private_key(private_key_pem: str) -> paramiko.PKey:
    """Parse PEM/OpenSSH private key material.

    Parsed fresh on every call. Nothing here keeps a reference to the key
    once the caller drops it.

    Raises:
        KeyMaterialError: If no supported key type can parse it.
    """
    for key_class in _KEY_CLASSES:
        try:
            return key_class.from_private_key(io.StringIO(private_key_pem))
        except (paramiko.SSHException, ValueError):
            continue
    raise KeyMaterialError("Unable to parse private key (tried RSA, Ed25519, ECDSA)")


class ParamikoDialer:
    """Dialer backed by paramiko.

    Host keys are accepted on first sight: the host was launched moments
    ago by the caller, so there is no known_hosts entry to check against.
    """

    def __init__(self, connect_timeout: float = 10.0) -> None:
        self._timeout = connect_timeout

    def dial(self, host: str, port: int, username: str, private_key_pem: str) -> bool:
        pkey = load_private_key(private_key_pem)

        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=host,
                port=port,
                username=username,
                pkey=pkey,
                timeout=self._timeout,
                banner_timeout=self._timeout,
                auth_timeout=self._timeout,
                allow_agent=False,
                look_for_keys=False,
            )
        except (paramiko.SSHException, OSError, EOFError) as e:
            log.debug(f"SSH: {username}@{host}:{port} not reachable yet: {type(e).__name__}: {e}")
            return False
        finally:
            client.close()

        log.debug(f"SSH: connected to {username}@{host}:{port}")
        return True
