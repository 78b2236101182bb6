"""EC2 instance lifecycle for the bastion host.

Launching is a small state machine:

    REQUESTED -> LAUNCHED -> RUNNING -> SSH_REACHABLE -> READY

Teardown ends in TERMINATED once EC2 confirms the instance is gone.

Any failure moves the instance to FAILED and raises, with the partially
populated Instance attached to the error as ``error.resource``.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, cast

from loguru import logger

from bastion.core.exceptions import BastionError, LaunchError, MultipleResultsError

from .ami import image_username, locate_image
from .config import BastionConfig
from .describe import api_errors, find_instance
from .ssh import Dialer, ParamikoDialer
from .wait import poll_until

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client

    from .key_pair import KeyPair

log = logger.bind(component="instance")


class InstanceState(StrEnum):
    REQUESTED = "requested"
    LAUNCHED = "launched"
    RUNNING = "running"
    SSH_REACHABLE = "ssh-reachable"
    READY = "ready"
    FAILED = "failed"
    TERMINATED = "terminated"


@dataclass(slots=True)
class Instance:
    """An EC2 instance, filled in as each launch step succeeds.

    Unless ``created`` is True, no field should be relied upon.
    """

    instance_id: str = ""
    image_id: str = ""
    instance_type: str = ""
    subnet_id: str = ""
    key_pair_name: str = ""
    security_group_id: str = ""
    public_address: str = ""
    private_address: str = ""
    ssh_user: str = ""
    created: bool = False
    state: InstanceState = InstanceState.REQUESTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "image_id": self.image_id,
            "instance_type": self.instance_type,
            "subnet_id": self.subnet_id,
            "key_pair_name": self.key_pair_name,
            "security_group_id": self.security_group_id,
            "public_address": self.public_address,
            "private_address": self.private_address,
            "ssh_user": self.ssh_user,
            "created": self.created,
            "state": self.state.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Instance:
        return cls(
            instance_id=str(data.get("instance_id", "")),
            image_id=str(data.get("image_id", "")),
            instance_type=str(data.get("instance_type", "")),
            subnet_id=str(data.get("subnet_id", "")),
            key_pair_name=str(data.get("key_pair_name", "")),
            security_group_id=str(data.get("security_group_id", "")),
            public_address=str(data.get("public_address", "")),
            private_address=str(data.get("private_address", "")),
            ssh_user=str(data.get("ssh_user", "")),
            created=bool(data.get("created", False)),
            state=InstanceState(data.get("state", InstanceState.REQUESTED.value)),
        )


def _state_name(record: dict[str, Any] | None) -> str | None:
    if record is None:
        return None
    return record.get("State", {}).get("Name")


class InstanceLauncher:
    """Launches, checks readiness of, and terminates the bastion instance."""

    def __init__(
        self,
        ec2: EC2Client,
        config: BastionConfig | None = None,
        dialer: Dialer | None = None,
    ) -> None:
        self._ec2 = ec2
        self._config = config or BastionConfig()
        self._dialer = dialer or ParamikoDialer(self._config.ssh_connect_timeout)

    def create(
        self,
        subnet_id: str,
        security_group_id: str,
        key_pair: KeyPair,
        *,
        cancel: threading.Event | None = None,
    ) -> Instance:
        """Launch one instance and block until it is running and reachable.

        Args:
            subnet_id: Subnet for the instance's network interface.
            security_group_id: Security group for the network interface.
            key_pair: Key pair from create_key_pair, with its private key.
            cancel: Optional event that aborts the waits when set.

        Returns:
            The instance in state READY with ``created=True``.

        Raises:
            LaunchError: If EC2 launched nothing, or no public address was assigned.
            TimeoutError: If "running" or SSH was not reached in time.
            CancelledError: If cancel was set during a wait.
            NotFoundError, APIError, KeyMaterialError: From the underlying steps.
            MultipleResultsError: If EC2 reports more than one instance.
        """
        cfg = self._config
        instance = Instance(
            instance_type=cfg.instance_type,
            subnet_id=subnet_id,
            key_pair_name=key_pair.key_name,
            security_group_id=security_group_id,
            ssh_user=cfg.ssh_user or "",
        )

        try:
            image = locate_image(self._ec2, cfg.image_owners, cfg.image_filters)
            instance.image_id = image["ImageId"]
            instance.ssh_user = cfg.ssh_user or image_username(image)

            self._launch(instance)
            record = self._wait_running(instance, cancel)

            public_address = record.get("PublicIpAddress")
            if not public_address:
                raise LaunchError(f"Instance {instance.instance_id} does not have a public IP address")

            self._wait_reachable(instance, public_address, key_pair, cancel)
        except BastionError as e:
            instance.state = InstanceState.FAILED
            e.resource = instance
            log.error(f"Instance launch failed ({type(e).__name__}): {e}")
            raise

        instance.public_address = public_address
        instance.private_address = record.get("PrivateIpAddress", "")
        instance.created = True
        self._transition(instance, InstanceState.READY)
        return instance

    def _transition(self, instance: Instance, state: InstanceState) -> None:
        log.info(
            "Instance {id}: {old} -> {new}",
            id=instance.instance_id or "<pending>",
            old=instance.state.value,
            new=state.value,
        )
        instance.state = state

    def _launch(self, instance: Instance) -> None:
        with api_errors("RunInstances", instance):
            resp = self._ec2.run_instances(
                ImageId=instance.image_id,
                InstanceType=instance.instance_type,
                KeyName=instance.key_pair_name,
                MinCount=1,
                MaxCount=1,
                NetworkInterfaces=[
                    {
                        "AssociatePublicIpAddress": True,
                        "DeleteOnTermination": True,
                        "DeviceIndex": 0,
                        "Groups": [instance.security_group_id],
                        "SubnetId": instance.subnet_id,
                    }
                ],
            )

        launched = resp.get("Instances", [])
        if not launched:
            raise LaunchError("No instances were launched")
        if len(launched) > 1:
            raise MultipleResultsError("launched instance", instance.image_id, len(launched))

        instance.instance_id = launched[0]["InstanceId"]
        self._transition(instance, InstanceState.LAUNCHED)

    def _wait_running(self, instance: Instance, cancel: threading.Event | None) -> dict[str, Any]:
        cfg = self._config
        record = poll_until(
            lambda: find_instance(self._ec2, instance.instance_id, instance),
            lambda found: _state_name(found) == "running",
            timeout=cfg.start_timeout,
            interval=cfg.poll_interval,
            cancel=cancel,
            description=f"instance {instance.instance_id} to be running",
        )
        self._transition(instance, InstanceState.RUNNING)
        # The predicate only accepts a found, running record
        return cast(dict[str, Any], record)

    def _wait_reachable(
        self,
        instance: Instance,
        address: str,
        key_pair: KeyPair,
        cancel: threading.Event | None,
    ) -> None:
        cfg = self._config
        poll_until(
            lambda: self._dialer.dial(address, cfg.ssh_port, instance.ssh_user, key_pair.private_key_pem),
            bool,
            timeout=cfg.start_timeout,
            interval=cfg.ssh_retry_interval,
            cancel=cancel,
            description=f"SSH on {instance.ssh_user}@{address}:{cfg.ssh_port}",
        )
        self._transition(instance, InstanceState.SSH_REACHABLE)

    def terminate(self, instance: Instance) -> Instance:
        """Request termination and return the instance with ``created=False``.

        Does not wait for the instance to actually terminate.
        """
        with api_errors("TerminateInstances", instance):
            self._ec2.terminate_instances(InstanceIds=[instance.instance_id])

        log.info(f"Terminate requested for {instance.instance_id}")
        instance.created = False
        return instance

    def wait_terminated(self, instance: Instance, *, cancel: threading.Event | None = None) -> None:
        """Block until EC2 reports the instance as terminated (or gone)."""
        cfg = self._config
        poll_until(
            lambda: find_instance(self._ec2, instance.instance_id, instance),
            lambda found: found is None or _state_name(found) == "terminated",
            timeout=cfg.start_timeout,
            interval=cfg.poll_interval,
            cancel=cancel,
            description=f"instance {instance.instance_id} to terminate",
        )
        self._transition(instance, InstanceState.TERMINATED)
