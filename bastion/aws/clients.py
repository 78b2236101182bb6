"""EC2 client factory."""

from __future__ import annotations

from typing import TYPE_CHECKING

import boto3
from botocore.config import Config

from .config import BastionConfig

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client


def ec2_client(config: BastionConfig, session: boto3.Session | None = None) -> EC2Client:
    """Create a synchronous EC2 client for the configured region.

    Uses botocore's standard retry mode for throttling and transient
    transport errors; anything left over surfaces as APIError in callers.
    """
    session = session or boto3.Session()
    return session.client(
        "ec2",
        region_name=config.region,
        config=Config(
            connect_timeout=config.request_timeout,
            read_timeout=config.request_timeout,
            retries={"mode": "standard", "max_attempts": 5},
        ),
    )
