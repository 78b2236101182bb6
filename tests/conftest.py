from __future__ import annotations

import io
from collections.abc import Iterator

import paramiko
import pytest

from bastion.aws.config import BastionConfig
from bastion.aws.ssh import load_private_key
from bastion.internal.locks import ResourceLocks
from tests.fakes import FakeDialer, FakeEC2, LocalSSHServer, acl_entry, default_acl_entries

SUBNET_ID = "subnet-123456"
VPC_ID = "vpc-123456"
ACL_ID = "nacl-123456"
GROUP_ID = "sg-123456"

IMAGES = [
    {
        "ImageId": "ami-8172b616",
        "Name": "al2023-ami-2023.0.20140622-kernel-6.1-x86_64",
        "CreationDate": "2014-06-22T09:19:44.000Z",
    },
    {
        "ImageId": "ami-7172b611",
        "Name": "al2023-ami-2023.0.20160622-kernel-6.1-x86_64",
        "CreationDate": "2016-06-22T09:19:44.000Z",
    },
    {
        "ImageId": "ami-0000dead",
        "Name": "al2023-ami-2023.0.broken-kernel-6.1-x86_64",
        "CreationDate": "not-a-date",
    },
]


def nacl_fixture_entries() -> list[dict]:
    return [
        acl_entry(0, "172.16.0.0/24", 22, 22, False),
        acl_entry(0, "172.16.0.0/24", 1024, 65535, True),
        acl_entry(100, "10.0.0.0/24", 22, 22, False),
        acl_entry(100, "10.0.0.0/24", 1024, 65535, True),
        *default_acl_entries(),
    ]


@pytest.fixture
def ec2() -> FakeEC2:
    fake = FakeEC2()
    fake.add_subnet(SUBNET_ID, VPC_ID)
    fake.add_security_group(
        GROUP_ID,
        ingress=[{
            "IpProtocol": "tcp",
            "FromPort": 22,
            "ToPort": 22,
            "IpRanges": [{"CidrIp": "10.0.0.0/24"}],
        }],
        egress=[{"IpProtocol": "-1", "IpRanges": [{"CidrIp": "0.0.0.0/0"}]}],
    )
    fake.add_network_acl(ACL_ID, nacl_fixture_entries(), subnet_ids=[SUBNET_ID])
    fake.images = [dict(image) for image in IMAGES]
    return fake


@pytest.fixture
def locks() -> ResourceLocks:
    return ResourceLocks()


@pytest.fixture
def dialer() -> FakeDialer:
    return FakeDialer()


@pytest.fixture
def config() -> BastionConfig:
    return BastionConfig(
        start_timeout=5.0,
        poll_interval=0.0,
        ssh_retry_interval=0.0,
    )


def generate_pem() -> str:
    buf = io.StringIO()
    paramiko.RSAKey.generate(2048).write_private_key(buf)
    return buf.getvalue()


@pytest.fixture(scope="session")
def rsa_pem() -> str:
    return generate_pem()


@pytest.fixture(scope="session")
def other_pem() -> str:
    return generate_pem()


@pytest.fixture(scope="session")
def host_key() -> paramiko.PKey:
    return paramiko.RSAKey.generate(2048)


@pytest.fixture
def ssh_server(rsa_pem, host_key) -> Iterator[LocalSSHServer]:
    with LocalSSHServer("ec2-user", load_private_key(rsa_pem), host_key) as server:
        yield server
