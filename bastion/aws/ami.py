"""AMI resolution for the bastion host.

Searches DescribeImages with the configured owners and filters and picks
the most recently created image.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from loguru import logger

from bastion.core.exceptions import NotFoundError

from .describe import api_errors

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client

log = logger.bind(component="ami")

# Unparseable creation dates sort as the oldest possible image
ZERO_TIME = datetime.min.replace(tzinfo=UTC)


def parse_creation_date(value: str | None) -> datetime:
    """Parse an RFC 3339 CreationDate, falling back to ZERO_TIME.

    Timestamps without a UTC offset are not RFC 3339 and also fall back.
    """
    if not value:
        return ZERO_TIME
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return ZERO_TIME
    if parsed.tzinfo is None:
        return ZERO_TIME
    return parsed


def most_recent_image(images: Sequence[Mapping[str, Any]]) -> Mapping[str, Any]:
    """Return the image with the latest creation date.

    Sorting is stable and ascending, and the last element wins, so among
    images with equal timestamps the one listed last is chosen.

    Raises:
        NotFoundError: If images is empty.
    """
    if not images:
        raise NotFoundError("No matching image found. The image filters may need updating.")
    ordered = sorted(images, key=lambda image: parse_creation_date(image.get("CreationDate")))
    return ordered[-1]


def locate_image(
    ec2: EC2Client,
    owners: Sequence[str],
    filters: Mapping[str, Sequence[str]],
) -> Mapping[str, Any]:
    """Search for the image the bastion host will launch.

    Args:
        ec2: EC2 client.
        owners: Image owners (account IDs or aliases such as "amazon").
        filters: DescribeImages filters, name -> accepted values.

    Returns:
        The raw image record of the most recent match.

    Raises:
        NotFoundError: If no image matches.
        APIError: If DescribeImages fails.
    """
    with api_errors("DescribeImages"):
        resp = ec2.describe_images(
            Owners=list(owners),
            Filters=[{"Name": name, "Values": list(values)} for name, values in filters.items()],
        )

    image = most_recent_image(resp.get("Images", []))
    log.info(
        "Resolved AMI {ami} ({name}, created {created})",
        ami=image["ImageId"],
        name=image.get("Name", "?"),
        created=image.get("CreationDate", "?"),
    )
    return image


def image_username(image: Mapping[str, Any]) -> str:
    """Detect the default system username for an image.

    - Ubuntu images: 'ubuntu'
    - Debian images: 'admin'
    - Amazon Linux, RHEL, CentOS and anything else: 'ec2-user'
    """
    name = (image.get("Name") or "").lower()
    description = (image.get("Description") or "").lower()

    if "ubuntu" in name or "ubuntu" in description:
        return "ubuntu"
    if "debian" in name or "debian" in description:
        return "admin"
    return "ec2-user"
