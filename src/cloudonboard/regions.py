"""
AWS region table and conversions.

The control plane exchanges regions as GraphQL enum values (``US_EAST_2``)
while users and CloudFormation speak region names (``us-east-2``). This
module holds the table of regions the platform accepts and converts
between the two forms.

Usage:
    from cloudonboard.regions import parse_regions, to_region_enum

    regions = parse_regions(["us-east-2", "eu-west-1"])
    enums = [to_region_enum(r) for r in regions]
    # ["US_EAST_2", "EU_WEST_1"]
"""

from collections.abc import Iterable

from cloudonboard.errors import InvalidRegionError

# Organized by partition.
AWS_REGIONS: tuple[str, ...] = (
    # ==========================================================================
    # Standard partition
    # ==========================================================================
    "af-south-1",
    "ap-east-1",
    "ap-northeast-1",
    "ap-northeast-2",
    "ap-northeast-3",
    "ap-southeast-1",
    "ap-southeast-2",
    "ap-southeast-3",
    "ap-southeast-4",
    "ap-southeast-5",
    "ap-south-1",
    "ap-south-2",
    "ca-central-1",
    "ca-west-1",
    "eu-central-1",
    "eu-central-2",
    "eu-north-1",
    "eu-south-1",
    "eu-south-2",
    "eu-west-1",
    "eu-west-2",
    "eu-west-3",
    "il-central-1",
    "me-central-1",
    "me-south-1",
    "sa-east-1",
    "us-east-1",
    "us-east-2",
    "us-west-1",
    "us-west-2",
    # ==========================================================================
    # China, GovCloud and isolated partitions
    # ==========================================================================
    "cn-north-1",
    "cn-northwest-1",
    "us-gov-east-1",
    "us-gov-west-1",
    "us-iso-east-1",
    "us-iso-west-1",
    "us-isob-east-1",
)

_REGION_SET = frozenset(AWS_REGIONS)


def is_valid_region(name: str) -> bool:
    """Return True if the region name is in the platform's region table."""
    return name in _REGION_SET


def parse_region(name: str) -> str:
    """
    Validate and normalize a region name.

    Accepts both the region name and the GraphQL enum form, in any case.

    Args:
        name: Region name (``us-east-2``) or enum value (``US_EAST_2``)

    Returns:
        Normalized region name

    Raises:
        InvalidRegionError: If the region is unknown
    """
    normalized = name.strip().lower().replace("_", "-")
    if normalized not in _REGION_SET:
        raise InvalidRegionError(f"invalid AWS region: {name!r}", region=name)
    return normalized


def parse_regions(names: Iterable[str]) -> list[str]:
    """
    Validate a list of region names, dropping duplicates but keeping order.

    Raises:
        InvalidRegionError: If any region is unknown
    """
    regions: list[str] = []
    for name in names:
        region = parse_region(name)
        if region not in regions:
            regions.append(region)
    return regions


def to_region_enum(name: str) -> str:
    """Convert ``us-east-2`` to the GraphQL enum ``US_EAST_2``."""
    return parse_region(name).upper().replace("-", "_")


def from_region_enum(value: str) -> str:
    """
    Convert a GraphQL region enum to a region name.

    Unknown values are passed through lower-cased rather than rejected, so
    regions added to the platform after this table was written still show
    up in account listings.
    """
    return value.strip().lower().replace("_", "-")
