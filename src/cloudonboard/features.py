"""
Static catalog of platform features.

This module is the single source of truth for which features the SDK knows
about, how they relate to the disable jobs run during removal, and the
ordering constraints between them. Everything here is a pure function over
static tables; nothing talks to a remote system.

Ordering Constraints:
    - CLOUD_DISCOVERY must be removed after every other feature. It
      provides the inventory visibility the platform needs to disable the
      protection features cleanly.
    - OUTPOST may live on a separate AWS account and is onboarded as its
      own sub-saga before the remaining features, because the main
      account's CloudFormation template references the outpost account.

Forward Compatibility:
    Feature names returned by the control plane that are not in
    ``supported_features()`` are dropped when converting responses, so a
    newer platform does not break an older SDK.

Usage:
    from cloudonboard.features import CLOUD_DISCOVERY, EXOCOMPUTE, order_for_removal

    order_for_removal([CLOUD_DISCOVERY, EXOCOMPUTE])
    # [EXOCOMPUTE, CLOUD_DISCOVERY]
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing_extensions import override


class PermissionGroup(StrEnum):
    """Permission groups a feature can be onboarded with."""

    INVALID = "GROUP_UNSPECIFIED"
    BASIC = "BASIC"
    RSC_MANAGED_CLUSTER = "RSC_MANAGED_CLUSTER"
    EXPORT_AND_RESTORE = "EXPORT_AND_RESTORE"
    FILE_LEVEL_RECOVERY = "FILE_LEVEL_RECOVERY"
    CLOUD_CLUSTER_ES = "CLOUD_CLUSTER_ES"
    SNAPSHOT_PRIVATE_ACCESS = "SNAPSHOT_PRIVATE_ACCESS"
    PRIVATE_ENDPOINT = "PRIVATE_ENDPOINT"


class ProtectionFeature(StrEnum):
    """Sub-feature argument of the native account disable job."""

    EC2 = "EC2"
    RDS = "RDS"
    S3 = "S3"
    DYNAMODB = "DYNAMODB"


@dataclass(frozen=True, eq=False)
class Feature:
    """
    A platform feature, optionally narrowed to a set of permission groups.

    Two features are equal when their names are equal; permission groups
    only take part in ``deep_equal``. This matches how the control plane
    keys features on an account.

    Attributes:
        name: Feature name as used by the GraphQL API
        permission_groups: Permission groups, in the order given
    """

    name: str
    permission_groups: tuple[str, ...] = field(default_factory=tuple)

    def equal(self, other: "Feature") -> bool:
        """Return True if both features have the same name."""
        return self.name == other.name

    def deep_equal(self, other: "Feature") -> bool:
        """Return True if name and permission group set both match."""
        return self.equal(other) and set(self.permission_groups) == set(other.permission_groups)

    def has_permission_group(self, group: str) -> bool:
        return group in self.permission_groups

    def with_permission_groups(self, *groups: str) -> "Feature":
        """Return a copy of the feature with the groups appended."""
        return Feature(self.name, self.permission_groups + tuple(str(g) for g in groups))

    @override
    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Feature):
            return NotImplemented
        return self.equal(other)

    @override
    def __hash__(self) -> int:
        return hash(self.name)

    @override
    def __str__(self) -> str:
        if not self.permission_groups:
            return self.name
        return f"{self.name}({','.join(sorted(self.permission_groups))})"


ALL = Feature("ALL")
ARCHIVAL = Feature("ARCHIVAL")
CLOUD_ACCOUNTS = Feature("CLOUDACCOUNTS")  # Deprecated, kept for old accounts.
CLOUD_DISCOVERY = Feature("CLOUD_DISCOVERY")
CLOUD_NATIVE_ARCHIVAL = Feature("CLOUD_NATIVE_ARCHIVAL")
CLOUD_NATIVE_DYNAMODB_PROTECTION = Feature("CLOUD_NATIVE_DYNAMODB_PROTECTION")
CLOUD_NATIVE_PROTECTION = Feature("CLOUD_NATIVE_PROTECTION")
CLOUD_NATIVE_S3_PROTECTION = Feature("CLOUD_NATIVE_S3_PROTECTION")
DSPM_DATA = Feature("DSPM_DATA")
DSPM_METADATA = Feature("DSPM_METADATA")
EXOCOMPUTE = Feature("EXOCOMPUTE")
LAMINAR_CROSS_ACCOUNT = Feature("LAMINAR_CROSS_ACCOUNT")
LAMINAR_INTERNAL = Feature("LAMINAR_INTERNAL")
OUTPOST = Feature("OUTPOST")
RDS_PROTECTION = Feature("RDS_PROTECTION")
SERVERS_AND_APPS = Feature("SERVERS_AND_APPS")

_SUPPORTED: frozenset[str] = frozenset(
    {
        ARCHIVAL.name,
        CLOUD_DISCOVERY.name,
        CLOUD_NATIVE_ARCHIVAL.name,
        CLOUD_NATIVE_DYNAMODB_PROTECTION.name,
        CLOUD_NATIVE_PROTECTION.name,
        CLOUD_NATIVE_S3_PROTECTION.name,
        DSPM_DATA.name,
        DSPM_METADATA.name,
        EXOCOMPUTE.name,
        LAMINAR_CROSS_ACCOUNT.name,
        LAMINAR_INTERNAL.name,
        OUTPOST.name,
        RDS_PROTECTION.name,
        SERVERS_AND_APPS.name,
    }
)

_PROTECTION_FEATURES: dict[str, ProtectionFeature] = {
    CLOUD_NATIVE_PROTECTION.name: ProtectionFeature.EC2,
    RDS_PROTECTION.name: ProtectionFeature.RDS,
    CLOUD_NATIVE_S3_PROTECTION.name: ProtectionFeature.S3,
    CLOUD_NATIVE_DYNAMODB_PROTECTION.name: ProtectionFeature.DYNAMODB,
}

# Features accepted on the command line and by parse_feature.
_PARSEABLE: frozenset[str] = _SUPPORTED | {ALL.name}


def supported_features() -> frozenset[str]:
    """Return the remote feature names this SDK recognizes."""
    return _SUPPORTED


def is_supported(name: str) -> bool:
    return name in _SUPPORTED


def contains(features: Iterable[Feature], feature: Feature) -> bool:
    """Return True if a feature with the same name is in features."""
    return any(f.equal(feature) for f in features)


def lookup(features: Iterable[Feature], feature: Feature) -> Feature | None:
    """Return the element of features with the same name, if any."""
    for f in features:
        if f.equal(feature):
            return f
    return None


def order_for_removal(features: Sequence[Feature]) -> list[Feature]:
    """
    Order features for the remove saga.

    The input order is kept, except that CLOUD_DISCOVERY is moved to the
    end. Duplicates (by name) are collapsed to their first occurrence.

    Args:
        features: Features requested for removal

    Returns:
        New list in removal order; the input is not modified
    """
    ordered: list[Feature] = []
    discovery: Feature | None = None
    for feature in features:
        if contains(ordered, feature) or (discovery is not None and feature.equal(discovery)):
            continue
        if feature.equal(CLOUD_DISCOVERY):
            discovery = feature
            continue
        ordered.append(feature)

    if discovery is not None:
        ordered.append(discovery)
    return ordered


def split_outpost(features: Sequence[Feature]) -> tuple[Feature | None, list[Feature]]:
    """
    Partition features into the OUTPOST feature and the rest.

    Returns:
        Tuple of (outpost feature or None, remaining features in order)
    """
    outpost = lookup(features, OUTPOST)
    rest = [f for f in features if not f.equal(OUTPOST)]
    return outpost, rest


def is_protection_feature(feature: Feature) -> bool:
    return feature.name in _PROTECTION_FEATURES


def protection_feature(feature: Feature) -> ProtectionFeature:
    """
    Map a protection feature to the disable-job sub-feature.

    Raises:
        ValueError: If the feature is not a protection feature
    """
    try:
        return _PROTECTION_FEATURES[feature.name]
    except KeyError:
        raise ValueError(f"feature {feature.name} is not a protection feature") from None


def requires_disable_job(feature: Feature) -> bool:
    """
    Return True if removing the feature starts a data-plane disable job.

    Protection features hold snapshots and inventory that must be disabled
    first. Exocompute tears down its clusters through its own job. All
    other features are control-class and go straight to deletion.
    """
    return is_protection_feature(feature) or feature.equal(EXOCOMPUTE)


def stack_features_after_removal(account_features: Iterable[Feature], removing: Feature) -> list[Feature]:
    """
    Return the features that remain on the account's stack after removal.

    The deprecated CLOUDACCOUNTS pseudo feature has no stack resources and
    is not counted.
    """
    return [f for f in account_features if not f.equal(removing) and not f.equal(CLOUD_ACCOUNTS)]


def parse_feature(text: str) -> Feature:
    """
    Parse a feature from user input.

    Accepts ``cloud-native-protection`` or ``CLOUD_NATIVE_PROTECTION``,
    optionally followed by ``:GROUP1,GROUP2``.

    Raises:
        ValueError: If the feature name is not recognized
    """
    name_part, _, groups_part = text.partition(":")
    name = name_part.strip().replace("-", "_").upper()
    if name not in _PARSEABLE:
        raise ValueError(f"invalid feature: {text}")

    groups = tuple(g.strip().replace("-", "_").upper() for g in groups_part.split(",") if g.strip())
    return Feature(name, groups)


def format_feature(feature: Feature) -> str:
    """Render a feature name in the lower-case dashed CLI form."""
    return feature.name.lower().replace("_", "-")
