"""
Data model for cloud accounts, features, stacks and platform jobs.

All values here are read views of remote state. The SDK never mutates a
``CloudAccount`` locally; after every saga step the account is fetched
again from the control plane and a new instance replaces the old one.

Usage:
    from cloudonboard.models import CloudAccount, FeatureStatus

    account = CloudAccount.model_validate(payload)
    state = account.feature(CLOUD_NATIVE_PROTECTION)
    if state and state.status == FeatureStatus.CONNECTED:
        ...
"""

from enum import StrEnum
from typing_extensions import override
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from cloudonboard.features import Feature


class FeatureStatus(StrEnum):
    """
    Feature status as reported by the control plane.

    Values this SDK does not know map to ``UNKNOWN`` so that statuses added
    to the platform later do not break account reads.
    """

    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    DISABLED = "DISABLED"
    MISSING_PERMISSIONS = "MISSING_PERMISSIONS"
    DISCONNECTED = "DISCONNECTED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    @override
    def _missing_(cls, value: object) -> "FeatureStatus":
        return cls.UNKNOWN


class TaskChainState(StrEnum):
    """State of a platform task chain (async job)."""

    INVALID = ""
    READY = "READY"
    RUNNING = "RUNNING"
    CANCELING = "CANCELING"
    CANCELED = "CANCELED"
    FAILED = "FAILED"
    SUCCEEDED = "SUCCEEDED"
    UNDOING = "UNDOING"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_TASK_CHAIN_STATES


_TERMINAL_TASK_CHAIN_STATES = frozenset(
    {TaskChainState.SUCCEEDED, TaskChainState.FAILED, TaskChainState.CANCELED}
)


class FeatureState(BaseModel):
    """
    A feature as onboarded on one cloud account.

    Attributes:
        name: Feature name
        permission_groups: Permission groups the feature was onboarded with
        regions: Region names the feature is enabled for
        role_arn: IAM role the platform assumes for the feature
        stack_arn: CloudFormation stack holding the feature's resources
        status: Status reported by the control plane
    """

    name: str
    permission_groups: list[str] = Field(default_factory=list)
    regions: list[str] = Field(default_factory=list)
    role_arn: str = ""
    stack_arn: str = ""
    status: FeatureStatus

    @property
    def feature(self) -> Feature:
        return Feature(self.name, tuple(self.permission_groups))

    def has_region(self, region: str) -> bool:
        """Return True if the feature is enabled for the region."""
        return region in self.regions

    @override
    def __str__(self) -> str:
        return f"{self.feature}[{self.status}]"


class CloudAccount(BaseModel):
    """
    A cloud account registered with the platform.

    Attributes:
        id: Platform cloud account id
        native_id: AWS account id
        name: Account display name, shared by all features
        features: Features onboarded on the account
    """

    id: UUID
    native_id: str
    name: str
    features: list[FeatureState] = Field(default_factory=list)

    def feature(self, feature: Feature) -> FeatureState | None:
        """Return the state of the feature with the same name, if present."""
        for state in self.features:
            if state.name == feature.name:
                return state
        return None

    def feature_list(self) -> list[Feature]:
        return [state.feature for state in self.features]


class PermissionGroupVersion(BaseModel):
    """Template version of one permission group of a feature."""

    model_config = ConfigDict(populate_by_name=True)

    permission_group: str = Field(alias="permissionsGroup")
    version: int


class FeatureVersion(BaseModel):
    """
    Template version of a feature, echoed back when finalizing protection.
    """

    model_config = ConfigDict(populate_by_name=True)

    feature: str
    version: int
    permission_group_versions: list[PermissionGroupVersion] = Field(
        default_factory=list,
        alias="permissionsGroupVersions",
    )


class StackDescriptor(BaseModel):
    """
    CloudFormation stack the platform asks the customer to create.

    Returned by the validate-and-initiate step and consumed exactly once by
    the add saga. Not persisted.
    """

    model_config = ConfigDict(populate_by_name=True)

    stack_name: str = Field(alias="stackName")
    template_url: str = Field(alias="templateUrl")
    external_id: str = Field(default="", alias="externalId")
    cloud_formation_url: str = Field(default="", alias="cloudFormationUrl")
    feature_versions: list[FeatureVersion] = Field(default_factory=list, alias="featureVersionList")


class TaskChain(BaseModel):
    """Status snapshot of a platform task chain."""

    model_config = ConfigDict(populate_by_name=True)

    id: int = 0
    taskchain_uuid: UUID | None = Field(default=None, alias="taskchainUuid")
    state: TaskChainState = TaskChainState.INVALID
