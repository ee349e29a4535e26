"""
Typed control plane operations for AWS cloud accounts.

Each method sends one GraphQL document through ``GraphQLClient`` and
converts the response into the data model. Two conventions of the remote
API are isolated here so nothing above this module has to know about them:

    - Mutations report their outcome as prose. A message starting with
      "successfully" (any case) means success. ``parse_operation_message``
      turns the message into an ``OperationResult``.
    - Regions travel as GraphQL enums (``US_EAST_2``) and feature names may
      include values this SDK does not know. Responses are converted to
      region names, unknown features are dropped and unknown statuses
      become ``FeatureStatus.UNKNOWN``.

Usage:
    from cloudonboard.control_plane import ControlPlane

    control_plane = ControlPlane(GraphQLClient.from_settings(settings))
    account = control_plane.cloud_account_by_native_id("123456789012")
"""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, cast
from uuid import UUID

from cloudonboard.errors import NotFoundError, TransportError, ValidationRejectedError
from cloudonboard.features import ALL, Feature, ProtectionFeature, is_supported
from cloudonboard.graphql_client import GraphQLClient
from cloudonboard.logging_config import get_logger, log_with_context
from cloudonboard.models import CloudAccount, FeatureState, FeatureStatus, StackDescriptor, TaskChain
from cloudonboard.regions import from_region_enum, to_region_enum

logger = get_logger(__name__)

# =============================================================================
# GraphQL documents
# =============================================================================

_ACCOUNT_FIELDS = """
        awsCloudAccount {
            id
            nativeId
            accountName
        }
        featureDetails {
            feature
            permissionsGroups
            awsRegions
            roleArn
            stackArn
            status
        }"""

CLOUD_ACCOUNT_QUERY = f"""query CloudOnboardAwsCloudAccount($cloudAccountId: UUID!, $features: [CloudAccountFeatureEnum!]!) {{
    result: awsCloudAccountWithFeatures(cloudAccountId: $cloudAccountId, awsCloudAccountArg: {{features: $features}}) {{{_ACCOUNT_FIELDS}
    }}
}}"""

CLOUD_ACCOUNTS_QUERY = f"""query CloudOnboardAllAwsCloudAccounts($feature: CloudAccountFeatureEnum!, $columnSearchFilter: String!) {{
    result: allAwsCloudAccountsWithFeatures(awsCloudAccountsArg: {{columnSearchFilter: $columnSearchFilter, statusFilters: [], feature: $feature}}) {{{_ACCOUNT_FIELDS}
    }}
}}"""

VALIDATE_AND_CREATE_MUTATION = """mutation CloudOnboardValidateAndCreateAwsCloudAccount($nativeId: String!, $accountName: String!, $features: [CloudAccountFeatureEnum!], $featuresWithPG: [FeatureWithPermissionsGroups!]) {
    result: validateAndCreateAwsCloudAccount(input: {
        action: CREATE,
        awsChildAccounts: [{accountName: $accountName, nativeId: $nativeId}],
        features: $features,
        featuresWithPG: $featuresWithPG
    }) {
        initiateResponse {
            cloudFormationUrl
            externalId
            featureVersionList {
                feature
                version
                permissionsGroupVersions {
                    permissionsGroup
                    version
                }
            }
            stackName
            templateUrl
        }
        validateResponse {
            invalidAwsAccounts {
                accountName
                nativeId
                message
            }
            invalidAwsAdminAccount {
                accountName
                nativeId
                message
            }
        }
    }
}"""

FINALIZE_PROTECTION_MUTATION = """mutation CloudOnboardFinalizeAwsCloudAccountProtection($nativeId: String!, $accountName: String!, $awsRegions: [AwsCloudAccountRegionEnum!], $externalId: String!, $featureVersion: [AwsCloudAccountFeatureVersionInput!]!, $features: [CloudAccountFeatureEnum!], $featuresWithPG: [FeatureWithPermissionsGroups!], $stackName: String!) {
    result: finalizeAwsCloudAccountProtection(input: {
        action: CREATE,
        awsChildAccounts: [{accountName: $accountName, nativeId: $nativeId}],
        awsRegions: $awsRegions,
        externalId: $externalId,
        featureVersion: $featureVersion,
        features: $features,
        featuresWithPG: $featuresWithPG,
        stackName: $stackName
    }) {
        awsChildAccounts {
            accountName
            nativeId
            message
        }
        message
    }
}"""

PREPARE_DELETION_MUTATION = """mutation CloudOnboardPrepareAwsCloudAccountDeletion($cloudAccountId: UUID!, $feature: CloudAccountFeatureEnum!) {
    result: prepareAwsCloudAccountDeletion(input: {cloudAccountId: $cloudAccountId, feature: $feature}) {
        cloudFormationUrl
    }
}"""

FINALIZE_DELETION_MUTATION = """mutation CloudOnboardFinalizeAwsCloudAccountDeletion($cloudAccountId: UUID!, $feature: CloudAccountFeatureEnum!) {
    result: finalizeAwsCloudAccountDeletion(input: {cloudAccountId: $cloudAccountId, feature: $feature}) {
        message
    }
}"""

UPDATE_FEATURE_MUTATION = """mutation CloudOnboardUpdateAwsCloudAccountFeature($action: CloudAccountActionEnum!, $cloudAccountId: UUID!, $awsRegions: [AwsCloudAccountRegionEnum!]!, $feature: CloudAccountFeatureEnum!) {
    result: updateAwsCloudAccountFeature(input: {action: $action, cloudAccountId: $cloudAccountId, awsRegions: $awsRegions, feature: $feature}) {
        message
    }
}"""

PREPARE_FEATURE_UPDATE_MUTATION = """mutation CloudOnboardPrepareFeatureUpdateForAwsCloudAccount($cloudAccountId: UUID!, $features: [CloudAccountFeatureEnum!]!) {
    result: prepareFeatureUpdateForAwsCloudAccount(input: {cloudAccountId: $cloudAccountId, features: $features}) {
        cloudFormationUrl
        templateUrl
    }
}"""

START_NATIVE_DISABLE_JOB_MUTATION = """mutation CloudOnboardStartAwsNativeAccountDisableJob($awsAccountRubrikId: UUID!, $awsNativeProtectionFeature: AwsNativeProtectionFeatureEnum!, $shouldDeleteNativeSnapshots: Boolean!) {
    result: startAwsNativeAccountDisableJob(input: {
        awsAccountRubrikId: $awsAccountRubrikId,
        shouldDeleteNativeSnapshots: $shouldDeleteNativeSnapshots,
        awsNativeProtectionFeature: $awsNativeProtectionFeature
    }) {
        error
        jobId
    }
}"""

START_EXOCOMPUTE_DISABLE_JOB_MUTATION = """mutation CloudOnboardStartAwsExocomputeDisableJob($cloudAccountId: UUID!) {
    result: startAwsExocomputeDisableJob(cloudAccountId: $cloudAccountId) {
        error
        jobId
    }
}"""

TASK_CHAIN_STATUS_QUERY = """query CloudOnboardTaskChainStatus($taskchainId: String!) {
    result: getKorgTaskchainStatus(taskchainId: $taskchainId) {
        taskchain {
            id
            state
            taskchainUuid
        }
    }
}"""


# =============================================================================
# Operation results
# =============================================================================


@dataclass(frozen=True)
class OperationResult:
    """
    Outcome of a control plane mutation.

    Attributes:
        ok: Whether the mutation succeeded
        detail: Message returned by the control plane
    """

    ok: bool
    detail: str


def parse_operation_message(message: str | None) -> OperationResult:
    """
    Convert a mutation's prose message into an ``OperationResult``.

    Example:
        >>> parse_operation_message("Successfully finalized deletion")
        OperationResult(ok=True, detail='Successfully finalized deletion')
    """
    detail = message or ""
    return OperationResult(ok=detail.strip().lower().startswith("successfully"), detail=detail)


# =============================================================================
# Conversions
# =============================================================================


def _feature_variables(features: Sequence[Feature]) -> dict[str, Any]:
    """
    Encode features for mutations accepting both input forms.

    The plain list and the list with permission groups are mutually
    exclusive. The plain form is used unless some feature carries groups.
    """
    if any(f.permission_groups for f in features):
        return {
            "features": None,
            "featuresWithPG": [
                {"featureType": f.name, "permissionsGroups": list(f.permission_groups)} for f in features
            ],
        }
    return {"features": [f.name for f in features], "featuresWithPG": None}


def _to_cloud_account(item: dict[str, Any]) -> CloudAccount:
    account = cast(dict[str, Any], item.get("awsCloudAccount") or {})
    states: list[FeatureState] = []
    for detail in cast(list[dict[str, Any]], item.get("featureDetails") or []):
        name = str(detail.get("feature", ""))
        if not is_supported(name):
            log_with_context(
                logger,
                "debug",
                "Dropping unsupported feature from response",
                feature=name,
                native_id=account.get("nativeId"),
            )
            continue
        status = FeatureStatus(str(detail.get("status", "")))
        if status is FeatureStatus.UNKNOWN:
            log_with_context(
                logger,
                "debug",
                "Unrecognized feature status in response",
                feature=name,
                status=detail.get("status"),
                native_id=account.get("nativeId"),
            )
        states.append(
            FeatureState(
                name=name,
                permission_groups=[str(g) for g in detail.get("permissionsGroups") or []],
                regions=[from_region_enum(str(r)) for r in detail.get("awsRegions") or []],
                role_arn=str(detail.get("roleArn") or ""),
                stack_arn=str(detail.get("stackArn") or ""),
                status=status,
            )
        )

    return CloudAccount(
        id=account["id"],
        native_id=str(account["nativeId"]),
        name=str(account.get("accountName", "")),
        features=states,
    )


class ControlPlane:
    """
    AWS cloud account operations on the platform control plane.

    Attributes:
        client: GraphQL transport
    """

    def __init__(self, client: GraphQLClient) -> None:
        self.client: GraphQLClient = client

    def _result(self, query: str, variables: dict[str, Any]) -> Any:
        data = self.client.request(query, variables)
        return data.get("result")

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def cloud_account(self, cloud_account_id: UUID, feature: Feature = ALL) -> CloudAccount:
        """
        Return the cloud account with the platform id.

        Raises:
            NotFoundError: If the control plane has no such account
        """
        result = self._result(
            CLOUD_ACCOUNT_QUERY,
            {"cloudAccountId": str(cloud_account_id), "features": [feature.name]},
        )
        if not result or not result.get("awsCloudAccount"):
            raise NotFoundError(
                f"cloud account {cloud_account_id} not found",
                entity="account",
                key=str(cloud_account_id),
            )
        return _to_cloud_account(cast(dict[str, Any], result))

    def cloud_accounts(self, feature: Feature = ALL, search: str = "") -> list[CloudAccount]:
        """
        Return the cloud accounts matching the search filter.

        The filter is matched by the control plane against the AWS account
        id, the account name and role ARNs.
        """
        result = self._result(
            CLOUD_ACCOUNTS_QUERY,
            {"feature": feature.name, "columnSearchFilter": search},
        )
        return [_to_cloud_account(item) for item in cast(list[dict[str, Any]], result or [])]

    def cloud_account_by_native_id(self, native_id: str, feature: Feature = ALL) -> CloudAccount:
        """
        Return the cloud account with the AWS account id.

        Raises:
            NotFoundError: If no account has the native id
        """
        for account in self.cloud_accounts(feature, native_id):
            if account.native_id == native_id:
                return account
        raise NotFoundError(
            f"cloud account with native id {native_id} not found",
            entity="account",
            key=native_id,
        )

    def job_status(self, job_id: str) -> TaskChain:
        """Return the current state of a task chain."""
        result = cast(dict[str, Any], self._result(TASK_CHAIN_STATUS_QUERY, {"taskchainId": job_id}) or {})
        return TaskChain.model_validate(result.get("taskchain") or {})

    # -------------------------------------------------------------------------
    # Onboarding
    # -------------------------------------------------------------------------

    def validate_and_initiate(self, native_id: str, name: str, features: Sequence[Feature]) -> StackDescriptor:
        """
        Validate the account and features and obtain the stack to create.

        Args:
            native_id: AWS account id
            name: Account display name
            features: Features to onboard

        Returns:
            Descriptor of the CloudFormation stack to create

        Raises:
            ValidationRejectedError: If the control plane refuses the
                account or the admin account, with the remote message
        """
        variables: dict[str, Any] = {"nativeId": native_id, "accountName": name}
        variables.update(_feature_variables(features))
        result = cast(dict[str, Any], self._result(VALIDATE_AND_CREATE_MUTATION, variables) or {})

        validate = cast(dict[str, Any], result.get("validateResponse") or {})
        admin = cast(dict[str, Any], validate.get("invalidAwsAdminAccount") or {})
        if admin.get("message"):
            raise ValidationRejectedError(
                f"invalid admin account: {admin['message']}",
                native_id=str(admin.get("nativeId") or native_id),
                remote_message=str(admin["message"]),
            )
        invalid = cast(list[dict[str, Any]], validate.get("invalidAwsAccounts") or [])
        if invalid:
            raise ValidationRejectedError(
                f"invalid account: {invalid[0].get('message')}",
                native_id=str(invalid[0].get("nativeId") or native_id),
                remote_message=str(invalid[0].get("message")),
            )

        initiate = result.get("initiateResponse")
        if not initiate:
            raise TransportError(
                "validateAndCreateAwsCloudAccount returned no initiate response",
                retryable=False,
            )
        return StackDescriptor.model_validate(initiate)

    def finalize_protection(
        self,
        native_id: str,
        name: str,
        features: Sequence[Feature],
        regions: Sequence[str],
        descriptor: StackDescriptor,
    ) -> OperationResult:
        """
        Finalize onboarding of the features on the account.

        The stack described by ``descriptor`` must be created or updated
        after this call.
        """
        variables: dict[str, Any] = {
            "nativeId": native_id,
            "accountName": name,
            "awsRegions": [to_region_enum(r) for r in regions],
            "externalId": descriptor.external_id,
            "featureVersion": [
                v.model_dump(by_alias=True) for v in descriptor.feature_versions
            ],
            "stackName": descriptor.stack_name,
        }
        variables.update(_feature_variables(features))
        result = cast(dict[str, Any], self._result(FINALIZE_PROTECTION_MUTATION, variables) or {})

        outcome = parse_operation_message(result.get("message"))
        if outcome.ok and len(result.get("awsChildAccounts") or []) != 1:
            return OperationResult(ok=False, detail="expected a single aws child account")
        return outcome

    def prepare_feature_update(self, cloud_account_id: UUID, features: Sequence[Feature]) -> tuple[str, str]:
        """
        Obtain the stack update needed to change the features' permissions.

        Returns:
            Tuple of (CloudFormation console URL, template URL)
        """
        result = cast(
            dict[str, Any],
            self._result(
                PREPARE_FEATURE_UPDATE_MUTATION,
                {"cloudAccountId": str(cloud_account_id), "features": [f.name for f in features]},
            )
            or {},
        )
        return str(result.get("cloudFormationUrl") or ""), str(result.get("templateUrl") or "")

    def update_feature_regions(self, cloud_account_id: UUID, feature: Feature, regions: Sequence[str]) -> OperationResult:
        result = cast(
            dict[str, Any],
            self._result(
                UPDATE_FEATURE_MUTATION,
                {
                    "action": "UPDATE_REGIONS",
                    "cloudAccountId": str(cloud_account_id),
                    "awsRegions": [to_region_enum(r) for r in regions],
                    "feature": feature.name,
                },
            )
            or {},
        )
        return parse_operation_message(result.get("message"))

    # -------------------------------------------------------------------------
    # Offboarding
    # -------------------------------------------------------------------------

    def prepare_deletion(self, cloud_account_id: UUID, feature: Feature) -> str:
        """
        Prepare removal of the feature.

        Returns:
            CloudFormation console URL describing the stack change the
            removal requires, or an empty string if none is required
        """
        result = cast(
            dict[str, Any],
            self._result(
                PREPARE_DELETION_MUTATION,
                {"cloudAccountId": str(cloud_account_id), "feature": feature.name},
            )
            or {},
        )
        return str(result.get("cloudFormationUrl") or "")

    def finalize_deletion(self, cloud_account_id: UUID, feature: Feature) -> OperationResult:
        result = cast(
            dict[str, Any],
            self._result(
                FINALIZE_DELETION_MUTATION,
                {"cloudAccountId": str(cloud_account_id), "feature": feature.name},
            )
            or {},
        )
        return parse_operation_message(result.get("message"))

    def start_native_disable_job(
        self,
        cloud_account_id: UUID,
        protection_feature: ProtectionFeature,
        delete_snapshots: bool,
    ) -> str:
        """
        Start the task chain that disables a protection feature.

        Returns:
            Task chain id

        Raises:
            ValidationRejectedError: If the control plane refuses to start
                the job
        """
        result = cast(
            dict[str, Any],
            self._result(
                START_NATIVE_DISABLE_JOB_MUTATION,
                {
                    "awsAccountRubrikId": str(cloud_account_id),
                    "awsNativeProtectionFeature": str(protection_feature),
                    "shouldDeleteNativeSnapshots": delete_snapshots,
                },
            )
            or {},
        )
        return self._job_id(result, str(cloud_account_id))

    def start_exocompute_disable_job(self, cloud_account_id: UUID) -> str:
        """Start the task chain that disables exocompute. Returns the task chain id."""
        result = cast(
            dict[str, Any],
            self._result(START_EXOCOMPUTE_DISABLE_JOB_MUTATION, {"cloudAccountId": str(cloud_account_id)}) or {},
        )
        return self._job_id(result, str(cloud_account_id))

    @staticmethod
    def _job_id(result: dict[str, Any], key: str) -> str:
        if result.get("error"):
            raise ValidationRejectedError(
                f"failed to start disable job: {result['error']}",
                native_id=key,
                remote_message=str(result["error"]),
            )
        job_id = result.get("jobId")
        if not job_id:
            raise TransportError("disable job response has no job id", retryable=False)
        return str(job_id)
