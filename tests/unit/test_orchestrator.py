"""
Unit tests for the feature lifecycle orchestrator.

Tests drive the add, remove and update sagas against a mocked control
plane, stack reconciler and task chain waiter, and check the order of the
remote steps, idempotent re-runs and failure reporting.
"""

from collections.abc import Callable
from unittest.mock import MagicMock, call
from uuid import UUID

import pytest

from cloudonboard.aws_account import AwsAccount
from cloudonboard.context import ClientContext
from cloudonboard.control_plane import OperationResult
from cloudonboard.errors import (
    AsyncJobFailedError,
    ControlPlaneOperationFailedError,
    InvalidRegionError,
    NotFoundError,
    OperationCancelledError,
    StackReconciliationFailedError,
    ValidationRejectedError,
)
from cloudonboard.features import (
    CLOUD_DISCOVERY,
    CLOUD_NATIVE_PROTECTION,
    EXOCOMPUTE,
    OUTPOST,
    PermissionGroup,
    ProtectionFeature,
)
from cloudonboard.identity import NativeAccountId, PlatformAccountId
from cloudonboard.models import CloudAccount, FeatureStatus, StackDescriptor, TaskChainState
from cloudonboard.orchestrator import FeatureLifecycleOrchestrator, _already_connected  # pyright: ignore[reportPrivateUsage]
from cloudonboard.polling import Cancellation
from tests.conftest import CLOUD_ACCOUNT_ID, NATIVE_ID

STACK_ID = "arn:aws:cloudformation:us-east-2:123456789012:stack/PlatformStack/abc"
TEMPLATE_URL = "https://s3.amazonaws.com/platform-templates/template.json"
UPDATE_URL = (
    "https://console.aws.amazon.com/cloudformation/home#/stack/update"
    "?stackId=arn%3Aaws%3Acloudformation%3Aus-east-2%3A123456789012%3Astack%2FPlatformStack%2Fabc"
    "&templateURL=https%3A%2F%2Fs3.amazonaws.com%2Fplatform-templates%2Ftemplate.json"
)
DETAIL_URL = (
    "https://console.aws.amazon.com/cloudformation/home#/stack/detail"
    "?stackId=arn%3Aaws%3Acloudformation%3Aus-east-2%3A123456789012%3Astack%2FPlatformStack%2Fabc"
)

OK = OperationResult(ok=True, detail="Successfully done")
DESCRIPTOR = StackDescriptor(stack_name="PlatformStack", template_url=TEMPLATE_URL, external_id="ext-1")


def _not_found(key: str = NATIVE_ID) -> NotFoundError:
    return NotFoundError(f"cloud account with native id {key} not found", entity="account", key=key)


def _always_not_found(native_id: str, *_: object) -> CloudAccount:
    raise _not_found(native_id)


@pytest.fixture
def reconciler() -> MagicMock:
    """Provide a mocked StackReconciler."""
    return MagicMock()


@pytest.fixture
def waiter() -> MagicMock:
    """Provide a mocked AsyncJobWaiter whose jobs succeed."""
    mock = MagicMock()
    mock.wait_for.return_value = TaskChainState.SUCCEEDED
    return mock


@pytest.fixture
def reconciler_factory(reconciler: MagicMock) -> MagicMock:
    return MagicMock(return_value=reconciler)


@pytest.fixture
def orchestrator(
    client_context: ClientContext,
    reconciler_factory: MagicMock,
    waiter: MagicMock,
) -> FeatureLifecycleOrchestrator:
    """Provide an orchestrator wired to the mocks."""
    return FeatureLifecycleOrchestrator(
        client_context,
        reconciler_factory=reconciler_factory,
        waiter_factory=MagicMock(return_value=waiter),
    )


@pytest.fixture
def aws_account() -> AwsAccount:
    return AwsAccount(native_id=NATIVE_ID, name="prod", session=MagicMock(), profile="prod")


# =============================================================================
# Add saga
# =============================================================================


class TestAddFeatures:
    """Tests for the add saga."""

    def test_add_to_new_account(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        reconciler: MagicMock,
        aws_account: AwsAccount,
        make_account: Callable[..., CloudAccount],
    ) -> None:
        """Test validate, finalize, stack and read-back run in order."""
        control_plane.cloud_account_by_native_id.side_effect = [
            _not_found(),
            make_account([(CLOUD_NATIVE_PROTECTION, FeatureStatus.CONNECTED)]),
        ]
        control_plane.validate_and_initiate.return_value = DESCRIPTOR
        control_plane.finalize_protection.return_value = OK

        cloud_account_id = orchestrator.add_features(
            aws_account,
            [CLOUD_NATIVE_PROTECTION],
            regions=["us-east-2"],
        )

        assert cloud_account_id == CLOUD_ACCOUNT_ID
        control_plane.validate_and_initiate.assert_called_once_with(NATIVE_ID, "prod", [CLOUD_NATIVE_PROTECTION])
        control_plane.finalize_protection.assert_called_once_with(
            NATIVE_ID,
            "prod",
            [CLOUD_NATIVE_PROTECTION],
            ["us-east-2"],
            DESCRIPTOR,
        )
        reconciler.reconcile.assert_called_once_with("PlatformStack", TEMPLATE_URL)

    def test_add_is_idempotent(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        reconciler: MagicMock,
        aws_account: AwsAccount,
        make_account: Callable[..., CloudAccount],
    ) -> None:
        """Test re-running an add for connected features makes no changes."""
        control_plane.cloud_account_by_native_id.return_value = make_account(
            [(CLOUD_NATIVE_PROTECTION, FeatureStatus.CONNECTED)],
            regions=["us-east-2", "us-west-2"],
        )

        cloud_account_id = orchestrator.add_features(
            aws_account,
            [CLOUD_NATIVE_PROTECTION],
            regions=["us-west-2"],
        )

        assert cloud_account_id == CLOUD_ACCOUNT_ID
        control_plane.validate_and_initiate.assert_not_called()
        control_plane.finalize_protection.assert_not_called()
        reconciler.reconcile.assert_not_called()

    def test_add_new_region_is_not_skipped(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        aws_account: AwsAccount,
        make_account: Callable[..., CloudAccount],
    ) -> None:
        control_plane.cloud_account_by_native_id.return_value = make_account(
            [(CLOUD_NATIVE_PROTECTION, FeatureStatus.CONNECTED)],
        )
        control_plane.validate_and_initiate.return_value = DESCRIPTOR
        control_plane.finalize_protection.return_value = OK

        _ = orchestrator.add_features(aws_account, [CLOUD_NATIVE_PROTECTION], regions=["eu-west-1"])

        control_plane.validate_and_initiate.assert_called_once()

    def test_add_permission_group_is_not_skipped(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        reconciler: MagicMock,
        aws_account: AwsAccount,
        make_account: Callable[..., CloudAccount],
    ) -> None:
        """Test adding a permission group to a connected feature re-onboards it."""
        basic = CLOUD_NATIVE_PROTECTION.with_permission_groups(PermissionGroup.BASIC)
        wanted = CLOUD_NATIVE_PROTECTION.with_permission_groups(
            PermissionGroup.BASIC,
            PermissionGroup.EXPORT_AND_RESTORE,
        )
        control_plane.cloud_account_by_native_id.return_value = make_account([(basic, FeatureStatus.CONNECTED)])
        control_plane.validate_and_initiate.return_value = DESCRIPTOR
        control_plane.finalize_protection.return_value = OK

        _ = orchestrator.add_features(aws_account, [wanted], regions=["us-east-2"])

        control_plane.validate_and_initiate.assert_called_once_with(NATIVE_ID, "prod", [wanted])
        control_plane.finalize_protection.assert_called_once()
        reconciler.reconcile.assert_called_once_with("PlatformStack", TEMPLATE_URL)

    def test_existing_account_name_reused(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        aws_account: AwsAccount,
        make_account: Callable[..., CloudAccount],
    ) -> None:
        """Test the account name is shared by all features."""
        control_plane.cloud_account_by_native_id.return_value = make_account(
            [(CLOUD_NATIVE_PROTECTION, FeatureStatus.CONNECTED)],
            name="Production Account",
        )
        control_plane.validate_and_initiate.return_value = DESCRIPTOR
        control_plane.finalize_protection.return_value = OK

        _ = orchestrator.add_features(aws_account, [EXOCOMPUTE], name="ignored")

        control_plane.validate_and_initiate.assert_called_once_with(NATIVE_ID, "Production Account", [EXOCOMPUTE])
        assert aws_account.name == "prod"

    def test_explicit_name_for_new_account(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        aws_account: AwsAccount,
        make_account: Callable[..., CloudAccount],
    ) -> None:
        control_plane.cloud_account_by_native_id.side_effect = [_not_found(), make_account()]
        control_plane.validate_and_initiate.return_value = DESCRIPTOR
        control_plane.finalize_protection.return_value = OK

        _ = orchestrator.add_features(aws_account, [EXOCOMPUTE], name="Custom")

        control_plane.validate_and_initiate.assert_called_once_with(NATIVE_ID, "Custom", [EXOCOMPUTE])

    def test_finalize_failure_raises(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        reconciler: MagicMock,
        aws_account: AwsAccount,
    ) -> None:
        """Test a failed finalize stops the saga before the stack change."""
        control_plane.cloud_account_by_native_id.side_effect = _not_found()
        control_plane.validate_and_initiate.return_value = DESCRIPTOR
        control_plane.finalize_protection.return_value = OperationResult(ok=False, detail="quota exceeded")

        with pytest.raises(ControlPlaneOperationFailedError) as exc_info:
            _ = orchestrator.add_features(aws_account, [CLOUD_NATIVE_PROTECTION])

        assert exc_info.value.remote_message == "quota exceeded"
        reconciler.reconcile.assert_not_called()

    def test_validation_rejected_propagates(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        aws_account: AwsAccount,
    ) -> None:
        control_plane.cloud_account_by_native_id.side_effect = _not_found()
        control_plane.validate_and_initiate.side_effect = ValidationRejectedError(
            "invalid account: already added",
            native_id=NATIVE_ID,
            remote_message="already added",
        )

        with pytest.raises(ValidationRejectedError):
            _ = orchestrator.add_features(aws_account, [CLOUD_NATIVE_PROTECTION])

        control_plane.finalize_protection.assert_not_called()

    def test_stack_failure_propagates_after_finalize(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        reconciler: MagicMock,
        aws_account: AwsAccount,
    ) -> None:
        """Test a stack failure leaves the finalized onboarding in place."""
        control_plane.cloud_account_by_native_id.side_effect = _not_found()
        control_plane.validate_and_initiate.return_value = DESCRIPTOR
        control_plane.finalize_protection.return_value = OK
        reconciler.reconcile.side_effect = StackReconciliationFailedError(
            "failed to create CloudFormation stack",
            stack_id=STACK_ID,
            status="ROLLBACK_COMPLETE",
        )

        with pytest.raises(StackReconciliationFailedError):
            _ = orchestrator.add_features(aws_account, [CLOUD_NATIVE_PROTECTION])

        control_plane.finalize_protection.assert_called_once()

    def test_no_features_raises(self, orchestrator: FeatureLifecycleOrchestrator, aws_account: AwsAccount) -> None:
        with pytest.raises(ValueError, match="no features"):
            _ = orchestrator.add_features(aws_account, [])

    def test_invalid_region_raises_before_remote_calls(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        aws_account: AwsAccount,
    ) -> None:
        with pytest.raises(InvalidRegionError):
            _ = orchestrator.add_features(aws_account, [CLOUD_NATIVE_PROTECTION], regions=["atlantis-1"])

        assert not control_plane.method_calls

    def test_cancelled_saga_makes_no_mutations(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        aws_account: AwsAccount,
    ) -> None:
        control_plane.cloud_account_by_native_id.side_effect = _not_found()
        cancellation = Cancellation()
        cancellation.cancel()

        with pytest.raises(OperationCancelledError):
            _ = orchestrator.add_features(aws_account, [CLOUD_NATIVE_PROTECTION], cancellation=cancellation)

        control_plane.validate_and_initiate.assert_not_called()


class TestAddOutpost:
    """Tests for the outpost sub-saga."""

    def test_outpost_on_separate_account_only(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        reconciler_factory: MagicMock,
        aws_account: AwsAccount,
    ) -> None:
        """Test only the outpost account is onboarded and None returned."""
        control_plane.cloud_account_by_native_id.side_effect = _always_not_found
        control_plane.validate_and_initiate.return_value = DESCRIPTOR
        control_plane.finalize_protection.return_value = OK

        result = orchestrator.add_features(aws_account, [OUTPOST], outpost_account_id="210987654321")

        assert result is None
        control_plane.validate_and_initiate.assert_called_once_with("210987654321", "prod", [OUTPOST])
        stack_account = reconciler_factory.call_args.args[1]
        assert stack_account.native_id == "210987654321"

    def test_outpost_onboarded_before_other_features(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        aws_account: AwsAccount,
        make_account: Callable[..., CloudAccount],
    ) -> None:
        control_plane.cloud_account_by_native_id.side_effect = [
            _not_found(),
            _not_found(),
            make_account([(OUTPOST, FeatureStatus.CONNECTED), (CLOUD_NATIVE_PROTECTION, FeatureStatus.CONNECTED)]),
        ]
        control_plane.validate_and_initiate.return_value = DESCRIPTOR
        control_plane.finalize_protection.return_value = OK

        cloud_account_id = orchestrator.add_features(aws_account, [CLOUD_NATIVE_PROTECTION, OUTPOST])

        assert cloud_account_id == CLOUD_ACCOUNT_ID
        assert control_plane.validate_and_initiate.call_args_list == [
            call(NATIVE_ID, "prod", [OUTPOST]),
            call(NATIVE_ID, "prod", [CLOUD_NATIVE_PROTECTION]),
        ]


class TestAlreadyConnected:
    """Tests for the idempotence pre-check."""

    def test_requires_connected_status(self, make_account: Callable[..., CloudAccount]) -> None:
        account = make_account([(CLOUD_NATIVE_PROTECTION, FeatureStatus.MISSING_PERMISSIONS)])

        assert not _already_connected(account, [CLOUD_NATIVE_PROTECTION], [])

    def test_requires_every_feature(self, make_account: Callable[..., CloudAccount]) -> None:
        account = make_account([(CLOUD_NATIVE_PROTECTION, FeatureStatus.CONNECTED)])

        assert _already_connected(account, [CLOUD_NATIVE_PROTECTION], ["us-east-2"])
        assert not _already_connected(account, [CLOUD_NATIVE_PROTECTION, EXOCOMPUTE], [])

    def test_requires_same_permission_groups(self, make_account: Callable[..., CloudAccount]) -> None:
        basic = CLOUD_NATIVE_PROTECTION.with_permission_groups(PermissionGroup.BASIC)
        account = make_account([(basic, FeatureStatus.CONNECTED)])

        assert _already_connected(account, [basic], ["us-east-2"])
        assert not _already_connected(
            account,
            [basic.with_permission_groups(PermissionGroup.EXPORT_AND_RESTORE)],
            ["us-east-2"],
        )


# =============================================================================
# Remove saga
# =============================================================================


class TestRemoveFeatures:
    """Tests for the remove saga."""

    def test_remove_protection_and_discovery(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        reconciler: MagicMock,
        waiter: MagicMock,
        aws_account: AwsAccount,
        make_account: Callable[..., CloudAccount],
    ) -> None:
        """Test CLOUD_DISCOVERY goes last and the stack is deleted with it."""
        control_plane.cloud_account_by_native_id.return_value = make_account(
            [(CLOUD_DISCOVERY, FeatureStatus.CONNECTED), (CLOUD_NATIVE_PROTECTION, FeatureStatus.CONNECTED)]
        )
        control_plane.start_native_disable_job.return_value = "job-1"
        control_plane.cloud_account.side_effect = [
            make_account(
                [(CLOUD_DISCOVERY, FeatureStatus.CONNECTED), (CLOUD_NATIVE_PROTECTION, FeatureStatus.DISABLED)]
            ),
            make_account([(CLOUD_DISCOVERY, FeatureStatus.CONNECTED)]),
            _not_found(str(CLOUD_ACCOUNT_ID)),
        ]
        control_plane.prepare_deletion.side_effect = [UPDATE_URL, DETAIL_URL]
        control_plane.finalize_deletion.return_value = OK

        orchestrator.remove_features(aws_account, [CLOUD_DISCOVERY, CLOUD_NATIVE_PROTECTION])

        control_plane.start_native_disable_job.assert_called_once_with(
            CLOUD_ACCOUNT_ID,
            ProtectionFeature.EC2,
            False,
        )
        waiter.wait_for.assert_called_once_with("job-1")
        assert control_plane.prepare_deletion.call_args_list == [
            call(CLOUD_ACCOUNT_ID, CLOUD_NATIVE_PROTECTION),
            call(CLOUD_ACCOUNT_ID, CLOUD_DISCOVERY),
        ]
        reconciler.reconcile.assert_called_once_with(STACK_ID, TEMPLATE_URL)
        reconciler.delete.assert_called_once_with(STACK_ID)
        assert control_plane.finalize_deletion.call_args_list == [
            call(CLOUD_ACCOUNT_ID, CLOUD_NATIVE_PROTECTION),
            call(CLOUD_ACCOUNT_ID, CLOUD_DISCOVERY),
        ]

    def test_missing_feature_removes_nothing(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        aws_account: AwsAccount,
        make_account: Callable[..., CloudAccount],
    ) -> None:
        """Test every requested feature is checked before any mutation."""
        control_plane.cloud_account_by_native_id.return_value = make_account(
            [(CLOUD_NATIVE_PROTECTION, FeatureStatus.CONNECTED)]
        )

        with pytest.raises(NotFoundError) as exc_info:
            orchestrator.remove_features(aws_account, [CLOUD_NATIVE_PROTECTION, EXOCOMPUTE])

        assert exc_info.value.key == "EXOCOMPUTE"
        control_plane.start_native_disable_job.assert_not_called()
        control_plane.prepare_deletion.assert_not_called()
        control_plane.finalize_deletion.assert_not_called()

    def test_missing_account_raises(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        aws_account: AwsAccount,
    ) -> None:
        control_plane.cloud_account_by_native_id.side_effect = _not_found()

        with pytest.raises(NotFoundError):
            orchestrator.remove_features(aws_account, [EXOCOMPUTE])

    def test_failed_disable_job_names_feature(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        waiter: MagicMock,
        aws_account: AwsAccount,
        make_account: Callable[..., CloudAccount],
    ) -> None:
        """Test the error names the feature that failed and nothing further runs."""
        control_plane.cloud_account_by_native_id.return_value = make_account(
            [(CLOUD_NATIVE_PROTECTION, FeatureStatus.CONNECTED)]
        )
        control_plane.start_native_disable_job.return_value = "job-1"
        waiter.wait_for.return_value = TaskChainState.FAILED

        with pytest.raises(AsyncJobFailedError) as exc_info:
            orchestrator.remove_features(aws_account, [CLOUD_NATIVE_PROTECTION], delete_snapshots=True)

        assert exc_info.value.context["feature"] == "CLOUD_NATIVE_PROTECTION"
        assert exc_info.value.job_id == "job-1"
        assert exc_info.value.state == "FAILED"
        control_plane.start_native_disable_job.assert_called_once_with(
            CLOUD_ACCOUNT_ID,
            ProtectionFeature.EC2,
            True,
        )
        control_plane.prepare_deletion.assert_not_called()

    def test_exocompute_uses_its_own_disable_job(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        aws_account: AwsAccount,
        make_account: Callable[..., CloudAccount],
    ) -> None:
        account = make_account([(EXOCOMPUTE, FeatureStatus.CONNECTED), (CLOUD_DISCOVERY, FeatureStatus.CONNECTED)])
        control_plane.cloud_account_by_native_id.return_value = account
        control_plane.start_exocompute_disable_job.return_value = "job-2"
        control_plane.cloud_account.return_value = account
        control_plane.prepare_deletion.return_value = UPDATE_URL
        control_plane.finalize_deletion.return_value = OK

        orchestrator.remove_features(aws_account, [EXOCOMPUTE])

        control_plane.start_exocompute_disable_job.assert_called_once_with(CLOUD_ACCOUNT_ID)
        control_plane.start_native_disable_job.assert_not_called()

    @pytest.mark.parametrize("status", [FeatureStatus.DISABLED, FeatureStatus.CONNECTING])
    def test_disable_job_skipped(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        reconciler_factory: MagicMock,
        aws_account: AwsAccount,
        make_account: Callable[..., CloudAccount],
        status: FeatureStatus,
    ) -> None:
        """Test features with nothing to disable go straight to deletion."""
        account = make_account([(EXOCOMPUTE, status), (CLOUD_DISCOVERY, FeatureStatus.CONNECTED)])
        control_plane.cloud_account_by_native_id.return_value = account
        control_plane.cloud_account.return_value = account
        control_plane.prepare_deletion.return_value = ""
        control_plane.finalize_deletion.return_value = OK

        orchestrator.remove_features(aws_account, [EXOCOMPUTE])

        control_plane.start_exocompute_disable_job.assert_not_called()
        reconciler_factory.assert_not_called()
        control_plane.finalize_deletion.assert_called_once_with(CLOUD_ACCOUNT_ID, EXOCOMPUTE)

    def test_shared_stack_not_deleted(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        reconciler: MagicMock,
        aws_account: AwsAccount,
        make_account: Callable[..., CloudAccount],
    ) -> None:
        """Test a delete request is skipped while other features use the stack."""
        account = make_account([(CLOUD_DISCOVERY, FeatureStatus.CONNECTED), (EXOCOMPUTE, FeatureStatus.CONNECTED)])
        control_plane.cloud_account_by_native_id.return_value = account
        control_plane.cloud_account.return_value = account
        control_plane.prepare_deletion.return_value = DETAIL_URL
        control_plane.finalize_deletion.return_value = OK

        orchestrator.remove_features(aws_account, [CLOUD_DISCOVERY])

        reconciler.delete.assert_not_called()
        control_plane.finalize_deletion.assert_called_once_with(CLOUD_ACCOUNT_ID, CLOUD_DISCOVERY)

    def test_finalize_deletion_failure_names_feature(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        aws_account: AwsAccount,
        make_account: Callable[..., CloudAccount],
    ) -> None:
        control_plane.cloud_account_by_native_id.return_value = make_account(
            [(CLOUD_DISCOVERY, FeatureStatus.CONNECTED)]
        )
        control_plane.prepare_deletion.return_value = ""
        control_plane.finalize_deletion.return_value = OperationResult(ok=False, detail="in use")

        with pytest.raises(ControlPlaneOperationFailedError) as exc_info:
            orchestrator.remove_features(aws_account, [CLOUD_DISCOVERY])

        assert exc_info.value.context["feature"] == "CLOUD_DISCOVERY"
        assert exc_info.value.remote_message == "in use"

    def test_account_gone_before_last_feature(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        aws_account: AwsAccount,
        make_account: Callable[..., CloudAccount],
    ) -> None:
        """Test only the final read-back may find the account gone."""
        control_plane.cloud_account_by_native_id.return_value = make_account(
            [(EXOCOMPUTE, FeatureStatus.DISABLED), (CLOUD_DISCOVERY, FeatureStatus.CONNECTED)]
        )
        control_plane.prepare_deletion.return_value = ""
        control_plane.finalize_deletion.return_value = OK
        control_plane.cloud_account.side_effect = _not_found(str(CLOUD_ACCOUNT_ID))

        with pytest.raises(NotFoundError) as exc_info:
            orchestrator.remove_features(aws_account, [EXOCOMPUTE, CLOUD_DISCOVERY])

        assert exc_info.value.context["feature"] == "EXOCOMPUTE"
        assert control_plane.finalize_deletion.call_count == 1

    def test_no_features_raises(self, orchestrator: FeatureLifecycleOrchestrator, aws_account: AwsAccount) -> None:
        with pytest.raises(ValueError):
            orchestrator.remove_features(aws_account, [])


# =============================================================================
# Updates and lookups
# =============================================================================


class TestUpdates:
    """Tests for update_regions and update_permissions."""

    def test_update_regions(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        make_account: Callable[..., CloudAccount],
    ) -> None:
        updated = make_account([(CLOUD_NATIVE_PROTECTION, FeatureStatus.CONNECTED)], regions=["us-west-2"])
        control_plane.update_feature_regions.return_value = OK
        control_plane.cloud_account.return_value = updated

        account = orchestrator.update_regions(
            PlatformAccountId(CLOUD_ACCOUNT_ID),
            CLOUD_NATIVE_PROTECTION,
            ["us-west-2"],
        )

        assert account == updated
        control_plane.update_feature_regions.assert_called_once_with(
            CLOUD_ACCOUNT_ID,
            CLOUD_NATIVE_PROTECTION,
            ["us-west-2"],
        )

    def test_update_regions_empty_raises(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
    ) -> None:
        """Test an update without regions fails before any remote call."""
        with pytest.raises(InvalidRegionError, match="nothing to update"):
            _ = orchestrator.update_regions(NativeAccountId(NATIVE_ID), CLOUD_NATIVE_PROTECTION, [])

        assert not control_plane.method_calls

    def test_update_regions_rejected(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
    ) -> None:
        control_plane.update_feature_regions.return_value = OperationResult(ok=False, detail="invalid region set")

        with pytest.raises(ControlPlaneOperationFailedError):
            _ = orchestrator.update_regions(PlatformAccountId(CLOUD_ACCOUNT_ID), EXOCOMPUTE, ["us-east-1"])

    def test_update_permissions(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        reconciler: MagicMock,
        aws_account: AwsAccount,
        make_account: Callable[..., CloudAccount],
    ) -> None:
        account = make_account([(CLOUD_NATIVE_PROTECTION, FeatureStatus.MISSING_PERMISSIONS)])
        control_plane.cloud_account_by_native_id.return_value = account
        control_plane.prepare_feature_update.return_value = (UPDATE_URL, "https://s3.amazonaws.com/v2.json")
        control_plane.cloud_account.return_value = account

        _ = orchestrator.update_permissions(aws_account, [CLOUD_NATIVE_PROTECTION])

        control_plane.prepare_feature_update.assert_called_once_with(CLOUD_ACCOUNT_ID, [CLOUD_NATIVE_PROTECTION])
        reconciler.reconcile.assert_called_once_with(STACK_ID, "https://s3.amazonaws.com/v2.json")


class TestLookups:
    """Tests for account lookups."""

    def test_account_by_platform_id(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        make_account: Callable[..., CloudAccount],
    ) -> None:
        control_plane.cloud_account.return_value = make_account()

        account = orchestrator.account(PlatformAccountId(CLOUD_ACCOUNT_ID), EXOCOMPUTE)

        assert account.native_id == NATIVE_ID
        control_plane.cloud_account.assert_called_once_with(UUID(str(CLOUD_ACCOUNT_ID)), EXOCOMPUTE)

    def test_account_by_native_id(
        self,
        orchestrator: FeatureLifecycleOrchestrator,
        control_plane: MagicMock,
        make_account: Callable[..., CloudAccount],
    ) -> None:
        control_plane.cloud_account_by_native_id.return_value = make_account()

        _ = orchestrator.account(NativeAccountId(NATIVE_ID))

        control_plane.cloud_account_by_native_id.assert_called_once()

    def test_accounts(self, orchestrator: FeatureLifecycleOrchestrator, control_plane: MagicMock) -> None:
        control_plane.cloud_accounts.return_value = []

        assert orchestrator.accounts(search="prod") == []
