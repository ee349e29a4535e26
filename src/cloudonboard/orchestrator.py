"""
Feature lifecycle orchestration.

This module coordinates the control plane, the customer's CloudFormation
stack and the platform's task chains to add and remove features on an AWS
account. Each public operation is one saga: a sequence of remote steps,
each followed by a read-back of remote state, logged under its own
correlation id.

Add Saga:
    1. Look up the existing cloud account; reuse its name
    2. Onboard OUTPOST first, as its own sub-saga
    3. Validate and initiate        -> stack descriptor
    4. Finalize protection          -> OperationResult
    5. Create or update the stack
    6. Re-read the account for its platform id

Remove Saga (per feature, CLOUD_DISCOVERY last):
    1. Start and await the disable job (protection features, exocompute)
    2. Prepare deletion             -> CloudFormation URL or ""
    3. Update the stack, or delete it if no other feature remains
    4. Finalize deletion            -> OperationResult
    5. Re-read the account

Failure Semantics:
    Sagas are not transactional. A failure leaves earlier steps applied;
    re-invoking the same operation is the recovery path. Errors raised
    while removing a feature carry the feature name in ``error.context``.

Usage:
    from cloudonboard.orchestrator import FeatureLifecycleOrchestrator

    orchestrator = FeatureLifecycleOrchestrator(ClientContext.from_settings(settings))
    cloud_account_id = orchestrator.add_features(
        from_profile("prod"),
        [CLOUD_NATIVE_PROTECTION],
        regions=["us-east-2"],
    )
"""

from collections.abc import Callable, Sequence
from dataclasses import replace
from uuid import UUID

from cloudonboard.aws_account import AwsAccount
from cloudonboard.context import ClientContext, SagaContext
from cloudonboard.errors import (
    AsyncJobFailedError,
    CloudOnboardError,
    ControlPlaneOperationFailedError,
    InvalidRegionError,
    NotFoundError,
)
from cloudonboard.features import (
    ALL,
    EXOCOMPUTE,
    Feature,
    order_for_removal,
    protection_feature,
    requires_disable_job,
    split_outpost,
    stack_features_after_removal,
)
from cloudonboard.identity import (
    Identity,
    NativeAccountId,
    resolve_native_id,
    resolve_platform_account_id,
)
from cloudonboard.job_waiter import AsyncJobWaiter
from cloudonboard.logging_config import LogContext, get_logger, log_with_context
from cloudonboard.models import CloudAccount, FeatureStatus, TaskChainState
from cloudonboard.polling import Cancellation
from cloudonboard.regions import parse_regions
from cloudonboard.stack_reconciler import StackIntent, StackReconciler, parse_stack_url

logger = get_logger(__name__)

ReconcilerFactory = Callable[[SagaContext, AwsAccount], StackReconciler]
WaiterFactory = Callable[[SagaContext], AsyncJobWaiter]


class FeatureLifecycleOrchestrator:
    """
    Runs add, remove and update sagas for AWS cloud account features.

    Attributes:
        client: Process-wide context
    """

    def __init__(
        self,
        client: ClientContext,
        reconciler_factory: ReconcilerFactory = StackReconciler.for_account,
        waiter_factory: WaiterFactory = AsyncJobWaiter,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            client: Process-wide context
            reconciler_factory: Builds the stack reconciler for an account
            waiter_factory: Builds the task chain waiter for a saga
        """
        self.client: ClientContext = client
        self._reconciler_factory: ReconcilerFactory = reconciler_factory
        self._waiter_factory: WaiterFactory = waiter_factory

    # =========================================================================
    # Lookups
    # =========================================================================

    def account(self, identity: Identity, feature: Feature = ALL) -> CloudAccount:
        """
        Return the cloud account for any account reference.

        Raises:
            InvalidIdentityError: If the reference is malformed
            NotFoundError: If the account does not exist
        """
        saga = self.client.new_saga()
        resolved = identity.resolve(saga)
        if resolved.internal:
            return self.account_by_id(UUID(resolved.id), feature)
        return self.account_by_native_id(resolved.id, feature)

    def account_by_id(self, cloud_account_id: UUID, feature: Feature = ALL) -> CloudAccount:
        return self.client.control_plane.cloud_account(cloud_account_id, feature)

    def account_by_native_id(self, native_id: str, feature: Feature = ALL) -> CloudAccount:
        return self.client.control_plane.cloud_account_by_native_id(native_id, feature)

    def accounts(self, feature: Feature = ALL, search: str = "") -> list[CloudAccount]:
        """Return the accounts with the feature matching the search filter."""
        return self.client.control_plane.cloud_accounts(feature, search)

    # =========================================================================
    # Add saga
    # =========================================================================

    def add_features(
        self,
        account: AwsAccount,
        features: Sequence[Feature],
        regions: Sequence[str] = (),
        name: str | None = None,
        outpost_account_id: str | None = None,
        outpost_account: AwsAccount | None = None,
        cancellation: Cancellation | None = None,
    ) -> UUID | None:
        """
        Onboard features on the AWS account.

        Safe to re-run with the same arguments, e.g. after a stack failure
        caused by missing IAM permissions has been fixed.

        Args:
            account: AWS account with credentials for the stack
            features: Features to add, at least one
            regions: Regions to enable the features in
            name: Account display name, ignored if the account exists
            outpost_account_id: Separate AWS account for OUTPOST
            outpost_account: Credentials for the outpost account
            cancellation: Cancellation signal for the saga

        Returns:
            Platform cloud account id, or None when only OUTPOST was added
            to a separate account and the main account does not exist

        Raises:
            ValueError: If no features are given
            InvalidRegionError: If a region is unknown
            ValidationRejectedError: If the control plane refuses the account
            ControlPlaneOperationFailedError: If finalizing protection fails
            StackReconciliationFailedError: If the stack does not reconcile
            OperationCancelledError: If the saga is cancelled or times out
        """
        if not features:
            raise ValueError("no features specified")
        region_names = parse_regions(regions)
        saga = self.client.new_saga(cancellation)

        with LogContext():
            log_with_context(
                logger,
                "info",
                "Starting add saga",
                native_id=account.native_id,
                features=[str(f) for f in features],
                regions=region_names,
            )

            if name:
                account = replace(account, name=name)

            existing = self._find_account(saga, account.native_id)
            if existing is not None:
                account = replace(account, name=existing.name)

            outpost, remaining = split_outpost(features)
            if outpost is not None:
                separate = self._add_outpost(saga, account, outpost, region_names, outpost_account_id, outpost_account)
                if separate and existing is None and not remaining:
                    log_with_context(
                        logger,
                        "info",
                        "Outpost added to separate account, main account not onboarded",
                        native_id=account.native_id,
                    )
                    return None

            if remaining:
                self._onboard(saga, account, remaining, region_names, existing)

            if existing is None:
                existing = saga.control_plane.cloud_account_by_native_id(account.native_id)

            log_with_context(
                logger,
                "info",
                "Add saga completed",
                native_id=account.native_id,
                cloud_account_id=str(existing.id),
            )
            return existing.id

    def _find_account(self, saga: SagaContext, native_id: str) -> CloudAccount | None:
        try:
            return saga.control_plane.cloud_account_by_native_id(native_id)
        except NotFoundError:
            return None

    def _add_outpost(
        self,
        saga: SagaContext,
        account: AwsAccount,
        outpost: Feature,
        regions: list[str],
        outpost_account_id: str | None,
        outpost_account: AwsAccount | None,
    ) -> bool:
        """
        Onboard OUTPOST before the other features.

        The main account's template references the outpost account, so the
        outpost account must be registered first.

        Returns:
            True if the outpost account is separate from the main account
        """
        native_id = outpost_account_id or account.native_id
        separate = native_id != account.native_id

        target = outpost_account or account
        target = AwsAccount(
            native_id=native_id,
            name=account.name,
            session=target.session,
            profile=target.profile,
        )

        with LogContext():
            log_with_context(
                logger,
                "info",
                "Starting outpost sub-saga",
                native_id=native_id,
                separate_account=separate,
            )
            existing = self._find_account(saga, native_id)
            if existing is not None:
                target.name = existing.name
            self._onboard(saga, target, [outpost], regions, existing)

        return separate

    def _onboard(
        self,
        saga: SagaContext,
        account: AwsAccount,
        features: list[Feature],
        regions: list[str],
        existing: CloudAccount | None,
    ) -> None:
        if existing is not None and _already_connected(existing, features, regions):
            log_with_context(
                logger,
                "info",
                "Features already connected",
                native_id=account.native_id,
                features=[str(f) for f in features],
            )
            return

        saga.check_cancelled()
        descriptor = saga.control_plane.validate_and_initiate(account.native_id, account.name, features)
        log_with_context(
            logger,
            "info",
            "Validated account",
            native_id=account.native_id,
            stack_name=descriptor.stack_name,
        )

        saga.check_cancelled()
        result = saga.control_plane.finalize_protection(account.native_id, account.name, features, regions, descriptor)
        if not result.ok:
            raise ControlPlaneOperationFailedError(
                f"failed to finalize protection for {account.native_id}: {result.detail}",
                operation="finalizeAwsCloudAccountProtection",
                remote_message=result.detail,
            )
        log_with_context(logger, "info", "Finalized protection", native_id=account.native_id)

        reconciler = self._reconciler_factory(saga, account)
        _ = reconciler.reconcile(descriptor.stack_name, descriptor.template_url)

    # =========================================================================
    # Remove saga
    # =========================================================================

    def remove_features(
        self,
        account: AwsAccount,
        features: Sequence[Feature],
        delete_snapshots: bool = False,
        cancellation: Cancellation | None = None,
    ) -> None:
        """
        Remove features from the AWS account.

        CLOUD_DISCOVERY is always removed last. Features removed before a
        failure stay removed; re-invoke with the remaining features.

        Args:
            account: AWS account with credentials for the stack
            features: Features to remove, at least one
            delete_snapshots: Delete snapshots when disabling protection
            cancellation: Cancellation signal for the saga

        Raises:
            ValueError: If no features are given
            NotFoundError: If the account or any feature is missing; nothing
                is removed in that case
            AsyncJobFailedError: If a disable job does not succeed
            ControlPlaneOperationFailedError: If finalizing deletion fails
            StackReconciliationFailedError: If the stack change fails
            OperationCancelledError: If the saga is cancelled or times out
        """
        if not features:
            raise ValueError("no features specified")
        saga = self.client.new_saga(cancellation)

        with LogContext():
            native_id = resolve_native_id(saga, NativeAccountId(account.native_id))
            cloud_account = saga.control_plane.cloud_account_by_native_id(native_id)
            for feature in features:
                if cloud_account.feature(feature) is None:
                    raise NotFoundError(
                        f"feature {feature} not found on account {native_id}",
                        entity="feature",
                        key=feature.name,
                    )

            ordered = order_for_removal(features)
            log_with_context(
                logger,
                "info",
                "Starting remove saga",
                native_id=native_id,
                features=[str(f) for f in ordered],
            )

            current: CloudAccount | None = cloud_account
            for index, feature in enumerate(ordered):
                if current is None:
                    raise NotFoundError(
                        f"account {native_id} disappeared before feature {feature} was removed",
                        entity="account",
                        key=native_id,
                    )
                try:
                    current = self._remove_feature(
                        saga,
                        account,
                        current,
                        feature,
                        delete_snapshots,
                        last=index == len(ordered) - 1,
                    )
                except CloudOnboardError as e:
                    e.context["feature"] = feature.name
                    log_with_context(
                        logger,
                        "error",
                        "Failed to remove feature",
                        native_id=native_id,
                        feature=feature.name,
                        error=str(e),
                        removed=[f.name for f in ordered[:index]],
                    )
                    raise

            log_with_context(logger, "info", "Remove saga completed", native_id=native_id)

    def _remove_feature(
        self,
        saga: SagaContext,
        account: AwsAccount,
        cloud_account: CloudAccount,
        feature: Feature,
        delete_snapshots: bool,
        last: bool,
    ) -> CloudAccount | None:
        """Remove one feature; returns the account as read back afterwards."""
        if requires_disable_job(feature):
            cloud_account = self._disable_feature(saga, cloud_account, feature, delete_snapshots)

        saga.check_cancelled()
        cfm_url = saga.control_plane.prepare_deletion(cloud_account.id, feature)
        if cfm_url:
            stack_url = parse_stack_url(cfm_url)
            if stack_url.intent == StackIntent.UPDATE:
                reconciler = self._reconciler_factory(saga, account)
                _ = reconciler.reconcile(stack_url.stack_id, stack_url.template_url)
            else:
                remaining = stack_features_after_removal(cloud_account.feature_list(), feature)
                if remaining:
                    log_with_context(
                        logger,
                        "warning",
                        "Not deleting CloudFormation stack still used by other features",
                        stack_id=stack_url.stack_id,
                        remaining=[f.name for f in remaining],
                    )
                else:
                    reconciler = self._reconciler_factory(saga, account)
                    reconciler.delete(stack_url.stack_id)

        saga.check_cancelled()
        result = saga.control_plane.finalize_deletion(cloud_account.id, feature)
        if not result.ok:
            raise ControlPlaneOperationFailedError(
                f"failed to finalize deletion of {feature}: {result.detail}",
                operation="finalizeAwsCloudAccountDeletion",
                remote_message=result.detail,
            )
        log_with_context(
            logger,
            "info",
            "Removed feature",
            cloud_account_id=str(cloud_account.id),
            feature=feature.name,
        )

        try:
            return saga.control_plane.cloud_account(cloud_account.id)
        except NotFoundError:
            if not last:
                raise
            return None

    def _disable_feature(
        self,
        saga: SagaContext,
        cloud_account: CloudAccount,
        feature: Feature,
        delete_snapshots: bool,
    ) -> CloudAccount:
        """
        Run the data plane disable job for the feature.

        Features already DISABLED or still CONNECTING have nothing to
        disable.

        Returns:
            The account as read back after the job
        """
        state = cloud_account.feature(feature)
        if state is None or state.status in (FeatureStatus.DISABLED, FeatureStatus.CONNECTING):
            return cloud_account

        saga.check_cancelled()
        if feature.equal(EXOCOMPUTE):
            job_id = saga.control_plane.start_exocompute_disable_job(cloud_account.id)
        else:
            job_id = saga.control_plane.start_native_disable_job(
                cloud_account.id,
                protection_feature(feature),
                delete_snapshots,
            )
        log_with_context(
            logger,
            "info",
            "Started disable job",
            cloud_account_id=str(cloud_account.id),
            feature=feature.name,
            job_id=job_id,
        )

        job_state = self._waiter_factory(saga).wait_for(job_id)
        if job_state != TaskChainState.SUCCEEDED:
            raise AsyncJobFailedError(
                f"disable job {job_id} for {feature} ended in state {job_state}",
                job_id=job_id,
                state=str(job_state),
            )

        refreshed = saga.control_plane.cloud_account(cloud_account.id)
        refreshed_state = refreshed.feature(feature)
        log_with_context(
            logger,
            "info",
            "Feature disabled",
            cloud_account_id=str(cloud_account.id),
            feature=feature.name,
            status=str(refreshed_state.status) if refreshed_state else None,
        )
        return refreshed

    # =========================================================================
    # Updates
    # =========================================================================

    def update_regions(
        self,
        identity: Identity,
        feature: Feature,
        regions: Sequence[str],
        cancellation: Cancellation | None = None,
    ) -> CloudAccount:
        """
        Replace the regions a feature is enabled in.

        Returns:
            The account as read back after the update

        Raises:
            InvalidRegionError: If no region is given or a region is unknown
            ControlPlaneOperationFailedError: If the update is refused
        """
        region_names = parse_regions(regions)
        if not region_names:
            raise InvalidRegionError("nothing to update")
        saga = self.client.new_saga(cancellation)

        with LogContext():
            cloud_account_id = resolve_platform_account_id(saga, identity)
            saga.check_cancelled()
            result = saga.control_plane.update_feature_regions(cloud_account_id, feature, region_names)
            if not result.ok:
                raise ControlPlaneOperationFailedError(
                    f"failed to update regions of {feature}: {result.detail}",
                    operation="updateAwsCloudAccountFeature",
                    remote_message=result.detail,
                )
            log_with_context(
                logger,
                "info",
                "Updated feature regions",
                cloud_account_id=str(cloud_account_id),
                feature=feature.name,
                regions=region_names,
            )
            return saga.control_plane.cloud_account(cloud_account_id)

    def update_permissions(
        self,
        account: AwsAccount,
        features: Sequence[Feature],
        cancellation: Cancellation | None = None,
    ) -> CloudAccount:
        """
        Bring the stack up to date with the features' current permissions.

        Returns:
            The account as read back after the update

        Raises:
            NotFoundError: If the account is not onboarded
            StackReconciliationFailedError: If the stack update fails
        """
        if not features:
            raise ValueError("no features specified")
        saga = self.client.new_saga(cancellation)

        with LogContext():
            cloud_account_id = resolve_platform_account_id(saga, NativeAccountId(account.native_id))
            cfm_url, template_url = saga.control_plane.prepare_feature_update(cloud_account_id, features)
            stack_url = parse_stack_url(cfm_url)
            log_with_context(
                logger,
                "info",
                "Updating permissions",
                cloud_account_id=str(cloud_account_id),
                features=[f.name for f in features],
                stack_id=stack_url.stack_id,
            )
            reconciler = self._reconciler_factory(saga, account)
            _ = reconciler.reconcile(stack_url.stack_id, template_url)
            return saga.control_plane.cloud_account(cloud_account_id)


def _already_connected(account: CloudAccount, features: Sequence[Feature], regions: Sequence[str]) -> bool:
    """
    Return True if every feature is CONNECTED in every region with the same
    permission groups.
    """
    for feature in features:
        state = account.feature(feature)
        if state is None or state.status != FeatureStatus.CONNECTED:
            return False
        if not state.feature.deep_equal(feature):
            return False
        if not all(state.has_region(region) for region in regions):
            return False
    return True

