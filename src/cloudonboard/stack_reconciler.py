"""
CloudFormation stack reconciliation.

The platform's permissions in the customer account live in a single
CloudFormation stack. The control plane decides what the stack should look
like (a template URL) and this module brings the stack there: create it if
absent, update it otherwise, or delete it, then block until CloudFormation
reports a terminal status.

Stack Status Handling:
    - In progress: any of ``IN_PROGRESS_STATUSES``. Polling continues.
    - Success: CREATE_COMPLETE, UPDATE_COMPLETE or DELETE_COMPLETE,
      matching the operation issued.
    - Anything else (ROLLBACK_COMPLETE, UPDATE_ROLLBACK_COMPLETE, ...)
      raises ``StackReconciliationFailedError``.

A stack update that CloudFormation rejects with "No updates are to be
performed" is already reconciled. This keeps re-running an add saga safe.

Usage:
    from cloudonboard.stack_reconciler import StackReconciler

    reconciler = StackReconciler.for_account(saga, account)
    reconciler.reconcile(descriptor.stack_name, descriptor.template_url)
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any
from urllib.parse import parse_qs, urlsplit

from botocore.exceptions import BotoCoreError, ClientError

from cloudonboard.aws_account import AwsAccount
from cloudonboard.context import SagaContext
from cloudonboard.errors import StackReconciliationFailedError
from cloudonboard.logging_config import get_logger, log_with_context
from cloudonboard.polling import PollResult

logger = get_logger(__name__)

CAPABILITIES = ["CAPABILITY_NAMED_IAM"]

IN_PROGRESS_STATUSES = frozenset(
    {
        "CREATE_IN_PROGRESS",
        "DELETE_IN_PROGRESS",
        "ROLLBACK_IN_PROGRESS",
        "UPDATE_IN_PROGRESS",
        "UPDATE_COMPLETE_CLEANUP_IN_PROGRESS",
        "UPDATE_ROLLBACK_IN_PROGRESS",
        "UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS",
        "REVIEW_IN_PROGRESS",
        "IMPORT_IN_PROGRESS",
        "IMPORT_ROLLBACK_IN_PROGRESS",
    }
)

CREATE_COMPLETE = "CREATE_COMPLETE"
UPDATE_COMPLETE = "UPDATE_COMPLETE"
DELETE_COMPLETE = "DELETE_COMPLETE"

_NO_UPDATES = "No updates are to be performed"


class StackIntent(StrEnum):
    """Stack change requested by a control plane CloudFormation URL."""

    UPDATE = "update"
    DELETE = "detail"


class ReconcileOutcome(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class StackUrl:
    """
    Parsed CloudFormation console URL.

    Attributes:
        intent: Whether the stack should be updated or deleted
        stack_id: Stack id (ARN) from the ``stackId`` query parameter
        template_url: Template from the ``templateURL`` query parameter,
            empty for a delete
    """

    intent: StackIntent
    stack_id: str
    template_url: str


def parse_stack_url(url: str) -> StackUrl:
    """
    Parse the CloudFormation console URL returned by the control plane.

    The console URL carries the stack parameters after a fragment marker,
    e.g. ``https://console.aws.amazon.com/cloudformation/home#/stack/update
    ?stackId=arn...&templateURL=https...``. The last marker in the URL wins.

    Args:
        url: CloudFormation console URL

    Returns:
        Parsed intent and parameters

    Raises:
        StackReconciliationFailedError: If the URL has no
            ``#/stack/update`` or ``#/stack/detail`` marker, or no stack id

    Example:
        >>> parse_stack_url("https://x/home#/stack/detail?stackId=arn%3Aaws")
        StackUrl(intent=<StackIntent.DELETE: 'detail'>, stack_id='arn:aws', template_url='')
    """
    markers = {
        StackIntent.UPDATE: url.rfind("#/stack/update"),
        StackIntent.DELETE: url.rfind("#/stack/detail"),
    }
    intent, index = max(markers.items(), key=lambda item: item[1])
    if index < 0:
        raise StackReconciliationFailedError("CloudFormation url does not contain #/stack/update or #/stack/detail")

    query = parse_qs(urlsplit(url[index + 1 :]).query)
    stack_id = query.get("stackId", [""])[0]
    if not stack_id:
        raise StackReconciliationFailedError(f"CloudFormation url does not contain a stack id: {url}")

    return StackUrl(
        intent=intent,
        stack_id=stack_id,
        template_url=query.get("templateURL", [""])[0],
    )


def _error_message(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Message", "")) or str(error)


class StackReconciler:
    """
    Creates, updates and deletes the platform's CloudFormation stack.

    Bound to one saga, whose cancellation and clock drive the waits, and to
    one CloudFormation client.

    Attributes:
        saga: Saga the reconciler works for
        client: boto3 CloudFormation client
    """

    def __init__(self, saga: SagaContext, client: Any) -> None:
        self.saga: SagaContext = saga
        self.client: Any = client

    @classmethod
    def for_account(cls, saga: SagaContext, account: AwsAccount) -> "StackReconciler":
        """
        Create a reconciler using the account's credentials.

        Raises:
            ConfigurationError: If the account has no credentials
        """
        return cls(saga, account.client("cloudformation"))

    def exists(self, stack_name: str) -> bool:
        """
        Return True if the stack exists.

        Raises:
            StackReconciliationFailedError: If the stack cannot be described
                for any reason other than not existing
        """
        try:
            _ = self.client.describe_stacks(StackName=stack_name)
        except ClientError as e:
            if _error_message(e).endswith(f"Stack with id {stack_name} does not exist"):
                return False
            raise StackReconciliationFailedError(
                f"failed to get CloudFormation stack {stack_name}: {e}",
                stack_id=stack_name,
            ) from e
        except BotoCoreError as e:
            raise StackReconciliationFailedError(
                f"failed to get CloudFormation stack {stack_name}: {e}",
                stack_id=stack_name,
            ) from e
        return True

    def poll(self, stack_id: str) -> PollResult[str]:
        """
        Read the stack status once.

        Raises:
            StackReconciliationFailedError: If the stack cannot be described
        """
        try:
            response = self.client.describe_stacks(StackName=stack_id)
        except (ClientError, BotoCoreError) as e:
            raise StackReconciliationFailedError(
                f"failed to access CloudFormation stack {stack_id}: {e}",
                stack_id=stack_id,
            ) from e

        status = str(response["Stacks"][0]["StackStatus"])
        return PollResult(terminal=status not in IN_PROGRESS_STATUSES, state=status)

    def wait(self, stack_id: str) -> str:
        """
        Block until the stack reaches a terminal status.

        Returns:
            The terminal status

        Raises:
            OperationCancelledError: If the saga is cancelled or times out.
                The stack operation itself keeps running.
        """
        return self.saga.poll(
            lambda: self.poll(stack_id),
            interval=self.saga.client.stack_poll_interval,
            description=f"CloudFormation stack {stack_id}",
        )

    def reconcile(self, stack_name: str, template_url: str) -> ReconcileOutcome:
        """
        Create or update the stack from the template and wait for it.

        Args:
            stack_name: Stack name or id
            template_url: S3 URL of the template

        Returns:
            What was done to the stack

        Raises:
            StackReconciliationFailedError: If the stack does not reach
                CREATE_COMPLETE / UPDATE_COMPLETE
            OperationCancelledError: If the saga is cancelled while waiting
        """
        self.saga.check_cancelled()
        log_with_context(logger, "info", "Accessing CloudFormation stack", stack_name=stack_name)

        if self.exists(stack_name):
            log_with_context(logger, "info", "Updating CloudFormation stack", stack_name=stack_name)
            try:
                response = self.client.update_stack(
                    StackName=stack_name,
                    TemplateURL=template_url,
                    Capabilities=CAPABILITIES,
                )
            except ClientError as e:
                if _NO_UPDATES in _error_message(e):
                    log_with_context(
                        logger,
                        "info",
                        "CloudFormation stack already up to date",
                        stack_name=stack_name,
                    )
                    return ReconcileOutcome.UNCHANGED
                raise StackReconciliationFailedError(
                    f"failed to update CloudFormation stack {stack_name}: {e}",
                    stack_id=stack_name,
                ) from e
            except BotoCoreError as e:
                raise StackReconciliationFailedError(
                    f"failed to update CloudFormation stack {stack_name}: {e}",
                    stack_id=stack_name,
                ) from e
            expected, outcome, verb = UPDATE_COMPLETE, ReconcileOutcome.UPDATED, "update"
        else:
            log_with_context(logger, "info", "Creating CloudFormation stack", stack_name=stack_name)
            try:
                response = self.client.create_stack(
                    StackName=stack_name,
                    TemplateURL=template_url,
                    Capabilities=CAPABILITIES,
                )
            except (ClientError, BotoCoreError) as e:
                raise StackReconciliationFailedError(
                    f"failed to create CloudFormation stack {stack_name}: {e}",
                    stack_id=stack_name,
                ) from e
            expected, outcome, verb = CREATE_COMPLETE, ReconcileOutcome.CREATED, "create"

        stack_id = str(response["StackId"])
        status = self.wait(stack_id)
        if status != expected:
            raise StackReconciliationFailedError(
                f"failed to {verb} CloudFormation stack {stack_name}: id={stack_id}, status={status}",
                stack_id=stack_id,
                status=status,
            )

        log_with_context(
            logger,
            "info",
            "CloudFormation stack reconciled",
            stack_id=stack_id,
            status=status,
            outcome=str(outcome),
        )
        return outcome

    def delete(self, stack_name: str) -> None:
        """
        Delete the stack and wait for DELETE_COMPLETE.

        A stack that no longer exists is treated as deleted.

        Raises:
            StackReconciliationFailedError: If the stack does not reach
                DELETE_COMPLETE
            OperationCancelledError: If the saga is cancelled while waiting
        """
        self.saga.check_cancelled()
        if not self.exists(stack_name):
            log_with_context(logger, "info", "CloudFormation stack already deleted", stack_name=stack_name)
            return

        log_with_context(logger, "info", "Deleting CloudFormation stack", stack_name=stack_name)
        try:
            response = self.client.describe_stacks(StackName=stack_name)
            # Deleted stacks can only be described by id.
            stack_id = str(response["Stacks"][0]["StackId"])
            _ = self.client.delete_stack(StackName=stack_id)
        except (ClientError, BotoCoreError) as e:
            raise StackReconciliationFailedError(
                f"failed to delete CloudFormation stack {stack_name}: {e}",
                stack_id=stack_name,
            ) from e

        status = self.wait(stack_id)
        if status != DELETE_COMPLETE:
            raise StackReconciliationFailedError(
                f"failed to delete CloudFormation stack {stack_name}: id={stack_id}, status={status}",
                stack_id=stack_id,
                status=status,
            )
        log_with_context(logger, "info", "CloudFormation stack deleted", stack_id=stack_id)
