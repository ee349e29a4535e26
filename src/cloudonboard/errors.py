"""
Custom exception classes for CloudOnboard.

This module defines the exception hierarchy raised by the feature lifecycle
saga and its collaborators. Each exception class represents a specific
failure mode with clear semantics about whether re-invoking the operation
can help.

Exception Hierarchy:
    CloudOnboardError (base)
    ├── InvalidIdentityError (malformed account reference, permanent)
    ├── InvalidRegionError (unknown region, permanent)
    ├── ValidationRejectedError (control plane refused the request, permanent)
    ├── NotFoundError (account or feature missing, permanent)
    ├── StackReconciliationFailedError (stack ended in a failure status)
    ├── AsyncJobFailedError (disable job ended FAILED/CANCELED)
    ├── ControlPlaneOperationFailedError (mutation reported failure)
    ├── OperationCancelledError (poll loop cancelled or deadline hit)
    ├── ConfigurationError (invalid settings, permanent)
    └── GraphQLError / TransportError (collaborator layer)

Retry Semantics:
    The saga never retries internally. The retryable flag tells the caller
    whether re-invoking the same operation is expected to make progress.
    Re-invocation is the recovery path for partially applied sagas.
"""


class CloudOnboardError(Exception):
    """
    Base exception for all CloudOnboard errors.

    Attributes:
        message: Human-readable error description
        retryable: Whether re-invoking the operation may succeed
        context: Additional context dictionary for structured logging
    """

    def __init__(
        self,
        message: str,
        retryable: bool = False,
        context: dict[str, object] | None = None,
    ) -> None:
        """
        Initialize CloudOnboard error.

        Args:
            message: Human-readable error description
            retryable: Whether re-invoking the operation may succeed
            context: Additional context for structured logging
        """
        super().__init__(message)
        self.message = message
        self.retryable = retryable
        self.context = context or {}

    def __str__(self) -> str:
        """Return string representation of error."""
        return self.message


class InvalidIdentityError(CloudOnboardError):
    """
    Malformed account reference.

    Raised during identity resolution, before any remote call is made.

    Attributes:
        reference: The offending reference as given by the caller
    """

    def __init__(self, message: str, reference: str | None = None) -> None:
        super().__init__(message, retryable=False, context={"reference": reference})
        self.reference = reference


class InvalidRegionError(CloudOnboardError):
    """Unknown region name, or an update request without any region."""

    def __init__(self, message: str, region: str | None = None) -> None:
        super().__init__(message, retryable=False, context={"region": region})
        self.region = region


class ValidationRejectedError(CloudOnboardError):
    """
    The control plane refused the requested account/feature combination.

    The remote message is preserved verbatim. Typical causes are an account
    already onboarded for the feature or an unsuitable admin account.

    Attributes:
        native_id: Native account id named by the rejection
        remote_message: Message returned by the control plane
    """

    def __init__(
        self,
        message: str,
        native_id: str | None = None,
        remote_message: str | None = None,
    ) -> None:
        context = {
            "native_id": native_id,
            "remote_message": remote_message,
        }
        super().__init__(message, retryable=False, context=context)
        self.native_id = native_id
        self.remote_message = remote_message


class NotFoundError(CloudOnboardError):
    """
    A requested account or feature does not exist where expected.

    Attributes:
        entity: What was looked up (e.g. "account", "feature")
        key: The lookup key
    """

    def __init__(self, message: str, entity: str | None = None, key: str | None = None) -> None:
        super().__init__(message, retryable=False, context={"entity": entity, "key": key})
        self.entity = entity
        self.key = key


class StackReconciliationFailedError(CloudOnboardError):
    """
    CloudFormation stack operation did not reach its success status.

    The account may be left partially configured. Re-invoking the saga
    once the underlying problem (usually IAM permissions) is fixed is the
    documented recovery path.

    Attributes:
        stack_id: Stack id or name the operation targeted
        status: Final stack status observed, if any
    """

    def __init__(
        self,
        message: str,
        stack_id: str | None = None,
        status: str | None = None,
    ) -> None:
        context = {
            "stack_id": stack_id,
            "status": status,
        }
        super().__init__(message, retryable=False, context=context)
        self.stack_id = stack_id
        self.status = status


class AsyncJobFailedError(CloudOnboardError):
    """
    Platform task chain reached FAILED or CANCELED.

    Attributes:
        job_id: Task chain id
        state: Terminal state observed
    """

    def __init__(self, message: str, job_id: str | None = None, state: str | None = None) -> None:
        super().__init__(message, retryable=False, context={"job_id": job_id, "state": state})
        self.job_id = job_id
        self.state = state


class ControlPlaneOperationFailedError(CloudOnboardError):
    """
    A control plane mutation reported failure.

    Attributes:
        operation: GraphQL operation name
        remote_message: Message returned by the control plane
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        remote_message: str | None = None,
    ) -> None:
        context = {
            "operation": operation,
            "remote_message": remote_message,
        }
        super().__init__(message, retryable=False, context=context)
        self.operation = operation
        self.remote_message = remote_message


class OperationCancelledError(CloudOnboardError):
    """
    A poll loop observed cancellation or an expired deadline.

    Remote operations already in flight are not aborted. Re-invoking the
    saga later picks up from whatever state the remote systems reached.

    Attributes:
        reason: "cancelled" or "deadline exceeded"
    """

    def __init__(self, message: str, reason: str = "cancelled") -> None:
        super().__init__(message, retryable=True, context={"reason": reason})
        self.reason = reason


class ConfigurationError(CloudOnboardError):
    """
    Error in CloudOnboard configuration.

    Raised during startup when required configuration is missing or invalid.
    These are permanent errors that require user intervention.

    Attributes:
        config_key: Configuration key that is invalid
        reason: Specific validation failure reason
    """

    def __init__(
        self,
        message: str,
        config_key: str | None = None,
        reason: str | None = None,
    ) -> None:
        """
        Initialize configuration error.

        Args:
            message: Human-readable error description
            config_key: Configuration key that failed validation
            reason: Why the configuration is invalid
        """
        context = {
            "config_key": config_key,
            "reason": reason,
        }
        super().__init__(message, retryable=False, context=context)
        self.config_key = config_key
        self.reason = reason


class TransportError(CloudOnboardError):
    """
    HTTP-level failure talking to the control plane.

    Attributes:
        status_code: HTTP status code, if a response was received
        response_body: Response body for debugging
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
        retryable: bool = True,
    ) -> None:
        context = {
            "status_code": status_code,
            "response_body": response_body[:500] if response_body else None,
        }
        super().__init__(message, retryable=retryable, context=context)
        self.status_code = status_code
        self.response_body = response_body


class GraphQLError(CloudOnboardError):
    """
    The control plane answered with a GraphQL ``errors`` document.

    Attributes:
        operation: GraphQL operation name
        code: ``extensions.code`` of the first error, if present
        messages: All error messages returned
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        code: int | None = None,
        messages: list[str] | None = None,
    ) -> None:
        context = {
            "operation": operation,
            "code": code,
        }
        super().__init__(message, retryable=False, context=context)
        self.operation = operation
        self.code = code
        self.messages = messages or []
