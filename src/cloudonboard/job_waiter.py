"""
Waiting for platform task chains.

Disabling a protection feature or exocompute starts an asynchronous task
chain on the platform. The remove saga must not continue to the stack
change until the chain has finished, because the chain still uses the
permissions the stack grants.

Right after onboarding, the service account's RBAC grants may not have
propagated yet and the status query fails with GraphQL error code 403.
Those errors are tolerated for a bounded number of polls.

Usage:
    from cloudonboard.job_waiter import AsyncJobWaiter

    state = AsyncJobWaiter(saga).wait_for(job_id)
"""

from cloudonboard.context import SagaContext
from cloudonboard.errors import GraphQLError
from cloudonboard.logging_config import get_logger, log_with_context
from cloudonboard.models import TaskChainState
from cloudonboard.polling import PollResult

logger = get_logger(__name__)

RBAC_NOT_READY_CODE = 403
MAX_RBAC_ATTEMPTS = 20


class AsyncJobWaiter:
    """
    Polls a task chain until it reaches SUCCEEDED, FAILED or CANCELED.

    Attributes:
        saga: Saga the waiter works for
        max_rbac_attempts: Number of 403 responses tolerated per wait
    """

    def __init__(self, saga: SagaContext, max_rbac_attempts: int = MAX_RBAC_ATTEMPTS) -> None:
        self.saga: SagaContext = saga
        self.max_rbac_attempts: int = max_rbac_attempts

    def wait_for(self, job_id: str, poll_interval: float | None = None) -> TaskChainState:
        """
        Block until the task chain reaches a terminal state.

        Args:
            job_id: Task chain id
            poll_interval: Seconds between polls, defaults to the configured
                job poll interval

        Returns:
            The terminal state. The caller decides whether it is a failure.

        Raises:
            GraphQLError: If the status query fails with anything other
                than a 403, or with a 403 more often than tolerated
            OperationCancelledError: If the saga is cancelled or times out
        """
        rbac_attempts = 0

        def poll() -> PollResult[TaskChainState]:
            nonlocal rbac_attempts
            try:
                task_chain = self.saga.control_plane.job_status(job_id)
            except GraphQLError as e:
                if e.code != RBAC_NOT_READY_CODE:
                    raise
                rbac_attempts += 1
                if rbac_attempts > self.max_rbac_attempts:
                    log_with_context(
                        logger,
                        "error",
                        "RBAC not ready, giving up",
                        job_id=job_id,
                        attempts=rbac_attempts,
                    )
                    raise
                log_with_context(
                    logger,
                    "debug",
                    "RBAC not ready",
                    job_id=job_id,
                    attempt=rbac_attempts,
                )
                return PollResult(terminal=False, state=TaskChainState.INVALID)

            return PollResult(terminal=task_chain.state.is_terminal, state=task_chain.state)

        log_with_context(logger, "info", "Waiting for task chain", job_id=job_id)
        state = self.saga.poll(
            poll,
            interval=poll_interval if poll_interval is not None else self.saga.client.job_poll_interval,
            description=f"task chain {job_id}",
        )
        log_with_context(logger, "info", "Task chain finished", job_id=job_id, state=str(state))
        return state
