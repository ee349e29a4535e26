"""
Explicit context objects passed through every saga call.

``ClientContext`` is built once per process. It holds the control plane
adapter, the clock and the polling configuration. ``SagaContext`` is created
per saga from it and adds the cancellation signal and the per-saga caches.
Nothing is read from module globals; tests construct both objects directly
with fakes.

Usage:
    from cloudonboard.context import ClientContext

    client = ClientContext.from_settings(settings)
    saga = client.new_saga()
    saga.cancellation.cancel()  # from another thread
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar
from uuid import UUID

from cloudonboard.config import Settings
from cloudonboard.control_plane import ControlPlane
from cloudonboard.graphql_client import GraphQLClient
from cloudonboard.polling import Cancellation, Clock, PollResult, SystemClock, poll_until_terminal

T = TypeVar("T")


@dataclass
class ClientContext:
    """
    Process-wide collaborators and polling configuration.

    Attributes:
        control_plane: Typed control plane operations
        clock: Clock used by every poll loop
        stack_poll_interval: Seconds between stack polls
        job_poll_interval: Seconds between task chain polls
        poll_jitter: Extra random delay as a fraction of the interval
        saga_timeout: Deadline in seconds applied to each new saga
        aws_region: Default region for CloudFormation clients
    """

    control_plane: ControlPlane
    clock: Clock = field(default_factory=SystemClock)
    stack_poll_interval: float = 10.0
    job_poll_interval: float = 10.0
    poll_jitter: float = 0.0
    saga_timeout: float | None = None
    aws_region: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings, control_plane: ControlPlane | None = None) -> "ClientContext":
        """
        Build the context from settings.

        Args:
            settings: Loaded settings
            control_plane: Adapter to use instead of one built from the
                settings' URL and credentials

        Raises:
            TransportError: If authenticating with the control plane fails
        """
        if control_plane is None:
            control_plane = ControlPlane(GraphQLClient.from_settings(settings))
        return cls(
            control_plane=control_plane,
            stack_poll_interval=settings.stack_poll_interval_seconds,
            job_poll_interval=settings.job_poll_interval_seconds,
            poll_jitter=settings.poll_jitter,
            saga_timeout=settings.saga_timeout_seconds,
            aws_region=settings.aws_region,
        )

    def new_saga(self, cancellation: Cancellation | None = None) -> "SagaContext":
        """
        Create the context for one saga.

        Args:
            cancellation: Cancellation to use. By default a new one is
                created with the configured saga timeout as deadline.
        """
        if cancellation is None:
            cancellation = Cancellation.with_timeout(self.saga_timeout, self.clock)
        return SagaContext(client=self, cancellation=cancellation)


@dataclass
class SagaContext:
    """
    State scoped to a single saga.

    Attributes:
        client: Process-wide context
        cancellation: Cancellation signal and deadline of the saga
        native_ids: Platform account id to native id lookups made during
            the saga
    """

    client: ClientContext
    cancellation: Cancellation
    native_ids: dict[UUID, str] = field(default_factory=dict)

    @property
    def control_plane(self) -> ControlPlane:
        return self.client.control_plane

    @property
    def clock(self) -> Clock:
        return self.client.clock

    def poll(self, step: Callable[[], PollResult[T]], interval: float, description: str) -> T:
        """Drive ``step`` to a terminal state under this saga's cancellation."""
        return poll_until_terminal(
            step,
            interval=interval,
            cancellation=self.cancellation,
            clock=self.clock,
            jitter=self.client.poll_jitter,
            description=description,
        )

    def check_cancelled(self) -> None:
        """Raise OperationCancelledError if the saga was cancelled or timed out."""
        self.cancellation.check(self.clock.monotonic())
