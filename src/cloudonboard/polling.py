"""
Poll-until-terminal driver with cancellation and deadlines.

Every wait in a saga is modeled as a state machine step,
``poll() -> PollResult``, which makes one remote call and reports whether
the observed state is terminal. ``poll_until_terminal`` is the only place
that sleeps. It owns the interval, the optional jitter, and the checks for
cancellation and deadlines. Components that wait on remote state
(CloudFormation stacks, platform task chains) only implement the step.

Time is read and spent through a ``Clock`` so tests can drive the loop
without real timers.

Usage:
    from cloudonboard.polling import Cancellation, PollResult, SystemClock, poll_until_terminal

    clock = SystemClock()
    cancellation = Cancellation.with_timeout(600, clock)

    def poll() -> PollResult[str]:
        status = describe()
        return PollResult(terminal=status not in IN_PROGRESS, state=status)

    final = poll_until_terminal(poll, interval=10, cancellation=cancellation, clock=clock)
"""

import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar

from cloudonboard.errors import OperationCancelledError
from cloudonboard.logging_config import get_logger, log_with_context

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PollResult(Generic[T]):
    """
    Outcome of a single poll step.

    Attributes:
        terminal: Whether the observed state ends the wait
        state: The observed state
    """

    terminal: bool
    state: T


class Cancellation:
    """
    Cancellation signal plus optional deadline for one saga.

    ``cancel()`` is thread-safe and wakes up a sleeping poll loop
    immediately. The deadline is an absolute value on the clock used by the
    saga.

    Attributes:
        deadline: Absolute clock value after which waits fail, or None
    """

    def __init__(self, deadline: float | None = None) -> None:
        self.deadline: float | None = deadline
        self._event: threading.Event = threading.Event()

    @classmethod
    def with_timeout(cls, timeout: float | None, clock: "Clock") -> "Cancellation":
        """Create a cancellation whose deadline is ``timeout`` seconds from now."""
        if timeout is None:
            return cls()
        return cls(deadline=clock.monotonic() + timeout)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def remaining(self, now: float) -> float | None:
        """Seconds left until the deadline, or None without a deadline."""
        if self.deadline is None:
            return None
        return self.deadline - now

    def wait(self, seconds: float) -> bool:
        """Block up to ``seconds``; return True if cancelled meanwhile."""
        return self._event.wait(max(seconds, 0.0))

    def check(self, now: float) -> None:
        """
        Raise if the saga has been cancelled or its deadline has passed.

        Raises:
            OperationCancelledError: With reason "cancelled" or
                "deadline exceeded"
        """
        if self.cancelled:
            raise OperationCancelledError("operation cancelled", reason="cancelled")
        remaining = self.remaining(now)
        if remaining is not None and remaining <= 0:
            raise OperationCancelledError("operation deadline exceeded", reason="deadline exceeded")


class Clock(Protocol):
    """Source of monotonic time and of interruptible sleeps."""

    def monotonic(self) -> float: ...

    def sleep(self, seconds: float, cancellation: Cancellation) -> None: ...


class SystemClock:
    """Clock backed by ``time.monotonic`` and the cancellation event."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float, cancellation: Cancellation) -> None:
        _ = cancellation.wait(seconds)


def poll_until_terminal(
    poll: Callable[[], PollResult[T]],
    *,
    interval: float,
    cancellation: Cancellation,
    clock: Clock,
    jitter: float = 0.0,
    description: str = "remote operation",
    rng: Callable[[], float] = random.random,
) -> T:
    """
    Call ``poll`` until it reports a terminal state.

    Cancellation and the deadline are checked before every poll, so a
    cancelled saga makes no further remote calls. Sleeps are cut short by
    ``cancel()`` and never run past the deadline, so the loop returns
    within one interval of either event.

    Args:
        poll: Single poll step
        interval: Seconds between polls
        cancellation: Saga cancellation signal and deadline
        clock: Clock used for sleeping and the deadline
        jitter: Extra random delay as a fraction of the interval (0 to 1)
        description: What is being waited for, used in logs
        rng: Random source in [0, 1), injectable for tests

    Returns:
        The terminal state reported by ``poll``

    Raises:
        OperationCancelledError: If cancelled or past the deadline
    """
    attempt = 0
    while True:
        cancellation.check(clock.monotonic())

        result = poll()
        attempt += 1
        if result.terminal:
            log_with_context(
                logger,
                "debug",
                "Reached terminal state",
                target=description,
                state=str(result.state),
                attempts=attempt,
            )
            return result.state

        delay = interval * (1.0 + jitter * rng()) if jitter > 0 else interval
        remaining = cancellation.remaining(clock.monotonic())
        if remaining is not None:
            delay = min(delay, max(remaining, 0.0))

        log_with_context(
            logger,
            "debug",
            "Waiting for terminal state",
            target=description,
            state=str(result.state),
            attempt=attempt,
            delay_seconds=round(delay, 3),
        )
        clock.sleep(delay, cancellation)
