"""Retry with exponential backoff for remote graph operations."""

import random
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

import structlog

from deferred_maintenance.graph import GraphRequestError
from deferred_maintenance.models import ValidationError

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class Bounded:
    """Give up after a fixed number of attempts."""

    max_attempts: int

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("Bounded retry requires max_attempts >= 1; use Unbounded() to retry forever")


@dataclass(frozen=True)
class Unbounded:
    """Retry until the operation succeeds or the process is terminated."""


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry a failing operation.

    Durations are in seconds. Each wait is ``delay * factor ** n``, capped at
    ``max_delay``.
    """

    attempts: Bounded | Unbounded = field(default_factory=Unbounded)
    delay: float = 20.0
    factor: float = 1.5
    max_delay: float = 70.0
    jitter: float = 0.0

    def __post_init__(self) -> None:
        if self.delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays must not be negative")
        if self.factor < 1:
            raise ValueError("Retry factor must be >= 1")
        if self.jitter < 0:
            raise ValueError("Retry jitter must not be negative")

    @classmethod
    def from_max_attempts(cls, max_attempts: int, **kwargs: float) -> "RetryPolicy":
        """Build a policy from a numeric setting where 0 means retry forever."""
        if max_attempts < 0:
            raise ValueError("max_attempts must not be negative")
        attempts: Bounded | Unbounded = Bounded(max_attempts) if max_attempts else Unbounded()
        return cls(attempts=attempts, **kwargs)


class RetryExhaustedError(Exception):
    """Raised when a bounded retry policy runs out of attempts."""

    def __init__(self, attempts: int, last_error: BaseException, description: str = "") -> None:
        self.attempts = attempts
        self.last_error = last_error
        self.description = description
        what = f"{description} " if description else ""
        super().__init__(f"{what}failed after {attempts} attempt(s): {last_error}")


def default_is_retryable(error: BaseException) -> bool:
    """Treat every failure as retryable except rejected input."""
    return not isinstance(error, (ValidationError, GraphRequestError))


class RetryExecutor:
    """Run an operation under a retry policy."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        is_retryable: Callable[[BaseException], bool] = default_is_retryable,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._is_retryable = is_retryable

    def _wait_time(self, delay: float) -> float:
        if self.policy.jitter:
            return delay + random.uniform(0, self.policy.jitter * delay)
        return delay

    def execute(self, operation: Callable[[], T], description: str = "") -> T:
        """Call ``operation`` until it succeeds or the policy gives up.

        Raises:
            RetryExhaustedError: A bounded policy ran out of attempts.
            Exception: Any failure the classifier marks as not retryable.
        """
        attempts = self.policy.attempts
        delay = min(self.policy.delay, self.policy.max_delay)
        attempt = 0

        while True:
            attempt += 1
            try:
                return operation()
            except Exception as e:
                if not self._is_retryable(e):
                    logger.debug("Operation failed with non-retryable error", operation=description, error=str(e))
                    raise

                if isinstance(attempts, Bounded) and attempt >= attempts.max_attempts:
                    logger.error(
                        "Retry attempts exhausted", operation=description, attempts=attempt, error=str(e)
                    )
                    raise RetryExhaustedError(attempt, e, description) from e

                wait = self._wait_time(delay)
                logger.warning(
                    "Operation failed, retrying", operation=description, attempt=attempt, delay=wait, error=str(e)
                )
                self._sleep(wait)
                delay = min(delay * self.policy.factor, self.policy.max_delay)
