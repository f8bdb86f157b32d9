"""Bounded retry with exponential backoff and heuristic fallback."""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, List, Optional, TypeVar

import structlog

from taskintel.errors import ExternalTimeout, InferenceError, RateLimited

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget for one inference call.

    Delays between attempts grow as ``initial_delay * base ** n``, i.e.
    2s, 4s, 8s with the defaults.
    """

    max_attempts: int = 3
    initial_delay: float = 2.0
    base: float = 2.0
    call_timeout: float = 20.0

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (1-based)."""
        return self.initial_delay * (self.base ** (attempt - 1))

    def delays(self) -> List[float]:
        """All delays the policy can produce, in order."""
        return [self.delay_for(n) for n in range(1, self.max_attempts + 1)]

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        """Build a policy from an ``IntelligenceConfig``."""
        return cls(
            max_attempts=config.max_attempts,
            initial_delay=config.backoff_initial_seconds,
            base=config.backoff_base,
            call_timeout=config.call_timeout_seconds,
        )


@dataclass(frozen=True)
class Attempted(Generic[T]):
    """Result of a guarded call."""

    value: T
    degraded: bool = False
    attempts: int = 1
    error: Optional[str] = None


class RetryController:
    """Wraps every external inference call.

    Inference failures are retried up to the policy's attempt budget; once
    exhausted the caller's fallback runs and the result is marked degraded.
    Errors outside the inference taxonomy (e.g. input validation) are raised
    immediately.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the controller.

        Args:
            policy: Retry policy (defaults to 3 attempts, 2s/4s/8s)
            sleep: Awaitable sleep function, injectable for tests
        """
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        fallback: Callable[[], T],
        name: str = "inference",
    ) -> Attempted[T]:
        """Run ``operation`` under the retry policy.

        Args:
            operation: Zero-argument coroutine factory performing the call
            fallback: Heuristic producing a value when all attempts fail
            name: Operation name used in log events

        Returns:
            Attempted result; ``degraded`` is set when the fallback was used
        """
        last_error: Optional[InferenceError] = None

        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                value = await asyncio.wait_for(operation(), timeout=self.policy.call_timeout)
                return Attempted(value=value, attempts=attempt)
            except asyncio.TimeoutError:
                last_error = ExternalTimeout(
                    f"{name} exceeded {self.policy.call_timeout}s"
                )
            except InferenceError as e:
                last_error = e

            if attempt >= self.policy.max_attempts:
                break

            delay = self.policy.delay_for(attempt)
            if isinstance(last_error, RateLimited) and last_error.retry_after:
                delay = max(delay, last_error.retry_after)

            logger.info(
                "inference_retry",
                operation=name,
                attempt=attempt,
                error_kind=last_error.kind,
                delay_seconds=delay,
            )
            await self._sleep(delay)

        logger.warning(
            "inference_degraded",
            operation=name,
            attempts=self.policy.max_attempts,
            error_kind=last_error.kind if last_error else None,
            error=str(last_error),
        )
        return Attempted(
            value=fallback(),
            degraded=True,
            attempts=self.policy.max_attempts,
            error=str(last_error),
        )
